"""
Transcript scoring through the LLM client.

The model's JSON is validated against ScoreReport as-is: no coercion, no
repair. A report with a missing field or a score outside [0, 100] fails the
whole submission before anything is written.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from pydantic import ValidationError as PydanticValidationError

from coursecert.core.error_handling import UpstreamFailureError
from coursecert.core.logging_config import log_performance
from coursecert.core.metrics import Timer, collector
from coursecert.services.llm_client import LLMClient, LLMRequest, get_llm_client
from coursecert.services.prompt_registry import ASSESSOR_PERSONA, assessment_prompt
from coursecert.services.records import ScoreReport

logger = logging.getLogger(__name__)


class AssessmentClient:
    def __init__(self, llm: Optional[LLMClient] = None):
        self.llm = llm or get_llm_client()

    @log_performance("score_transcript")
    async def score_transcript(self, text: str, context: Dict[str, Any]) -> ScoreReport:
        request = LLMRequest(
            prompt=assessment_prompt(
                text,
                interview_id=str(context.get("interview_id", "")),
                user_id=str(context.get("user_id", "")),
            ),
            system_message=ASSESSOR_PERSONA,
            temperature=0.1,
        )
        with Timer() as timer:
            payload = await self.llm.generate_json(request)
        collector.record_histogram("score_transcript_ms", timer.ms)

        try:
            return ScoreReport.model_validate(payload)
        except PydanticValidationError as exc:
            fields = sorted({".".join(str(p) for p in err["loc"]) for err in exc.errors()})
            logger.warning(
                "Rejected malformed score report",
                extra={"interview_id": context.get("interview_id"), "operation": "score_transcript"},
            )
            raise UpstreamFailureError(
                "assessment",
                f"Score report failed validation: {', '.join(fields)}",
            ) from exc
