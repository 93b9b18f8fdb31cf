from __future__ import annotations

import logging
from typing import List, Optional

from coursecert.core.config import get_settings
from coursecert.core.error_handling import UpstreamFailureError
from coursecert.core.logging_config import log_performance
from coursecert.services.llm_client import LLMClient, LLMRequest, get_llm_client
from coursecert.services.prompt_registry import QUESTION_AUTHOR_PERSONA, question_prompt
from coursecert.services.records import Course

logger = logging.getLogger(__name__)


class QuestionGenerator:
    """Produces the fixed question list of a new interview from its course."""

    def __init__(
        self,
        llm: Optional[LLMClient] = None,
        min_questions: Optional[int] = None,
        max_questions: Optional[int] = None,
    ):
        settings = get_settings()
        self.llm = llm or get_llm_client()
        self.min_questions = min_questions or settings.questions_min
        self.max_questions = max_questions or settings.questions_max

    @log_performance("generate_questions")
    async def generate_questions(self, course: Course) -> List[str]:
        request = LLMRequest(
            prompt=question_prompt(
                course,
                min_questions=self.min_questions,
                max_questions=self.max_questions,
            ),
            system_message=QUESTION_AUTHOR_PERSONA,
            temperature=0.4,
        )
        payload = await self.llm.generate_json(request)
        return self.validate_questions(payload.get("questions"), course.id)

    def validate_questions(self, questions, course_id: str) -> List[str]:
        if not isinstance(questions, list):
            raise UpstreamFailureError("question_generator", "Response has no 'questions' list")

        cleaned = []
        for question in questions:
            if not isinstance(question, str) or not question.strip():
                raise UpstreamFailureError("question_generator", "Question list contains an empty or non-text entry")
            cleaned.append(question.strip())

        if not self.min_questions <= len(cleaned) <= self.max_questions:
            logger.warning(
                f"Question generator returned {len(cleaned)} questions",
                extra={"course_id": course_id, "operation": "generate_questions"},
            )
            raise UpstreamFailureError(
                "question_generator",
                f"Expected {self.min_questions}-{self.max_questions} questions, got {len(cleaned)}",
            )
        return cleaned
