"""
Feedback commit coordinator.

Scores a submitted transcript and commits the resulting state as one atomic
batch:

    1. demote the interview's current latest feedback
    2. insert the new feedback (id derived from interview id + attempt number)
    3. complete the interview, conditional on the attempt_count/feedback_id read
    4. archive sibling attempts once the attempt cap is reached

The scoring call happens before any write. A conditional-write conflict is
resolved by replaying the twin request's committed feedback when it exists.
Callers that pass the ``attempt_number`` they are grading get the stored
feedback back on a retry instead of a second scoring.
"""
from __future__ import annotations

import logging
import uuid
from typing import Any, List, Optional, Sequence

from pydantic import ValidationError as PydanticValidationError

from coursecert.core.error_handling import (
    ApplicationError,
    ConcurrencyConflictError,
    InterviewArchivedError,
    NotFoundError,
    StoreConflictError,
    ValidationError,
    ValidationErrorDetail,
)
from coursecert.core.logging_config import log_performance
from coursecert.core.metrics import Timer, collector
from coursecert.db.base import utcnow
from coursecert.db.store import SqlDocumentStore
from coursecert.services.assessment import AssessmentClient
from coursecert.services.records import (
    Feedback,
    FeedbackResult,
    Interview,
    InterviewStatus,
    RetakeEligibility,
    TranscriptEntry,
)
from coursecert.services.repositories.feedback import FeedbackRepository
from coursecert.services.repositories.interviews import InterviewRepository
from coursecert.services.retake_policy import InterviewPolicyConfig, RetakePolicy

logger = logging.getLogger(__name__)

FEEDBACK_ID_NAMESPACE = uuid.UUID("6f1c2a4e-9b3d-5e7f-8a10-c2d4e6f8a0b2")


def feedback_id_for(interview_id: str, attempt_number: int) -> str:
    return uuid.uuid5(FEEDBACK_ID_NAMESPACE, f"{interview_id}:{attempt_number}").hex


def flatten_transcript(entries: Sequence[TranscriptEntry]) -> str:
    return "\n".join(f"{entry.role}: {entry.content}" for entry in entries)


def validate_transcript(transcript: Optional[Sequence[Any]]) -> List[TranscriptEntry]:
    if not transcript:
        raise ValidationError(
            "Transcript must contain at least one entry",
            [ValidationErrorDetail(field="transcript", message="Transcript is empty", code="empty")],
        )

    entries: List[TranscriptEntry] = []
    field_errors: List[ValidationErrorDetail] = []
    for index, raw in enumerate(transcript):
        try:
            entry = raw if isinstance(raw, TranscriptEntry) else TranscriptEntry.model_validate(raw)
        except PydanticValidationError as exc:
            for err in exc.errors():
                loc = ".".join(str(p) for p in err["loc"])
                field_errors.append(ValidationErrorDetail(
                    field=f"transcript.{index}.{loc}" if loc else f"transcript.{index}",
                    message=err["msg"],
                    code=err["type"],
                ))
            continue
        if not entry.role.strip() or not entry.content.strip():
            field_errors.append(ValidationErrorDetail(
                field=f"transcript.{index}",
                message="role and content must be non-blank",
                code="blank",
            ))
            continue
        entries.append(entry)

    if field_errors:
        raise ValidationError("Transcript contains invalid entries", field_errors)
    return entries


class FeedbackCommitCoordinator:
    def __init__(
        self,
        store: SqlDocumentStore,
        assessor: AssessmentClient,
        interviews: InterviewRepository,
        feedback: FeedbackRepository,
        policy_config: Optional[InterviewPolicyConfig] = None,
    ):
        self.store = store
        self.assessor = assessor
        self.interviews = interviews
        self.feedback = feedback
        self.policy = RetakePolicy(policy_config)

    @property
    def config(self) -> InterviewPolicyConfig:
        return self.policy.config

    async def _load_scorable(self, interview_id: str, user_id: str) -> Interview:
        interview = await self.interviews.get_interview(interview_id)
        # Another user's interview is reported as absent.
        if interview is None or interview.user_id != user_id:
            raise NotFoundError("interview", interview_id)
        if interview.status == InterviewStatus.ARCHIVED:
            raise InterviewArchivedError(interview_id)
        return interview

    @log_performance("submit_transcript")
    async def submit_transcript(
        self,
        interview_id: str,
        user_id: str,
        transcript: Sequence[Any],
        attempt_number: Optional[int] = None,
    ) -> FeedbackResult:
        entries = validate_transcript(transcript)
        if attempt_number is not None and attempt_number < 1:
            raise ValidationError(
                "Attempt number must be positive",
                [ValidationErrorDetail(field="attempt_number", message="must be >= 1", code="greater_than_equal")],
            )
        text = flatten_transcript(entries)

        await self._load_scorable(interview_id, user_id)

        if attempt_number is not None:
            replay = await self._replay_existing(interview_id, user_id, feedback_id_for(interview_id, attempt_number))
            if replay is not None:
                return replay

        report = await self.assessor.score_transcript(
            text, {"interview_id": interview_id, "user_id": user_id}
        )

        interview = await self._load_scorable(interview_id, user_id)

        now = utcnow()
        requires_retake = self.policy.requires_retake(report.total_score)
        cooldown_end = now + self.config.cooldown if requires_retake else None
        # The first scoring grades the attempt the interview was created for;
        # each re-scoring counts as one more attempt.
        new_attempt_count = interview.attempt_count + 1 if interview.feedback_id else interview.attempt_count
        feedback_id = feedback_id_for(interview.id, new_attempt_count)

        if attempt_number is not None and attempt_number != new_attempt_count:
            # A twin committed the requested attempt while this one was scoring.
            replay = await self._replay_existing(interview.id, user_id, feedback_id_for(interview.id, attempt_number))
            if replay is not None:
                return replay
            raise ConcurrencyConflictError(
                f"Interview is at attempt {new_attempt_count}, not {attempt_number}",
                details={"interview_id": interview.id, "attempt_number": attempt_number},
            )

        feedback = Feedback(
            id=feedback_id,
            interview_id=interview.id,
            user_id=user_id,
            total_score=report.total_score,
            category_scores=report.category_scores,
            strengths=report.strengths,
            areas_for_improvement=report.areas_for_improvement,
            final_assessment=report.final_assessment,
            is_latest=True,
            attempt_number=new_attempt_count,
            transcript=text,
            created_at=now,
        )

        batch = self.store.batch()
        batch.update_where(
            "feedback",
            [("interview_id", "==", interview.id), ("is_latest", "==", True)],
            {"is_latest": False},
        )
        batch.insert("feedback", feedback.to_document())
        batch.update(
            "interviews",
            interview.id,
            {
                "status": InterviewStatus.COMPLETED.value,
                "feedback_id": feedback_id,
                "attempt_count": new_attempt_count,
                "transcript": [entry.model_dump() for entry in entries],
                "last_attempt": now,
                "updated_at": now,
                "next_retake_date": cooldown_end,
            },
            expect={
                "status": interview.status.value,
                "attempt_count": interview.attempt_count,
                "feedback_id": interview.feedback_id,
            },
        )
        if new_attempt_count >= self.config.max_attempts:
            batch.update_where(
                "interviews",
                [
                    ("course_id", "==", interview.course_id),
                    ("user_id", "==", user_id),
                    ("id", "!=", interview.id),
                    ("status", "!=", InterviewStatus.ARCHIVED.value),
                ],
                {"status": InterviewStatus.ARCHIVED.value, "archived_at": now, "updated_at": now},
            )

        try:
            with Timer() as timer:
                await batch.commit()
        except StoreConflictError as exc:
            return await self._resolve_conflict(interview, feedback_id, user_id, exc)
        except ApplicationError as exc:
            collector.increment_counter("feedback_commit_failed")
            await self._compensate(feedback_id, interview.id)
            logger.error(
                f"Feedback commit failed: {exc.message}",
                extra={"interview_id": interview.id, "feedback_id": feedback_id, "error_code": exc.error_code},
            )
            raise
        collector.record_histogram("feedback_commit_ms", timer.ms)
        collector.increment_counter("feedback_committed")

        logger.info(
            "Feedback committed",
            extra={"interview_id": interview.id, "feedback_id": feedback_id, "user_id": user_id},
        )
        return FeedbackResult(
            feedback=feedback,
            retake_eligibility=RetakeEligibility(
                required=requires_retake,
                available_date=cooldown_end,
                attempts_remaining=self.policy.attempts_remaining(new_attempt_count),
            ),
        )

    async def _resolve_conflict(
        self,
        interview: Interview,
        feedback_id: str,
        user_id: str,
        error: StoreConflictError,
    ) -> FeedbackResult:
        existing = await self.feedback.get_feedback(feedback_id)
        if existing is not None and existing.user_id == user_id:
            current = await self.interviews.get_interview(interview.id)
            committed = current is not None and current.feedback_id == existing.id
            if self.store.atomic_batches or committed:
                return self._replay(existing, current)
            # The twin's writes are still landing; its feedback row must stay.
            collector.increment_counter("feedback_commit_failed")
            raise ConcurrencyConflictError(
                "Interview is being scored by a concurrent request",
                details={"interview_id": interview.id, "conflict": error.message},
            ) from error

        collector.increment_counter("feedback_commit_failed")
        await self._compensate(feedback_id, interview.id)
        raise ConcurrencyConflictError(
            "Interview was modified by a concurrent request",
            details={"interview_id": interview.id, "conflict": error.message},
        ) from error

    async def _replay_existing(
        self,
        interview_id: str,
        user_id: str,
        feedback_id: str,
    ) -> Optional[FeedbackResult]:
        existing = await self.feedback.get_feedback(feedback_id)
        if existing is None or existing.user_id != user_id:
            return None
        current = await self.interviews.get_interview(interview_id)
        if not self.store.atomic_batches and (current is None or current.feedback_id != existing.id):
            return None
        return self._replay(existing, current)

    def _replay(self, existing: Feedback, current: Optional[Interview]) -> FeedbackResult:
        collector.increment_counter("feedback_replayed")
        logger.info(
            "Replaying previously committed feedback",
            extra={"interview_id": existing.interview_id, "feedback_id": existing.id},
        )
        required = self.policy.requires_retake(existing.total_score)
        available = current.next_retake_date if (required and current is not None) else None
        return FeedbackResult(
            feedback=existing,
            retake_eligibility=RetakeEligibility(
                required=required,
                available_date=available,
                attempts_remaining=self.policy.attempts_remaining(existing.attempt_number),
            ),
            replayed=True,
        )

    async def _compensate(self, feedback_id: str, interview_id: str) -> None:
        # Atomic batches never leave the pre-allocated row behind.
        if self.store.atomic_batches:
            return
        try:
            await self.store.delete("feedback", feedback_id)
        except ApplicationError as exc:
            logger.error(
                f"Compensating feedback delete failed: {exc.message}",
                extra={"interview_id": interview_id, "feedback_id": feedback_id, "error_code": exc.error_code},
            )
