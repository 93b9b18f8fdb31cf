"""
InterviewLifecycle - entry points for course completion interviews
Start or resume an attempt, submit a transcript for scoring, report status.
"""
from __future__ import annotations

import logging
from typing import Any, List, Optional, Sequence

from coursecert.core.config import get_settings
from coursecert.core.error_handling import (
    AuthorizationError,
    NotFoundError,
    RetakeCooldownError,
    StoreConflictError,
)
from coursecert.core.logging_config import log_performance
from coursecert.core.metrics import collector
from coursecert.db.store import SqlDocumentStore
from coursecert.services.assessment import AssessmentClient
from coursecert.services.feedback_coordinator import FeedbackCommitCoordinator
from coursecert.services.question_generator import QuestionGenerator
from coursecert.services.records import (
    Course,
    Feedback,
    FeedbackResult,
    Interview,
    InterviewStatusView,
    StartResult,
    load_record,
)
from coursecert.services.repositories.feedback import FeedbackRepository
from coursecert.services.repositories.interviews import InterviewRepository
from coursecert.services.retake_policy import InterviewPolicyConfig, RetakePolicy

logger = logging.getLogger(__name__)


class InterviewLifecycle:
    def __init__(
        self,
        store: SqlDocumentStore,
        interviews: InterviewRepository,
        feedback: FeedbackRepository,
        coordinator: FeedbackCommitCoordinator,
        question_generator: QuestionGenerator,
        policy: RetakePolicy,
    ):
        self.store = store
        self.interviews = interviews
        self.feedback = feedback
        self.coordinator = coordinator
        self.question_generator = question_generator
        self.policy = policy

    async def _load_course(self, course_id: str) -> Course:
        doc = await self.store.get("courses", course_id)
        if doc is None:
            raise NotFoundError("course", course_id)
        return load_record(Course, "courses", doc)

    @log_performance("start_or_resume_interview")
    async def start_or_resume_interview(self, course_id: str, user_id: str) -> StartResult:
        pending = await self.interviews.get_pending_interview(course_id, user_id)
        if pending is not None:
            collector.increment_counter("interview_resumed")
            return StartResult(interview=pending, resumed=True)

        latest = await self.interviews.get_latest_interview(course_id, user_id)
        if latest is not None:
            decision = self.policy.decide(latest)
            if not decision.eligible:
                collector.increment_counter("retake_rejected")
                logger.info(
                    f"Retake rejected: {decision.reason.value}",
                    extra={"course_id": course_id, "user_id": user_id, "interview_id": latest.id},
                )
                raise RetakeCooldownError(decision.next_retake_date, decision.reason.value, latest.attempt_count)

        course = await self._load_course(course_id)
        questions = await self.question_generator.generate_questions(course)
        attempt_count = latest.attempt_count + 1 if latest is not None else 1

        try:
            interview = await self.interviews.create_interview(
                course_id,
                user_id,
                questions,
                attempt_count,
                previous_interview_id=latest.id if latest is not None else None,
            )
        except StoreConflictError:
            # A concurrent request inserted the pending attempt first.
            pending = await self.interviews.get_pending_interview(course_id, user_id)
            if pending is None:
                raise
            collector.increment_counter("interview_resumed")
            return StartResult(interview=pending, resumed=True)

        collector.increment_counter("interview_created")
        return StartResult(interview=interview, resumed=False)

    async def submit_transcript_for_scoring(
        self,
        interview_id: str,
        user_id: str,
        transcript: Sequence[Any],
        attempt_number: Optional[int] = None,
    ) -> FeedbackResult:
        return await self.coordinator.submit_transcript(interview_id, user_id, transcript, attempt_number)

    async def get_interview_status(self, course_id: str, user_id: str) -> InterviewStatusView:
        latest = await self.interviews.get_latest_interview(course_id, user_id)
        if latest is None:
            return InterviewStatusView(exists=False)

        decision = self.policy.decide(latest)
        return InterviewStatusView(
            exists=True,
            interview_id=latest.id,
            status=latest.status,
            feedback_id=latest.feedback_id,
            score=latest.feedback.total_score if latest.feedback is not None else None,
            can_retake=decision.eligible,
            retake_available_date=latest.next_retake_date,
            attempt_count=latest.attempt_count,
            attempts_remaining=self.policy.attempts_remaining(latest.attempt_count),
        )

    async def list_user_interviews(self, user_id: str) -> List[Interview]:
        return await self.interviews.list_user_interviews(user_id)

    async def get_feedback(self, feedback_id: str, user_id: str) -> Feedback:
        feedback = await self.feedback.get_feedback(feedback_id)
        if feedback is None:
            raise NotFoundError("feedback", feedback_id)
        if feedback.user_id != user_id:
            raise AuthorizationError("Unauthorized access to feedback", resource_type="feedback")
        return feedback

    async def list_user_feedback(self, user_id: str) -> List[Feedback]:
        return await self.feedback.list_user_feedback(user_id)


def build_lifecycle(
    store: SqlDocumentStore,
    assessor: Optional[AssessmentClient] = None,
    question_generator: Optional[QuestionGenerator] = None,
    policy_config: Optional[InterviewPolicyConfig] = None,
) -> InterviewLifecycle:
    config = policy_config or get_settings().interview_policy()
    interviews = InterviewRepository(store)
    feedback = FeedbackRepository(store)
    coordinator = FeedbackCommitCoordinator(
        store,
        assessor or AssessmentClient(),
        interviews,
        feedback,
        config,
    )
    return InterviewLifecycle(
        store=store,
        interviews=interviews,
        feedback=feedback,
        coordinator=coordinator,
        question_generator=question_generator or QuestionGenerator(),
        policy=RetakePolicy(config),
    )


_lifecycle: Optional[InterviewLifecycle] = None


def get_lifecycle() -> InterviewLifecycle:
    """FastAPI dependency returning the process-wide lifecycle façade"""
    global _lifecycle
    if _lifecycle is None:
        from coursecert.db.session import async_session_factory

        _lifecycle = build_lifecycle(SqlDocumentStore(async_session_factory))
    return _lifecycle
