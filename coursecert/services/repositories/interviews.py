from __future__ import annotations

import logging
from typing import List, Optional, Sequence

from coursecert.core.error_handling import ApplicationError
from coursecert.db.base import utcnow
from coursecert.db.store import SqlDocumentStore
from coursecert.services.records import Feedback, Interview, InterviewStatus, load_record

logger = logging.getLogger(__name__)

INTERVIEWS = "interviews"
FEEDBACK = "feedback"


class InterviewRepository:
    """Reads and creates interview attempts.

    A second pending insert for the same (course, user) is rejected by the
    store's partial unique index and surfaces as StoreConflictError.
    """

    def __init__(self, store: SqlDocumentStore):
        self.store = store

    def _load(self, doc) -> Interview:
        return load_record(Interview, INTERVIEWS, doc)

    async def get_interview(self, interview_id: str) -> Optional[Interview]:
        doc = await self.store.get(INTERVIEWS, interview_id)
        return self._load(doc) if doc is not None else None

    async def get_pending_interview(self, course_id: str, user_id: str) -> Optional[Interview]:
        docs = await self.store.query(
            INTERVIEWS,
            [
                ("course_id", "==", course_id),
                ("user_id", "==", user_id),
                ("status", "==", InterviewStatus.PENDING.value),
            ],
            limit=1,
        )
        return self._load(docs[0]) if docs else None

    async def get_latest_interview(self, course_id: str, user_id: str) -> Optional[Interview]:
        """Most recent attempt with its latest feedback attached."""
        docs = await self.store.query(
            INTERVIEWS,
            [("course_id", "==", course_id), ("user_id", "==", user_id)],
            order_by=("created_at", "desc"),
            limit=1,
        )
        if not docs:
            return None

        interview = self._load(docs[0])
        if interview.feedback_id:
            feedback_doc = await self.store.get(FEEDBACK, interview.feedback_id)
            if feedback_doc is not None:
                feedback = load_record(Feedback, FEEDBACK, feedback_doc)
                if feedback.user_id != user_id:
                    logger.error(
                        "Feedback owner does not match interview owner; ignoring feedback",
                        extra={
                            "interview_id": interview.id,
                            "feedback_id": feedback.id,
                            "user_id": user_id,
                        },
                    )
                else:
                    interview.feedback = feedback
        return interview

    async def create_interview(
        self,
        course_id: str,
        user_id: str,
        questions: Sequence[str],
        attempt_count: int,
        previous_interview_id: Optional[str] = None,
    ) -> Interview:
        now = utcnow()
        doc = {
            "course_id": course_id,
            "user_id": user_id,
            "status": InterviewStatus.PENDING.value,
            "attempt_count": attempt_count,
            "questions": list(questions),
            "transcript": [],
            "feedback_id": None,
            "last_attempt": now,
            "created_at": now,
            "updated_at": now,
            "next_retake_date": None,
            "archived_at": None,
        }
        interview_id = await self.store.insert(INTERVIEWS, doc)
        logger.info(
            "Interview created",
            extra={"interview_id": interview_id, "course_id": course_id, "user_id": user_id},
        )

        if attempt_count > 1:
            await self._archive_previous(course_id, user_id, interview_id, previous_interview_id)

        return self._load({"id": interview_id, **doc})

    async def _archive_previous(
        self,
        course_id: str,
        user_id: str,
        keep_id: str,
        previous_interview_id: Optional[str],
    ) -> None:
        # Stale-row cleanup only; the new attempt stands even if this fails.
        now = utcnow()
        batch = self.store.batch()
        batch.update_where(
            INTERVIEWS,
            [
                ("course_id", "==", course_id),
                ("user_id", "==", user_id),
                ("id", "!=", keep_id),
                ("status", "!=", InterviewStatus.ARCHIVED.value),
            ],
            {"status": InterviewStatus.ARCHIVED.value, "archived_at": now, "updated_at": now},
        )
        try:
            await batch.commit()
        except ApplicationError as exc:
            logger.warning(
                f"Archiving previous attempts failed: {exc.message}",
                extra={
                    "interview_id": previous_interview_id or keep_id,
                    "course_id": course_id,
                    "error_code": exc.error_code,
                },
            )

    async def list_user_interviews(self, user_id: str) -> List[Interview]:
        docs = await self.store.query(
            INTERVIEWS,
            [("user_id", "==", user_id)],
            order_by=("created_at", "desc"),
        )
        return [self._load(doc) for doc in docs]
