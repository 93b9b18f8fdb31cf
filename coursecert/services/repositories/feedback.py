from __future__ import annotations

from typing import List, Optional

from coursecert.db.store import SqlDocumentStore
from coursecert.services.records import Feedback, load_record

FEEDBACK = "feedback"


class FeedbackRepository:
    def __init__(self, store: SqlDocumentStore):
        self.store = store

    async def get_feedback(self, feedback_id: str) -> Optional[Feedback]:
        doc = await self.store.get(FEEDBACK, feedback_id)
        return load_record(Feedback, FEEDBACK, doc) if doc is not None else None

    async def list_user_feedback(self, user_id: str) -> List[Feedback]:
        docs = await self.store.query(FEEDBACK, [("user_id", "==", user_id)], order_by=("created_at", "desc"))
        return [load_record(Feedback, FEEDBACK, doc) for doc in docs]

    async def list_for_interview(self, interview_id: str) -> List[Feedback]:
        docs = await self.store.query(
            FEEDBACK,
            [("interview_id", "==", interview_id)],
            order_by=("created_at", "asc"),
        )
        return [load_record(Feedback, FEEDBACK, doc) for doc in docs]
