import datetime as dt

from sqlalchemy import JSON, Boolean, Index, Integer, String, Text, text
from sqlalchemy.orm import Mapped, mapped_column

from coursecert.db.base import Base, UTCDateTime, utcnow


class Feedback(Base):
    __tablename__ = "feedback"
    __table_args__ = (
        # Exactly one latest feedback per interview
        Index(
            "uq_feedback_latest_per_interview",
            "interview_id",
            unique=True,
            postgresql_where=text("is_latest = true"),
            sqlite_where=text("is_latest = 1"),
        ),
        Index("ix_feedback_user_created", "user_id", "created_at"),
    )

    # Deterministic id derived from (interview_id, attempt_number)
    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    interview_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    user_id: Mapped[str] = mapped_column(String(128), nullable=False)
    total_score: Mapped[int] = mapped_column(Integer, nullable=False)
    category_scores: Mapped[dict] = mapped_column(JSON, nullable=False)
    strengths: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    areas_for_improvement: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    final_assessment: Mapped[str] = mapped_column(Text, nullable=False)
    is_latest: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    attempt_number: Mapped[int] = mapped_column(Integer, nullable=False)
    transcript: Mapped[str] = mapped_column(Text, nullable=False, default="")
    created_at: Mapped[dt.datetime] = mapped_column(UTCDateTime(), nullable=False, default=utcnow)
