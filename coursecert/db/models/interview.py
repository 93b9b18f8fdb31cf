import datetime as dt
from uuid import uuid4

from sqlalchemy import JSON, Index, Integer, String, text
from sqlalchemy.orm import Mapped, mapped_column

from coursecert.db.base import Base, UTCDateTime, utcnow


class Interview(Base):
    __tablename__ = "interviews"
    __table_args__ = (
        # At most one pending attempt per (course, user)
        Index(
            "uq_interviews_pending_course_user",
            "course_id",
            "user_id",
            unique=True,
            postgresql_where=text("status = 'pending'"),
            sqlite_where=text("status = 'pending'"),
        ),
        Index("ix_interviews_course_user_created", "course_id", "user_id", "created_at"),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=lambda: uuid4().hex)
    course_id: Mapped[str] = mapped_column(String(128), nullable=False)
    user_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, server_default="pending", default="pending")
    attempt_count: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    questions: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    transcript: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    feedback_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    last_attempt: Mapped[dt.datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    created_at: Mapped[dt.datetime] = mapped_column(UTCDateTime(), nullable=False, default=utcnow)
    updated_at: Mapped[dt.datetime | None] = mapped_column(UTCDateTime(), nullable=True, default=utcnow)
    next_retake_date: Mapped[dt.datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    archived_at: Mapped[dt.datetime | None] = mapped_column(UTCDateTime(), nullable=True)
