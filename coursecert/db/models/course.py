import datetime as dt
from uuid import uuid4

from sqlalchemy import JSON, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from coursecert.db.base import Base, UTCDateTime, utcnow


class Course(Base):
    """Generated course document; read-only for the interview engine."""

    __tablename__ = "courses"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=lambda: uuid4().hex)
    user_id: Mapped[str | None] = mapped_column(String(128), nullable=True, index=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str] = mapped_column(Text(), nullable=False, default="")
    objectives: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    tech_stack: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    # modules[] -> lessons[] -> resources[]
    modules: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    created_at: Mapped[dt.datetime] = mapped_column(UTCDateTime(), nullable=False, default=utcnow)
