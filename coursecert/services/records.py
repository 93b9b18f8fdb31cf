"""
Domain records for interviews, feedback and course documents.

Every document read from the store is loaded through one of these models, so a
stored row missing a required field surfaces as a data-integrity failure
instead of leaking half-built objects into the engine.
"""
from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Type, TypeVar

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from coursecert.core.error_handling import DataIntegrityError


class InterviewStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    ARCHIVED = "archived"


class TranscriptEntry(BaseModel):
    role: str = Field(..., min_length=1)
    content: str = Field(..., min_length=1)


class CategoryScores(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    communication: int = Field(..., strict=True, ge=0, le=100)
    technical: int = Field(..., strict=True, ge=0, le=100)
    problem_solving: int = Field(..., strict=True, ge=0, le=100, alias="problemSolving")
    cultural_fit: int = Field(..., strict=True, ge=0, le=100, alias="culturalFit")
    confidence: int = Field(..., strict=True, ge=0, le=100)


class ScoreReport(BaseModel):
    """Structured assessment of one transcript, as returned by the scoring model."""
    model_config = ConfigDict(populate_by_name=True)

    total_score: int = Field(..., strict=True, ge=0, le=100, alias="totalScore")
    category_scores: CategoryScores = Field(..., alias="categoryScores")
    strengths: List[str]
    areas_for_improvement: List[str] = Field(..., alias="areasForImprovement")
    final_assessment: str = Field(..., min_length=1, alias="finalAssessment")


class Feedback(BaseModel):
    id: str
    interview_id: str
    user_id: str
    total_score: int = Field(..., strict=True, ge=0, le=100)
    category_scores: CategoryScores
    strengths: List[str]
    areas_for_improvement: List[str]
    final_assessment: str
    is_latest: bool
    attempt_number: int = Field(..., ge=1)
    transcript: str
    created_at: datetime

    def to_document(self) -> Dict[str, Any]:
        doc = self.model_dump()
        doc["category_scores"] = self.category_scores.model_dump(by_alias=True)
        return doc


class Interview(BaseModel):
    id: str
    course_id: str
    user_id: str
    status: InterviewStatus
    attempt_count: int = Field(..., ge=1)
    questions: List[str]
    transcript: List[TranscriptEntry] = Field(default_factory=list)
    feedback_id: Optional[str] = None
    last_attempt: Optional[datetime] = None
    created_at: datetime
    updated_at: Optional[datetime] = None
    next_retake_date: Optional[datetime] = None
    archived_at: Optional[datetime] = None

    # Latest feedback, populated by reads that join it; never persisted.
    feedback: Optional[Feedback] = Field(default=None, exclude=True)


class Resource(BaseModel):
    model_config = ConfigDict(extra="ignore")

    title: str
    url: Optional[str] = None
    type: Optional[str] = None


class Lesson(BaseModel):
    model_config = ConfigDict(extra="ignore")

    title: str
    description: str = ""
    resources: List[Resource] = Field(default_factory=list)


class CourseModule(BaseModel):
    model_config = ConfigDict(extra="ignore")

    title: str
    description: str = ""
    lessons: List[Lesson] = Field(default_factory=list)


class Course(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    user_id: Optional[str] = None
    title: str
    description: str = ""
    objectives: List[str] = Field(default_factory=list)
    tech_stack: List[str] = Field(default_factory=list)
    modules: List[CourseModule] = Field(default_factory=list)


class RetakeEligibility(BaseModel):
    required: bool
    available_date: Optional[datetime] = None
    attempts_remaining: int = Field(..., ge=0)


class FeedbackResult(BaseModel):
    feedback: Feedback
    retake_eligibility: RetakeEligibility
    # True when an identical or concurrent submission had already committed this feedback.
    replayed: bool = False


class StartResult(BaseModel):
    interview: Interview
    resumed: bool


class InterviewStatusView(BaseModel):
    exists: bool
    interview_id: Optional[str] = None
    status: Optional[InterviewStatus] = None
    feedback_id: Optional[str] = None
    score: Optional[int] = None
    can_retake: Optional[bool] = None
    retake_available_date: Optional[datetime] = None
    attempt_count: Optional[int] = None
    attempts_remaining: Optional[int] = None


RecordT = TypeVar("RecordT", bound=BaseModel)


def load_record(model: Type[RecordT], collection: str, doc: Dict[str, Any]) -> RecordT:
    """Validate a stored document, raising DataIntegrityError when it is malformed."""
    try:
        return model.model_validate(doc)
    except PydanticValidationError as exc:
        missing = [".".join(str(p) for p in err["loc"]) for err in exc.errors()]
        raise DataIntegrityError(
            collection,
            doc.get("id"),
            f"Malformed {collection} document: invalid fields {', '.join(missing)}",
        ) from exc
