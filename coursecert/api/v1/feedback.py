import asyncio
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Response, status
from pydantic import BaseModel, Field

from coursecert.auth import Principal, current_principal
from coursecert.services.interview_lifecycle import InterviewLifecycle, get_lifecycle
from coursecert.services.records import Feedback, FeedbackResult

router = APIRouter(prefix="/feedback", tags=["feedback"])


class SubmitTranscriptRequest(BaseModel):
    interview_id: str = Field(..., min_length=1)
    # Entry shape is checked by the coordinator so every bad entry is reported together.
    transcript: List[Dict[str, Any]]
    # Attempt being graded; a retry carrying the same number replays the stored feedback.
    attempt_number: Optional[int] = Field(None, ge=1)


@router.post("/generate", response_model=FeedbackResult, status_code=status.HTTP_201_CREATED)
async def submit_transcript(
    body: SubmitTranscriptRequest,
    response: Response,
    principal: Principal = Depends(current_principal),
    lifecycle: InterviewLifecycle = Depends(get_lifecycle),
):
    # A client disconnect must not cancel scoring or the commit halfway.
    result = await asyncio.shield(
        lifecycle.submit_transcript_for_scoring(
            body.interview_id, principal.user_id, body.transcript, body.attempt_number
        )
    )
    if result.replayed:
        response.status_code = status.HTTP_200_OK
    return result


@router.get("/user/all", response_model=List[Feedback])
async def user_feedback(
    principal: Principal = Depends(current_principal),
    lifecycle: InterviewLifecycle = Depends(get_lifecycle),
):
    return await lifecycle.list_user_feedback(principal.user_id)


@router.get("/{feedback_id}", response_model=Feedback)
async def get_feedback(
    feedback_id: str,
    principal: Principal = Depends(current_principal),
    lifecycle: InterviewLifecycle = Depends(get_lifecycle),
):
    return await lifecycle.get_feedback(feedback_id, principal.user_id)
