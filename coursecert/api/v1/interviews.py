from typing import List, Optional

from fastapi import APIRouter, Depends, Response, status
from pydantic import BaseModel, Field

from coursecert.auth import Principal, current_principal
from coursecert.services.interview_lifecycle import InterviewLifecycle, get_lifecycle
from coursecert.services.records import Interview, InterviewStatusView

router = APIRouter(prefix="/interviews", tags=["interviews"])


class GenerateInterviewRequest(BaseModel):
    course_id: str = Field(..., min_length=1)


class InterviewEnvelope(BaseModel):
    success: bool = True
    data: Interview
    message: Optional[str] = None


@router.post("/generate", response_model=InterviewEnvelope, status_code=status.HTTP_201_CREATED)
async def generate_interview(
    body: GenerateInterviewRequest,
    response: Response,
    principal: Principal = Depends(current_principal),
    lifecycle: InterviewLifecycle = Depends(get_lifecycle),
):
    """Resume the pending attempt for the course or start a new one."""
    result = await lifecycle.start_or_resume_interview(body.course_id, principal.user_id)
    if result.resumed:
        response.status_code = status.HTTP_200_OK
        return InterviewEnvelope(data=result.interview, message="Resume pending interview")
    return InterviewEnvelope(data=result.interview)


@router.get("/status/{course_id}", response_model=InterviewStatusView, response_model_exclude_none=True)
async def interview_status(
    course_id: str,
    principal: Principal = Depends(current_principal),
    lifecycle: InterviewLifecycle = Depends(get_lifecycle),
):
    return await lifecycle.get_interview_status(course_id, principal.user_id)


@router.get("/user", response_model=List[Interview])
async def user_interviews(
    principal: Principal = Depends(current_principal),
    lifecycle: InterviewLifecycle = Depends(get_lifecycle),
):
    return await lifecycle.list_user_interviews(principal.user_id)
