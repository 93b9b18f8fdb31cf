from fastapi import APIRouter

from .feedback import router as feedback_router
from .interviews import router as interviews_router

router = APIRouter()

router.include_router(interviews_router)
router.include_router(feedback_router)
