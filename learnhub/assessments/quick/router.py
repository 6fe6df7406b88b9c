"""
Quick Assessment Router

Standalone assessment under ``/v1/assessments``.
"""

from typing import Any, Dict, List, Optional, Union

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from learnhub.api import APIResponse
from learnhub.assessments.container import AssessmentServices, get_services
from learnhub.common.auth import Identity, get_current_identity

router = APIRouter()


class QuickResponseItem(BaseModel):
    q_index: int = Field(..., ge=0, description="Position of the question in the runner")
    question_id: str = Field(..., min_length=1)
    answer: Optional[Union[int, str]] = Field(None, description="Option index for choice questions, text otherwise")


class QuickFinishRequest(BaseModel):
    """Request model for finishing a quick assessment."""
    assessment_id: str = Field(..., min_length=1)
    responses: List[QuickResponseItem] = Field(..., min_length=1)


@router.post("/start", status_code=201)
async def start(
    identity: Identity = Depends(get_current_identity),
    services: AssessmentServices = Depends(get_services)
) -> Dict[str, Any]:
    """Record a new quick assessment and return its questions."""
    data = await services.quick.start(identity.user_id, user_token=identity.access_token)
    return APIResponse.success(data, message="Assessment started")


@router.post("/finish")
async def finish(
    request: QuickFinishRequest,
    identity: Identity = Depends(get_current_identity),
    services: AssessmentServices = Depends(get_services)
) -> Dict[str, Any]:
    data = await services.quick.finish(
        identity.user_id,
        request.assessment_id,
        [item.model_dump() for item in request.responses],
        user_token=identity.access_token,
    )
    return APIResponse.success(data, message="Assessment completed")


@router.get("/latest")
async def latest(
    identity: Identity = Depends(get_current_identity),
    services: AssessmentServices = Depends(get_services)
) -> Dict[str, Any]:
    """The caller's most recent quick assessment."""
    data = await services.quick.latest(identity.user_id, user_token=identity.access_token)
    return APIResponse.success(data)


__all__ = ["router"]
