"""
Student Assessment Router

Discovery, session lifecycle and results under ``/v1/student/assessments``.
The caller is identified by the bearer token; session-scoped routes also
take the session token handed out by ``start``.
"""

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Path, Query
from pydantic import BaseModel, Field

from learnhub.api import APIResponse
from learnhub.assessments.base.models import SessionStatus
from learnhub.assessments.container import AssessmentServices, get_services
from learnhub.common.auth import Identity, get_current_identity
from learnhub.common.logger import get_logger

logger = get_logger(__name__)

router = APIRouter()


class StartRequest(BaseModel):
    """Request model for starting an attempt."""
    template_id: str = Field(..., min_length=1, description="Template to attempt")


class SubmitResponseRequest(BaseModel):
    """Request model for answering one question; give exactly one answer field."""
    session_token: str = Field(..., min_length=1)
    question_id: str = Field(..., min_length=1)
    selected_option_id: Optional[str] = Field(None, description="Chosen option for choice questions")
    text_answer: Optional[str] = Field(None, description="Free-text answer for text questions")
    time_spent_seconds: int = 0


class FinishRequest(BaseModel):
    """Request model for finishing an attempt."""
    session_token: str = Field(..., min_length=1)


# Discovery

@router.get("/available")
async def available_assessments(
    identity: Identity = Depends(get_current_identity),
    services: AssessmentServices = Depends(get_services)
) -> Dict[str, Any]:
    """Active public templates with the caller's attempt summary."""
    data = await services.sessions.available_assessments(identity.user_id, user_token=identity.access_token)
    return APIResponse.success(data)


@router.get("/templates/{template_id}")
async def template_detail(
    template_id: str = Path(...),
    identity: Identity = Depends(get_current_identity),
    services: AssessmentServices = Depends(get_services)
) -> Dict[str, Any]:
    data = await services.sessions.template_detail(template_id, user_token=identity.access_token)
    return APIResponse.success(data)


@router.get("/templates/{template_id}/preview")
async def template_preview(
    template_id: str = Path(...),
    identity: Identity = Depends(get_current_identity),
    services: AssessmentServices = Depends(get_services)
) -> Dict[str, Any]:
    """Template detail with a question breakdown by difficulty and type."""
    data = await services.sessions.preview(template_id, user_token=identity.access_token)
    return APIResponse.success(data)


# Sessions

@router.post("/start", status_code=201)
async def start_assessment(
    request: StartRequest,
    identity: Identity = Depends(get_current_identity),
    services: AssessmentServices = Depends(get_services)
) -> Dict[str, Any]:
    """Start a new attempt on a template."""
    logger.info(f"Starting assessment {request.template_id} for student {identity.user_id}")
    data = await services.sessions.start(request.template_id, identity.user_id, user_token=identity.access_token)
    return APIResponse.success(data, message="Assessment started")


@router.get("/session/{session_token}")
async def get_session(
    session_token: str = Path(...),
    identity: Identity = Depends(get_current_identity),
    services: AssessmentServices = Depends(get_services)
) -> Dict[str, Any]:
    data = await services.sessions.session_view(session_token, identity.user_id, user_token=identity.access_token)
    return APIResponse.success(data)


@router.get("/session/{session_token}/question/{question_id}")
async def get_question(
    session_token: str = Path(...),
    question_id: str = Path(...),
    identity: Identity = Depends(get_current_identity),
    services: AssessmentServices = Depends(get_services)
) -> Dict[str, Any]:
    """One question of the session, without correctness data."""
    data = await services.sessions.get_question(
        session_token, question_id, identity.user_id, user_token=identity.access_token
    )
    return APIResponse.success(data)


@router.post("/response")
async def submit_response(
    request: SubmitResponseRequest,
    identity: Identity = Depends(get_current_identity),
    services: AssessmentServices = Depends(get_services)
) -> Dict[str, Any]:
    data = await services.sessions.submit_response(
        request.session_token,
        request.question_id,
        identity.user_id,
        selected_option_id=request.selected_option_id,
        text_answer=request.text_answer,
        time_spent_seconds=request.time_spent_seconds,
        user_token=identity.access_token,
    )
    return APIResponse.success(data, message="Response recorded")


@router.put("/session/{session_token}/pause")
async def pause_session(
    session_token: str = Path(...),
    identity: Identity = Depends(get_current_identity),
    services: AssessmentServices = Depends(get_services)
) -> Dict[str, Any]:
    data = await services.sessions.pause(session_token, identity.user_id, user_token=identity.access_token)
    return APIResponse.success(data, message="Session paused")


@router.put("/session/{session_token}/resume")
async def resume_session(
    session_token: str = Path(...),
    identity: Identity = Depends(get_current_identity),
    services: AssessmentServices = Depends(get_services)
) -> Dict[str, Any]:
    data = await services.sessions.resume(session_token, identity.user_id, user_token=identity.access_token)
    return APIResponse.success(data, message="Session resumed")


@router.post("/finish")
async def finish_assessment(
    request: FinishRequest,
    identity: Identity = Depends(get_current_identity),
    services: AssessmentServices = Depends(get_services)
) -> Dict[str, Any]:
    """Score and complete the attempt."""
    data = await services.sessions.finish(request.session_token, identity.user_id, user_token=identity.access_token)
    return APIResponse.success(data, message="Assessment completed")


# Results

@router.get("/history")
async def history(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    status: Optional[SessionStatus] = None,
    template_id: Optional[str] = None,
    identity: Identity = Depends(get_current_identity),
    services: AssessmentServices = Depends(get_services)
) -> Dict[str, Any]:
    """The caller's attempts, newest first."""
    data = await services.results.history(
        identity.user_id,
        page=page,
        limit=limit,
        status=status.value if status else None,
        template_id=template_id,
        user_token=identity.access_token,
    )
    return APIResponse.success(data)


@router.get("/results/{session_id}")
async def results(
    session_id: str = Path(...),
    identity: Identity = Depends(get_current_identity),
    services: AssessmentServices = Depends(get_services)
) -> Dict[str, Any]:
    data = await services.results.results(session_id, identity.user_id, user_token=identity.access_token)
    return APIResponse.success(data)


@router.get("/results/{session_id}/detailed")
async def detailed_results(
    session_id: str = Path(...),
    identity: Identity = Depends(get_current_identity),
    services: AssessmentServices = Depends(get_services)
) -> Dict[str, Any]:
    """Results with a per-question breakdown and a difficulty rollup."""
    data = await services.results.detailed_results(session_id, identity.user_id, user_token=identity.access_token)
    return APIResponse.success(data)


__all__ = ["router"]
