"""
Admin Assessment Router

Question and template authoring under ``/v1/admin/assessments``. Every route
requires a caller whose profile role is ``admin``.
"""

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Path, Query
from pydantic import BaseModel, Field, field_validator

from learnhub.api import APIResponse
from learnhub.assessments.container import AssessmentServices, get_services
from learnhub.common.auth import Identity, require_admin
from learnhub.common.logger import get_logger
from learnhub.domain.questions.model import SUPPORTED_TYPES, Difficulty

logger = get_logger(__name__)

router = APIRouter()


class OptionInput(BaseModel):
    """Answer option of a choice question."""
    option_text: str = Field(..., min_length=1)
    option_image_url: Optional[str] = None
    is_correct: bool = False
    explanation: Optional[str] = None


class TextAnswerInput(BaseModel):
    """Matching rules of a text question."""
    correct_answer: str = Field(..., min_length=1)
    case_sensitive: bool = False
    exact_match: bool = False
    alternate_answers: List[str] = Field(default_factory=list)
    keywords: List[str] = Field(default_factory=list)


class QuestionFields(BaseModel):
    category_id: Optional[str] = None
    question_image_url: Optional[str] = None
    explanation: Optional[str] = None
    difficulty_level: Optional[str] = None
    points_value: Optional[float] = Field(None, ge=0)
    time_limit_seconds: Optional[int] = Field(None, ge=0)
    tags: Optional[List[str]] = None
    is_active: Optional[bool] = None
    options: Optional[List[OptionInput]] = None
    text_answer: Optional[TextAnswerInput] = None

    @field_validator("difficulty_level")
    @classmethod
    def validate_difficulty(cls, v: Optional[str]) -> Optional[str]:
        """Validate the difficulty level"""
        valid_levels = [d.value for d in Difficulty]
        if v is not None and v not in valid_levels:
            raise ValueError(f"Invalid difficulty level: {v}. Must be one of {valid_levels}")
        return v


class QuestionCreate(QuestionFields):
    """Request model for creating a question."""
    question_type: str = Field(..., description="One of the supported question types")
    question_text: str = Field(..., min_length=1)

    @field_validator("question_type")
    @classmethod
    def validate_type(cls, v: str) -> str:
        """Validate the question type"""
        if v not in SUPPORTED_TYPES:
            raise ValueError(f"Invalid question type: {v}. Must be one of {SUPPORTED_TYPES}")
        return v


class QuestionUpdate(QuestionFields):
    """Request model for updating a question; omitted fields are left alone."""
    question_type: Optional[str] = None
    question_text: Optional[str] = Field(None, min_length=1)

    @field_validator("question_type")
    @classmethod
    def validate_type(cls, v: Optional[str]) -> Optional[str]:
        """Validate the question type"""
        if v is not None and v not in SUPPORTED_TYPES:
            raise ValueError(f"Invalid question type: {v}. Must be one of {SUPPORTED_TYPES}")
        return v


class BulkQuestionCreate(BaseModel):
    questions: List[QuestionCreate] = Field(..., min_length=1)


class TemplateFields(BaseModel):
    description: Optional[str] = None
    instructions: Optional[str] = None
    category_id: Optional[str] = None
    time_limit_minutes: Optional[int] = Field(None, gt=0)
    passing_percentage: Optional[int] = Field(None, ge=0, le=100)
    randomize_questions: Optional[bool] = None
    randomize_options: Optional[bool] = None
    show_results_immediately: Optional[bool] = None
    allow_retakes: Optional[bool] = None
    max_attempts: Optional[int] = Field(None, gt=0)
    difficulty_distribution: Optional[Dict[str, Any]] = None
    is_active: Optional[bool] = None
    is_public: Optional[bool] = None
    question_ids: Optional[List[str]] = None


class TemplateCreate(TemplateFields):
    """Request model for creating a template."""
    title: str = Field(..., min_length=1)


class TemplateUpdate(TemplateFields):
    """Request model for updating a template; omitted fields are left alone."""
    title: Optional[str] = Field(None, min_length=1)


def _payload(model: BaseModel) -> Dict[str, Any]:
    return model.model_dump(exclude_unset=True)


# Questions

@router.get("/questions")
async def list_questions(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    category_id: Optional[str] = None,
    question_type: Optional[str] = None,
    difficulty_level: Optional[str] = None,
    search: Optional[str] = None,
    admin: Identity = Depends(require_admin),
    services: AssessmentServices = Depends(get_services)
) -> Dict[str, Any]:
    """List questions with filters and pagination."""
    data = await services.authoring.list_questions(
        page=page,
        limit=limit,
        category_id=category_id,
        question_type=question_type,
        difficulty_level=difficulty_level,
        search=search,
        user_token=admin.access_token,
    )
    return APIResponse.success(data)


@router.post("/questions/bulk", status_code=201)
async def bulk_create_questions(
    request: BulkQuestionCreate,
    admin: Identity = Depends(require_admin),
    services: AssessmentServices = Depends(get_services)
) -> Dict[str, Any]:
    """Create several questions; failures are reported per item."""
    data = await services.authoring.bulk_create_questions(
        [_payload(item) for item in request.questions],
        created_by=admin.user_id,
        user_token=admin.access_token,
    )
    return APIResponse.success(data, message=f"Processed {data['total_processed']} questions")


@router.get("/questions/{question_id}")
async def get_question(
    question_id: str = Path(...),
    admin: Identity = Depends(require_admin),
    services: AssessmentServices = Depends(get_services)
) -> Dict[str, Any]:
    return APIResponse.success(await services.authoring.get_question(question_id, user_token=admin.access_token))


@router.post("/questions", status_code=201)
async def create_question(
    request: QuestionCreate,
    admin: Identity = Depends(require_admin),
    services: AssessmentServices = Depends(get_services)
) -> Dict[str, Any]:
    """Create a question with its options or text answer."""
    data = await services.authoring.create_question(
        _payload(request), created_by=admin.user_id, user_token=admin.access_token
    )
    return APIResponse.success(data, message="Question created")


@router.put("/questions/{question_id}")
async def update_question(
    request: QuestionUpdate,
    question_id: str = Path(...),
    admin: Identity = Depends(require_admin),
    services: AssessmentServices = Depends(get_services)
) -> Dict[str, Any]:
    data = await services.authoring.update_question(question_id, _payload(request), user_token=admin.access_token)
    return APIResponse.success(data, message="Question updated")


@router.delete("/questions/{question_id}")
async def delete_question(
    question_id: str = Path(...),
    admin: Identity = Depends(require_admin),
    services: AssessmentServices = Depends(get_services)
) -> Dict[str, Any]:
    data = await services.authoring.delete_question(question_id, user_token=admin.access_token)
    return APIResponse.success(data, message="Question deleted")


@router.patch("/questions/{question_id}/toggle")
async def toggle_question(
    question_id: str = Path(...),
    admin: Identity = Depends(require_admin),
    services: AssessmentServices = Depends(get_services)
) -> Dict[str, Any]:
    """Flip the active flag of a question."""
    data = await services.authoring.toggle_question(question_id, user_token=admin.access_token)
    return APIResponse.success(data)


# Templates

@router.get("/templates")
async def list_templates(
    admin: Identity = Depends(require_admin),
    services: AssessmentServices = Depends(get_services)
) -> Dict[str, Any]:
    return APIResponse.success(await services.authoring.list_templates(user_token=admin.access_token))


@router.get("/templates/{template_id}")
async def get_template(
    template_id: str = Path(...),
    admin: Identity = Depends(require_admin),
    services: AssessmentServices = Depends(get_services)
) -> Dict[str, Any]:
    """Template with its questions in link order."""
    return APIResponse.success(await services.authoring.get_template(template_id, user_token=admin.access_token))


@router.post("/templates", status_code=201)
async def create_template(
    request: TemplateCreate,
    admin: Identity = Depends(require_admin),
    services: AssessmentServices = Depends(get_services)
) -> Dict[str, Any]:
    data = await services.authoring.create_template(
        _payload(request), created_by=admin.user_id, user_token=admin.access_token
    )
    return APIResponse.success(data, message="Template created")


@router.put("/templates/{template_id}")
async def update_template(
    request: TemplateUpdate,
    template_id: str = Path(...),
    admin: Identity = Depends(require_admin),
    services: AssessmentServices = Depends(get_services)
) -> Dict[str, Any]:
    data = await services.authoring.update_template(template_id, _payload(request), user_token=admin.access_token)
    return APIResponse.success(data, message="Template updated")


@router.delete("/templates/{template_id}")
async def delete_template(
    template_id: str = Path(...),
    admin: Identity = Depends(require_admin),
    services: AssessmentServices = Depends(get_services)
) -> Dict[str, Any]:
    data = await services.authoring.delete_template(template_id, user_token=admin.access_token)
    return APIResponse.success(data, message="Template deleted")


__all__ = ["router"]
