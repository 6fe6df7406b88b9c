"""
Assessment authoring service.

Question and template CRUD for administrators. A question and its options
(or text answer) live in separate tables, as do a template and its question
links, so creates are two writes. When the second write fails the first is
rolled back by a best-effort delete; a failed cleanup is logged and the
original error is raised.
"""

import math
from typing import Any, Dict, List, Optional, Sequence

from learnhub.assessments.base.repositories import StoreTemplateRepository
from learnhub.common.error_handling import (
    LearnHubError,
    NotFoundError,
    QuestionNotFoundError,
    TemplateNotFoundError,
    ValidationError,
)
from learnhub.common.logger import app_logger
from learnhub.domain.questions.model import QuestionKind, kind_for
from learnhub.domain.questions.repository import StoreQuestionRepository

logger = app_logger.getChild("assessments.admin")

QUESTION_FIELDS = (
    "category_id", "question_type", "question_text", "question_image_url", "explanation",
    "difficulty_level", "points_value", "time_limit_seconds", "tags", "is_active",
)

TEMPLATE_FIELDS = (
    "title", "description", "instructions", "category_id", "time_limit_minutes",
    "passing_percentage", "randomize_questions", "randomize_options",
    "show_results_immediately", "allow_retakes", "max_attempts",
    "difficulty_distribution", "is_active", "is_public",
)


def _pick(data: Dict[str, Any], fields: Sequence[str]) -> Dict[str, Any]:
    return {key: data[key] for key in fields if key in data}


def validate_question(data: Dict[str, Any]) -> QuestionKind:
    """
    Check that a question can be scored.

    Choice questions need at least two options and exactly one correct
    option. Text questions need a non-empty canonical answer.

    Raises:
        ValidationError: The question cannot be scored as written
    """
    if not (data.get("question_text") or "").strip():
        raise ValidationError("question_text is required")

    kind = kind_for(data.get("question_type"))
    if kind is None:
        raise ValidationError(
            f"Unsupported question type: {data.get('question_type')!r}",
            details={"question_type": data.get("question_type")}
        )

    if kind is QuestionKind.CHOICE:
        options = data.get("options") or []
        if len(options) < 2:
            raise ValidationError("Choice questions need at least two options")
        correct = sum(1 for option in options if option.get("is_correct"))
        if correct != 1:
            raise ValidationError(
                "Choice questions need exactly one correct option", details={"correct_options": correct}
            )
    else:
        text_answer = data.get("text_answer") or {}
        if not (text_answer.get("correct_answer") or "").strip():
            raise ValidationError("Text questions need a correct_answer")
    return kind


class AssessmentAuthoringService:
    """
    Authoring operations over questions and templates.

    Args:
        questions: Store-backed question repository
        templates: Store-backed template repository
    """

    def __init__(self, questions: StoreQuestionRepository, templates: StoreTemplateRepository):
        self.questions = questions
        self.templates = templates

    # Questions

    async def list_questions(
        self,
        page: int = 1,
        limit: int = 20,
        category_id: Optional[str] = None,
        question_type: Optional[str] = None,
        difficulty_level: Optional[str] = None,
        search: Optional[str] = None,
        user_token: Optional[str] = None
    ) -> Dict[str, Any]:
        rows, total = await self.questions.list_question_rows(
            page=page,
            limit=limit,
            category_id=category_id,
            question_type=question_type,
            difficulty_level=difficulty_level,
            search=search,
            user_token=user_token,
        )
        return {
            "questions": rows,
            "pagination": {
                "page": page,
                "limit": limit,
                "total": total,
                "pages": math.ceil(total / limit) if limit else 0,
            },
        }

    async def get_question(self, question_id: str, user_token: Optional[str] = None) -> Dict[str, Any]:
        row = await self.questions.get_question_row(question_id, user_token=user_token)
        if row is None:
            raise QuestionNotFoundError(question_id)

        options = await self.questions.fetch_option_rows([question_id], user_token=user_token)
        text_rows = await self.questions.fetch_text_answer_rows([question_id], user_token=user_token)
        return dict(row, options=options, text_answer=text_rows[0] if text_rows else None)

    async def create_question(
        self,
        data: Dict[str, Any],
        created_by: Optional[str] = None,
        user_token: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Create a question with its options or text answer.

        Raises:
            ValidationError: The question cannot be scored as written
        """
        kind = validate_question(data)
        values = _pick(data, QUESTION_FIELDS)
        if created_by:
            values["created_by"] = created_by

        row = await self.questions.insert_question(values, user_token=user_token)
        question_id = row["id"]
        try:
            await self._write_answers(question_id, kind, data, user_token=user_token)
        except LearnHubError:
            await self._cleanup("question", question_id, self.questions.delete_question, user_token)
            raise

        logger.info(f"Question {question_id} created ({data.get('question_type')})")
        return await self.get_question(question_id, user_token=user_token)

    async def _write_answers(
        self,
        question_id: str,
        kind: QuestionKind,
        data: Dict[str, Any],
        user_token: Optional[str] = None
    ) -> None:
        if kind is QuestionKind.CHOICE:
            await self.questions.insert_options(question_id, data.get("options") or [], user_token=user_token)
        else:
            await self.questions.insert_text_answer(question_id, data["text_answer"], user_token=user_token)

    @staticmethod
    async def _cleanup(label: str, entity_id: str, delete, user_token: Optional[str]) -> None:
        try:
            await delete(entity_id, user_token=user_token)
            logger.info(f"Rolled back {label} {entity_id} after a failed write")
        except LearnHubError as e:
            logger.error(f"Cleanup of {label} {entity_id} failed: {e}")

    async def update_question(
        self,
        question_id: str,
        data: Dict[str, Any],
        user_token: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Update a question. Options or the text answer are replaced when supplied.

        Raises:
            QuestionNotFoundError: Unknown question
            ValidationError: The replacement answers cannot be scored
        """
        current = await self.questions.get_question_row(question_id, user_token=user_token)
        if current is None:
            raise QuestionNotFoundError(question_id)

        replaces_answers = "options" in data or "text_answer" in data
        kind = kind_for(data.get("question_type") or current.get("question_type"))
        if replaces_answers:
            merged = dict(current, **data)
            kind = validate_question(merged)

        values = _pick(data, QUESTION_FIELDS)
        if values:
            if await self.questions.update_question(question_id, values, user_token=user_token) is None:
                raise QuestionNotFoundError(question_id)

        if replaces_answers:
            await self.questions.delete_options(question_id, user_token=user_token)
            await self.questions.delete_text_answer(question_id, user_token=user_token)
            await self._write_answers(question_id, kind, data, user_token=user_token)

        logger.info(f"Question {question_id} updated")
        return await self.get_question(question_id, user_token=user_token)

    async def delete_question(self, question_id: str, user_token: Optional[str] = None) -> Dict[str, Any]:
        deleted = await self.questions.delete_question(question_id, user_token=user_token)
        if not deleted:
            raise QuestionNotFoundError(question_id)
        logger.info(f"Question {question_id} deleted")
        return {"success": True}

    async def toggle_question(self, question_id: str, user_token: Optional[str] = None) -> Dict[str, Any]:
        current = await self.questions.get_question_row(question_id, user_token=user_token)
        if current is None:
            raise QuestionNotFoundError(question_id)
        is_active = current.get("is_active") is False
        row = await self.questions.update_question(question_id, {"is_active": is_active}, user_token=user_token)
        logger.info(f"Question {question_id} is_active set to {is_active}")
        return row

    async def bulk_create_questions(
        self,
        items: Sequence[Dict[str, Any]],
        created_by: Optional[str] = None,
        user_token: Optional[str] = None
    ) -> Dict[str, Any]:
        """Create questions one by one, collecting per-item results and errors."""
        results: List[Dict[str, Any]] = []
        errors: List[Dict[str, Any]] = []
        for index, item in enumerate(items):
            try:
                question = await self.create_question(item, created_by=created_by, user_token=user_token)
                results.append({"index": index, "question": question, "success": True})
            except LearnHubError as e:
                logger.warning(f"Bulk create item {index} failed: {e.message}")
                errors.append({"index": index, "error": e.message, "success": False})
        return {"results": results, "errors": errors, "total_processed": len(items)}

    # Templates

    async def list_templates(self, user_token: Optional[str] = None) -> List[Dict[str, Any]]:
        templates = await self.templates.list_templates(available_only=False, user_token=user_token)
        return [template.to_dict() for template in templates]

    async def get_template(self, template_id: str, user_token: Optional[str] = None) -> Dict[str, Any]:
        row = await self.templates.get_template_row(template_id, user_token=user_token)
        if row is None:
            raise TemplateNotFoundError(template_id)
        question_ids = await self.templates.get_question_ids(template_id, user_token=user_token)
        rows = await self.questions.fetch_question_rows(question_ids, user_token=user_token) if question_ids else []
        by_id = {str(r["id"]): r for r in rows}
        return dict(row, questions=[by_id[qid] for qid in question_ids if qid in by_id])

    async def _check_questions(self, question_ids: Sequence[str], user_token: Optional[str] = None) -> None:
        if len(set(question_ids)) != len(question_ids):
            raise ValidationError("question_ids contains duplicates")
        if not question_ids:
            return
        rows = await self.questions.fetch_question_rows(question_ids, user_token=user_token)
        missing = set(question_ids) - {str(r["id"]) for r in rows}
        if missing:
            raise NotFoundError("Unknown questions", details={"question_ids": sorted(missing)})

    async def create_template(
        self,
        data: Dict[str, Any],
        created_by: Optional[str] = None,
        user_token: Optional[str] = None
    ) -> Dict[str, Any]:
        if not (data.get("title") or "").strip():
            raise ValidationError("title is required")
        question_ids = [str(qid) for qid in data.get("question_ids") or []]
        await self._check_questions(question_ids, user_token=user_token)

        values = _pick(data, TEMPLATE_FIELDS)
        values["total_questions"] = len(question_ids)
        if created_by:
            values["created_by"] = created_by

        row = await self.templates.insert_template(values, user_token=user_token)
        template_id = row["id"]
        if question_ids:
            try:
                await self.templates.link_questions(template_id, question_ids, user_token=user_token)
            except LearnHubError:
                await self._cleanup("template", template_id, self.templates.delete_template, user_token)
                raise

        logger.info(f"Template {template_id} created with {len(question_ids)} questions")
        return await self.get_template(template_id, user_token=user_token)

    async def update_template(
        self,
        template_id: str,
        data: Dict[str, Any],
        user_token: Optional[str] = None
    ) -> Dict[str, Any]:
        """Update a template; question links are replaced when ``question_ids`` is supplied."""
        if await self.templates.get_template_row(template_id, user_token=user_token) is None:
            raise TemplateNotFoundError(template_id)

        values = _pick(data, TEMPLATE_FIELDS)
        question_ids = None
        if data.get("question_ids") is not None:
            question_ids = [str(qid) for qid in data["question_ids"]]
            await self._check_questions(question_ids, user_token=user_token)
            values["total_questions"] = len(question_ids)

        if values:
            await self.templates.update_template(template_id, values, user_token=user_token)
        if question_ids is not None:
            await self.templates.unlink_questions(template_id, user_token=user_token)
            if question_ids:
                await self.templates.link_questions(template_id, question_ids, user_token=user_token)

        logger.info(f"Template {template_id} updated")
        return await self.get_template(template_id, user_token=user_token)

    async def delete_template(self, template_id: str, user_token: Optional[str] = None) -> Dict[str, Any]:
        deleted = await self.templates.delete_template(template_id, user_token=user_token)
        if not deleted:
            raise TemplateNotFoundError(template_id)
        logger.info(f"Template {template_id} deleted")
        return {"success": True}
