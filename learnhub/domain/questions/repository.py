"""
Question Repository Module

This module defines the repository interface for resolving questions and the
store-backed implementation used by both the assessment engine and the
authoring service.
"""

import abc
import asyncio
import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple

from learnhub.common.store.base import Row, TableClient
from learnhub.common.store.query import StoreQuery
from learnhub.common.utils import utc_now
from .model import Question, QuestionKind, QuestionOption, SUPPORTED_TYPES, TextAnswerSpec

# Setup logging
logger = logging.getLogger(__name__)

QUESTION_COLUMNS = (
    "id", "question_type", "question_text", "question_image_url", "points_value",
    "time_limit_seconds", "is_active", "difficulty_level", "explanation",
    "category_id", "tags",
)


class QuestionRepository(abc.ABC):
    """
    Abstract base class for question repositories.

    Subclasses supply raw rows; ``fetch_questions`` normalizes them and
    attaches options and text-answer rules in bulk.
    """

    def __init__(self, default_limit: int = 25):
        self.default_limit = default_limit

    @abc.abstractmethod
    async def fetch_question_rows(
        self,
        ids: Optional[Sequence[str]] = None,
        user_token: Optional[str] = None
    ) -> List[Row]:
        """
        Fetch raw question rows.

        Args:
            ids: Exact ids to resolve regardless of active flag. When omitted,
                an active, supported-type, newest-first page is returned.
            user_token: Pass-through credential for the store
        """
        pass

    @abc.abstractmethod
    async def fetch_option_rows(self, question_ids: Sequence[str], user_token: Optional[str] = None) -> List[Row]:
        """Fetch option rows of all ``question_ids`` in one call."""
        pass

    @abc.abstractmethod
    async def fetch_text_answer_rows(self, question_ids: Sequence[str], user_token: Optional[str] = None) -> List[Row]:
        """Fetch text-answer rows of all ``question_ids`` in one call."""
        pass

    async def fetch_questions(
        self,
        ids: Optional[Sequence[str]] = None,
        user_token: Optional[str] = None
    ) -> List[Question]:
        """
        Resolve questions with their options or text-answer rules.

        With ``ids`` the result follows the order of ``ids`` (duplicates and
        unknown ids are dropped). Rows with an unsupported type are skipped.
        """
        if ids is not None:
            ids = list(dict.fromkeys(str(i) for i in ids if i))
            if not ids:
                return []

        rows = await self.fetch_question_rows(ids=ids, user_token=user_token)

        questions: List[Question] = []
        for row in rows:
            question = Question.from_row(row)
            if question is None:
                logger.debug(f"Skipping question {row.get('id')} with unsupported type {row.get('question_type')!r}")
                continue
            if ids is None and question.is_active is False:
                continue
            questions.append(question)

        if not questions:
            return []

        choice_ids = [q.id for q in questions if q.kind is QuestionKind.CHOICE]
        text_ids = [q.id for q in questions if q.kind is QuestionKind.TEXT]

        option_rows, text_rows = await asyncio.gather(
            self.fetch_option_rows(choice_ids, user_token=user_token) if choice_ids else _empty(),
            self.fetch_text_answer_rows(text_ids, user_token=user_token) if text_ids else _empty(),
        )

        options_by_question: Dict[str, List[QuestionOption]] = {}
        for option_row in option_rows:
            option = QuestionOption.from_row(option_row)
            options_by_question.setdefault(str(option.question_id), []).append(option)

        text_by_question: Dict[str, TextAnswerSpec] = {}
        for text_row in text_rows:
            spec = TextAnswerSpec.from_row(text_row)
            text_by_question[str(spec.question_id)] = spec

        for question in questions:
            question.attach_options(options_by_question.get(str(question.id), []))
            question.text_answer = text_by_question.get(str(question.id))

        if ids is not None:
            position = {question_id: index for index, question_id in enumerate(ids)}
            questions.sort(key=lambda q: position.get(str(q.id), len(position)))

        return questions

    async def get_question(self, question_id: str, user_token: Optional[str] = None) -> Optional[Question]:
        """Resolve one question by id, or None."""
        questions = await self.fetch_questions([question_id], user_token=user_token)
        return questions[0] if questions else None


async def _empty() -> List[Row]:
    return []


class StoreQuestionRepository(QuestionRepository):
    """Question repository backed by a ``TableClient``."""

    def __init__(self, client: TableClient, default_limit: int = 25):
        super().__init__(default_limit=default_limit)
        self.client = client

    # Reads

    async def fetch_question_rows(
        self,
        ids: Optional[Sequence[str]] = None,
        user_token: Optional[str] = None
    ) -> List[Row]:
        query = StoreQuery("assessment_questions").select(*QUESTION_COLUMNS)
        if ids:
            query = query.in_("id", ids)
        else:
            query = (
                query.active_or_unset("is_active")
                .in_("question_type", SUPPORTED_TYPES)
                .order("created_at", descending=True)
                .limit(self.default_limit)
            )
        return await self.client.select(query, user_token=user_token)

    async def fetch_option_rows(self, question_ids: Sequence[str], user_token: Optional[str] = None) -> List[Row]:
        query = (
            StoreQuery("assessment_question_options")
            .in_("question_id", question_ids)
            .order("order_index")
        )
        return await self.client.select(query, user_token=user_token)

    async def fetch_text_answer_rows(self, question_ids: Sequence[str], user_token: Optional[str] = None) -> List[Row]:
        query = StoreQuery("assessment_text_answers").in_("question_id", question_ids)
        return await self.client.select(query, user_token=user_token)

    # Authoring

    async def list_question_rows(
        self,
        page: int = 1,
        limit: int = 20,
        category_id: Optional[str] = None,
        question_type: Optional[str] = None,
        difficulty_level: Optional[str] = None,
        search: Optional[str] = None,
        user_token: Optional[str] = None
    ) -> Tuple[List[Row], int]:
        """
        Page through questions for authoring, newest first.

        Returns:
            Tuple of (rows on the page, total matching rows)
        """
        query = StoreQuery("assessment_questions")
        if category_id:
            query = query.eq("category_id", category_id)
        if question_type:
            query = query.eq("question_type", question_type)
        if difficulty_level:
            query = query.eq("difficulty_level", difficulty_level)
        if search:
            query = query.ilike("question_text", search)

        paged = query.order("created_at", descending=True).limit(limit).offset((page - 1) * limit)
        rows, total = await asyncio.gather(
            self.client.select(paged, user_token=user_token),
            self.client.count(query, user_token=user_token),
        )
        return rows, total

    async def get_question_row(self, question_id: str, user_token: Optional[str] = None) -> Optional[Row]:
        query = StoreQuery("assessment_questions").eq("id", question_id)
        return await self.client.select_one(query, user_token=user_token)

    async def insert_question(self, values: Dict[str, Any], user_token: Optional[str] = None) -> Row:
        now = utc_now().isoformat()
        payload = dict(values, created_at=now, updated_at=now)
        rows = await self.client.insert("assessment_questions", [payload], user_token=user_token)
        return rows[0]

    async def insert_options(
        self,
        question_id: str,
        options: Sequence[Dict[str, Any]],
        user_token: Optional[str] = None
    ) -> List[Row]:
        payload = [
            {
                "question_id": question_id,
                "option_text": option.get("option_text"),
                "option_image_url": option.get("option_image_url"),
                "is_correct": bool(option.get("is_correct")),
                "order_index": index,
                "explanation": option.get("explanation"),
            }
            for index, option in enumerate(options)
        ]
        return await self.client.insert("assessment_question_options", payload, user_token=user_token)

    async def insert_text_answer(
        self,
        question_id: str,
        text_answer: Dict[str, Any],
        user_token: Optional[str] = None
    ) -> Row:
        payload = {
            "question_id": question_id,
            "correct_answer": text_answer.get("correct_answer"),
            "case_sensitive": bool(text_answer.get("case_sensitive")),
            "exact_match": bool(text_answer.get("exact_match")),
            "alternate_answers": list(text_answer.get("alternate_answers") or []),
            "keywords": list(text_answer.get("keywords") or []),
        }
        rows = await self.client.insert("assessment_text_answers", [payload], user_token=user_token)
        return rows[0]

    async def delete_options(self, question_id: str, user_token: Optional[str] = None) -> int:
        query = StoreQuery("assessment_question_options").eq("question_id", question_id)
        return await self.client.delete(query, user_token=user_token)

    async def delete_text_answer(self, question_id: str, user_token: Optional[str] = None) -> int:
        query = StoreQuery("assessment_text_answers").eq("question_id", question_id)
        return await self.client.delete(query, user_token=user_token)

    async def update_question(
        self,
        question_id: str,
        values: Dict[str, Any],
        user_token: Optional[str] = None
    ) -> Optional[Row]:
        payload = dict(values, updated_at=utc_now().isoformat())
        rows = await self.client.update(
            StoreQuery("assessment_questions").eq("id", question_id), payload, user_token=user_token
        )
        return rows[0] if rows else None

    async def delete_question(self, question_id: str, user_token: Optional[str] = None) -> int:
        query = StoreQuery("assessment_questions").eq("id", question_id)
        return await self.client.delete(query, user_token=user_token)
