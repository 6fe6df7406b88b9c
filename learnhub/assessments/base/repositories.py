"""
Base Assessment Repositories

This module defines the repository interfaces of the assessment engine and
their implementations on top of a ``TableClient``. Repositories are built
once at startup and injected; credentials are the client's concern.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Sequence, Tuple

from learnhub.assessments.base.models import (
    AssessmentSession,
    AssessmentTemplate,
    SessionResponse,
    SessionStatus,
)
from learnhub.common.store.base import Row, TableClient
from learnhub.common.store.query import StoreQuery
from learnhub.common.utils import utc_now

logger = logging.getLogger(__name__)


class TemplateRepository(ABC):
    """
    Abstract repository interface for assessment templates.
    """

    @abstractmethod
    async def get_template(self, template_id: str, user_token: Optional[str] = None) -> Optional[AssessmentTemplate]:
        """
        Retrieve a template with its ordered question ids.

        Args:
            template_id: Template identifier
            user_token: Pass-through store credential

        Returns:
            The template if found, None otherwise
        """
        pass

    @abstractmethod
    async def list_templates(
        self,
        available_only: bool = True,
        user_token: Optional[str] = None
    ) -> List[AssessmentTemplate]:
        """
        List templates, newest first.

        Args:
            available_only: Restrict to active, public templates
            user_token: Pass-through store credential
        """
        pass

    @abstractmethod
    async def get_question_ids(self, template_id: str, user_token: Optional[str] = None) -> List[str]:
        """Ordered question ids linked to a template."""
        pass


class SessionRepository(ABC):
    """
    Abstract repository interface for sessions and their responses.
    """

    @abstractmethod
    async def create_session(self, values: Dict[str, Any], user_token: Optional[str] = None) -> AssessmentSession:
        """
        Persist a new session.

        Raises:
            ConflictError: If the store rejects a second in-progress session
        """
        pass

    @abstractmethod
    async def get_by_token(
        self,
        session_token: str,
        student_id: str,
        user_token: Optional[str] = None
    ) -> Optional[AssessmentSession]:
        """Look up a session by capability token; the student must own it."""
        pass

    @abstractmethod
    async def get_by_id(
        self,
        session_id: str,
        student_id: str,
        user_token: Optional[str] = None
    ) -> Optional[AssessmentSession]:
        """Look up a session by id; the student must own it."""
        pass

    @abstractmethod
    async def find_by_student(
        self,
        student_id: str,
        template_ids: Optional[Sequence[str]] = None,
        user_token: Optional[str] = None
    ) -> List[AssessmentSession]:
        """All sessions of a student, optionally restricted to some templates."""
        pass

    @abstractmethod
    async def page_by_student(
        self,
        student_id: str,
        page: int,
        limit: int,
        status: Optional[str] = None,
        template_id: Optional[str] = None,
        user_token: Optional[str] = None
    ) -> Tuple[List[AssessmentSession], int]:
        """One page of a student's sessions (newest first) and the total count."""
        pass

    @abstractmethod
    async def count_attempts(
        self,
        student_id: str,
        template_id: str,
        status: Optional[SessionStatus] = None,
        user_token: Optional[str] = None
    ) -> int:
        """Number of sessions of a student on a template, optionally by status."""
        pass

    @abstractmethod
    async def max_attempt_number(self, student_id: str, template_id: str, user_token: Optional[str] = None) -> int:
        """Highest attempt number so far, 0 if none."""
        pass

    @abstractmethod
    async def transition(
        self,
        session_id: str,
        values: Dict[str, Any],
        expected_status: SessionStatus = SessionStatus.IN_PROGRESS,
        user_token: Optional[str] = None
    ) -> Optional[AssessmentSession]:
        """
        Conditionally update a session.

        The update only applies while the session is still in
        ``expected_status``; None means another request got there first.
        """
        pass

    @abstractmethod
    async def insert_response(self, values: Dict[str, Any], user_token: Optional[str] = None) -> SessionResponse:
        """
        Persist a response.

        Raises:
            ConflictError: If the (session, question) pair already has one
        """
        pass

    @abstractmethod
    async def get_response(
        self,
        session_id: str,
        question_id: str,
        user_token: Optional[str] = None
    ) -> Optional[SessionResponse]:
        """The stored response of a question in a session, if any."""
        pass

    @abstractmethod
    async def list_responses(self, session_id: str, user_token: Optional[str] = None) -> List[SessionResponse]:
        """Responses of a session in answer order."""
        pass


class StoreTemplateRepository(TemplateRepository):
    """Template repository backed by a ``TableClient``."""

    def __init__(self, client: TableClient):
        self.client = client

    async def get_template_row(self, template_id: str, user_token: Optional[str] = None) -> Optional[Row]:
        query = StoreQuery("assessment_templates").eq("id", template_id)
        return await self.client.select_one(query, user_token=user_token)

    async def get_template(self, template_id: str, user_token: Optional[str] = None) -> Optional[AssessmentTemplate]:
        row, question_ids = await asyncio.gather(
            self.get_template_row(template_id, user_token=user_token),
            self.get_question_ids(template_id, user_token=user_token),
        )
        if row is None:
            return None
        return AssessmentTemplate.from_row(row, question_ids)

    async def list_templates(
        self,
        available_only: bool = True,
        user_token: Optional[str] = None
    ) -> List[AssessmentTemplate]:
        query = StoreQuery("assessment_templates")
        if available_only:
            query = query.eq("is_active", True).eq("is_public", True)
        rows = await self.client.select(query.order("created_at", descending=True), user_token=user_token)
        return [AssessmentTemplate.from_row(row) for row in rows]

    async def get_question_ids(self, template_id: str, user_token: Optional[str] = None) -> List[str]:
        query = (
            StoreQuery("assessment_template_questions")
            .select("question_id", "order_index")
            .eq("template_id", template_id)
            .order("order_index")
        )
        rows = await self.client.select(query, user_token=user_token)
        return [str(row["question_id"]) for row in rows]

    # Authoring

    async def insert_template(self, values: Dict[str, Any], user_token: Optional[str] = None) -> Row:
        now = utc_now().isoformat()
        rows = await self.client.insert(
            "assessment_templates", [dict(values, created_at=now, updated_at=now)], user_token=user_token
        )
        return rows[0]

    async def update_template(
        self,
        template_id: str,
        values: Dict[str, Any],
        user_token: Optional[str] = None
    ) -> Optional[Row]:
        rows = await self.client.update(
            StoreQuery("assessment_templates").eq("id", template_id),
            dict(values, updated_at=utc_now().isoformat()),
            user_token=user_token
        )
        return rows[0] if rows else None

    async def delete_template(self, template_id: str, user_token: Optional[str] = None) -> int:
        return await self.client.delete(StoreQuery("assessment_templates").eq("id", template_id), user_token=user_token)

    async def link_questions(
        self,
        template_id: str,
        question_ids: Sequence[str],
        user_token: Optional[str] = None
    ) -> List[Row]:
        payload = [
            {"template_id": template_id, "question_id": question_id, "order_index": index}
            for index, question_id in enumerate(question_ids)
        ]
        return await self.client.insert("assessment_template_questions", payload, user_token=user_token)

    async def unlink_questions(self, template_id: str, user_token: Optional[str] = None) -> int:
        query = StoreQuery("assessment_template_questions").eq("template_id", template_id)
        return await self.client.delete(query, user_token=user_token)


class StoreSessionRepository(SessionRepository):
    """Session and response repository backed by a ``TableClient``."""

    def __init__(self, client: TableClient):
        self.client = client

    @staticmethod
    def _sessions() -> StoreQuery:
        return StoreQuery("student_assessment_sessions")

    async def create_session(self, values: Dict[str, Any], user_token: Optional[str] = None) -> AssessmentSession:
        rows = await self.client.insert("student_assessment_sessions", [values], user_token=user_token)
        return AssessmentSession.from_row(rows[0])

    async def get_by_token(
        self,
        session_token: str,
        student_id: str,
        user_token: Optional[str] = None
    ) -> Optional[AssessmentSession]:
        query = self._sessions().eq("session_token", session_token).eq("student_id", student_id)
        row = await self.client.select_one(query, user_token=user_token)
        return AssessmentSession.from_row(row) if row else None

    async def get_by_id(
        self,
        session_id: str,
        student_id: str,
        user_token: Optional[str] = None
    ) -> Optional[AssessmentSession]:
        query = self._sessions().eq("id", session_id).eq("student_id", student_id)
        row = await self.client.select_one(query, user_token=user_token)
        return AssessmentSession.from_row(row) if row else None

    async def find_by_student(
        self,
        student_id: str,
        template_ids: Optional[Sequence[str]] = None,
        user_token: Optional[str] = None
    ) -> List[AssessmentSession]:
        query = self._sessions().eq("student_id", student_id)
        if template_ids is not None:
            if not template_ids:
                return []
            query = query.in_("template_id", template_ids)
        rows = await self.client.select(query.order("started_at", descending=True), user_token=user_token)
        return [AssessmentSession.from_row(row) for row in rows]

    async def page_by_student(
        self,
        student_id: str,
        page: int,
        limit: int,
        status: Optional[str] = None,
        template_id: Optional[str] = None,
        user_token: Optional[str] = None
    ) -> Tuple[List[AssessmentSession], int]:
        query = self._sessions().eq("student_id", student_id)
        if status:
            query = query.eq("status", status)
        if template_id:
            query = query.eq("template_id", template_id)

        paged = query.order("started_at", descending=True).limit(limit).offset((page - 1) * limit)
        rows, total = await asyncio.gather(
            self.client.select(paged, user_token=user_token),
            self.client.count(query, user_token=user_token),
        )
        return [AssessmentSession.from_row(row) for row in rows], total

    async def count_attempts(
        self,
        student_id: str,
        template_id: str,
        status: Optional[SessionStatus] = None,
        user_token: Optional[str] = None
    ) -> int:
        query = self._sessions().eq("student_id", student_id).eq("template_id", template_id)
        if status is not None:
            query = query.eq("status", status.value)
        return await self.client.count(query, user_token=user_token)

    async def max_attempt_number(self, student_id: str, template_id: str, user_token: Optional[str] = None) -> int:
        query = (
            self._sessions()
            .select("attempt_number")
            .eq("student_id", student_id)
            .eq("template_id", template_id)
            .order("attempt_number", descending=True)
        )
        row = await self.client.select_one(query, user_token=user_token)
        if not row or row.get("attempt_number") is None:
            return 0
        return int(row["attempt_number"])

    async def transition(
        self,
        session_id: str,
        values: Dict[str, Any],
        expected_status: SessionStatus = SessionStatus.IN_PROGRESS,
        user_token: Optional[str] = None
    ) -> Optional[AssessmentSession]:
        query = self._sessions().eq("id", session_id).eq("status", expected_status.value)
        rows = await self.client.update(query, values, user_token=user_token)
        return AssessmentSession.from_row(rows[0]) if rows else None

    async def insert_response(self, values: Dict[str, Any], user_token: Optional[str] = None) -> SessionResponse:
        rows = await self.client.insert("student_assessment_responses", [values], user_token=user_token)
        return SessionResponse.from_row(rows[0])

    async def get_response(
        self,
        session_id: str,
        question_id: str,
        user_token: Optional[str] = None
    ) -> Optional[SessionResponse]:
        query = (
            StoreQuery("student_assessment_responses")
            .eq("session_id", session_id)
            .eq("question_id", question_id)
        )
        row = await self.client.select_one(query, user_token=user_token)
        return SessionResponse.from_row(row) if row else None

    async def list_responses(self, session_id: str, user_token: Optional[str] = None) -> List[SessionResponse]:
        query = (
            StoreQuery("student_assessment_responses")
            .eq("session_id", session_id)
            .order("answered_at")
        )
        rows = await self.client.select(query, user_token=user_token)
        return [SessionResponse.from_row(row) for row in rows]
