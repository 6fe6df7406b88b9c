"""
Storage for quick assessments and their responses.
"""

from typing import Any, Dict, List, Optional, Sequence

from learnhub.common.store.base import Row, TableClient
from learnhub.common.store.query import StoreQuery


class QuickAssessmentRepository:
    """Access to the ``assessments``, ``assessment_responses`` and ``profiles`` tables."""

    def __init__(self, client: TableClient):
        self.client = client

    async def create(self, user_id: str, started_at: str, user_token: Optional[str] = None) -> Row:
        rows = await self.client.insert(
            "assessments", [{"user_id": user_id, "started_at": started_at}], user_token=user_token
        )
        return rows[0]

    async def get(self, assessment_id: str, user_id: str, user_token: Optional[str] = None) -> Optional[Row]:
        query = StoreQuery("assessments").eq("id", assessment_id).eq("user_id", user_id)
        return await self.client.select_one(query, user_token=user_token)

    async def insert_responses(self, rows: Sequence[Dict[str, Any]], user_token: Optional[str] = None) -> List[Row]:
        return await self.client.insert("assessment_responses", rows, user_token=user_token)

    async def complete(
        self,
        assessment_id: str,
        user_id: str,
        values: Dict[str, Any],
        user_token: Optional[str] = None
    ) -> Optional[Row]:
        """Stamp the assessment; only applies while it has not been completed."""
        query = (
            StoreQuery("assessments")
            .eq("id", assessment_id)
            .eq("user_id", user_id)
            .is_null("completed_at")
        )
        rows = await self.client.update(query, values, user_token=user_token)
        return rows[0] if rows else None

    async def latest(self, user_id: str, user_token: Optional[str] = None) -> Optional[Row]:
        query = (
            StoreQuery("assessments")
            .select("id", "user_id", "started_at", "completed_at", "score", "passed")
            .eq("user_id", user_id)
            .order("started_at", descending=True)
        )
        return await self.client.select_one(query, user_token=user_token)

    async def stamp_profile(self, user_id: str, completed_at: str, user_token: Optional[str] = None) -> None:
        await self.client.update(
            StoreQuery("profiles").eq("id", user_id),
            {"assessment_completed_at": completed_at},
            user_token=user_token
        )
