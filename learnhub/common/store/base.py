"""
Table client interface.

Everything above the store layer talks to a ``TableClient``; the PostgREST
client and the in-memory client are interchangeable behind it.
"""

import abc
from typing import Any, Dict, List, Optional, Sequence

from learnhub.common.store.query import StoreQuery

Row = Dict[str, Any]


class TableClient(abc.ABC):
    """
    Abstract base class for row-level access to the relational store.

    Every method accepts an optional ``user_token`` which is handed to the
    credential strategy; the engine never reads it from ambient request state.
    """

    @abc.abstractmethod
    async def select(self, query: StoreQuery, user_token: Optional[str] = None) -> List[Row]:
        """Return the rows matching ``query``."""
        pass

    async def select_one(self, query: StoreQuery, user_token: Optional[str] = None) -> Optional[Row]:
        """Return the first row matching ``query``, or None."""
        rows = await self.select(query.limit(1), user_token=user_token)
        return rows[0] if rows else None

    @abc.abstractmethod
    async def count(self, query: StoreQuery, user_token: Optional[str] = None) -> int:
        """Count the rows matching the filters of ``query`` (paging is ignored)."""
        pass

    @abc.abstractmethod
    async def insert(self, table: str, rows: Sequence[Row], user_token: Optional[str] = None) -> List[Row]:
        """
        Insert rows and return them as stored.

        Raises:
            ConflictError: If a uniqueness rule rejects the write
        """
        pass

    @abc.abstractmethod
    async def update(self, query: StoreQuery, values: Row, user_token: Optional[str] = None) -> List[Row]:
        """Update the rows matching ``query`` and return them after the update."""
        pass

    @abc.abstractmethod
    async def delete(self, query: StoreQuery, user_token: Optional[str] = None) -> int:
        """Delete the rows matching ``query`` and return how many were removed."""
        pass

    async def close(self) -> None:
        """Release any held resources."""
        return None
