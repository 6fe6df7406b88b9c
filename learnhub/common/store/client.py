"""
PostgREST Client

aiohttp-based implementation of ``TableClient`` for a PostgREST-style data
API. One ``ClientSession`` is shared by all calls and every call carries an
explicit timeout. Reads are retried with backoff on transient failures;
writes are sent exactly once.
"""

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

import aiohttp

from learnhub.common.error_handling import (
    ConflictError,
    StoreError,
    StoreUnavailableError,
    retry,
)
from learnhub.common.logger import log_execution_time
from learnhub.common.store.base import Row, TableClient
from learnhub.common.store.credentials import CredentialStrategy
from learnhub.common.store.query import TABLE_COLUMNS, StoreQuery

logger = logging.getLogger(__name__)

# Postgres invalid_text_representation, e.g. a non-UUID compared to a uuid column
INVALID_TEXT_REPRESENTATION = "22P02"


@dataclass
class StoreResponse:
    """Status, decoded body and headers of one data API call."""
    status: int
    data: Any = None
    headers: Dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300


def parse_content_range(value: Optional[str]) -> Optional[int]:
    """Extract the total from a ``Content-Range`` header such as ``0-9/42``."""
    if not value or "/" not in value:
        return None
    total = value.rsplit("/", 1)[1].strip()
    if total == "*":
        return None
    try:
        return int(total)
    except ValueError:
        return None


class PostgrestClient(TableClient):
    """
    Table client backed by the PostgREST HTTP interface.

    Args:
        base_url: REST base URL (``.../rest/v1``)
        credentials: Strategy resolved once at startup
        timeout: Total per-call timeout in seconds
        max_retries: Retries for idempotent reads
    """

    def __init__(
        self,
        base_url: str,
        credentials: CredentialStrategy,
        timeout: float = 10.0,
        max_retries: int = 2
    ):
        self.base_url = base_url.rstrip("/")
        self.credentials = credentials
        self.timeout = timeout
        self.max_retries = max_retries
        self._session: Optional[aiohttp.ClientSession] = None
        self._session_lock = asyncio.Lock()

        self._read = retry(
            max_retries=max_retries,
            retry_delay=0.2,
            retry_exceptions=(StoreUnavailableError,),
        )(self._send_checked)

    async def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is not None and not self._session.closed:
            return self._session

        async with self._session_lock:
            if self._session is None or self._session.closed:
                self._session = aiohttp.ClientSession(
                    timeout=aiohttp.ClientTimeout(total=self.timeout)
                )
        return self._session

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()
            logger.info("Data API session closed")
        self._session = None

    @log_execution_time(logger)
    async def _send(
        self,
        method: str,
        table: str,
        params: Optional[List[Tuple[str, str]]] = None,
        json_body: Any = None,
        headers: Optional[Dict[str, str]] = None
    ) -> StoreResponse:
        """
        Perform one HTTP call against ``table``.

        Transport failures are reported as ``StoreUnavailableError``.
        """
        session = await self._ensure_session()
        url = f"{self.base_url}/{table}"
        body = json.dumps(json_body) if json_body is not None else None

        try:
            async with session.request(method, url, params=params, data=body, headers=headers) as response:
                text = await response.text()
                data = None
                if text:
                    try:
                        data = json.loads(text)
                    except ValueError:
                        data = text
                return StoreResponse(status=response.status, data=data, headers=dict(response.headers))
        except asyncio.TimeoutError as e:
            raise StoreUnavailableError(f"Timed out calling data API ({method} {table})", table=table, cause=e)
        except aiohttp.ClientError as e:
            raise StoreUnavailableError(f"Could not reach data API ({method} {table})", table=table, cause=e)

    async def _send_checked(
        self,
        method: str,
        table: str,
        params: Optional[List[Tuple[str, str]]] = None,
        json_body: Any = None,
        headers: Optional[Dict[str, str]] = None
    ) -> StoreResponse:
        response = await self._send(method, table, params=params, json_body=json_body, headers=headers)
        if response.ok:
            return response

        detail = response.data if isinstance(response.data, (str, dict)) else None
        if method != "POST" and response.status == 400 and isinstance(detail, dict) \
                and detail.get("code") == INVALID_TEXT_REPRESENTATION:
            # A filter value the column cannot hold matches no row
            logger.debug(f"Data API {method} {table} filter value not valid for column type: {detail.get('message')}")
            return StoreResponse(status=200, data=[], headers={"Content-Range": "*/0"})
        if response.status == 409:
            raise ConflictError(
                f"Write to {table} conflicts with existing data",
                details={"table": table, "upstream": detail}
            )
        if response.status >= 500:
            logger.error(f"Data API {method} {table} failed with {response.status}: {detail}")
            raise StoreUnavailableError(
                f"Data API {method} {table} failed with status {response.status}",
                status=response.status, table=table
            )
        logger.error(f"Data API {method} {table} rejected with {response.status}: {detail}")
        raise StoreError(
            f"Data API {method} {table} failed with status {response.status}",
            status=response.status, table=table
        )

    def _headers(self, user_token: Optional[str], prefer: Optional[str] = None) -> Dict[str, str]:
        headers = dict(self.credentials.headers(user_token))
        if prefer:
            headers["Prefer"] = prefer
        return headers

    @staticmethod
    def _check_table(table: str) -> None:
        if table not in TABLE_COLUMNS:
            raise ValueError(f"Unknown table: {table}")

    @staticmethod
    def _rows(data: Any) -> List[Row]:
        if data is None:
            return []
        if isinstance(data, list):
            return data
        if isinstance(data, dict):
            return [data]
        raise StoreError(f"Unexpected data API payload of type {type(data).__name__}")

    # Reads (retried)

    async def select(self, query: StoreQuery, user_token: Optional[str] = None) -> List[Row]:
        response = await self._read("GET", query.table, params=query.to_params(),
                                    headers=self._headers(user_token))
        return self._rows(response.data)

    async def count(self, query: StoreQuery, user_token: Optional[str] = None) -> int:
        counted = query.without_paging().select("id").limit(1)
        response = await self._read("GET", counted.table, params=counted.to_params(),
                                    headers=self._headers(user_token, prefer="count=exact"))
        total = parse_content_range(response.headers.get("Content-Range"))
        if total is None:
            return len(self._rows(response.data))
        return total

    # Writes (never retried)

    async def insert(self, table: str, rows: Sequence[Row], user_token: Optional[str] = None) -> List[Row]:
        self._check_table(table)
        if not rows:
            return []
        response = await self._send_checked("POST", table, json_body=list(rows),
                                            headers=self._headers(user_token, prefer="return=representation"))
        return self._rows(response.data)

    async def update(self, query: StoreQuery, values: Row, user_token: Optional[str] = None) -> List[Row]:
        response = await self._send_checked("PATCH", query.table, params=query.to_params(include_select=False),
                                            json_body=values,
                                            headers=self._headers(user_token, prefer="return=representation"))
        return self._rows(response.data)

    async def delete(self, query: StoreQuery, user_token: Optional[str] = None) -> int:
        response = await self._send_checked("DELETE", query.table, params=query.to_params(include_select=False),
                                            headers=self._headers(user_token, prefer="return=representation"))
        return len(self._rows(response.data))
