"""
In-memory table client.

Evaluates ``StoreQuery`` filters in Python over plain dict rows. It enforces
the same uniqueness rules as the reference schema (see the alembic
migration), so conflicts surface exactly as they would from the data API.
Used for local development (``STORE_CREDENTIAL_MODE=memory``) and tests.
"""

import asyncio
import copy
import logging
import uuid
from collections import defaultdict
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from learnhub.common.error_handling import ConflictError
from learnhub.common.store.base import Row, TableClient
from learnhub.common.store.query import TABLE_COLUMNS, Filter, FilterOp, StoreQuery, render_value
from learnhub.common.utils import utc_now

logger = logging.getLogger(__name__)

UniqueRule = Tuple[Tuple[str, ...], Optional[Callable[[Row], bool]]]

UNIQUE_RULES: Dict[str, List[UniqueRule]] = {
    "student_assessment_responses": [(("session_id", "question_id"), None)],
    "student_assessment_sessions": [
        (("session_token",), None),
        (("student_id", "template_id"), lambda row: row.get("status") == "in_progress"),
    ],
    "assessment_template_questions": [(("template_id", "question_id"), None)],
    "assessment_text_answers": [(("question_id",), None)],
}

COLUMN_DEFAULTS: Dict[str, Dict[str, Callable[[], Any]]] = {
    "assessment_questions": {"is_active": lambda: True, "tags": list},
    "assessment_templates": {"is_active": lambda: True, "is_public": lambda: True},
    "student_assessment_sessions": {"status": lambda: "in_progress", "metadata": dict},
}

# Rows removed together with their parent, mirroring ON DELETE CASCADE
CASCADES: Dict[str, List[Tuple[str, str]]] = {
    "assessment_questions": [
        ("assessment_question_options", "question_id"),
        ("assessment_text_answers", "question_id"),
        ("assessment_template_questions", "question_id"),
    ],
    "assessment_templates": [("assessment_template_questions", "template_id")],
    "student_assessment_sessions": [("student_assessment_responses", "session_id")],
    "assessments": [("assessment_responses", "assessment_id")],
}


def _comparable(left: Any, right: Any) -> Tuple[Any, Any]:
    numeric = (int, float)
    if isinstance(left, numeric) and isinstance(right, numeric) \
            and not isinstance(left, bool) and not isinstance(right, bool):
        return left, right
    return render_value(left), render_value(right)


def _matches(row: Row, flt: Filter) -> bool:
    value = row.get(flt.column)
    op = flt.op

    if op is FilterOp.IS:
        if flt.value is None:
            return value is None
        return value is flt.value
    if op is FilterOp.IN:
        allowed = {render_value(v) for v in flt.value}
        return value is not None and render_value(value) in allowed
    if op is FilterOp.ILIKE:
        return value is not None and str(flt.value).lower() in str(value).lower()
    if value is None:
        return False

    left, right = _comparable(value, flt.value)
    if op is FilterOp.EQ:
        return left == right
    raise ValueError(f"Unsupported operator: {op}")


def row_matches(row: Row, query: StoreQuery) -> bool:
    """True when ``row`` satisfies every filter and every ``or`` group of ``query``."""
    if not all(_matches(row, flt) for flt in query.filters):
        return False
    return all(any(_matches(row, flt) for flt in group) for group in query.alternatives)


class MemoryTableClient(TableClient):
    """Dict-backed table client with PostgREST-compatible semantics."""

    def __init__(self, seed: Optional[Dict[str, Sequence[Row]]] = None):
        self.tables: Dict[str, List[Row]] = defaultdict(list)
        self._lock: Optional[asyncio.Lock] = None
        for table, rows in (seed or {}).items():
            for row in rows:
                self.tables[table].append(self._with_defaults(table, dict(row)))

    @property
    def lock(self) -> asyncio.Lock:
        if self._lock is None:
            self._lock = asyncio.Lock()
        return self._lock

    @staticmethod
    def _with_defaults(table: str, row: Row) -> Row:
        if table not in TABLE_COLUMNS:
            raise ValueError(f"Unknown table: {table}")
        unknown = set(row) - TABLE_COLUMNS[table]
        if unknown:
            raise ValueError(f"Unknown columns for {table}: {sorted(unknown)}")
        row.setdefault("id", str(uuid.uuid4()))
        if "created_at" in TABLE_COLUMNS[table]:
            row.setdefault("created_at", utc_now().isoformat())
        for column, factory in COLUMN_DEFAULTS.get(table, {}).items():
            if row.get(column) is None:
                row[column] = factory()
        return row

    def _check_unique(self, table: str, candidate: Row, ignore_ids: Sequence[Any] = ()) -> None:
        for columns, applies in UNIQUE_RULES.get(table, []):
            if applies is not None and not applies(candidate):
                continue
            key = tuple(candidate.get(c) for c in columns)
            if any(k is None for k in key):
                continue
            for existing in self.tables[table]:
                if existing["id"] in ignore_ids:
                    continue
                if applies is not None and not applies(existing):
                    continue
                if tuple(existing.get(c) for c in columns) == key:
                    raise ConflictError(
                        f"Duplicate key on {table} ({', '.join(columns)})",
                        details={"table": table, "columns": list(columns)}
                    )

    @staticmethod
    def _project(row: Row, columns: Sequence[str]) -> Row:
        if not columns:
            return copy.deepcopy(row)
        return {c: copy.deepcopy(row.get(c)) for c in columns}

    @staticmethod
    def _sorted(rows: List[Row], query: StoreQuery) -> List[Row]:
        ordered = list(rows)
        for order in reversed(query.ordering):
            present = [r for r in ordered if r.get(order.column) is not None]
            missing = [r for r in ordered if r.get(order.column) is None]
            present.sort(key=lambda r: r[order.column], reverse=order.descending)
            ordered = present + missing
        return ordered

    def _matching(self, query: StoreQuery) -> List[Row]:
        return [row for row in self.tables[query.table] if row_matches(row, query)]

    async def select(self, query: StoreQuery, user_token: Optional[str] = None) -> List[Row]:
        rows = self._sorted(self._matching(query), query)
        start = query.row_offset or 0
        end = start + query.row_limit if query.row_limit is not None else None
        return [self._project(row, query.columns) for row in rows[start:end]]

    async def count(self, query: StoreQuery, user_token: Optional[str] = None) -> int:
        return len(self._matching(query))

    async def insert(self, table: str, rows: Sequence[Row], user_token: Optional[str] = None) -> List[Row]:
        async with self.lock:
            prepared = [self._with_defaults(table, copy.deepcopy(dict(row))) for row in rows]
            staged: List[Row] = []
            try:
                for row in prepared:
                    self._check_unique(table, row)
                    self.tables[table].append(row)
                    staged.append(row)
            except ConflictError:
                # A batch is written whole or not at all
                staged_ids = {row["id"] for row in staged}
                self.tables[table] = [r for r in self.tables[table] if r["id"] not in staged_ids]
                raise
            return [copy.deepcopy(row) for row in staged]

    async def update(self, query: StoreQuery, values: Row, user_token: Optional[str] = None) -> List[Row]:
        unknown = set(values) - TABLE_COLUMNS[query.table]
        if unknown:
            raise ValueError(f"Unknown columns for {query.table}: {sorted(unknown)}")

        async with self.lock:
            targets = self._matching(query)
            updated = []
            for row in targets:
                candidate = dict(row)
                candidate.update(copy.deepcopy(values))
                self._check_unique(query.table, candidate, ignore_ids=[row["id"]])
                updated.append((row, candidate))
            for row, candidate in updated:
                row.clear()
                row.update(candidate)
            return [copy.deepcopy(row) for row, _ in updated]

    async def delete(self, query: StoreQuery, user_token: Optional[str] = None) -> int:
        async with self.lock:
            return self._delete_matching(query.table, lambda row: row_matches(row, query))

    def _delete_matching(self, table: str, predicate: Callable[[Row], bool]) -> int:
        removed = [row for row in self.tables[table] if predicate(row)]
        if not removed:
            return 0
        removed_ids = {row["id"] for row in removed}
        self.tables[table] = [row for row in self.tables[table] if row["id"] not in removed_ids]
        for child_table, column in CASCADES.get(table, []):
            self._delete_matching(child_table, lambda row: row.get(column) in removed_ids)
        return len(removed)
