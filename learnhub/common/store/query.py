"""
Typed query builder for the PostgREST data API.

Queries are immutable: every builder method returns a new ``StoreQuery``.
Tables and columns are checked against ``TABLE_COLUMNS`` so that no caller
can smuggle arbitrary operators or columns into the query string, and values
are rendered by the builder rather than concatenated by callers.
"""

import enum
import re
from dataclasses import dataclass, replace
from typing import Any, Dict, FrozenSet, Iterable, List, Optional, Sequence, Tuple


TABLE_COLUMNS: Dict[str, FrozenSet[str]] = {
    "assessment_questions": frozenset({
        "id", "category_id", "question_type", "question_text", "question_image_url",
        "explanation", "difficulty_level", "points_value", "time_limit_seconds",
        "tags", "is_active", "created_by", "created_at", "updated_at",
    }),
    "assessment_question_options": frozenset({
        "id", "question_id", "option_text", "option_image_url", "is_correct",
        "order_index", "explanation", "created_at",
    }),
    "assessment_text_answers": frozenset({
        "id", "question_id", "correct_answer", "case_sensitive", "exact_match",
        "alternate_answers", "keywords", "created_at",
    }),
    "assessment_templates": frozenset({
        "id", "title", "description", "instructions", "category_id", "total_questions",
        "time_limit_minutes", "passing_percentage", "randomize_questions",
        "randomize_options", "show_results_immediately", "allow_retakes",
        "max_attempts", "difficulty_distribution", "is_active", "is_public",
        "created_by", "created_at", "updated_at",
    }),
    "assessment_template_questions": frozenset({
        "id", "template_id", "question_id", "order_index", "created_at",
    }),
    "student_assessment_sessions": frozenset({
        "id", "student_id", "template_id", "session_token", "attempt_number", "status",
        "started_at", "expires_at", "completed_at", "total_questions", "correct_answers",
        "total_score", "percentage_score", "passed", "time_spent_seconds",
        "question_order", "metadata", "created_at",
    }),
    "student_assessment_responses": frozenset({
        "id", "session_id", "question_id", "selected_option_id", "text_answer",
        "is_correct", "points_earned", "time_spent_seconds", "answered_at",
    }),
    "assessments": frozenset({
        "id", "user_id", "started_at", "completed_at", "score", "passed",
    }),
    "assessment_responses": frozenset({
        "id", "assessment_id", "q_index", "question_id", "answer_text", "correct",
    }),
    "profiles": frozenset({
        "id", "role", "assessment_completed_at",
    }),
}

# Characters with meaning inside PostgREST filter syntax
_ILIKE_STRIP = re.compile(r"[*%,()\"\\]")


class FilterOp(enum.Enum):
    """Filter operators the builder is allowed to emit."""
    EQ = "eq"
    IS = "is"
    IN = "in"
    ILIKE = "ilike"


def render_value(value: Any) -> str:
    """Render a scalar filter value."""
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def quote_list_item(value: Any) -> str:
    """Quote one member of an ``in.(...)`` list, doubling embedded quotes."""
    text = render_value(value)
    return '"' + text.replace('"', '""') + '"'


def format_in_list(values: Iterable[Any]) -> str:
    """Render the body of an ``in.(...)`` filter, skipping empty members."""
    items = [v for v in values if v is not None and render_value(v) != ""]
    return ",".join(quote_list_item(v) for v in items)


def sanitize_search_term(term: str) -> str:
    """Strip filter metacharacters from a free-text search term."""
    return _ILIKE_STRIP.sub("", term or "").strip()


@dataclass(frozen=True)
class Filter:
    """A single ``column=op.value`` condition."""
    column: str
    op: FilterOp
    value: Any

    def render_expression(self) -> str:
        """Render ``op.value`` (the right-hand side of the query parameter)."""
        if self.op is FilterOp.IN:
            return f"in.({format_in_list(self.value)})"
        if self.op is FilterOp.ILIKE:
            return f"ilike.*{self.value}*"
        return f"{self.op.value}.{render_value(self.value)}"

    def render_inline(self) -> str:
        """Render ``column.op.value`` as used inside an ``or=(...)`` group."""
        return f"{self.column}.{self.render_expression()}"


@dataclass(frozen=True)
class OrderBy:
    column: str
    descending: bool = False

    def render(self) -> str:
        direction = "desc" if self.descending else "asc"
        return f"{self.column}.{direction}"


@dataclass(frozen=True)
class StoreQuery:
    """
    Immutable description of a read, update or delete against one table.

    Example:
        StoreQuery("student_assessment_sessions")
            .eq("student_id", student_id)
            .eq("status", "in_progress")
            .order("started_at", descending=True)
            .limit(10)
    """
    table: str
    columns: Tuple[str, ...] = ()
    filters: Tuple[Filter, ...] = ()
    alternatives: Tuple[Tuple[Filter, ...], ...] = ()
    ordering: Tuple[OrderBy, ...] = ()
    row_limit: Optional[int] = None
    row_offset: Optional[int] = None

    def __post_init__(self):
        if self.table not in TABLE_COLUMNS:
            raise ValueError(f"Unknown table: {self.table}")
        for column in self.columns:
            self._check_column(column)

    def _check_column(self, column: str) -> str:
        if column not in TABLE_COLUMNS[self.table]:
            raise ValueError(f"Unknown column {column!r} for table {self.table}")
        return column

    def _with_filter(self, column: str, op: FilterOp, value: Any) -> 'StoreQuery':
        self._check_column(column)
        return replace(self, filters=self.filters + (Filter(column, op, value),))

    # Filters

    def eq(self, column: str, value: Any) -> 'StoreQuery':
        if value is None:
            return self.is_null(column)
        return self._with_filter(column, FilterOp.EQ, value)

    def is_null(self, column: str) -> 'StoreQuery':
        return self._with_filter(column, FilterOp.IS, None)

    def in_(self, column: str, values: Sequence[Any]) -> 'StoreQuery':
        return self._with_filter(column, FilterOp.IN, tuple(values))

    def ilike(self, column: str, term: str) -> 'StoreQuery':
        """Case-insensitive substring match on ``term`` (metacharacters removed)."""
        cleaned = sanitize_search_term(term)
        if not cleaned:
            return self
        return self._with_filter(column, FilterOp.ILIKE, cleaned)

    def any_of(self, *conditions: Tuple[str, FilterOp, Any]) -> 'StoreQuery':
        """
        Add a disjunction group rendered as ``or=(...)``.

        Args:
            conditions: ``(column, op, value)`` triples
        """
        group = tuple(Filter(self._check_column(c), op, v) for c, op, v in conditions)
        return replace(self, alternatives=self.alternatives + (group,))

    def active_or_unset(self, column: str = "is_active") -> 'StoreQuery':
        """Rows whose flag is true or has never been set."""
        return self.any_of((column, FilterOp.IS, None), (column, FilterOp.EQ, True))

    # Shaping

    def select(self, *columns: str) -> 'StoreQuery':
        for column in columns:
            self._check_column(column)
        return replace(self, columns=tuple(columns))

    def order(self, column: str, descending: bool = False) -> 'StoreQuery':
        self._check_column(column)
        return replace(self, ordering=self.ordering + (OrderBy(column, descending),))

    def limit(self, count: int) -> 'StoreQuery':
        if count < 0:
            raise ValueError("limit must be non-negative")
        return replace(self, row_limit=int(count))

    def offset(self, count: int) -> 'StoreQuery':
        if count < 0:
            raise ValueError("offset must be non-negative")
        return replace(self, row_offset=int(count))

    def without_paging(self) -> 'StoreQuery':
        """Same filters, no ordering, limit or offset (used for counts)."""
        return replace(self, ordering=(), row_limit=None, row_offset=None)

    # Rendering

    def to_params(self, include_select: bool = True) -> List[Tuple[str, str]]:
        """
        Render to query-string pairs in a stable order.

        A list of pairs is used instead of a dict because PostgREST accepts the
        same parameter more than once.
        """
        params: List[Tuple[str, str]] = []
        if include_select:
            params.append(("select", ",".join(self.columns) if self.columns else "*"))
        for flt in self.filters:
            params.append((flt.column, flt.render_expression()))
        for group in self.alternatives:
            params.append(("or", "(" + ",".join(f.render_inline() for f in group) + ")"))
        if self.ordering:
            params.append(("order", ",".join(o.render() for o in self.ordering)))
        if self.row_limit is not None:
            params.append(("limit", str(self.row_limit)))
        if self.row_offset is not None:
            params.append(("offset", str(self.row_offset)))
        return params
