"""
Base Assessment Models

This module defines the core data models of the assessment engine:
templates, sessions (one attempt each), stored responses and evaluations.
"""

import datetime
import enum
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

from learnhub.common.utils import isoformat, parse_timestamp, to_int


class SessionStatus(enum.Enum):
    """Lifecycle states of a session. Only IN_PROGRESS is non-terminal."""
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    EXPIRED = "expired"


@dataclass(frozen=True)
class Evaluation:
    """Outcome of scoring one answer."""
    is_correct: bool
    points_earned: Union[int, float] = 0


@dataclass
class AssessmentTemplate:
    """
    A reusable, configured definition of an assessment.

    Attributes:
        id: Template identifier
        title: Display title
        time_limit_minutes: Session duration
        passing_percentage: Minimum percentage score to pass
        randomize_questions: Shuffle question order once per session
        randomize_options: Shuffle options on every presentation
        show_results_immediately: Whether results may be viewed after finishing
        allow_retakes: Whether another attempt is offered after finishing
        max_attempts: Optional cap on attempts per student
        is_active: Active flag
        is_public: Visibility flag
        question_ids: Ordered question ids from the template links
    """
    id: str
    title: str
    description: Optional[str] = None
    instructions: Optional[str] = None
    category_id: Optional[str] = None
    time_limit_minutes: int = 30
    passing_percentage: int = 70
    randomize_questions: bool = False
    randomize_options: bool = False
    show_results_immediately: bool = True
    allow_retakes: bool = True
    max_attempts: Optional[int] = None
    is_active: bool = True
    is_public: bool = True
    total_questions: Optional[int] = None
    created_at: Optional[str] = None
    question_ids: List[str] = field(default_factory=list)

    @property
    def is_available(self) -> bool:
        return bool(self.is_active and self.is_public)

    @classmethod
    def from_row(cls, row: Dict[str, Any], question_ids: Optional[List[str]] = None) -> 'AssessmentTemplate':
        max_attempts = row.get("max_attempts")
        return cls(
            id=row.get("id"),
            title=row.get("title") or "",
            description=row.get("description"),
            instructions=row.get("instructions"),
            category_id=row.get("category_id"),
            time_limit_minutes=to_int(row.get("time_limit_minutes"), 30),
            passing_percentage=to_int(row.get("passing_percentage"), 70),
            randomize_questions=bool(row.get("randomize_questions")),
            randomize_options=bool(row.get("randomize_options")),
            show_results_immediately=bool(row.get("show_results_immediately", True)),
            allow_retakes=bool(row.get("allow_retakes", True)),
            max_attempts=to_int(max_attempts) if max_attempts else None,
            is_active=bool(row.get("is_active", True)),
            is_public=bool(row.get("is_public", True)),
            total_questions=row.get("total_questions"),
            created_at=row.get("created_at"),
            question_ids=list(question_ids or []),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "instructions": self.instructions,
            "category_id": self.category_id,
            "time_limit_minutes": self.time_limit_minutes,
            "passing_percentage": self.passing_percentage,
            "randomize_questions": self.randomize_questions,
            "randomize_options": self.randomize_options,
            "show_results_immediately": self.show_results_immediately,
            "allow_retakes": self.allow_retakes,
            "max_attempts": self.max_attempts,
            "is_active": self.is_active,
            "is_public": self.is_public,
            "total_questions": self.total_questions if self.total_questions is not None else len(self.question_ids),
            "created_at": self.created_at,
        }


@dataclass
class AssessmentSession:
    """
    One student's timed attempt against a template.

    The session token is the capability handle given to the client; the id is
    internal and used for results lookups.
    """
    id: str
    student_id: str
    template_id: str
    session_token: str
    attempt_number: int
    status: SessionStatus
    started_at: datetime.datetime
    expires_at: datetime.datetime
    completed_at: Optional[datetime.datetime] = None
    total_questions: int = 0
    correct_answers: Optional[int] = None
    total_score: Optional[Union[int, float]] = None
    percentage_score: Optional[int] = None
    passed: Optional[bool] = None
    time_spent_seconds: Optional[int] = None
    question_order: List[str] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> 'AssessmentSession':
        order = row.get("question_order")
        metadata = row.get("metadata")
        return cls(
            id=row.get("id"),
            student_id=row.get("student_id"),
            template_id=row.get("template_id"),
            session_token=row.get("session_token"),
            attempt_number=to_int(row.get("attempt_number"), 1),
            status=SessionStatus(row.get("status") or SessionStatus.IN_PROGRESS.value),
            started_at=parse_timestamp(row.get("started_at")),
            expires_at=parse_timestamp(row.get("expires_at")),
            completed_at=parse_timestamp(row.get("completed_at")),
            total_questions=to_int(row.get("total_questions"), 0),
            correct_answers=row.get("correct_answers"),
            total_score=row.get("total_score"),
            percentage_score=row.get("percentage_score"),
            passed=row.get("passed"),
            time_spent_seconds=row.get("time_spent_seconds"),
            question_order=[str(q) for q in order] if isinstance(order, list) else [],
            metadata=dict(metadata) if isinstance(metadata, dict) else {},
        )

    def is_past_expiry(self, now: datetime.datetime) -> bool:
        return self.expires_at is not None and now > self.expires_at

    def time_remaining(self, now: datetime.datetime) -> int:
        """Whole seconds until expiry, never negative."""
        if self.expires_at is None:
            return 0
        return max(0, int((self.expires_at - now).total_seconds()))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "student_id": self.student_id,
            "template_id": self.template_id,
            "session_token": self.session_token,
            "attempt_number": self.attempt_number,
            "status": self.status.value,
            "started_at": isoformat(self.started_at),
            "expires_at": isoformat(self.expires_at),
            "completed_at": isoformat(self.completed_at),
            "total_questions": self.total_questions,
            "correct_answers": self.correct_answers,
            "total_score": self.total_score,
            "percentage_score": self.percentage_score,
            "passed": self.passed,
            "time_spent_seconds": self.time_spent_seconds,
            "metadata": dict(self.metadata),
        }


@dataclass
class SessionResponse:
    """A stored answer. One per (session, question); never mutated."""
    id: str
    session_id: str
    question_id: str
    selected_option_id: Optional[str] = None
    text_answer: Optional[str] = None
    is_correct: bool = False
    points_earned: Union[int, float] = 0
    time_spent_seconds: int = 0
    answered_at: Optional[datetime.datetime] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> 'SessionResponse':
        return cls(
            id=row.get("id"),
            session_id=row.get("session_id"),
            question_id=row.get("question_id"),
            selected_option_id=row.get("selected_option_id"),
            text_answer=row.get("text_answer"),
            is_correct=bool(row.get("is_correct")),
            points_earned=row.get("points_earned") or 0,
            time_spent_seconds=to_int(row.get("time_spent_seconds"), 0),
            answered_at=parse_timestamp(row.get("answered_at")),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "session_id": self.session_id,
            "question_id": self.question_id,
            "selected_option_id": self.selected_option_id,
            "text_answer": self.text_answer,
            "is_correct": self.is_correct,
            "points_earned": self.points_earned,
            "time_spent_seconds": self.time_spent_seconds,
            "answered_at": isoformat(self.answered_at),
        }
