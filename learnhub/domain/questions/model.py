"""
Question Domain Model Module

This module defines the core domain entities for the question subsystem:
questions, their answer options, and the matching rules of free-text
answers.
"""

import enum
import math
import random
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union


class QuestionKind(enum.Enum):
    """Semantic families every raw question type normalizes into."""
    CHOICE = "choice"
    TEXT = "text"


class Difficulty(enum.Enum):
    """Difficulty levels used for breakdowns and rollups."""
    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"


# Raw question_type tag -> semantic kind
RAW_TYPE_KINDS: Dict[str, QuestionKind] = {
    "mcq": QuestionKind.CHOICE,
    "image_mcq": QuestionKind.CHOICE,
    "text": QuestionKind.TEXT,
    "image_text": QuestionKind.TEXT,
    "short_text": QuestionKind.TEXT,
    "fill_blank": QuestionKind.TEXT,
}

SUPPORTED_TYPES: List[str] = list(RAW_TYPE_KINDS)

DEFAULT_POINTS = 1


def kind_for(raw_type: Optional[str]) -> Optional[QuestionKind]:
    """Map a raw type tag to its kind; unknown or empty tags map to None."""
    if not raw_type:
        return None
    return RAW_TYPE_KINDS.get(raw_type)


def coerce_points(value: Any) -> Union[int, float]:
    """Point value of a question row, defaulting to 1 when unset or non-numeric."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return DEFAULT_POINTS
    if isinstance(value, float):
        if not math.isfinite(value):
            return DEFAULT_POINTS
        if value.is_integer():
            return int(value)
    return value


def _optional_int(value: Any) -> Optional[int]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if isinstance(value, float) and not math.isfinite(value):
        return None
    return int(value)


@dataclass
class QuestionOption:
    """
    One answer option of a choice question.

    Attributes:
        id: Option identifier
        question_id: Owning question
        text: Display text
        is_correct: Correctness flag (never shown to students)
        order_index: Default presentation position
        image_url: Optional image reference
    """
    id: str
    question_id: str
    text: str
    is_correct: bool = False
    order_index: int = 0
    image_url: Optional[str] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> 'QuestionOption':
        return cls(
            id=row.get("id"),
            question_id=row.get("question_id"),
            text=row.get("option_text") or "",
            is_correct=bool(row.get("is_correct")),
            order_index=_optional_int(row.get("order_index")) or 0,
            image_url=row.get("option_image_url"),
        )

    def to_student_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "option_text": self.text,
            "option_image_url": self.image_url,
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "question_id": self.question_id,
            "option_text": self.text,
            "option_image_url": self.image_url,
            "is_correct": self.is_correct,
            "order_index": self.order_index,
        }


@dataclass
class TextAnswerSpec:
    """
    Matching rules of a free-text question.

    When ``exact_match`` is set, alternates and keywords are not consulted.
    """
    correct_answer: str
    case_sensitive: bool = False
    exact_match: bool = False
    alternate_answers: List[str] = field(default_factory=list)
    keywords: List[str] = field(default_factory=list)
    question_id: Optional[str] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> 'TextAnswerSpec':
        alternates = row.get("alternate_answers")
        keywords = row.get("keywords")
        return cls(
            correct_answer=row.get("correct_answer") or "",
            case_sensitive=bool(row.get("case_sensitive")),
            exact_match=bool(row.get("exact_match")),
            alternate_answers=[str(a) for a in alternates] if isinstance(alternates, list) else [],
            keywords=[str(k) for k in keywords] if isinstance(keywords, list) else [],
            question_id=row.get("question_id"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "question_id": self.question_id,
            "correct_answer": self.correct_answer,
            "case_sensitive": self.case_sensitive,
            "exact_match": self.exact_match,
            "alternate_answers": list(self.alternate_answers),
            "keywords": list(self.keywords),
        }


@dataclass
class Question:
    """
    A question resolved from the store, normalized for evaluation.

    Attributes:
        id: Question identifier
        raw_type: Type tag as stored (mcq, image_mcq, text, ...)
        kind: Semantic kind derived from ``raw_type``
        prompt: Question text
        image_url: Optional image reference
        points: Point value awarded for a correct answer
        time_limit_seconds: Optional per-question time limit
        is_active: Active flag (None when never set)
        difficulty_level: easy, medium or hard when set
        explanation: Shown after answering, never before
        options: Options ordered by ``order_index`` (choice questions)
        text_answer: Matching rules (text questions)
    """
    id: str
    raw_type: str
    kind: QuestionKind
    prompt: str
    image_url: Optional[str] = None
    points: Union[int, float] = DEFAULT_POINTS
    time_limit_seconds: Optional[int] = None
    is_active: Optional[bool] = True
    difficulty_level: Optional[str] = None
    explanation: Optional[str] = None
    category_id: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    options: List[QuestionOption] = field(default_factory=list)
    text_answer: Optional[TextAnswerSpec] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> Optional['Question']:
        """
        Build a question from an ``assessment_questions`` row.

        Returns None for rows whose type is not supported, so malformed data
        is skipped rather than failing the whole fetch.
        """
        kind = kind_for(row.get("question_type"))
        if kind is None:
            return None
        tags = row.get("tags")
        return cls(
            id=row.get("id"),
            raw_type=row.get("question_type"),
            kind=kind,
            prompt=row.get("question_text") or "",
            image_url=row.get("question_image_url"),
            points=coerce_points(row.get("points_value")),
            time_limit_seconds=_optional_int(row.get("time_limit_seconds")),
            is_active=row.get("is_active"),
            difficulty_level=row.get("difficulty_level"),
            explanation=row.get("explanation"),
            category_id=row.get("category_id"),
            tags=list(tags) if isinstance(tags, list) else [],
        )

    @property
    def is_choice(self) -> bool:
        return self.kind is QuestionKind.CHOICE

    def attach_options(self, options: List[QuestionOption]) -> None:
        self.options = sorted(options, key=lambda o: o.order_index)

    def option_by_id(self, option_id: Optional[str]) -> Optional[QuestionOption]:
        if option_id is None:
            return None
        return next((o for o in self.options if str(o.id) == str(option_id)), None)

    def to_student_dict(
        self,
        number: Optional[int] = None,
        randomize_options: bool = False,
        rng: Optional[random.Random] = None
    ) -> Dict[str, Any]:
        """
        Student-facing payload.

        Correctness flags, explanations and canonical answers are never
        included. With ``randomize_options`` the option list is shuffled on a
        copy; the stored order is not touched.
        """
        options = [o.to_student_dict() for o in self.options]
        if randomize_options and len(options) > 1:
            (rng or random).shuffle(options)

        payload = {
            "id": self.id,
            "question_type": self.raw_type,
            "question_text": self.prompt,
            "question_image_url": self.image_url,
            "difficulty_level": self.difficulty_level,
            "points_value": self.points,
            "time_limit_seconds": self.time_limit_seconds,
            "options": options,
        }
        if number is not None:
            payload["question_number"] = number
        return payload

    def to_dict(self) -> Dict[str, Any]:
        """Full representation for authoring views."""
        return {
            "id": self.id,
            "question_type": self.raw_type,
            "kind": self.kind.value,
            "question_text": self.prompt,
            "question_image_url": self.image_url,
            "points_value": self.points,
            "time_limit_seconds": self.time_limit_seconds,
            "is_active": self.is_active,
            "difficulty_level": self.difficulty_level,
            "explanation": self.explanation,
            "category_id": self.category_id,
            "tags": list(self.tags),
            "options": [o.to_dict() for o in self.options],
            "text_answer": self.text_answer.to_dict() if self.text_answer else None,
        }
