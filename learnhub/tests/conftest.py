"""
Shared fixtures: a seeded in-memory store, a controllable clock and the
assessment services wired on top of them.
"""

import datetime
import os
import random
from types import SimpleNamespace
from typing import Any, Dict, List, Optional

# The application module builds its store client on import
os.environ.setdefault("STORE_CREDENTIAL_MODE", "memory")

import pytest

from learnhub.assessments.base.repositories import StoreSessionRepository, StoreTemplateRepository
from learnhub.assessments.engine.policy import AttemptPolicy
from learnhub.assessments.engine.results import ResultsAggregator
from learnhub.assessments.engine.sessions import SessionManager
from learnhub.common.store.memory import MemoryTableClient
from learnhub.domain.questions.repository import StoreQuestionRepository

STUDENT_ID = "student-1"
TEMPLATE_ID = "tpl-1"
BASE_TIME = datetime.datetime(2026, 1, 5, 9, 0, tzinfo=datetime.timezone.utc)
DIFFICULTIES = ("easy", "medium", "hard")


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime.datetime = BASE_TIME):
        self.now = now

    def __call__(self) -> datetime.datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += datetime.timedelta(**kwargs)


def choice_rows(question_id: str, correct_index: int = 0, option_count: int = 4, **fields) -> Dict[str, List[Dict[str, Any]]]:
    """A choice question row and its option rows; option ``<qid>-o<i>``."""
    question = {
        "id": question_id,
        "question_type": "mcq",
        "question_text": f"Question {question_id}",
        "points_value": 1,
        "difficulty_level": "easy",
        "explanation": f"Because {question_id}",
        "is_active": True,
    }
    question.update(fields)
    options = [
        {
            "id": f"{question_id}-o{i}",
            "question_id": question_id,
            "option_text": f"Option {i}",
            "is_correct": i == correct_index,
            "order_index": i,
        }
        for i in range(option_count)
    ]
    return {"assessment_questions": [question], "assessment_question_options": options}


def build_seed(
    question_count: int = 10,
    template: Optional[Dict[str, Any]] = None,
    sessions: Optional[List[Dict[str, Any]]] = None
) -> Dict[str, List[Dict[str, Any]]]:
    """
    Seed with one template of ``question_count`` one-point choice questions.

    Question ``q<i>`` has its correct option at index 0 and a difficulty
    cycling through easy, medium, hard.
    """
    seed: Dict[str, List[Dict[str, Any]]] = {
        "assessment_questions": [],
        "assessment_question_options": [],
        "assessment_templates": [],
        "assessment_template_questions": [],
        "student_assessment_sessions": list(sessions or []),
        "profiles": [
            {"id": STUDENT_ID, "role": "student"},
            {"id": "admin-1", "role": "admin"},
        ],
    }
    for index in range(question_count):
        rows = choice_rows(f"q{index + 1}", difficulty_level=DIFFICULTIES[index % 3])
        seed["assessment_questions"].extend(rows["assessment_questions"])
        seed["assessment_question_options"].extend(rows["assessment_question_options"])
        seed["assessment_template_questions"].append(
            {"template_id": TEMPLATE_ID, "question_id": f"q{index + 1}", "order_index": index}
        )

    template_row = {
        "id": TEMPLATE_ID,
        "title": "Python Basics",
        "time_limit_minutes": 30,
        "passing_percentage": 70,
        "total_questions": question_count,
        "is_active": True,
        "is_public": True,
    }
    template_row.update(template or {})
    seed["assessment_templates"].append(template_row)
    return seed


def session_row(attempt_number: int, status: str = "completed", **fields) -> Dict[str, Any]:
    """A stored session of the default student on the default template."""
    started = BASE_TIME - datetime.timedelta(days=10 - attempt_number)
    row = {
        "id": f"sess-{attempt_number}",
        "student_id": STUDENT_ID,
        "template_id": TEMPLATE_ID,
        "session_token": f"token-{attempt_number}",
        "attempt_number": attempt_number,
        "status": status,
        "started_at": started.isoformat(),
        "expires_at": (started + datetime.timedelta(minutes=30)).isoformat(),
        "total_questions": 10,
    }
    row.update(fields)
    return row


def wire(store: MemoryTableClient, clock: FakeClock, seed_rng: int = 7) -> SimpleNamespace:
    questions = StoreQuestionRepository(store)
    templates = StoreTemplateRepository(store)
    sessions = StoreSessionRepository(store)
    return SimpleNamespace(
        store=store,
        clock=clock,
        questions=questions,
        templates=templates,
        sessions=sessions,
        manager=SessionManager(
            templates, sessions, questions,
            policy=AttemptPolicy(sessions),
            clock=clock,
            rng=random.Random(seed_rng),
        ),
        results=ResultsAggregator(templates, sessions, questions),
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def make_engine(clock):
    """Factory: ``make_engine(question_count=10, template={...}, sessions=[...])``."""
    def factory(**seed_args) -> SimpleNamespace:
        return wire(MemoryTableClient(build_seed(**seed_args)), clock)
    return factory


@pytest.fixture
def engine(make_engine):
    return make_engine()
