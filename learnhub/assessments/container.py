"""
Service wiring.

Repositories and services are built once per application from a single
``TableClient`` and stored on ``app.state``; route handlers receive them
through the ``get_services`` dependency.
"""

from dataclasses import dataclass

from fastapi import Request

from learnhub.assessments.admin.service import AssessmentAuthoringService
from learnhub.assessments.base.repositories import StoreSessionRepository, StoreTemplateRepository
from learnhub.assessments.engine.policy import AttemptPolicy
from learnhub.assessments.engine.results import ResultsAggregator
from learnhub.assessments.engine.sessions import SessionManager
from learnhub.assessments.quick.repository import QuickAssessmentRepository
from learnhub.assessments.quick.service import QuickAssessmentService
from learnhub.common.store.base import TableClient
from learnhub.config import Settings
from learnhub.domain.questions.repository import StoreQuestionRepository


@dataclass
class AssessmentServices:
    """Everything the routers need, built around one store client."""
    client: TableClient
    sessions: SessionManager
    results: ResultsAggregator
    quick: QuickAssessmentService
    authoring: AssessmentAuthoringService


def build_services(client: TableClient, settings: Settings) -> AssessmentServices:
    questions = StoreQuestionRepository(client, default_limit=settings.DEFAULT_QUESTION_LIMIT)
    templates = StoreTemplateRepository(client)
    sessions = StoreSessionRepository(client)

    return AssessmentServices(
        client=client,
        sessions=SessionManager(templates, sessions, questions, policy=AttemptPolicy(sessions)),
        results=ResultsAggregator(templates, sessions, questions),
        quick=QuickAssessmentService(
            questions,
            QuickAssessmentRepository(client),
            passing_score=settings.QUICK_ASSESSMENT_PASSING_SCORE,
        ),
        authoring=AssessmentAuthoringService(questions, templates),
    )


def get_services(request: Request) -> AssessmentServices:
    """FastAPI dependency returning the application's services."""
    return request.app.state.services
