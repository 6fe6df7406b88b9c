"""
Base Assessment Architecture

Core models of the assessment engine and the repository interfaces it is
built on.
"""

from learnhub.assessments.base.models import (
    AssessmentSession,
    AssessmentTemplate,
    Evaluation,
    SessionResponse,
    SessionStatus,
)

from learnhub.assessments.base.repositories import (
    SessionRepository,
    StoreSessionRepository,
    StoreTemplateRepository,
    TemplateRepository,
)

__all__ = [
    # Models
    'AssessmentSession',
    'AssessmentTemplate',
    'Evaluation',
    'SessionResponse',
    'SessionStatus',

    # Repositories
    'SessionRepository',
    'StoreSessionRepository',
    'StoreTemplateRepository',
    'TemplateRepository',
]
