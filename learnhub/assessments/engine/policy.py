"""
Attempt policy.

Decides whether a student may start a new attempt on a template. The decision
itself is a pure function of the template and the student's attempt counts;
``AttemptPolicy`` gathers those counts from the session repository.
"""

import enum
import logging
from dataclasses import dataclass
from typing import Optional

from learnhub.assessments.base.models import AssessmentTemplate, SessionStatus
from learnhub.assessments.base.repositories import SessionRepository
from learnhub.common.error_handling import (
    ActiveSessionExistsError,
    AttemptLimitError,
    TemplateUnavailableError,
)

logger = logging.getLogger(__name__)


class DenialReason(enum.Enum):
    TEMPLATE_UNAVAILABLE = "template_unavailable"
    ACTIVE_SESSION_EXISTS = "active_session_exists"
    ATTEMPT_LIMIT_REACHED = "attempt_limit_reached"


@dataclass(frozen=True)
class AttemptDecision:
    """Result of an eligibility check."""
    allowed: bool
    reason: Optional[DenialReason] = None
    attempts_used: int = 0

    @classmethod
    def allow(cls, attempts_used: int) -> 'AttemptDecision':
        return cls(allowed=True, attempts_used=attempts_used)

    @classmethod
    def deny(cls, reason: DenialReason, attempts_used: int = 0) -> 'AttemptDecision':
        return cls(allowed=False, reason=reason, attempts_used=attempts_used)


def decide(template: AssessmentTemplate, active_sessions: int, attempts_used: int) -> AttemptDecision:
    """
    Pure eligibility rule.

    Denies when the template is inactive or not public, when an attempt is
    already in progress, or when ``max_attempts`` is set and reached.
    """
    if not template.is_available:
        return AttemptDecision.deny(DenialReason.TEMPLATE_UNAVAILABLE, attempts_used)
    if active_sessions > 0:
        return AttemptDecision.deny(DenialReason.ACTIVE_SESSION_EXISTS, attempts_used)
    if template.max_attempts and attempts_used >= template.max_attempts:
        return AttemptDecision.deny(DenialReason.ATTEMPT_LIMIT_REACHED, attempts_used)
    return AttemptDecision.allow(attempts_used)


class AttemptPolicy:
    """
    Attempt policy enforcer.

    The check is advisory: two concurrent starts can both pass it. The store
    closes that gap with a unique index on in-progress sessions, which the
    session manager reports as ``ActiveSessionExistsError``.
    """

    def __init__(self, sessions: SessionRepository):
        self.sessions = sessions

    async def can_start(
        self,
        template: AssessmentTemplate,
        student_id: str,
        user_token: Optional[str] = None
    ) -> AttemptDecision:
        if not template.is_available:
            return AttemptDecision.deny(DenialReason.TEMPLATE_UNAVAILABLE)

        active = await self.sessions.count_attempts(
            student_id, template.id, status=SessionStatus.IN_PROGRESS, user_token=user_token
        )
        attempts = await self.sessions.count_attempts(student_id, template.id, user_token=user_token)
        return decide(template, active, attempts)

    async def ensure_can_start(
        self,
        template: AssessmentTemplate,
        student_id: str,
        user_token: Optional[str] = None
    ) -> AttemptDecision:
        """
        Raise the matching error when a new attempt is not allowed.

        Raises:
            TemplateUnavailableError: Template inactive or not public (403)
            ActiveSessionExistsError: An attempt is in progress (400)
            AttemptLimitError: ``max_attempts`` reached (400)
        """
        decision = await self.can_start(template, student_id, user_token=user_token)
        if decision.allowed:
            return decision

        logger.warning(
            f"Start denied for student {student_id} on template {template.id}: {decision.reason.value}"
        )
        if decision.reason is DenialReason.TEMPLATE_UNAVAILABLE:
            raise TemplateUnavailableError(template.id)
        if decision.reason is DenialReason.ACTIVE_SESSION_EXISTS:
            raise ActiveSessionExistsError(template.id)
        raise AttemptLimitError(template.id, template.max_attempts)
