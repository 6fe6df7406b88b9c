"""
Results and reporting.

Scores a session from its stored responses, and serves history, result
summaries and per-question breakdowns with a difficulty rollup.
"""

import logging
import math
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Optional, Union

from learnhub.assessments.base.models import (
    AssessmentSession,
    AssessmentTemplate,
    SessionResponse,
    SessionStatus,
)
from learnhub.assessments.base.repositories import SessionRepository, TemplateRepository
from learnhub.common.error_handling import (
    InvalidSessionStateError,
    ResultsHiddenError,
    SessionNotFoundError,
    TemplateNotFoundError,
)
from learnhub.common.utils import isoformat, round_half_up
from learnhub.domain.questions.model import Difficulty, Question
from learnhub.domain.questions.repository import QuestionRepository

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SessionScore:
    """Aggregate outcome of a finished session."""
    correct_answers: int
    total_score: Union[int, float]
    percentage_score: int
    passed: bool


def percentage(correct: int, total: int) -> int:
    """Rounded percentage of ``correct`` out of ``total``; 0 when total is 0."""
    if total <= 0:
        return 0
    return round_half_up(100 * correct / total)


def score_session(
    responses: Iterable[SessionResponse],
    total_questions: int,
    passing_percentage: int
) -> SessionScore:
    """
    Score a session.

    Unanswered questions count against the percentage because the
    denominator is the number of questions in the session, not the number
    of responses.
    """
    responses = list(responses)
    correct = sum(1 for r in responses if r.is_correct)
    total_score = sum(r.points_earned or 0 for r in responses)
    pct = percentage(correct, total_questions)
    return SessionScore(
        correct_answers=correct,
        total_score=total_score,
        percentage_score=pct,
        passed=pct >= passing_percentage,
    )


def performance_by_difficulty(
    responses: Iterable[SessionResponse],
    questions: Dict[str, Question]
) -> Dict[str, Dict[str, int]]:
    """Per-difficulty totals, correct counts and percentages (easy, medium, hard)."""
    rollup = {d.value: {"total": 0, "correct": 0} for d in Difficulty}
    for response in responses:
        question = questions.get(str(response.question_id))
        level = question.difficulty_level if question else None
        if level not in rollup:
            continue
        rollup[level]["total"] += 1
        if response.is_correct:
            rollup[level]["correct"] += 1

    return {
        level: {
            "total": data["total"],
            "correct": data["correct"],
            "percentage": percentage(data["correct"], data["total"]),
        }
        for level, data in rollup.items()
    }


def can_retake(template: AssessmentTemplate, attempt_number: int) -> bool:
    """Another attempt is offered when retakes are allowed and the cap is not reached."""
    if not template.allow_retakes:
        return False
    return not template.max_attempts or attempt_number < template.max_attempts


class ResultsAggregator:
    """
    Read-side views over finished sessions.
    """

    def __init__(
        self,
        templates: TemplateRepository,
        sessions: SessionRepository,
        questions: QuestionRepository
    ):
        self.templates = templates
        self.sessions = sessions
        self.questions = questions

    async def history(
        self,
        student_id: str,
        page: int = 1,
        limit: int = 10,
        status: Optional[str] = None,
        template_id: Optional[str] = None,
        user_token: Optional[str] = None
    ) -> Dict[str, Any]:
        sessions, total = await self.sessions.page_by_student(
            student_id, page, limit, status=status, template_id=template_id, user_token=user_token
        )

        titles: Dict[str, str] = {}
        for tid in {s.template_id for s in sessions}:
            template = await self.templates.get_template(tid, user_token=user_token)
            if template:
                titles[tid] = template.title

        items = []
        for session in sessions:
            item = session.to_dict()
            item.pop("session_token", None)
            item["assessment_title"] = titles.get(session.template_id)
            items.append(item)

        return {
            "sessions": items,
            "pagination": {
                "page": page,
                "limit": limit,
                "total": total,
                "pages": math.ceil(total / limit) if limit else 0,
            },
        }

    async def _completed_session(
        self,
        session_id: str,
        student_id: str,
        user_token: Optional[str] = None
    ):
        session = await self.sessions.get_by_id(session_id, student_id, user_token=user_token)
        if session is None:
            raise SessionNotFoundError(session_id)
        if session.status is not SessionStatus.COMPLETED:
            raise InvalidSessionStateError(
                "Results not available for incomplete sessions", session.id, session.status.value
            )
        template = await self.templates.get_template(session.template_id, user_token=user_token)
        if template is None:
            raise TemplateNotFoundError(session.template_id)
        if not template.show_results_immediately:
            logger.warning(f"Results of session {session.id} are withheld by template {template.id}")
            raise ResultsHiddenError(session.id)
        return session, template

    @staticmethod
    def _summary(session: AssessmentSession, template: AssessmentTemplate) -> Dict[str, Any]:
        return {
            "session_id": session.id,
            "assessment_title": template.title,
            "total_score": session.total_score,
            "percentage_score": session.percentage_score,
            "total_questions": session.total_questions,
            "correct_answers": session.correct_answers,
            "passed": session.passed,
            "passing_percentage": template.passing_percentage,
            "time_spent_minutes": round_half_up((session.time_spent_seconds or 0) / 60),
            "attempt_number": session.attempt_number,
            "completed_at": isoformat(session.completed_at),
        }

    async def results(self, session_id: str, student_id: str, user_token: Optional[str] = None) -> Dict[str, Any]:
        """
        Score summary of a completed session.

        Raises:
            SessionNotFoundError: Unknown session or not owned by the student
            InvalidSessionStateError: Session not completed (400)
            ResultsHiddenError: Template withholds results (403)
        """
        session, template = await self._completed_session(session_id, student_id, user_token=user_token)
        return self._summary(session, template)

    async def detailed_results(
        self,
        session_id: str,
        student_id: str,
        user_token: Optional[str] = None
    ) -> Dict[str, Any]:
        """Summary plus per-question breakdown and difficulty rollup."""
        session, template = await self._completed_session(session_id, student_id, user_token=user_token)
        responses = await self.sessions.list_responses(session.id, user_token=user_token)
        questions = await self.questions.fetch_questions(
            [r.question_id for r in responses], user_token=user_token
        )
        by_id = {str(q.id): q for q in questions}

        detailed = []
        for response in responses:
            question = by_id.get(str(response.question_id))
            detailed.append({
                "question_id": response.question_id,
                "question_text": question.prompt if question else None,
                "difficulty_level": question.difficulty_level if question else None,
                "student_answer": self._student_answer(response, question),
                "is_correct": response.is_correct,
                "points_earned": response.points_earned,
                "explanation": question.explanation if question else None,
                "time_spent_seconds": response.time_spent_seconds,
            })

        result = self._summary(session, template)
        result["detailed_responses"] = detailed
        result["performance_by_difficulty"] = performance_by_difficulty(responses, by_id)
        return result

    @staticmethod
    def _student_answer(response: SessionResponse, question: Optional[Question]) -> str:
        if response.text_answer:
            return response.text_answer
        if question is not None and response.selected_option_id:
            option = question.option_by_id(response.selected_option_id)
            if option is not None:
                return option.text
        return "No answer"
