"""
Session lifecycle management.

Owns one attempt from start to finish:

    in_progress --finish--> completed
    in_progress --read after expires_at--> expired

Expiry is detected lazily when a session is read. Terminal states are never
left. Every status change is a conditional update on ``status=in_progress``
so that concurrent requests cannot both win.
"""

import datetime
import random
import uuid
from typing import Any, Callable, Dict, List, Optional

from learnhub.assessments.base.models import AssessmentSession, AssessmentTemplate, SessionStatus
from learnhub.assessments.base.repositories import SessionRepository, TemplateRepository
from learnhub.assessments.engine.evaluator import evaluate
from learnhub.assessments.engine.policy import AttemptPolicy
from learnhub.assessments.engine.results import can_retake, score_session
from learnhub.common.error_handling import (
    ActiveSessionExistsError,
    ConflictError,
    DuplicateAnswerError,
    InvalidSessionStateError,
    QuestionNotFoundError,
    SessionExpiredError,
    SessionNotFoundError,
    TemplateNotFoundError,
    TemplateUnavailableError,
    ValidationError,
)
from learnhub.common.logger import LoggerAdapter, app_logger
from learnhub.common.utils import isoformat, utc_now
from learnhub.domain.questions.model import Question
from learnhub.domain.questions.repository import QuestionRepository

logger = app_logger.getChild("assessments.sessions")

TEXT_TYPES = ("text", "short_text", "fill_blank")


class SessionManager:
    """
    Session lifecycle manager.

    Args:
        templates: Template repository
        sessions: Session and response repository
        questions: Question repository
        policy: Attempt policy enforcer
        clock: Returns the current timezone-aware time
        rng: Random source for question and option shuffles
    """

    def __init__(
        self,
        templates: TemplateRepository,
        sessions: SessionRepository,
        questions: QuestionRepository,
        policy: Optional[AttemptPolicy] = None,
        clock: Callable[[], datetime.datetime] = utc_now,
        rng: Optional[random.Random] = None
    ):
        self.templates = templates
        self.sessions = sessions
        self.questions = questions
        self.policy = policy or AttemptPolicy(sessions)
        self.clock = clock
        self.rng = rng or random.SystemRandom()

    def _session_log(self, session: AssessmentSession) -> LoggerAdapter:
        return LoggerAdapter(logger, {"session_id": session.id, "student_id": session.student_id})

    # Discovery

    async def available_assessments(self, student_id: str, user_token: Optional[str] = None) -> List[Dict[str, Any]]:
        """Active public templates with the student's attempt summary."""
        templates = await self.templates.list_templates(available_only=True, user_token=user_token)
        if not templates:
            return []

        attempts = await self.sessions.find_by_student(
            student_id, [t.id for t in templates], user_token=user_token
        )

        available = []
        for template in templates:
            own = [s for s in attempts if s.template_id == template.id]
            last = max(own, key=lambda s: s.attempt_number) if own else None
            item = template.to_dict()
            item["student_info"] = {
                "total_attempts": len(own),
                "max_attempts_reached": bool(template.max_attempts and len(own) >= template.max_attempts),
                "best_score": max([s.percentage_score or 0 for s in own], default=0),
                "has_passed": any(s.status is SessionStatus.COMPLETED and s.passed for s in own),
                "last_attempt_status": last.status.value if last else None,
                "last_attempt_passed": bool(last and last.passed),
                "can_retake": not template.max_attempts or len(own) < template.max_attempts,
            }
            available.append(item)
        return available

    async def _available_template(self, template_id: str, user_token: Optional[str] = None) -> AssessmentTemplate:
        template = await self.templates.get_template(template_id, user_token=user_token)
        if template is None:
            raise TemplateNotFoundError(template_id)
        if not template.is_available:
            raise TemplateUnavailableError(template_id)
        return template

    async def template_detail(self, template_id: str, user_token: Optional[str] = None) -> Dict[str, Any]:
        template = await self._available_template(template_id, user_token=user_token)
        return template.to_dict()

    async def preview(self, template_id: str, user_token: Optional[str] = None) -> Dict[str, Any]:
        """Template detail with a question breakdown by difficulty and type."""
        template = await self._available_template(template_id, user_token=user_token)
        questions = await self.questions.fetch_questions(template.question_ids, user_token=user_token)

        def count(predicate: Callable[[Question], bool]) -> int:
            return sum(1 for q in questions if predicate(q))

        preview = template.to_dict()
        preview["question_breakdown"] = {
            "total": len(questions),
            "by_difficulty": {
                level: count(lambda q, level=level: q.difficulty_level == level)
                for level in ("easy", "medium", "hard")
            },
            "by_type": {
                "mcq": count(lambda q: q.raw_type == "mcq"),
                "text": count(lambda q: q.raw_type in TEXT_TYPES),
                "image_mcq": count(lambda q: q.raw_type == "image_mcq"),
                "image_text": count(lambda q: q.raw_type == "image_text"),
            },
            "total_points": sum(q.points for q in questions),
        }
        return preview

    # Lifecycle

    async def start(self, template_id: str, student_id: str, user_token: Optional[str] = None) -> Dict[str, Any]:
        """
        Start a new attempt.

        The question order is fixed here (shuffled once when the template asks
        for it) and stored with the session.

        Raises:
            TemplateNotFoundError: Unknown template (404)
            TemplateUnavailableError: Inactive or non-public template (403)
            ActiveSessionExistsError: An attempt is already in progress (400)
            AttemptLimitError: ``max_attempts`` reached (400)
        """
        template = await self.templates.get_template(template_id, user_token=user_token)
        if template is None:
            raise TemplateNotFoundError(template_id)

        await self._expire_stale(student_id, template.id, user_token=user_token)
        await self.policy.ensure_can_start(template, student_id, user_token=user_token)

        attempt_number = await self.sessions.max_attempt_number(student_id, template.id, user_token=user_token) + 1
        questions = await self.questions.fetch_questions(template.question_ids, user_token=user_token)
        if template.randomize_questions:
            self.rng.shuffle(questions)

        started_at = self.clock()
        expires_at = started_at + datetime.timedelta(minutes=template.time_limit_minutes)

        try:
            session = await self.sessions.create_session({
                "student_id": student_id,
                "template_id": template.id,
                "session_token": str(uuid.uuid4()),
                "attempt_number": attempt_number,
                "status": SessionStatus.IN_PROGRESS.value,
                "started_at": isoformat(started_at),
                "expires_at": isoformat(expires_at),
                "total_questions": len(questions),
                "question_order": [q.id for q in questions],
                "metadata": {},
            }, user_token=user_token)
        except ConflictError as e:
            logger.warning(f"Concurrent start rejected for student {student_id} on template {template.id}")
            raise ActiveSessionExistsError(template.id, cause=e)

        self._session_log(session).info(f"Started attempt {attempt_number} of template {template.id}")

        return {
            "session_token": session.session_token,
            "session_id": session.id,
            "template": template.to_dict(),
            "expires_at": isoformat(session.expires_at),
            "questions": [
                q.to_student_dict(number=index + 1, randomize_options=template.randomize_options, rng=self.rng)
                for index, q in enumerate(questions)
            ],
            "total_questions": len(questions),
            "attempt_number": attempt_number,
        }

    async def _expire_stale(self, student_id: str, template_id: str, user_token: Optional[str] = None) -> None:
        """Expire the student's lapsed in-progress attempts so they do not block a new start."""
        now = self.clock()
        for session in await self.sessions.find_by_student(student_id, [template_id], user_token=user_token):
            if session.status is SessionStatus.IN_PROGRESS and session.is_past_expiry(now):
                expired = await self.sessions.transition(
                    session.id, {"status": SessionStatus.EXPIRED.value}, user_token=user_token
                )
                if expired is not None:
                    self._session_log(session).info("Session expired")

    async def get_session(
        self,
        session_token: str,
        student_id: str,
        user_token: Optional[str] = None
    ) -> AssessmentSession:
        """
        Load a session owned by the student, applying lazy expiry.

        Raises:
            SessionNotFoundError: Unknown token or not owned by the student
            SessionExpiredError: Session expired, now or earlier (403)
        """
        session = await self.sessions.get_by_token(session_token, student_id, user_token=user_token)
        if session is None:
            raise SessionNotFoundError(session_token)

        if session.status is SessionStatus.EXPIRED:
            raise SessionExpiredError(session.id)

        if session.status is SessionStatus.IN_PROGRESS and session.is_past_expiry(self.clock()):
            expired = await self.sessions.transition(
                session.id, {"status": SessionStatus.EXPIRED.value}, user_token=user_token
            )
            if expired is not None:
                self._session_log(session).info("Session expired")
                raise SessionExpiredError(session.id)
            # Lost a race with finish or another reader; report the stored state
            session = await self.sessions.get_by_token(session_token, student_id, user_token=user_token)
            if session is None or session.status is not SessionStatus.COMPLETED:
                raise SessionExpiredError(session.id if session else session_token)

        return session

    async def _question_ids(self, session: AssessmentSession, user_token: Optional[str] = None) -> List[str]:
        if session.question_order:
            return session.question_order
        return await self.templates.get_question_ids(session.template_id, user_token=user_token)

    async def session_view(
        self,
        session_token: str,
        student_id: str,
        user_token: Optional[str] = None
    ) -> Dict[str, Any]:
        """Session state with its responses and the seconds left."""
        session = await self.get_session(session_token, student_id, user_token=user_token)
        responses = await self.sessions.list_responses(session.id, user_token=user_token)
        now = self.clock()

        view = session.to_dict()
        view["question_order"] = await self._question_ids(session, user_token=user_token)
        view["responses"] = [
            {
                "question_id": r.question_id,
                "selected_option_id": r.selected_option_id,
                "text_answer": r.text_answer,
                "is_correct": r.is_correct,
                "points_earned": r.points_earned,
            }
            for r in responses
        ]
        view["time_remaining"] = session.time_remaining(now)
        view["is_expired"] = session.is_past_expiry(now)
        return view

    async def get_question(
        self,
        session_token: str,
        question_id: str,
        student_id: str,
        user_token: Optional[str] = None
    ) -> Dict[str, Any]:
        """Sanitized question with the student's existing response and progress."""
        session = await self.get_session(session_token, student_id, user_token=user_token)
        question_ids = await self._question_ids(session, user_token=user_token)
        if question_id not in question_ids:
            raise QuestionNotFoundError(question_id, "Question does not belong to this assessment")

        question = await self.questions.get_question(question_id, user_token=user_token)
        if question is None:
            raise QuestionNotFoundError(question_id)

        template = await self.templates.get_template(session.template_id, user_token=user_token)
        randomize = bool(template and template.randomize_options)
        existing = await self.sessions.get_response(session.id, question_id, user_token=user_token)
        responses = await self.sessions.list_responses(session.id, user_token=user_token)

        payload = question.to_student_dict(
            number=question_ids.index(question_id) + 1, randomize_options=randomize, rng=self.rng
        )
        payload["existing_response"] = existing.to_dict() if existing else None
        payload["session_info"] = {
            "time_remaining": session.time_remaining(self.clock()),
            "questions_answered": len(responses),
            "total_questions": session.total_questions,
        }
        return payload

    async def submit_response(
        self,
        session_token: str,
        question_id: str,
        student_id: str,
        selected_option_id: Optional[str] = None,
        text_answer: Optional[str] = None,
        time_spent_seconds: int = 0,
        user_token: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Record and score the answer to one question.

        Each question accepts exactly one response per session; a second
        submission is rejected and the first one stands.

        Raises:
            ValidationError: Both or neither answer fields, or negative time
            InvalidSessionStateError: Session not in progress
            QuestionNotFoundError: Question not part of this session
            DuplicateAnswerError: Question already answered
        """
        if (selected_option_id is None) == (text_answer is None):
            raise ValidationError("Provide exactly one of selected_option_id or text_answer")
        if time_spent_seconds is None or time_spent_seconds < 0:
            raise ValidationError("time_spent_seconds must be zero or positive")

        session = await self.get_session(session_token, student_id, user_token=user_token)
        if session.status is not SessionStatus.IN_PROGRESS:
            raise InvalidSessionStateError(
                "Cannot submit response for non-active session", session.id, session.status.value
            )

        question_ids = await self._question_ids(session, user_token=user_token)
        if question_id not in question_ids:
            raise QuestionNotFoundError(question_id, "Question does not belong to this assessment")

        if await self.sessions.get_response(session.id, question_id, user_token=user_token) is not None:
            raise DuplicateAnswerError(question_id, session.id)

        question = await self.questions.get_question(question_id, user_token=user_token)
        if question is None:
            raise QuestionNotFoundError(question_id)

        # Only the field matching the question kind counts; the other scores as no answer
        if question.is_choice:
            option = question.option_by_id(selected_option_id)
            evaluation = evaluate(question, option.id if option is not None else None)
            stored_option_id = option.id if option is not None else None
            stored_text = None
        else:
            evaluation = evaluate(question, text_answer)
            stored_option_id = None
            stored_text = text_answer

        try:
            stored = await self.sessions.insert_response({
                "session_id": session.id,
                "question_id": question_id,
                "selected_option_id": stored_option_id,
                "text_answer": stored_text,
                "is_correct": evaluation.is_correct,
                "points_earned": evaluation.points_earned,
                "time_spent_seconds": time_spent_seconds,
                "answered_at": isoformat(self.clock()),
            }, user_token=user_token)
        except ConflictError as e:
            raise DuplicateAnswerError(question_id, session.id, cause=e)

        answered = len(await self.sessions.list_responses(session.id, user_token=user_token))
        self._session_log(session).info(
            f"Recorded response to question {question_id} (correct={evaluation.is_correct})"
        )

        return {
            "response_id": stored.id,
            "is_correct": evaluation.is_correct,
            "points_earned": evaluation.points_earned,
            "explanation": question.explanation,
            "session_progress": {
                "questions_answered": answered,
                "total_questions": session.total_questions,
                "time_remaining": session.time_remaining(self.clock()),
            },
        }

    async def _annotate(
        self,
        session_token: str,
        student_id: str,
        action: str,
        update: Callable[[Dict[str, Any], str], Dict[str, Any]],
        user_token: Optional[str] = None
    ) -> Dict[str, Any]:
        session = await self.get_session(session_token, student_id, user_token=user_token)
        if session.status is not SessionStatus.IN_PROGRESS:
            raise InvalidSessionStateError("Session is not in progress", session.id, session.status.value)

        timestamp = isoformat(self.clock())
        metadata = update(dict(session.metadata), timestamp)
        updated = await self.sessions.transition(session.id, {"metadata": metadata}, user_token=user_token)
        if updated is None:
            raise InvalidSessionStateError("Session is no longer in progress", session.id)
        self._session_log(session).info(f"Session {action}")
        return {"success": True, "timestamp": timestamp, "metadata": updated.metadata}

    async def pause(self, session_token: str, student_id: str, user_token: Optional[str] = None) -> Dict[str, Any]:
        """Note a pause in the session metadata. The timer keeps running."""
        def mark(metadata: Dict[str, Any], timestamp: str) -> Dict[str, Any]:
            metadata["paused_at"] = timestamp
            metadata["pause_count"] = int(metadata.get("pause_count") or 0) + 1
            return metadata

        return await self._annotate(session_token, student_id, "paused", mark, user_token=user_token)

    async def resume(self, session_token: str, student_id: str, user_token: Optional[str] = None) -> Dict[str, Any]:
        """Note a resume in the session metadata."""
        def mark(metadata: Dict[str, Any], timestamp: str) -> Dict[str, Any]:
            metadata["resumed_at"] = timestamp
            return metadata

        return await self._annotate(session_token, student_id, "resumed", mark, user_token=user_token)

    async def finish(self, session_token: str, student_id: str, user_token: Optional[str] = None) -> Dict[str, Any]:
        """
        Score and complete a session.

        Raises:
            SessionExpiredError: Session expired (403)
            InvalidSessionStateError: Session already completed (400)
        """
        session = await self.get_session(session_token, student_id, user_token=user_token)
        if session.status is not SessionStatus.IN_PROGRESS:
            raise InvalidSessionStateError("Cannot finish non-active session", session.id, session.status.value)

        template = await self.templates.get_template(session.template_id, user_token=user_token)
        if template is None:
            raise TemplateNotFoundError(session.template_id)

        responses = await self.sessions.list_responses(session.id, user_token=user_token)
        total_questions = session.total_questions or len(session.question_order)
        score = score_session(responses, total_questions, template.passing_percentage)

        completed_at = self.clock()
        time_spent = max(0, int((completed_at - session.started_at).total_seconds())) if session.started_at else 0

        finished = await self.sessions.transition(session.id, {
            "status": SessionStatus.COMPLETED.value,
            "completed_at": isoformat(completed_at),
            "correct_answers": score.correct_answers,
            "total_score": score.total_score,
            "percentage_score": score.percentage_score,
            "passed": score.passed,
            "time_spent_seconds": time_spent,
        }, user_token=user_token)
        if finished is None:
            raise InvalidSessionStateError("Session is no longer in progress", session.id)

        self._session_log(session).info(
            f"Session completed with {score.percentage_score}% (passed={score.passed})"
        )

        return {
            "session_id": session.id,
            "total_score": score.total_score,
            "percentage_score": score.percentage_score,
            "total_questions": total_questions,
            "correct_answers": score.correct_answers,
            "passed": score.passed,
            "time_spent_seconds": time_spent,
            "attempt_number": session.attempt_number,
            "can_retake": can_retake(template, session.attempt_number),
        }
