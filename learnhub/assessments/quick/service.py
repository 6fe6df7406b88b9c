"""
Quick assessment service.

A lighter flow than template sessions: ``start`` records an assessment row
and hands out the default question page, ``finish`` scores every submitted
answer at once against a fixed passing score. Choice answers arrive as the
position of the chosen option in the runner's list, not as option ids.
"""

import datetime
from typing import Any, Callable, Dict, List, Optional, Sequence

from learnhub.assessments.engine.evaluator import evaluate_choice_index, evaluate_text, resolve_option_index
from learnhub.assessments.engine.results import percentage
from learnhub.assessments.quick.repository import QuickAssessmentRepository
from learnhub.common.error_handling import InvalidSessionStateError, NotFoundError, StoreError, ValidationError
from learnhub.common.logger import app_logger
from learnhub.common.utils import utc_now
from learnhub.domain.questions.model import Question
from learnhub.domain.questions.repository import QuestionRepository

logger = app_logger.getChild("assessments.quick")

DEFAULT_PASSING_SCORE = 72


def runner_question(question: Question) -> Dict[str, Any]:
    """Shape a question for the quick runner; choice questions carry option texts only."""
    return {
        "id": question.id,
        "type": "mcq" if question.is_choice else "text",
        "prompt": question.prompt,
        "options": [option.text for option in question.options] if question.is_choice else [],
        "image_url": question.image_url,
        "raw_type": question.raw_type,
        "time_limit": question.time_limit_seconds,
    }


def stored_answer(question: Question, answer: Any) -> Optional[str]:
    """Human-readable answer kept with the response: the option text or the trimmed text."""
    if question.is_choice:
        index = resolve_option_index(question.options, answer)
        return question.options[index].text if index is not None else None
    if answer is None:
        return None
    return str(answer).strip() or None


class QuickAssessmentService:
    """
    Standalone fixed-cutoff assessment.

    Args:
        questions: Question repository
        repository: Quick assessment storage
        passing_score: Minimum percentage for a pass
        clock: Returns the current timezone-aware time
    """

    def __init__(
        self,
        questions: QuestionRepository,
        repository: QuickAssessmentRepository,
        passing_score: int = DEFAULT_PASSING_SCORE,
        clock: Callable[[], datetime.datetime] = utc_now
    ):
        self.questions = questions
        self.repository = repository
        self.passing_score = passing_score
        self.clock = clock

    async def start(self, user_id: str, user_token: Optional[str] = None) -> Dict[str, Any]:
        assessment = await self.repository.create(user_id, self.clock().isoformat(), user_token=user_token)
        questions = await self.questions.fetch_questions(user_token=user_token)
        logger.info(f"Quick assessment {assessment['id']} started for {user_id} with {len(questions)} questions")
        return {
            "assessment_id": assessment["id"],
            "questions": [runner_question(q) for q in questions],
        }

    async def finish(
        self,
        user_id: str,
        assessment_id: str,
        responses: Sequence[Dict[str, Any]],
        user_token: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Score and close a quick assessment.

        Args:
            user_id: Owner of the assessment
            assessment_id: Assessment returned by ``start``
            responses: Items with ``q_index``, ``question_id`` and ``answer``
            user_token: Pass-through store credential

        Returns:
            Score, pass flag, totals and the stamped assessment row

        Raises:
            ValidationError: No responses supplied
            NotFoundError: Unknown assessment or not owned by the user
            InvalidSessionStateError: Assessment already finished
        """
        if not responses:
            raise ValidationError("At least one response is required")

        existing = await self.repository.get(assessment_id, user_id, user_token=user_token)
        if existing is None:
            raise NotFoundError("Assessment not found", details={"assessment_id": assessment_id})
        if existing.get("completed_at"):
            raise InvalidSessionStateError("Assessment already finished", assessment_id)

        question_ids = [str(r["question_id"]) for r in responses if r.get("question_id") is not None]
        resolved = await self.questions.fetch_questions(question_ids, user_token=user_token)
        by_id = {str(q.id): q for q in resolved}

        rows: List[Dict[str, Any]] = []
        correct = 0
        for item in responses:
            question = by_id.get(str(item.get("question_id")))
            answer = item.get("answer")
            if question is None:
                is_correct, answer_text = False, None
            elif question.is_choice:
                is_correct = evaluate_choice_index(question, answer).is_correct
                answer_text = stored_answer(question, answer)
            else:
                is_correct = evaluate_text(question, answer if isinstance(answer, str) else None).is_correct
                answer_text = stored_answer(question, answer)
            correct += 1 if is_correct else 0
            rows.append({
                "assessment_id": assessment_id,
                "q_index": item.get("q_index"),
                "question_id": item.get("question_id"),
                "answer_text": answer_text,
                "correct": is_correct,
            })

        total = len(responses)
        score = percentage(correct, total)
        passed = score >= self.passing_score
        completed_at = self.clock().isoformat()

        assessment = await self.repository.complete(
            assessment_id,
            user_id,
            {"completed_at": completed_at, "score": score, "passed": passed},
            user_token=user_token
        )
        if assessment is None:
            raise InvalidSessionStateError("Assessment already finished", assessment_id)
        await self.repository.insert_responses(rows, user_token=user_token)

        try:
            await self.repository.stamp_profile(user_id, completed_at, user_token=user_token)
        except StoreError as e:
            logger.warning(f"Could not stamp assessment completion on profile {user_id}: {e}")

        logger.info(f"Quick assessment {assessment_id} finished by {user_id}: {score}% ({correct}/{total})")
        return {
            "score": score,
            "passed": passed,
            "total": total,
            "correct": correct,
            "assessment": assessment,
        }

    async def latest(self, user_id: str, user_token: Optional[str] = None) -> Dict[str, Any]:
        return {"latest": await self.repository.latest(user_id, user_token=user_token)}
