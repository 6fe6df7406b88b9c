"""
Answer evaluation.

Pure functions that decide whether a submitted answer is correct and how many
points it earns. Nothing here touches the store.

Text answers are matched in order:
1. exact_match: equality with the canonical answer (case per flag), nothing else
2. the normalized answer contains the canonical answer or any alternate
3. at least half (rounded up) of the keywords appear in the answer
"""

import math
from typing import Any, Optional, Sequence

from learnhub.assessments.base.models import Evaluation
from learnhub.domain.questions.model import Question, QuestionKind, TextAnswerSpec

INCORRECT = Evaluation(is_correct=False, points_earned=0)


def majority_threshold(keyword_count: int) -> int:
    """Keywords required to pass the keyword rule: half, rounded up."""
    return math.ceil(keyword_count / 2)


def _graded(question: Question, is_correct: bool) -> Evaluation:
    if not is_correct:
        return INCORRECT
    return Evaluation(is_correct=True, points_earned=question.points)


def match_text(answer: Optional[str], spec: Optional[TextAnswerSpec]) -> bool:
    """
    Apply the text matching policy.

    Empty answers and specs without a canonical answer never match.
    """
    if spec is None:
        return False
    submitted = (answer or "").strip()
    if not submitted:
        return False
    canonical = (spec.correct_answer or "").strip()
    if not canonical:
        return False

    if spec.exact_match:
        if spec.case_sensitive:
            return submitted == canonical
        return submitted.lower() == canonical.lower()

    def normalize(value: str) -> str:
        return value if spec.case_sensitive else value.lower()

    haystack = normalize(submitted)
    if normalize(canonical) in haystack:
        return True

    # Blank alternates or keywords would match every answer
    alternates = [normalize(a.strip()) for a in spec.alternate_answers if a and a.strip()]
    if any(alternate in haystack for alternate in alternates):
        return True

    keywords = [normalize(k.strip()) for k in spec.keywords if k and k.strip()]
    if not keywords:
        return False
    hits = sum(1 for keyword in keywords if keyword in haystack)
    return hits >= majority_threshold(len(keywords))


def evaluate_choice(question: Question, option_id: Any) -> Evaluation:
    """Correct iff the referenced option of this question is flagged correct."""
    option = question.option_by_id(option_id)
    return _graded(question, bool(option is not None and option.is_correct))


def evaluate_text(question: Question, answer: Optional[str]) -> Evaluation:
    return _graded(question, match_text(answer, question.text_answer))


def evaluate(question: Question, answer: Any) -> Evaluation:
    """
    Evaluate an answer against a question.

    Args:
        question: Resolved question with options or text-answer spec
        answer: Option id for choice questions, free text for text questions

    Returns:
        Evaluation with correctness and points earned
    """
    if question.kind is QuestionKind.CHOICE:
        return evaluate_choice(question, answer)
    if question.kind is QuestionKind.TEXT:
        return evaluate_text(question, answer if isinstance(answer, str) else None)
    return INCORRECT


def resolve_option_index(options: Sequence[Any], answer: Any) -> Optional[int]:
    """
    Interpret an answer as a position in ``options``.

    Non-numeric, fractional and out-of-range answers resolve to None.
    """
    if answer is None or isinstance(answer, bool):
        return None
    try:
        number = float(str(answer).strip())
    except ValueError:
        return None
    if not math.isfinite(number) or not number.is_integer():
        return None
    index = int(number)
    if index < 0 or index >= len(options):
        return None
    return index


def evaluate_choice_index(question: Question, answer: Any) -> Evaluation:
    """Choice evaluation where the answer is an option index (standalone flow)."""
    index = resolve_option_index(question.options, answer)
    if index is None:
        return INCORRECT
    return _graded(question, question.options[index].is_correct)
