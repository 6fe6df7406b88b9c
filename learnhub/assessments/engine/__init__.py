"""
Assessment engine: answer evaluation, attempt policy, session lifecycle and
results aggregation.
"""

from learnhub.assessments.engine.evaluator import evaluate, match_text
from learnhub.assessments.engine.policy import AttemptDecision, AttemptPolicy, DenialReason
from learnhub.assessments.engine.results import ResultsAggregator, score_session
from learnhub.assessments.engine.sessions import SessionManager

__all__ = [
    'evaluate',
    'match_text',
    'AttemptDecision',
    'AttemptPolicy',
    'DenialReason',
    'ResultsAggregator',
    'score_session',
    'SessionManager',
]
