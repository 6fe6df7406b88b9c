"""
Question domain module for LearnHub.

This module contains the domain model and repositories for resolving
assessment questions from the data store.
"""

from .model import Question, QuestionKind, QuestionOption, TextAnswerSpec, Difficulty
from .repository import QuestionRepository, StoreQuestionRepository

__all__ = [
    'Question',
    'QuestionKind',
    'QuestionOption',
    'TextAnswerSpec',
    'Difficulty',
    'QuestionRepository',
    'StoreQuestionRepository',
]
