"""
Common utilities and infrastructure shared across the LearnHub backend.
"""

from learnhub.common.logger import app_logger, get_logger
from learnhub.common.error_handling import (
    LearnHubError,
    ErrorCode,
    ErrorSeverity,
    error_response,
)

__all__ = [
    'app_logger',
    'get_logger',
    'LearnHubError',
    'ErrorCode',
    'ErrorSeverity',
    'error_response',
]
