"""
Error Handling for LearnHub

This module provides the error framework shared by the API and the
assessment engine:
1. An exception hierarchy whose members carry an error code and HTTP status
2. A retry decorator with exponential backoff for idempotent operations
3. Structured error responses and error logging
"""

import logging
import traceback
import asyncio
import random
import functools
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple, Type, TypeVar, Union, cast
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator

F = TypeVar('F', bound=Callable)

logger = logging.getLogger(__name__)


class ErrorSeverity(Enum):
    """Severity levels for errors"""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class ErrorCode(Enum):
    """Standard error codes for LearnHub"""
    # General errors
    UNKNOWN_ERROR = "unknown_error"
    VALIDATION_ERROR = "validation_error"
    AUTHENTICATION_ERROR = "authentication_error"
    AUTHORIZATION_ERROR = "authorization_error"
    NOT_FOUND_ERROR = "not_found_error"
    CONFLICT_ERROR = "conflict_error"
    CONFIGURATION_ERROR = "configuration_error"

    # Assessment errors
    TEMPLATE_NOT_FOUND = "template_not_found"
    TEMPLATE_UNAVAILABLE = "template_unavailable"
    QUESTION_NOT_FOUND = "question_not_found"
    SESSION_NOT_FOUND = "session_not_found"
    SESSION_EXPIRED = "session_expired"
    INVALID_SESSION_STATE = "invalid_session_state"
    DUPLICATE_ANSWER = "duplicate_answer"
    ACTIVE_SESSION_EXISTS = "active_session_exists"
    ATTEMPT_LIMIT_REACHED = "attempt_limit_reached"
    RESULTS_HIDDEN = "results_hidden"

    # Data store errors
    STORE_ERROR = "store_error"
    STORE_UNAVAILABLE = "store_unavailable"


class ErrorInfo(BaseModel):
    """Structured information about an error"""
    model_config = ConfigDict(use_enum_values=True)

    code: ErrorCode
    message: str
    timestamp: datetime = Field(default_factory=datetime.now)
    severity: ErrorSeverity = ErrorSeverity.ERROR
    details: Optional[Dict[str, Any]] = None
    exception_type: Optional[str] = None
    stack_trace: Optional[List[str]] = None
    context: Optional[Dict[str, Any]] = None

    @field_validator('stack_trace', mode='before')
    @classmethod
    def validate_stack_trace(cls, v):
        """Format stack trace if it's a string"""
        if isinstance(v, str):
            return v.splitlines()
        return v


class LearnHubError(Exception):
    """Base exception class for all LearnHub errors"""

    http_status: int = 500

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.UNKNOWN_ERROR,
        severity: ErrorSeverity = ErrorSeverity.ERROR,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
        context: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.severity = severity
        self.details = details or {}
        self.cause = cause
        self.context = context or {}
        self.timestamp = datetime.now()

    def to_error_info(self, include_stack_trace: bool = False) -> ErrorInfo:
        """Convert the exception to an ErrorInfo object"""
        details = dict(self.details)
        if self.cause is not None:
            details["cause"] = {
                "type": type(self.cause).__name__,
                "message": str(self.cause)
            }

        return ErrorInfo(
            code=self.code,
            message=self.message,
            timestamp=self.timestamp,
            severity=self.severity,
            details=details,
            exception_type=type(self).__name__,
            stack_trace=traceback.format_exc() if include_stack_trace else None,
            context=self.context
        )

    def __str__(self) -> str:
        base_str = f"{self.code.value}: {self.message}"
        if self.details:
            base_str += f" (details: {self.details})"
        if self.cause:
            base_str += f" caused by {type(self.cause).__name__}: {self.cause}"
        return base_str


# Request-level errors

class ValidationError(LearnHubError):
    """Error raised when a request is malformed"""

    http_status = 400

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
        context: Optional[Dict[str, Any]] = None
    ):
        super().__init__(
            message=message,
            code=ErrorCode.VALIDATION_ERROR,
            severity=ErrorSeverity.WARNING,
            details=details,
            cause=cause,
            context=context
        )


class ConflictError(LearnHubError):
    """Error raised when a write collides with existing state"""

    http_status = 400

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.CONFLICT_ERROR,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
        context: Optional[Dict[str, Any]] = None
    ):
        super().__init__(
            message=message,
            code=code,
            severity=ErrorSeverity.WARNING,
            details=details,
            cause=cause,
            context=context
        )


class AuthenticationError(LearnHubError):
    """Error raised when the caller identity cannot be established"""

    http_status = 401

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
        context: Optional[Dict[str, Any]] = None
    ):
        super().__init__(
            message=message,
            code=ErrorCode.AUTHENTICATION_ERROR,
            severity=ErrorSeverity.WARNING,
            details=details,
            cause=cause,
            context=context
        )


class AuthorizationError(LearnHubError):
    """Error raised when the caller may not access a resource"""

    http_status = 403

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.AUTHORIZATION_ERROR,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
        context: Optional[Dict[str, Any]] = None
    ):
        super().__init__(
            message=message,
            code=code,
            severity=ErrorSeverity.WARNING,
            details=details,
            cause=cause,
            context=context
        )


class NotFoundError(LearnHubError):
    """Error raised when a requested resource is not found"""

    http_status = 404

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.NOT_FOUND_ERROR,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
        context: Optional[Dict[str, Any]] = None
    ):
        super().__init__(
            message=message,
            code=code,
            severity=ErrorSeverity.WARNING,
            details=details,
            cause=cause,
            context=context
        )


class ConfigurationError(LearnHubError):
    """Error raised when the service is misconfigured"""

    def __init__(self, message: str, config_key: Optional[str] = None):
        super().__init__(
            message=message,
            code=ErrorCode.CONFIGURATION_ERROR,
            severity=ErrorSeverity.CRITICAL,
            details={"config_key": config_key} if config_key else None
        )


# Assessment errors

class TemplateNotFoundError(NotFoundError):
    """Error raised when an assessment template does not exist"""

    def __init__(self, template_id: str, cause: Optional[Exception] = None):
        super().__init__(
            message=f"Assessment template with id {template_id} not found",
            code=ErrorCode.TEMPLATE_NOT_FOUND,
            details={"template_id": template_id},
            cause=cause
        )


class QuestionNotFoundError(NotFoundError):
    """Error raised when a question is not found"""

    def __init__(self, question_id: str, message: Optional[str] = None):
        super().__init__(
            message=message or f"Question with id {question_id} not found",
            code=ErrorCode.QUESTION_NOT_FOUND,
            details={"question_id": question_id}
        )


class SessionNotFoundError(NotFoundError):
    """Error raised when a session is not found for the caller"""

    def __init__(self, session_ref: str):
        super().__init__(
            message="Assessment session not found",
            code=ErrorCode.SESSION_NOT_FOUND,
            details={"session": session_ref}
        )


class TemplateUnavailableError(AuthorizationError):
    """Error raised when a template is inactive or not public"""

    def __init__(self, template_id: str):
        super().__init__(
            message="This assessment is not available",
            code=ErrorCode.TEMPLATE_UNAVAILABLE,
            details={"template_id": template_id}
        )


class ResultsHiddenError(AuthorizationError):
    """Error raised when a template withholds immediate results"""

    def __init__(self, session_id: str):
        super().__init__(
            message="Results are not available immediately for this assessment",
            code=ErrorCode.RESULTS_HIDDEN,
            details={"session_id": session_id}
        )


class SessionExpiredError(LearnHubError):
    """Error raised when a session has expired"""

    http_status = 403

    def __init__(self, session_id: str):
        super().__init__(
            message="Assessment session has expired",
            code=ErrorCode.SESSION_EXPIRED,
            severity=ErrorSeverity.WARNING,
            details={"session_id": session_id}
        )


class InvalidSessionStateError(LearnHubError):
    """Error raised when an operation needs an in-progress session"""

    http_status = 400

    def __init__(self, message: str, session_id: str, status: Optional[str] = None):
        super().__init__(
            message=message,
            code=ErrorCode.INVALID_SESSION_STATE,
            severity=ErrorSeverity.WARNING,
            details={"session_id": session_id, "status": status}
        )


class DuplicateAnswerError(ConflictError):
    """Error raised when an answer is submitted more than once"""

    def __init__(self, question_id: str, session_id: str, cause: Optional[Exception] = None):
        super().__init__(
            message="Response already submitted for this question",
            code=ErrorCode.DUPLICATE_ANSWER,
            details={"question_id": question_id, "session_id": session_id},
            cause=cause
        )


class ActiveSessionExistsError(ConflictError):
    """Error raised when a student already has an attempt in progress"""

    def __init__(self, template_id: str, cause: Optional[Exception] = None):
        super().__init__(
            message="You already have an active session for this assessment",
            code=ErrorCode.ACTIVE_SESSION_EXISTS,
            details={"template_id": template_id},
            cause=cause
        )


class AttemptLimitError(ConflictError):
    """Error raised when the attempt cap of a template is reached"""

    def __init__(self, template_id: str, max_attempts: int):
        super().__init__(
            message=f"You have reached the maximum number of attempts ({max_attempts}) for this assessment",
            code=ErrorCode.ATTEMPT_LIMIT_REACHED,
            details={"template_id": template_id, "max_attempts": max_attempts}
        )


# Data store errors

class StoreError(LearnHubError):
    """Error raised when the data API answers with a non-success status"""

    def __init__(
        self,
        message: str,
        status: Optional[int] = None,
        table: Optional[str] = None,
        cause: Optional[Exception] = None,
        code: ErrorCode = ErrorCode.STORE_ERROR
    ):
        details = {}
        if status is not None:
            details["status"] = status
        if table is not None:
            details["table"] = table
        super().__init__(
            message=message,
            code=code,
            severity=ErrorSeverity.ERROR,
            details=details,
            cause=cause
        )
        self.status = status


class StoreUnavailableError(StoreError):
    """Transient store failure (network error, timeout, 5xx); safe to retry for reads"""

    def __init__(self, message: str, status: Optional[int] = None, table: Optional[str] = None,
                 cause: Optional[Exception] = None):
        super().__init__(message, status=status, table=table, cause=cause,
                         code=ErrorCode.STORE_UNAVAILABLE)


def convert_exception(
    exception: Exception,
    default_message: str = "An unexpected error occurred",
    context: Optional[Dict[str, Any]] = None
) -> LearnHubError:
    """
    Convert a standard exception to a LearnHubError.

    Args:
        exception: The exception to convert
        default_message: Message used when the exception has none
        context: Optional additional context

    Returns:
        Converted LearnHubError
    """
    if isinstance(exception, LearnHubError):
        if context:
            exception.context.update(context)
        return exception

    return LearnHubError(
        message=str(exception) or default_message,
        cause=exception,
        context=context
    )


def retry(
    max_retries: int = 3,
    retry_delay: float = 0.2,
    backoff_factor: float = 2.0,
    jitter: float = 0.1,
    retry_exceptions: Tuple[Type[Exception], ...] = (Exception,),
    ignore_exceptions: Tuple[Type[Exception], ...] = (),
    on_retry: Optional[Callable[[int, Exception, float], None]] = None
):
    """
    Decorator for retrying coroutines when exceptions occur.

    Only wrap idempotent operations: a retried write may be applied twice.

    Args:
        max_retries: Maximum number of retries
        retry_delay: Initial delay between retries in seconds
        backoff_factor: Factor to increase delay with each retry
        jitter: Random jitter factor to add to delay
        retry_exceptions: Tuple of exception types to retry on
        ignore_exceptions: Tuple of exception types to not retry on
        on_retry: Optional callback called before each retry

    Returns:
        Decorated coroutine function
    """
    def decorator(func: F) -> F:
        @functools.wraps(func)
        async def async_wrapper(*args, **kwargs):
            retries = 0
            delay = retry_delay

            while True:
                try:
                    return await func(*args, **kwargs)
                except ignore_exceptions:
                    raise
                except retry_exceptions as e:
                    retries += 1
                    if retries > max_retries:
                        raise

                    actual_delay = delay * (1 + random.uniform(-jitter, jitter))

                    if on_retry:
                        on_retry(retries, e, actual_delay)

                    logger.warning(
                        f"Retry {retries}/{max_retries} for {func.__name__} "
                        f"after {actual_delay:.2f}s due to {type(e).__name__}: {e}"
                    )
                    await asyncio.sleep(actual_delay)
                    delay *= backoff_factor

        return cast(F, async_wrapper)

    return decorator


def error_response(
    error: Union[LearnHubError, Exception],
    include_details: bool = True
) -> Dict[str, Any]:
    """
    Generate a standardized API error response body.

    Args:
        error: The error to generate a response for
        include_details: Whether to include error details

    Returns:
        Error response dictionary
    """
    if not isinstance(error, LearnHubError):
        error = convert_exception(error)

    response = {
        "status": "error",
        "code": error.code.value,
        "message": error.message
    }

    if include_details and error.details:
        response["details"] = error.details

    return response


def log_error(
    error: Union[LearnHubError, Exception],
    level: Optional[int] = None,
    include_stack_trace: bool = False,
    context: Optional[Dict[str, Any]] = None
) -> None:
    """
    Log an error with standardized format.

    Client errors default to WARNING and server errors to ERROR.
    """
    if not isinstance(error, LearnHubError):
        error = convert_exception(error, context=context)
    elif context:
        error.context.update(context)

    if level is None:
        level = logging.ERROR if error.http_status >= 500 else logging.WARNING

    message = f"[{error.code.value}] {error.message}"
    if error.context:
        message += " (context: " + ", ".join(f"{k}={v}" for k, v in error.context.items()) + ")"
    if error.cause:
        message += f" caused by {type(error.cause).__name__}: {error.cause}"
    if include_stack_trace:
        message += f"\n{traceback.format_exc()}"

    info = error.to_error_info().model_dump(mode="json", exclude_none=True, exclude={"message", "timestamp"})
    logger.log(level, message, extra={"data": {"error": info}})
