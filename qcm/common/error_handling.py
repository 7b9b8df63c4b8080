"""
Error Handling for the QCM attempt engine

This module provides:
1. A structured exception hierarchy for attempt, quiz and repository errors
2. Conversion of errors to pydantic ErrorInfo records
3. Caller-facing error responses and structured error logging
"""

import json
import logging
import traceback
from enum import Enum
from typing import Any, Dict, List, Optional, Union
from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field, field_validator

# Configure logging
logger = logging.getLogger(__name__)


class ErrorSeverity(Enum):
    """Severity levels for errors"""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class ErrorCode(Enum):
    """Standard error codes for the attempt engine"""
    # General errors
    UNKNOWN_ERROR = "unknown_error"
    VALIDATION_ERROR = "validation_error"
    NOT_FOUND_ERROR = "not_found_error"

    # Quiz errors
    QUIZ_NOT_FOUND = "quiz_not_found"

    # Attempt errors
    ATTEMPT_LIMIT_EXCEEDED = "attempt_limit_exceeded"
    NO_ACTIVE_ATTEMPT = "no_active_attempt"
    INVALID_ATTEMPT_STATE = "invalid_attempt_state"
    ATTEMPT_EXPIRED = "attempt_expired"
    INVALID_ANSWER = "invalid_answer"

    # Repository errors
    REPOSITORY_ERROR = "repository_error"
    REPOSITORY_CONFLICT = "repository_conflict"
    STALE_ATTEMPT = "stale_attempt"


class ErrorInfo(BaseModel):
    """Structured information about an error"""
    model_config = ConfigDict(use_enum_values=True)

    code: ErrorCode
    message: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    severity: ErrorSeverity = ErrorSeverity.ERROR
    details: Optional[Dict[str, Any]] = None
    exception_type: Optional[str] = None
    exception_message: Optional[str] = None
    stack_trace: Optional[List[str]] = None
    context: Optional[Dict[str, Any]] = None

    @field_validator('stack_trace', mode='before')
    @classmethod
    def validate_stack_trace(cls, v):
        """Format stack trace if it's a string"""
        if isinstance(v, str):
            return v.splitlines()
        return v


class QCMError(Exception):
    """Base exception class for all attempt engine errors"""

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
        self.timestamp = datetime.now(timezone.utc)

    def to_error_info(self, include_stack_trace: bool = False) -> ErrorInfo:
        """Convert the exception to an ErrorInfo object"""
        stack_trace = None
        if include_stack_trace:
            stack_trace = traceback.format_exc().splitlines()

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
            exception_message=str(self),
            stack_trace=stack_trace,
            context=self.context
        )

    def to_dict(self, include_stack_trace: bool = False) -> Dict[str, Any]:
        """Convert the exception to a dictionary"""
        return self.to_error_info(include_stack_trace).model_dump(mode="json")

    def to_json(self, include_stack_trace: bool = False) -> str:
        """Convert the exception to a JSON string"""
        return json.dumps(self.to_dict(include_stack_trace))

    def __str__(self) -> str:
        base_str = f"{self.code.value}: {self.message}"
        if self.details:
            base_str += f" (details: {self.details})"
        if self.cause:
            base_str += f" caused by {type(self.cause).__name__}: {str(self.cause)}"
        return base_str


class ValidationError(QCMError):
    """Error raised when a quiz or question definition is invalid"""

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


class QuizNotFoundError(QCMError):
    """Error raised when a quiz ID is unknown to the quiz repository"""

    def __init__(
        self,
        quiz_id: str,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
        context: Optional[Dict[str, Any]] = None
    ):
        details = details or {}
        details["quiz_id"] = quiz_id

        super().__init__(
            message=f"Quiz with ID {quiz_id} not found",
            code=ErrorCode.QUIZ_NOT_FOUND,
            severity=ErrorSeverity.WARNING,
            details=details,
            cause=cause,
            context=context
        )


#------------------------------------------------------------------------------
# Attempt errors
#------------------------------------------------------------------------------

class AttemptError(QCMError):
    """Base class for caller-recoverable attempt errors"""

    def __init__(
        self,
        message: str,
        code: ErrorCode,
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


class AttemptLimitExceededError(AttemptError):
    """Error raised when a student has used every allowed attempt"""

    def __init__(
        self,
        student_id: str,
        quiz_id: str,
        max_attempts: int,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
        context: Optional[Dict[str, Any]] = None
    ):
        details = details or {}
        details.update({
            "student_id": student_id,
            "quiz_id": quiz_id,
            "max_attempts": max_attempts
        })

        super().__init__(
            message=f"Student {student_id} has used all {max_attempts} attempts for quiz {quiz_id}",
            code=ErrorCode.ATTEMPT_LIMIT_EXCEEDED,
            details=details,
            cause=cause,
            context=context
        )


class NoActiveAttemptError(AttemptError):
    """Error raised when an attempt does not exist"""

    def __init__(
        self,
        attempt_id: str,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
        context: Optional[Dict[str, Any]] = None
    ):
        details = details or {}
        details["attempt_id"] = attempt_id

        super().__init__(
            message=f"No attempt with ID {attempt_id}",
            code=ErrorCode.NO_ACTIVE_ATTEMPT,
            details=details,
            cause=cause,
            context=context
        )


class InvalidAttemptStateError(AttemptError):
    """Error raised when an operation is not allowed in the attempt's status"""

    def __init__(
        self,
        attempt_id: str,
        status: str,
        operation: str,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
        context: Optional[Dict[str, Any]] = None
    ):
        details = details or {}
        details.update({
            "attempt_id": attempt_id,
            "status": status,
            "operation": operation
        })

        super().__init__(
            message=f"Cannot {operation} attempt {attempt_id} in status {status}",
            code=ErrorCode.INVALID_ATTEMPT_STATE,
            details=details,
            cause=cause,
            context=context
        )


class ExpiredAttemptError(AttemptError):
    """Error raised when an attempt's time limit has elapsed"""

    def __init__(
        self,
        attempt_id: str,
        expires_at: Optional[datetime] = None,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
        context: Optional[Dict[str, Any]] = None
    ):
        details = details or {}
        details["attempt_id"] = attempt_id
        if expires_at is not None:
            details["expires_at"] = expires_at.isoformat()

        super().__init__(
            message=f"Attempt {attempt_id} has expired",
            code=ErrorCode.ATTEMPT_EXPIRED,
            details=details,
            cause=cause,
            context=context
        )


class InvalidAnswerError(AttemptError):
    """Error raised when an answer references a question or option that does not exist"""

    def __init__(
        self,
        message: str,
        attempt_id: str,
        question_index: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
        context: Optional[Dict[str, Any]] = None
    ):
        details = details or {}
        details["attempt_id"] = attempt_id
        if question_index is not None:
            details["question_index"] = question_index

        super().__init__(
            message=message,
            code=ErrorCode.INVALID_ANSWER,
            details=details,
            cause=cause,
            context=context
        )


#------------------------------------------------------------------------------
# Repository errors
#------------------------------------------------------------------------------

class RepositoryError(QCMError):
    """Error raised when a persistence provider fails"""

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.REPOSITORY_ERROR,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
        context: Optional[Dict[str, Any]] = None
    ):
        super().__init__(
            message=message,
            code=code,
            severity=ErrorSeverity.ERROR,
            details=details,
            cause=cause,
            context=context
        )


class ConflictError(RepositoryError):
    """Error raised when an in-progress attempt already exists for a student and quiz"""

    def __init__(
        self,
        student_id: str,
        quiz_id: str,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
        context: Optional[Dict[str, Any]] = None
    ):
        details = details or {}
        details.update({"student_id": student_id, "quiz_id": quiz_id})

        super().__init__(
            message=f"Conflicting attempt for student {student_id} on quiz {quiz_id}",
            code=ErrorCode.REPOSITORY_CONFLICT,
            details=details,
            cause=cause,
            context=context
        )


class StaleAttemptError(RepositoryError):
    """Error raised when an attempt was modified since it was read"""

    def __init__(
        self,
        attempt_id: str,
        expected_version: int,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
        context: Optional[Dict[str, Any]] = None
    ):
        details = details or {}
        details.update({"attempt_id": attempt_id, "expected_version": expected_version})

        super().__init__(
            message=f"Attempt {attempt_id} was modified concurrently",
            code=ErrorCode.STALE_ATTEMPT,
            details=details,
            cause=cause,
            context=context
        )


def convert_exception(
    exception: Exception,
    default_message: str = "An unexpected error occurred",
    default_code: ErrorCode = ErrorCode.UNKNOWN_ERROR,
    default_severity: ErrorSeverity = ErrorSeverity.ERROR,
    context: Optional[Dict[str, Any]] = None
) -> QCMError:
    """
    Convert a standard exception to a QCMError.

    Args:
        exception: The exception to convert
        default_message: Default message if the exception has no message
        default_code: Default error code
        default_severity: Default error severity
        context: Optional additional context

    Returns:
        Converted QCMError
    """
    if isinstance(exception, QCMError):
        if context:
            exception.context.update(context)
        return exception

    return QCMError(
        message=str(exception) or default_message,
        code=default_code,
        severity=default_severity,
        cause=exception,
        context=context
    )


def error_response(
    error: Union[QCMError, Exception],
    include_details: bool = True,
    include_stack_trace: bool = False
) -> Dict[str, Any]:
    """
    Generate a standardized caller-facing error response.

    Args:
        error: The error to generate a response for
        include_details: Whether to include error details
        include_stack_trace: Whether to include stack trace

    Returns:
        Standardized error response dictionary
    """
    if not isinstance(error, QCMError):
        error = convert_exception(error)

    error_info = error.to_error_info(include_stack_trace=include_stack_trace)

    response = {
        "status": "error",
        "code": error_info.code,
        "message": error_info.message
    }

    if include_details and error_info.details:
        response["details"] = error_info.details

    return response


_SEVERITY_LEVELS = {
    ErrorSeverity.DEBUG: logging.DEBUG,
    ErrorSeverity.INFO: logging.INFO,
    ErrorSeverity.WARNING: logging.WARNING,
    ErrorSeverity.ERROR: logging.ERROR,
    ErrorSeverity.CRITICAL: logging.CRITICAL,
}


def log_error(
    error: Union[QCMError, Exception],
    level: Optional[int] = None,
    include_stack_trace: bool = False,
    context: Optional[Dict[str, Any]] = None,
    log: Optional[logging.Logger] = None
) -> None:
    """
    Log an error with standardized format.

    Args:
        error: The error to log
        level: Logging level, derived from the error severity when omitted
        include_stack_trace: Whether to include stack trace
        context: Additional context to include
        log: Logger to write to, defaults to this module's logger
    """
    if not isinstance(error, QCMError):
        error = convert_exception(error, context=context)
    elif context:
        error.context.update(context)

    if level is None:
        level = _SEVERITY_LEVELS[error.severity]

    message = f"ERROR [{error.code.value}]: {error.message}"

    if error.context:
        context_str = ", ".join(f"{k}={v}" for k, v in error.context.items())
        message += f" (context: {context_str})"

    if error.cause:
        message += f" caused by {type(error.cause).__name__}: {str(error.cause)}"

    if include_stack_trace:
        message += f"\n{traceback.format_exc()}"

    (log or logger).log(
        level,
        message,
        extra={"data": {"error_code": error.code.value, **error.details}}
    )
