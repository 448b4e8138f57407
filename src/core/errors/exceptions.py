"""
Unified exception hierarchy for the sensemaker pipeline.

Provides typed exceptions with retry classification so request handlers,
the task processor and the queue consumer agree on what is retryable.
"""

import json

from pydantic import ValidationError

# Import ErrorCategory from canonical source to avoid duplicate enum issues
# (comparing enums from different classes always returns False)
from core.types import ErrorCategory


class PipelineError(Exception):
    """
    Base exception for all pipeline errors.

    Attributes:
        message: Human-readable error description
        category: Error classification for retry decisions
        cause: Original exception if wrapping
        context: Additional context dict for debugging
    """

    category: ErrorCategory = ErrorCategory.UNKNOWN

    def __init__(
        self,
        message: str,
        cause: Exception | None = None,
        context: dict | None = None,
    ):
        self.message = message
        self.cause = cause
        self.context = context or {}
        super().__init__(message)

    @property
    def is_retryable(self) -> bool:
        return self.category in (
            ErrorCategory.TRANSIENT,
            ErrorCategory.AUTH,
            ErrorCategory.UNKNOWN,
        )

    def __str__(self) -> str:
        parts = [self.message]
        if self.cause:
            parts.append(f"Caused by: {self.cause}")
        return " | ".join(parts)


# =============================================================================
# Base categories
# =============================================================================


class AuthError(PipelineError):
    """Base class for authentication errors."""

    category = ErrorCategory.AUTH


class TransientError(PipelineError):
    """Base class for transient/retriable errors."""

    category = ErrorCategory.TRANSIENT


class PermanentError(PipelineError):
    """Base class for permanent/non-retriable errors."""

    category = ErrorCategory.PERMANENT


# =============================================================================
# Request-time errors (surfaced synchronously as 4xx)
# =============================================================================


class InvalidRequestError(PermanentError):
    """Missing credential or file, or otherwise malformed submission."""

    code = "Invalid Request"

    def __init__(
        self,
        message: str,
        code: str | None = None,
        cause: Exception | None = None,
        context: dict | None = None,
    ):
        super().__init__(message, cause, context)
        if code:
            self.code = code


class UnsupportedFormatError(PermanentError):
    """Upload is neither JSON nor CSV, or its top-level shape is not understood."""

    code = "Unsupported File Type"


class MissingRequiredColumnsError(PermanentError):
    """CSV lacks columns needed to build canonical comments."""

    code = "Missing Required Columns"

    def __init__(
        self,
        message: str,
        missing_columns: list[str],
        cause: Exception | None = None,
    ):
        super().__init__(message, cause, {"missing_columns": missing_columns})
        self.missing_columns = missing_columns


class EmptyDatasetError(PermanentError):
    """Upload produced zero comments."""

    code = "No Valid Comments"


class TaskNotFoundError(PermanentError):
    """No result record exists for a task id (unknown or not yet processed)."""

    code = "Not Found"

    def __init__(self, task_id: str):
        super().__init__(f"No result found for task {task_id}", context={"task_id": task_id})
        self.task_id = task_id


# =============================================================================
# Task-time errors (persisted, visible only through polling)
# =============================================================================


class InvalidTaskError(PermanentError):
    """Task message is well-formed but cannot be analysed (e.g. no comments)."""


class AnalysisEngineError(TransientError):
    """Generic failure raised while running the analysis engine stages."""


class AnalysisEngineEmptyResponseError(AnalysisEngineError):
    """The text-generation provider returned an empty response."""

    suggestion = "retry_later"
    user_message = (
        "The AI model returned an empty response. This can happen when:\n"
        "1. The model is temporarily unavailable\n"
        "2. The request is too complex\n"
        "3. The API quota has been used up\n\n"
        "Suggestions:\n"
        "- Retry later\n"
        "- Check that the API key is valid\n"
        "- Try a different model"
    )


class StorageError(TransientError):
    """Error reading or writing the durable result store."""


class TransportError(TransientError):
    """Error producing to or consuming from the task queue."""


# =============================================================================
# Error Classification Utilities
# =============================================================================

EMPTY_RESPONSE_MARKER = "empty response"

AUTH_ERROR_MARKERS = frozenset(
    {
        "401",
        "unauthorized",
        "authentication",
        "invalid api key",
        "token expired",
    }
)

TRANSIENT_ERROR_MARKERS = frozenset(
    {
        "429",
        "503",
        "502",
        "504",
        "timeout",
        "connection",
        "throttl",
        "rate limit",
        "temporarily unavailable",
        "service unavailable",
    }
)


def is_empty_response_error(exc: Exception) -> bool:
    """Check whether an engine failure is the provider's empty-response case."""
    if isinstance(exc, AnalysisEngineEmptyResponseError):
        return True
    return EMPTY_RESPONSE_MARKER in str(exc).lower()


def classify_exception(exc: Exception) -> ErrorCategory:
    """Classify an exception into error category."""
    # Already classified
    if isinstance(exc, PipelineError):
        return exc.category

    # Malformed payloads never succeed on redelivery
    if isinstance(exc, (ValidationError, json.JSONDecodeError, UnicodeDecodeError)):
        return ErrorCategory.PERMANENT

    exc_type = type(exc).__name__.lower()
    exc_str = str(exc).lower()

    if "timeout" in exc_type or isinstance(exc, (ConnectionError, TimeoutError)):
        return ErrorCategory.TRANSIENT

    if any(marker in exc_str for marker in AUTH_ERROR_MARKERS):
        return ErrorCategory.AUTH

    if any(marker in exc_str for marker in TRANSIENT_ERROR_MARKERS):
        return ErrorCategory.TRANSIENT

    return ErrorCategory.UNKNOWN


def wrap_engine_exception(exc: Exception) -> PipelineError:
    """Wrap an exception raised by the analysis engine in a typed error.

    Typed pipeline errors pass through unchanged; the provider's empty
    response is distinguished so the failed result carries a retry hint.
    """
    if isinstance(exc, PipelineError):
        return exc

    if is_empty_response_error(exc):
        return AnalysisEngineEmptyResponseError(str(exc), cause=exc)

    category = classify_exception(exc)
    if category == ErrorCategory.AUTH:
        return AuthError(str(exc), cause=exc)
    if category == ErrorCategory.PERMANENT:
        return PermanentError(str(exc), cause=exc)
    return AnalysisEngineError(str(exc), cause=exc)
