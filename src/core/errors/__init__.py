"""
Error classification and exception hierarchy.

Provides:
- ErrorCategory enum for classifying errors
- PipelineError hierarchy for typed exceptions
- Classification utilities for error handling
"""

from core.errors.exceptions import (
    AnalysisEngineEmptyResponseError,
    AnalysisEngineError,
    AuthError,
    EmptyDatasetError,
    ErrorCategory,
    InvalidRequestError,
    InvalidTaskError,
    MissingRequiredColumnsError,
    PermanentError,
    PipelineError,
    StorageError,
    TaskNotFoundError,
    TransientError,
    TransportError,
    UnsupportedFormatError,
    classify_exception,
    is_empty_response_error,
    wrap_engine_exception,
)

__all__ = [
    # Enums
    "ErrorCategory",
    # Base classes
    "PipelineError",
    "AuthError",
    "TransientError",
    "PermanentError",
    # Request-time errors
    "InvalidRequestError",
    "UnsupportedFormatError",
    "MissingRequiredColumnsError",
    "EmptyDatasetError",
    "TaskNotFoundError",
    # Task-time errors
    "InvalidTaskError",
    "AnalysisEngineError",
    "AnalysisEngineEmptyResponseError",
    "StorageError",
    "TransportError",
    # Classification utilities
    "classify_exception",
    "is_empty_response_error",
    "wrap_engine_exception",
]
