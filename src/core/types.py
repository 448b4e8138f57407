"""
Core types shared across modules.

Keeps the error classification enum in one place so every package compares
against the same class.
"""

from enum import Enum


class ErrorCategory(Enum):
    """
    Classification of error types for handling decisions.

    Categories:
        TRANSIENT: Temporary failures that should retry with backoff
                   (e.g., provider timeouts, storage hiccups, 429/503 errors)
        AUTH: Authentication failures (e.g., rejected provider credential)
        PERMANENT: Non-retriable failures that won't succeed on retry
                   (e.g., malformed task messages, validation errors)
        UNKNOWN: Unclassified errors, may retry conservatively
    """

    TRANSIENT = "transient"
    AUTH = "auth"
    PERMANENT = "permanent"
    UNKNOWN = "unknown"


__all__ = [
    "ErrorCategory",
]
