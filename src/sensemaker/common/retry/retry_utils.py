"""
Utility functions for retry handling.

Shared by the task retry handler, the consumer's dead-letter path and the
retry scheduler so that headers and DLQ decisions stay consistent.
"""

import logging
from datetime import UTC, datetime, timedelta
from typing import Any

from core.types import ErrorCategory

logger = logging.getLogger(__name__)

RETRY_COUNT_HEADER = "retry_count"
SCHEDULED_TIME_HEADER = "scheduled_retry_time"
TARGET_TOPIC_HEADER = "target_topic"
ERROR_CATEGORY_HEADER = "error_category"
REQUIRED_RETRY_HEADERS = (SCHEDULED_TIME_HEADER, TARGET_TOPIC_HEADER, RETRY_COUNT_HEADER)


def should_send_to_dlq(
    error_category: ErrorCategory,
    retry_count: int,
    max_retries: int,
) -> tuple[bool, str]:
    """
    Determine if a failed task should be sent to DLQ.

    Args:
        error_category: Classification of the error
        retry_count: Number of redeliveries already made
        max_retries: Maximum allowed retries

    Returns:
        Tuple of (should_dlq, reason) where reason is "permanent",
        "exhausted", or an empty string.
    """
    if error_category == ErrorCategory.PERMANENT:
        return True, "permanent"

    if retry_count >= max_retries:
        return True, "exhausted"

    return False, ""


def retry_delay_for(retry_delays: list[int], retry_count: int) -> int:
    """Delay before the redelivery following attempt ``retry_count``.

    Past the end of the schedule the last delay is reused.
    """
    if not retry_delays:
        return 0
    return retry_delays[min(retry_count, len(retry_delays) - 1)]


def calculate_retry_timestamp(delay_seconds: int) -> datetime:
    """UTC datetime when a retry should occur."""
    return datetime.now(UTC) + timedelta(seconds=delay_seconds)


def parse_retry_count(value: str | None) -> int | None:
    """Parse retry count from header value. Returns None if invalid."""
    if value is None:
        return None
    try:
        count = int(value)
    except ValueError:
        return None
    return count if count >= 0 else None


def parse_scheduled_time(value: str) -> datetime | None:
    """Parse scheduled retry time from header value. Returns None if invalid."""
    try:
        scheduled_time = datetime.fromisoformat(value)
    except (TypeError, ValueError):
        return None
    if scheduled_time.tzinfo is None:
        scheduled_time = scheduled_time.replace(tzinfo=UTC)
    return scheduled_time


def create_retry_headers(
    retry_count: int,
    retry_at: datetime,
    delay_seconds: int,
    target_topic: str,
    worker_type: str,
    original_key: str,
    error_category: ErrorCategory,
) -> dict[str, str]:
    """
    Create standard Kafka headers for retry messages.

    Args:
        retry_count: Retry attempt number of the redelivery being scheduled
        retry_at: When retry should occur
        delay_seconds: Delay before retry in seconds
        target_topic: Topic to route message to when retry is ready
        worker_type: Type of worker for observability
        original_key: Original Kafka partition key
        error_category: Classification of the error
    """
    return {
        RETRY_COUNT_HEADER: str(retry_count),
        SCHEDULED_TIME_HEADER: retry_at.isoformat(),
        "retry_delay_seconds": str(delay_seconds),
        TARGET_TOPIC_HEADER: target_topic,
        "worker_type": worker_type,
        "original_key": original_key,
        ERROR_CATEGORY_HEADER: error_category.value,
    }


def create_dlq_headers(
    retry_count: int,
    error_category: ErrorCategory,
    reason: str,
) -> dict[str, str]:
    """Create standard Kafka headers for DLQ messages."""
    return {
        RETRY_COUNT_HEADER: str(retry_count),
        ERROR_CATEGORY_HEADER: error_category.value,
        "dlq_reason": reason,
        "failed": "true",
    }


def truncate_error_message(error: Exception | str, max_length: int = 500) -> str:
    """Truncate error message to prevent huge Kafka messages."""
    error_message = str(error)
    if len(error_message) > max_length:
        return error_message[: max_length - 3] + "..."
    return error_message


def log_retry_decision(
    action: str,
    task_id: str,
    retry_count: int,
    error_category: ErrorCategory,
    error: Exception,
    extra_context: dict[str, Any] | None = None,
) -> None:
    """
    Log retry routing decision with consistent format.

    Args:
        action: Action being taken ("retry", "dlq_permanent", "dlq_exhausted")
        task_id: Task identifier
        retry_count: Current retry attempt count
        error_category: Classification of the error
        error: Exception that caused failure
        extra_context: Additional context to include in log
    """
    log_context = {
        "task_id": task_id,
        "retry_count": retry_count,
        "error_category": error_category.value,
        "error_type": type(error).__name__,
    }

    if extra_context:
        log_context.update(extra_context)

    if action == "dlq_permanent":
        logger.warning(
            "Permanent error detected, sending to DLQ without retry",
            extra={**log_context, "error_message": truncate_error_message(error, 200)},
        )
    elif action == "dlq_exhausted":
        logger.warning("Retries exhausted, sending to DLQ", extra=log_context)
    elif action == "retry":
        logger.info("Sending task to retry topic", extra=log_context)


__all__ = [
    "RETRY_COUNT_HEADER",
    "SCHEDULED_TIME_HEADER",
    "TARGET_TOPIC_HEADER",
    "ERROR_CATEGORY_HEADER",
    "REQUIRED_RETRY_HEADERS",
    "should_send_to_dlq",
    "retry_delay_for",
    "calculate_retry_timestamp",
    "parse_retry_count",
    "parse_scheduled_time",
    "create_retry_headers",
    "create_dlq_headers",
    "truncate_error_message",
    "log_retry_decision",
]
