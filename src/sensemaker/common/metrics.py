"""
Prometheus metrics for the sensemaker service.

Focused on essential metrics:
- Task submissions and outcomes
- Analysis duration
- Message production and consumption counts
- Error rates, retries and dead-lettering
- Connection health

Metrics register on the default prometheus_client registry; the CLI exposes
them with start_http_server when a metrics port is configured.
"""

import logging

from prometheus_client import Counter, Gauge, Histogram

logger = logging.getLogger(__name__)

# Analysis runs range from seconds to tens of minutes
ANALYSIS_DURATION_BUCKETS = (1, 5, 15, 30, 60, 120, 300, 600, 1200, 1800, 3600)


# =============================================================================
# Task lifecycle
# =============================================================================

tasks_submitted_counter = Counter(
    "sensemaker_tasks_submitted_total",
    "Total number of analysis tasks accepted by the API",
    labelnames=["format"],
)

tasks_completed_counter = Counter(
    "sensemaker_tasks_completed_total",
    "Total number of analysis tasks that produced a summary",
)

tasks_failed_counter = Counter(
    "sensemaker_tasks_failed_total",
    "Total number of analysis attempts that failed, by error category",
    labelnames=["error_category"],
)

analysis_duration_seconds = Histogram(
    "sensemaker_analysis_duration_seconds",
    "Wall-clock duration of one analysis attempt",
    labelnames=["outcome"],
    buckets=ANALYSIS_DURATION_BUCKETS,
)

# =============================================================================
# Transport
# =============================================================================

messages_produced_counter = Counter(
    "sensemaker_messages_produced_total",
    "Total number of messages produced to topics",
    labelnames=["topic", "success"],
)

messages_consumed_counter = Counter(
    "sensemaker_messages_consumed_total",
    "Total number of messages consumed from topics",
    labelnames=["topic", "consumer_group", "success"],
)

message_processing_duration_seconds = Histogram(
    "sensemaker_message_processing_duration_seconds",
    "Time spent in the message handler",
    labelnames=["topic", "consumer_group"],
    buckets=ANALYSIS_DURATION_BUCKETS,
)

processing_errors_counter = Counter(
    "sensemaker_processing_errors_total",
    "Total processing errors by error category",
    labelnames=["topic", "consumer_group", "error_category"],
)

retries_scheduled_counter = Counter(
    "sensemaker_retries_scheduled_total",
    "Total number of messages sent to the retry topic",
    labelnames=["error_category"],
)

dlq_messages_counter = Counter(
    "sensemaker_dlq_messages_total",
    "Total number of messages sent to the dead-letter topic",
    labelnames=["reason"],
)

delay_queue_size_gauge = Gauge(
    "sensemaker_retry_delay_queue_size",
    "Number of retry messages held by the scheduler",
)

connection_status_gauge = Gauge(
    "sensemaker_connection_status",
    "Connection status (1=connected, 0=disconnected)",
    labelnames=["component"],
)


# =============================================================================
# Helpers
# =============================================================================


def record_task_submitted(format_name: str) -> None:
    tasks_submitted_counter.labels(format=format_name).inc()


def record_task_completed(duration_seconds: float) -> None:
    tasks_completed_counter.inc()
    analysis_duration_seconds.labels(outcome="completed").observe(duration_seconds)


def record_task_failed(error_category: str, duration_seconds: float) -> None:
    tasks_failed_counter.labels(error_category=error_category).inc()
    analysis_duration_seconds.labels(outcome="failed").observe(duration_seconds)


def record_message_produced(topic: str, success: bool = True) -> None:
    messages_produced_counter.labels(topic=topic, success=str(success).lower()).inc()


def record_message_consumed(topic: str, consumer_group: str, success: bool = True) -> None:
    messages_consumed_counter.labels(
        topic=topic, consumer_group=consumer_group, success=str(success).lower()
    ).inc()


def record_processing_error(topic: str, consumer_group: str, error_category: str) -> None:
    processing_errors_counter.labels(
        topic=topic, consumer_group=consumer_group, error_category=error_category
    ).inc()


def record_retry_scheduled(error_category: str) -> None:
    retries_scheduled_counter.labels(error_category=error_category).inc()


def record_dlq_message(reason: str) -> None:
    dlq_messages_counter.labels(reason=reason).inc()


def update_delay_queue_size(size: int) -> None:
    delay_queue_size_gauge.set(size)


def update_connection_status(component: str, connected: bool) -> None:
    connection_status_gauge.labels(component=component).set(1 if connected else 0)


__all__ = [
    "message_processing_duration_seconds",
    "record_task_submitted",
    "record_task_completed",
    "record_task_failed",
    "record_message_produced",
    "record_message_consumed",
    "record_processing_error",
    "record_retry_scheduled",
    "record_dlq_message",
    "update_delay_queue_size",
    "update_connection_status",
]
