"""
Retry handler for failed analysis tasks.

Routes a failed delivery either to the retry topic (with a scheduled
redelivery time) or to the dead-letter topic.
"""

import logging

from config.config import SensemakerConfig
from core.types import ErrorCategory
from sensemaker.common.dlq.producer import DLQProducer
from sensemaker.common.metrics import record_retry_scheduled
from sensemaker.common.producer import MessageProducer
from sensemaker.common.retry.retry_utils import (
    calculate_retry_timestamp,
    create_retry_headers,
    log_retry_decision,
    retry_delay_for,
    should_send_to_dlq,
)
from sensemaker.common.types import PipelineMessage

logger = logging.getLogger(__name__)

ACTION_RETRY = "retry"
ACTION_DLQ = "dlq"


class TaskRetryHandler:
    """Handles retry logic for task failures via Kafka topics.

    TRANSIENT, AUTH and UNKNOWN failures are retried with the configured
    delays; PERMANENT failures and exhausted retries go to the DLQ.
    """

    WORKER_TYPE = "task_worker"

    def __init__(
        self,
        config: SensemakerConfig,
        dlq_producer: DLQProducer,
        retry_producer: MessageProducer | None = None,
    ):
        self.config = config
        self.tasks_topic = config.get_topic("tasks")
        self.retry_topic = config.get_topic("retry")
        self._retry_delays = list(config.retry_delays)
        self._max_retries = config.get_max_retries()
        self._dlq_producer = dlq_producer
        self._retry_producer = retry_producer
        self._owns_retry_producer = retry_producer is None

        logger.info(
            "Initialized TaskRetryHandler",
            extra={
                "retry_delays": self._retry_delays,
                "max_retries": self._max_retries,
                "retry_topic": self.retry_topic,
                "dlq_topic": dlq_producer.topic,
            },
        )

    async def start(self) -> None:
        if self._retry_producer is None:
            self._retry_producer = MessageProducer(self.config, "task_retry")
        if not self._retry_producer.is_started:
            await self._retry_producer.start()

    async def stop(self) -> None:
        if self._retry_producer and self._owns_retry_producer:
            await self._retry_producer.stop()
            self._retry_producer = None
        logger.info("TaskRetryHandler stopped")

    async def handle_failure(
        self,
        message: PipelineMessage,
        task_id: str,
        retry_count: int,
        error: Exception,
        error_category: ErrorCategory,
    ) -> str:
        """
        Route a failed delivery to the retry topic or the DLQ.

        Args:
            message: The delivery that failed
            task_id: Task identifier (used as the message key)
            retry_count: Redeliveries already made for this task
            error: Exception that caused failure
            error_category: Classification of the error

        Returns:
            ACTION_RETRY or ACTION_DLQ

        Raises:
            TransportError: If the retry or DLQ write fails
        """
        send_to_dlq, dlq_reason = should_send_to_dlq(
            error_category, retry_count, self._max_retries
        )

        if send_to_dlq:
            action = "dlq_permanent" if dlq_reason == "permanent" else "dlq_exhausted"
            log_retry_decision(action, task_id, retry_count, error_category, error)
            await self._dlq_producer.send(
                message, error, error_category, reason=dlq_reason, retry_count=retry_count
            )
            return ACTION_DLQ

        log_retry_decision(ACTION_RETRY, task_id, retry_count, error_category, error)
        await self._send_to_retry_topic(message, task_id, retry_count, error_category)
        return ACTION_RETRY

    async def _send_to_retry_topic(
        self,
        message: PipelineMessage,
        task_id: str,
        retry_count: int,
        error_category: ErrorCategory,
    ) -> None:
        if self._retry_producer is None:
            raise RuntimeError("TaskRetryHandler not started. Call start() first.")

        delay_seconds = retry_delay_for(self._retry_delays, retry_count)
        retry_at = calculate_retry_timestamp(delay_seconds)
        next_retry_count = retry_count + 1

        await self._retry_producer.send(
            topic=self.retry_topic,
            key=task_id,
            value=message.value or b"",
            headers=create_retry_headers(
                retry_count=next_retry_count,
                retry_at=retry_at,
                delay_seconds=delay_seconds,
                target_topic=self.tasks_topic,
                worker_type=self.WORKER_TYPE,
                original_key=task_id,
                error_category=error_category,
            ),
        )
        record_retry_scheduled(error_category.value)

        logger.info(
            "Task sent to retry topic",
            extra={
                "task_id": task_id,
                "retry_topic": self.retry_topic,
                "retry_count": next_retry_count,
                "delay_seconds": delay_seconds,
                "retry_at": retry_at.isoformat(),
            },
        )
