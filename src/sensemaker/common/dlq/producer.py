"""DLQ producer for routing permanently failed messages."""

import json
import logging
import time

from aiokafka import AIOKafkaProducer

from config.config import SensemakerConfig
from core.errors import TransportError
from core.types import ErrorCategory
from sensemaker.common.kafka_config import build_kafka_security_config
from sensemaker.common.metrics import record_dlq_message
from sensemaker.common.retry.retry_utils import create_dlq_headers, truncate_error_message
from sensemaker.common.types import PipelineMessage

logger = logging.getLogger(__name__)


def build_dlq_envelope(
    message: PipelineMessage,
    error: Exception | str,
    error_category: ErrorCategory,
    reason: str,
    retry_count: int,
    **context,
) -> dict:
    """Full error envelope: the original record plus why it was dead-lettered.

    The original value is kept verbatim (as text) so the task can be replayed.
    """
    return {
        "original_topic": message.topic,
        "original_partition": message.partition,
        "original_offset": message.offset,
        "original_key": message.key_str,
        "original_value": (
            message.value.decode("utf-8", errors="replace") if message.value else None
        ),
        "original_headers": message.header_dict(),
        "original_timestamp": message.timestamp,
        "error_type": error if isinstance(error, str) else type(error).__name__,
        "error_message": truncate_error_message(error),
        "error_category": error_category.value,
        "dlq_reason": reason,
        "retry_count": retry_count,
        "dlq_timestamp": time.time(),
        **context,
    }


class DLQProducer:
    """Lazy-initialized Kafka producer for DLQ routing.

    Only connects on first send, so workers that never dead-letter a
    message never open the connection.
    """

    def __init__(
        self,
        config: SensemakerConfig,
        worker_name: str,
        group_id: str,
        worker_id: str,
    ):
        self._config = config
        self._worker_name = worker_name
        self._group_id = group_id
        self._worker_id = worker_id
        self._dlq_topic = config.get_topic("dlq")
        self._producer: AIOKafkaProducer | None = None

    @property
    def topic(self) -> str:
        return self._dlq_topic

    async def _ensure_started(self) -> None:
        if self._producer is not None:
            return

        logger.info(
            "Initializing DLQ producer",
            extra={"worker_name": self._worker_name, "dlq_topic": self._dlq_topic},
        )

        producer_config = {
            "bootstrap_servers": self._config.bootstrap_servers,
            "request_timeout_ms": self._config.request_timeout_ms,
            "metadata_max_age_ms": self._config.metadata_max_age_ms,
            "connections_max_idle_ms": self._config.connections_max_idle_ms,
            "acks": "all",
            "enable_idempotence": True,
            "retry_backoff_ms": 1000,
            "max_request_size": 10 * 1024 * 1024,
        }
        producer_config.update(build_kafka_security_config(self._config))

        producer = AIOKafkaProducer(**producer_config)
        await producer.start()
        self._producer = producer

        logger.info(
            "DLQ producer started successfully",
            extra={"bootstrap_servers": self._config.bootstrap_servers},
        )

    async def send(
        self,
        message: PipelineMessage,
        error: Exception | str,
        error_category: ErrorCategory,
        reason: str,
        retry_count: int = 0,
    ) -> None:
        """Send a failed message to the DLQ topic with full context.

        Raises:
            TransportError: If the DLQ write fails; the caller must not
                commit the source offset in that case.
        """
        await self._ensure_started()

        envelope = build_dlq_envelope(
            message,
            error,
            error_category,
            reason,
            retry_count,
            consumer_group=self._group_id,
            worker_id=self._worker_id,
            worker_name=self._worker_name,
        )
        dlq_value = json.dumps(envelope).encode("utf-8")
        dlq_key = message.key or f"dlq-{message.topic}-{message.partition}-{message.offset}".encode()
        dlq_headers = [
            (k, v.encode("utf-8"))
            for k, v in create_dlq_headers(retry_count, error_category, reason).items()
        ]
        dlq_headers.append(("dlq_source_topic", message.topic.encode("utf-8")))

        try:
            metadata = await self._producer.send_and_wait(
                self._dlq_topic,
                key=dlq_key,
                value=dlq_value,
                headers=dlq_headers,
            )
        except Exception as e:
            logger.error(
                "Failed to send message to DLQ",
                extra={
                    "dlq_topic": self._dlq_topic,
                    "topic": message.topic,
                    "partition": message.partition,
                    "offset": message.offset,
                    "error_category": error_category.value,
                },
                exc_info=True,
            )
            raise TransportError(f"Failed to publish to {self._dlq_topic}", cause=e) from e

        record_dlq_message(reason)
        logger.info(
            "Message sent to DLQ successfully",
            extra={
                "dlq_topic": self._dlq_topic,
                "dlq_partition": metadata.partition,
                "dlq_offset": metadata.offset,
                "topic": message.topic,
                "partition": message.partition,
                "offset": message.offset,
                "error_category": error_category.value,
                "dlq_reason": reason,
            },
        )

    async def stop(self) -> None:
        if self._producer is None:
            return

        try:
            await self._producer.flush()
            await self._producer.stop()
            logger.info("DLQ producer stopped successfully")
        except Exception:
            logger.error("Error stopping DLQ producer", exc_info=True)
        finally:
            self._producer = None
