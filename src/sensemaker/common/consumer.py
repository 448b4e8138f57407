"""Kafka message consumer with error classification and DLQ routing."""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable

from aiokafka import AIOKafkaConsumer
from aiokafka.structs import ConsumerRecord, TopicPartition

from config.config import SensemakerConfig
from core.errors import classify_exception
from core.types import ErrorCategory
from core.utils import generate_worker_id
from sensemaker.common.dlq.producer import DLQProducer
from sensemaker.common.kafka_config import build_kafka_security_config
from sensemaker.common.metrics import (
    message_processing_duration_seconds,
    record_message_consumed,
    record_processing_error,
    update_connection_status,
)
from sensemaker.common.types import PipelineMessage, from_consumer_record

logger = logging.getLogger(__name__)

# Pause before a rewound message is fetched again
REDELIVERY_BACKOFF_SECONDS = 5.0


class MessageConsumer:
    """Async Kafka consumer that commits each offset after its handler returns.

    Handler failures are classified: PERMANENT ones are dead-lettered and
    committed; anything else leaves the offset uncommitted and rewinds the
    partition so the same record is delivered again.
    """

    # Optional consumer config keys forwarded to AIOKafkaConsumer if present
    _OPTIONAL_CONSUMER_KEYS = (
        "heartbeat_interval_ms",
        "fetch_min_bytes",
        "fetch_max_wait_ms",
        "max_partition_fetch_bytes",
    )

    def __init__(
        self,
        config: SensemakerConfig,
        worker_name: str,
        topics: list[str],
        message_handler: Callable[[PipelineMessage], Awaitable[None]],
        enable_message_commit: bool = True,
        dlq_producer: DLQProducer | None = None,
        worker_id: str | None = None,
    ):
        if not topics:
            raise ValueError("At least one topic must be specified")

        self.config = config
        self.worker_name = worker_name
        self.topics = topics
        self.message_handler = message_handler
        self.worker_id = worker_id or generate_worker_id(f"sensemaker-{worker_name}")
        self.group_id = config.get_consumer_group(worker_name)
        self.consumer_config = config.get_worker_config(worker_name, "consumer")
        self._enable_message_commit = enable_message_commit
        self._consumer: AIOKafkaConsumer | None = None
        self._running = False
        self._redelivery_backoff = REDELIVERY_BACKOFF_SECONDS

        self._dlq_producer = dlq_producer or DLQProducer(
            config=config,
            worker_name=worker_name,
            group_id=self.group_id,
            worker_id=self.worker_id,
        )

        logger.info(
            "Initialized message consumer",
            extra={
                "worker_name": worker_name,
                "worker_id": self.worker_id,
                "topics": topics,
                "group_id": self.group_id,
                "bootstrap_servers": config.bootstrap_servers,
                "max_poll_records": self.consumer_config.get("max_poll_records"),
            },
        )

    def _build_kafka_config(self) -> dict:
        """Build the AIOKafkaConsumer configuration dict."""
        cfg = {
            "bootstrap_servers": self.config.bootstrap_servers,
            "group_id": self.group_id,
            "client_id": f"sensemaker-{self.worker_name}",
            "request_timeout_ms": self.config.request_timeout_ms,
            "metadata_max_age_ms": self.config.metadata_max_age_ms,
            "connections_max_idle_ms": self.config.connections_max_idle_ms,
            "enable_auto_commit": False,
            "auto_offset_reset": self.consumer_config.get("auto_offset_reset", "earliest"),
            "max_poll_records": self.consumer_config.get("max_poll_records", 100),
            "max_poll_interval_ms": self.consumer_config.get("max_poll_interval_ms", 300000),
            "session_timeout_ms": self.consumer_config.get("session_timeout_ms", 30000),
        }

        for key in self._OPTIONAL_CONSUMER_KEYS:
            if key in self.consumer_config:
                cfg[key] = self.consumer_config[key]

        cfg.update(build_kafka_security_config(self.config))
        return cfg

    async def start(self) -> None:
        """Connect and consume until stop() is called. Blocks."""
        if self._running:
            logger.warning("Consumer already running, ignoring duplicate start call")
            return

        logger.info(
            "Starting message consumer",
            extra={"topics": self.topics, "group_id": self.group_id},
        )

        self._consumer = AIOKafkaConsumer(*self.topics, **self._build_kafka_config())
        await self._consumer.start()
        self._running = True
        update_connection_status("consumer", connected=True)

        try:
            await self._consume_loop()
        except asyncio.CancelledError:
            logger.info("Consumer loop cancelled, shutting down")
            raise
        except Exception:
            logger.error("Consumer loop terminated with error", exc_info=True)
            raise
        finally:
            self._running = False

    async def stop(self) -> None:
        if self._consumer is None:
            logger.debug("Consumer not running or already stopped")
            return

        logger.info("Stopping message consumer")
        self._running = False

        try:
            await self._consumer.stop()
            await self._dlq_producer.stop()
            logger.info("Message consumer stopped successfully")
        except Exception:
            logger.error("Error stopping message consumer", exc_info=True)
            raise
        finally:
            update_connection_status("consumer", connected=False)
            self._consumer = None

    async def _consume_loop(self) -> None:
        logger.info(
            "Starting message consumption loop",
            extra={"topics": self.topics, "group_id": self.group_id},
        )

        while self._running and self._consumer:
            try:
                await self._fetch_and_process_batch()
            except asyncio.CancelledError:
                logger.info("Consumption loop cancelled")
                raise
            except Exception:
                logger.error("Error in consumption loop", exc_info=True)
                await asyncio.sleep(1)

    async def _fetch_and_process_batch(self) -> None:
        data = await self._consumer.getmany(timeout_ms=1000)

        for records in data.values():
            for record in records:
                if not self._running:
                    return
                if not await self._process_message(record):
                    # Partition rewound; later records in this batch arrive again
                    break

    async def _process_message(self, message: ConsumerRecord) -> bool:
        """Run the handler for one record. Returns False when the partition was rewound."""
        start_time = time.perf_counter()
        pipeline_message = from_consumer_record(message)
        success = False

        try:
            await self.message_handler(pipeline_message)
            success = True
            if self._enable_message_commit:
                await self._commit(message)
            return True

        except asyncio.CancelledError:
            raise

        except Exception as e:
            duration = time.perf_counter() - start_time
            return await self._handle_processing_error(pipeline_message, message, e, duration)

        finally:
            duration = time.perf_counter() - start_time
            message_processing_duration_seconds.labels(
                topic=message.topic, consumer_group=self.group_id
            ).observe(duration)
            record_message_consumed(message.topic, self.group_id, success=success)

    async def _commit(self, message: ConsumerRecord) -> None:
        """Commit the offset following ``message`` on its partition."""
        tp = TopicPartition(message.topic, message.partition)
        await self._consumer.commit({tp: message.offset + 1})
        logger.debug(
            "Committed offset",
            extra={
                "topic": message.topic,
                "partition": message.partition,
                "offset": message.offset,
                "group_id": self.group_id,
            },
        )

    async def _rewind(self, message: ConsumerRecord) -> None:
        """Seek back so the uncommitted record is fetched again after a pause."""
        tp = TopicPartition(message.topic, message.partition)
        self._consumer.seek(tp, message.offset)
        await asyncio.sleep(self._redelivery_backoff)

    async def _handle_processing_error(
        self,
        pipeline_message: PipelineMessage,
        message: ConsumerRecord,
        error: Exception,
        duration: float,
    ) -> bool:
        """DLQ routing for PERMANENT errors, redelivery for everything else."""
        error_category = classify_exception(error)
        record_processing_error(message.topic, self.group_id, error_category.value)

        context = {
            "topic": message.topic,
            "partition": message.partition,
            "offset": message.offset,
            "error_category": error_category.value,
            "error_type": type(error).__name__,
            "duration_ms": round(duration * 1000, 2),
        }

        if error_category != ErrorCategory.PERMANENT:
            logger.warning(
                "Retriable error processing message - offset not committed, will redeliver",
                extra=context,
                exc_info=True,
            )
            await self._rewind(message)
            return False

        logger.error(
            "Permanent error processing message - routing to DLQ",
            extra=context,
            exc_info=True,
        )
        try:
            await self._dlq_producer.send(
                pipeline_message, error, error_category, reason="permanent"
            )
        except Exception:
            logger.error(
                "DLQ routing failed - message will be redelivered",
                extra=context,
                exc_info=True,
            )
            await self._rewind(message)
            return False

        if self._enable_message_commit:
            await self._commit(message)
        return True

    @property
    def is_running(self) -> bool:
        return self._running and self._consumer is not None


__all__ = ["MessageConsumer"]
