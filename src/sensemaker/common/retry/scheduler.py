"""
Retry scheduler for header-based redelivery.

Consumes the retry topic and republishes each message to the topic named in
its ``target_topic`` header once ``scheduled_retry_time`` has passed.
Messages that are not yet due wait in a disk-persisted delay queue; their
offsets are committed immediately so the retry topic keeps moving.

Crash safety:
- The delay queue is persisted every ``persistence_interval_seconds``
- The queue is restored on startup
- On crash, at most one persistence interval of delayed messages is lost
"""

import asyncio
import contextlib
import logging
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from config.config import SensemakerConfig
from core.types import ErrorCategory
from core.utils import generate_worker_id
from sensemaker.common.consumer import MessageConsumer
from sensemaker.common.dlq.producer import DLQProducer
from sensemaker.common.health import HealthCheckServer
from sensemaker.common.metrics import update_delay_queue_size
from sensemaker.common.producer import MessageProducer
from sensemaker.common.retry.delay_queue import DelayedMessage, DelayQueue
from sensemaker.common.retry.retry_utils import (
    ERROR_CATEGORY_HEADER,
    REQUIRED_RETRY_HEADERS,
    RETRY_COUNT_HEADER,
    SCHEDULED_TIME_HEADER,
    TARGET_TOPIC_HEADER,
    parse_retry_count,
    parse_scheduled_time,
)
from sensemaker.common.types import PipelineMessage

logger = logging.getLogger(__name__)

RETRY_REQUEUE_DELAY_SECONDS = 5
PERSISTENCE_FILE_NAME = "sensemaker_retry_queue.json"


class RetryScheduler:
    """
    Scheduler for task redeliveries.

    1. Consumes from the retry topic
    2. Validates routing headers (malformed messages go to the DLQ)
    3. Routes to the DLQ when retry_count exceeds the retry budget
    4. Routes to target_topic immediately when due
    5. Otherwise holds the message in the delay queue until due
    """

    WORKER_NAME = "retry_scheduler"

    def __init__(
        self,
        config: SensemakerConfig,
        persistence_dir: str | None = None,
        persistence_interval_seconds: int = 10,
        health_port: int | None = None,
    ):
        self.config = config
        self.retry_topic = config.get_topic("retry")
        self._known_targets = {config.get_topic("tasks")}
        self._max_retries = config.get_max_retries()
        self.worker_id = generate_worker_id("sensemaker-retry")

        processing = config.get_worker_config(self.WORKER_NAME, "processing")
        base_dir = persistence_dir or processing.get("persistence_dir") or "data/retry"
        self._delay_queue = DelayQueue("sensemaker-retry", Path(base_dir) / PERSISTENCE_FILE_NAME)
        self._persistence_interval = persistence_interval_seconds

        self._producer: MessageProducer | None = None
        self._dlq_producer: DLQProducer | None = None
        self._consumer: MessageConsumer | None = None
        self._processor_task: asyncio.Task | None = None
        self._persistence_task: asyncio.Task | None = None
        self._running = False

        self._messages_routed = 0
        self._messages_delayed = 0
        self._messages_malformed = 0
        self._messages_exhausted = 0
        self._messages_restored = 0

        self.health_server = HealthCheckServer(
            port=config.health_port if health_port is None else health_port,
            worker_name="sensemaker-retry-scheduler",
        )

    async def start(self) -> None:
        """Start producers, restore the delay queue and consume. Blocks until stopped."""
        if self._running:
            logger.warning("Scheduler already running, ignoring duplicate start call")
            return

        await self.health_server.start()

        self._producer = MessageProducer(self.config, self.WORKER_NAME)
        await self._producer.start()

        group_id = self.config.get_consumer_group(self.WORKER_NAME)
        self._dlq_producer = DLQProducer(
            config=self.config,
            worker_name=self.WORKER_NAME,
            group_id=group_id,
            worker_id=self.worker_id,
        )

        self._messages_restored = self._delay_queue.restore_from_disk()
        update_delay_queue_size(len(self._delay_queue))

        self._consumer = MessageConsumer(
            config=self.config,
            worker_name=self.WORKER_NAME,
            topics=[self.retry_topic],
            message_handler=self.handle_retry_message,
            dlq_producer=self._dlq_producer,
            worker_id=self.worker_id,
        )

        self._running = True
        self._processor_task = asyncio.create_task(self._process_delayed_messages())
        self._persistence_task = asyncio.create_task(self._periodic_persistence())
        self.health_server.set_ready(transport_connected=True)

        logger.info(
            "RetryScheduler ready",
            extra={
                "retry_topic": self.retry_topic,
                "target_topics": sorted(self._known_targets),
                "max_retries": self._max_retries,
                "restored_messages": self._messages_restored,
                "health_port": self.health_server.actual_port,
            },
        )

        try:
            await self._consumer.start()
        finally:
            self._running = False

    async def stop(self) -> None:
        logger.info("Stopping RetryScheduler", extra=self.stats)
        self._running = False

        for task in (self._processor_task, self._persistence_task):
            if task:
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task
        self._processor_task = None
        self._persistence_task = None

        self._delay_queue.persist_to_disk()

        if self._consumer:
            await self._consumer.stop()
            self._consumer = None
        if self._producer:
            await self._producer.stop()
            self._producer = None
        if self._dlq_producer:
            await self._dlq_producer.stop()
            self._dlq_producer = None

        self.health_server.set_ready(transport_connected=False)
        await self.health_server.stop()
        logger.info("RetryScheduler stopped successfully")

    async def handle_retry_message(self, message: PipelineMessage) -> None:
        """Handle one message from the retry topic.

        Raises if a DLQ or target write fails so the offset is not committed.
        """
        self.health_server.record_heartbeat()
        headers = message.header_dict()

        missing = [h for h in REQUIRED_RETRY_HEADERS if h not in headers]
        if missing:
            self._messages_malformed += 1
            await self._send_to_dlq(message, f"Missing required headers: {missing}", "malformed")
            return

        target_topic = headers[TARGET_TOPIC_HEADER]
        if target_topic not in self._known_targets:
            self._messages_malformed += 1
            await self._send_to_dlq(message, f"Unknown target topic: {target_topic}", "malformed")
            return

        retry_count = parse_retry_count(headers[RETRY_COUNT_HEADER])
        if retry_count is None:
            self._messages_malformed += 1
            await self._send_to_dlq(
                message, f"Invalid retry_count: {headers[RETRY_COUNT_HEADER]}", "malformed"
            )
            return

        # retry_count numbers the redelivery, so the last allowed one equals max_retries
        if retry_count > self._max_retries:
            self._messages_exhausted += 1
            await self._send_to_dlq(
                message,
                f"Retries exhausted ({retry_count}/{self._max_retries})",
                "exhausted",
                retry_count=retry_count,
            )
            return

        scheduled_time = parse_scheduled_time(headers[SCHEDULED_TIME_HEADER])
        if scheduled_time is None:
            self._messages_malformed += 1
            await self._send_to_dlq(
                message,
                f"Invalid scheduled_retry_time: {headers[SCHEDULED_TIME_HEADER]}",
                "malformed",
            )
            return

        now = datetime.now(UTC)
        if now < scheduled_time:
            self._delay_queue.push(
                DelayedMessage(
                    scheduled_time=scheduled_time,
                    target_topic=target_topic,
                    retry_count=retry_count,
                    message_key=message.key,
                    message_value=bytes(message.value or b""),
                    headers=headers,
                )
            )
            self._messages_delayed += 1
            update_delay_queue_size(len(self._delay_queue))
            logger.debug(
                "Retry delay not elapsed, added to delay queue",
                extra={
                    "task_id": message.key_str,
                    "scheduled_retry_time": scheduled_time.isoformat(),
                    "seconds_remaining": (scheduled_time - now).total_seconds(),
                    "queue_size": len(self._delay_queue),
                },
            )
            return

        await self._route_to_target(
            target_topic=target_topic,
            message_key=message.key,
            message_value=message.value or b"",
            retry_count=retry_count,
            headers=headers,
        )

    def _category_from_headers(self, headers: dict[str, str]) -> ErrorCategory:
        try:
            return ErrorCategory(headers.get(ERROR_CATEGORY_HEADER, ErrorCategory.UNKNOWN.value))
        except ValueError:
            return ErrorCategory.UNKNOWN

    async def _send_to_dlq(
        self,
        message: PipelineMessage,
        reason_text: str,
        reason: str,
        retry_count: int = 0,
    ) -> None:
        logger.error(
            "Routing retry message to DLQ",
            extra={
                "topic": message.topic,
                "partition": message.partition,
                "offset": message.offset,
                "task_id": message.key_str,
                "dlq_reason": reason,
                "error_message": reason_text,
            },
        )
        await self._dlq_producer.send(
            message,
            reason_text,
            self._category_from_headers(message.header_dict()),
            reason=reason,
            retry_count=retry_count,
        )

    async def _route_to_target(
        self,
        target_topic: str,
        message_key: bytes | None,
        message_value: bytes,
        retry_count: int,
        headers: dict[str, str],
    ) -> None:
        redelivery_headers = {
            "redelivered_from": self.retry_topic,
            RETRY_COUNT_HEADER: str(retry_count),
        }
        if ERROR_CATEGORY_HEADER in headers:
            redelivery_headers[ERROR_CATEGORY_HEADER] = headers[ERROR_CATEGORY_HEADER]

        await self._producer.send(
            topic=target_topic,
            key=message_key,
            value=message_value,
            headers=redelivery_headers,
        )
        self._messages_routed += 1

        logger.info(
            "Message routed to target topic",
            extra={
                "task_id": message_key.decode("utf-8", errors="replace") if message_key else None,
                "target_topic": target_topic,
                "retry_count": retry_count,
            },
        )

    async def process_ready(self, now: datetime | None = None) -> int:
        """Route every delayed message that is due. Returns the number routed."""
        now = now or datetime.now(UTC)
        routed = 0
        for delayed_msg in self._delay_queue.pop_ready(now):
            try:
                await self._route_to_target(
                    target_topic=delayed_msg.target_topic,
                    message_key=delayed_msg.message_key,
                    message_value=delayed_msg.message_value,
                    retry_count=delayed_msg.retry_count,
                    headers=delayed_msg.headers,
                )
                routed += 1
            except Exception as e:
                logger.error(
                    f"Failed to route delayed message, will retry in {RETRY_REQUEUE_DELAY_SECONDS}s",
                    extra={"target_topic": delayed_msg.target_topic, "error_message": str(e)},
                    exc_info=True,
                )
                self._delay_queue.requeue_with_delay(
                    delayed_msg, delay_seconds=RETRY_REQUEUE_DELAY_SECONDS
                )
        update_delay_queue_size(len(self._delay_queue))
        return routed

    async def _process_delayed_messages(self) -> None:
        """Background task that routes delayed messages when they come due."""
        logger.info("Started delayed message processor")

        while self._running:
            try:
                await self.process_ready()
                self.health_server.record_heartbeat()

                # Sleep until next message is ready (or max 1 second)
                next_time = self._delay_queue.next_scheduled_time
                if next_time is not None:
                    sleep_seconds = (next_time - datetime.now(UTC)).total_seconds()
                    await asyncio.sleep(min(max(sleep_seconds, 0.1), 1.0))
                else:
                    await asyncio.sleep(1.0)

            except asyncio.CancelledError:
                logger.info("Delayed message processor cancelled")
                raise
            except Exception:
                logger.error("Error in delayed message processor", exc_info=True)
                await asyncio.sleep(1.0)

    async def _periodic_persistence(self) -> None:
        while self._running:
            try:
                await asyncio.sleep(self._persistence_interval)
                self._delay_queue.persist_to_disk()
            except asyncio.CancelledError:
                logger.info("Periodic persistence cancelled")
                raise

    @property
    def queue(self) -> DelayQueue:
        return self._delay_queue

    @property
    def stats(self) -> dict[str, Any]:
        return {
            "messages_routed": self._messages_routed,
            "messages_delayed": self._messages_delayed,
            "messages_malformed": self._messages_malformed,
            "messages_exhausted": self._messages_exhausted,
            "messages_restored": self._messages_restored,
            "queue_size": len(self._delay_queue),
        }


__all__ = ["RetryScheduler"]
