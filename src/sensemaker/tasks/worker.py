"""Task worker: consumes the tasks topic and runs each task through the processor.

Transport contract:
- One task per poll (max_poll_records=1); a run may take tens of minutes
- The offset is committed only after the handler returns, i.e. after the
  result record was written or the failure was routed to retry/DLQ
- If retry/DLQ routing fails the handler raises and the record is redelivered
"""

import logging

from config.config import SensemakerConfig
from core.errors import PipelineError
from core.logging import LogContext
from core.utils import generate_worker_id
from sensemaker.common.consumer import MessageConsumer
from sensemaker.common.dlq.producer import DLQProducer
from sensemaker.common.health import HealthCheckServer
from sensemaker.common.retry.handler import TaskRetryHandler
from sensemaker.common.retry.retry_utils import RETRY_COUNT_HEADER, parse_retry_count
from sensemaker.common.types import PipelineMessage
from sensemaker.schemas.tasks import SensemakeTask
from sensemaker.tasks.processor import TaskProcessor

logger = logging.getLogger(__name__)


class TaskWorker:
    """Consumes analysis tasks and routes failed deliveries for retry."""

    WORKER_NAME = "task_worker"

    def __init__(
        self,
        config: SensemakerConfig,
        processor: TaskProcessor,
        retry_handler: TaskRetryHandler | None = None,
        health_port: int | None = None,
    ):
        self.config = config
        self.processor = processor
        self.tasks_topic = config.get_topic("tasks")
        self.worker_id = generate_worker_id("sensemaker-worker")
        self.group_id = config.get_consumer_group(self.WORKER_NAME)

        self._dlq_producer = DLQProducer(
            config=config,
            worker_name=self.WORKER_NAME,
            group_id=self.group_id,
            worker_id=self.worker_id,
        )
        self.retry_handler = retry_handler or TaskRetryHandler(config, self._dlq_producer)
        self.consumer: MessageConsumer | None = None
        self.health_server = HealthCheckServer(
            port=config.health_port if health_port is None else health_port,
            worker_name="sensemaker-task-worker",
        )
        self._running = False

        self._tasks_processed = 0
        self._tasks_succeeded = 0
        self._tasks_failed = 0

        logger.info(
            "Initialized TaskWorker",
            extra={
                "worker_id": self.worker_id,
                "consumer_group": self.group_id,
                "tasks_topic": self.tasks_topic,
                "retry_delays": config.retry_delays,
            },
        )

    async def start(self) -> None:
        """Start consuming. Blocks until stop() is called."""
        if self._running:
            logger.warning("Worker already running")
            return

        await self.health_server.start()
        await self.retry_handler.start()

        self.consumer = MessageConsumer(
            config=self.config,
            worker_name=self.WORKER_NAME,
            topics=[self.tasks_topic],
            message_handler=self.handle_message,
            dlq_producer=self._dlq_producer,
            worker_id=self.worker_id,
        )
        self._running = True
        self.health_server.set_ready(transport_connected=True)

        logger.info(
            "TaskWorker started",
            extra={"worker_id": self.worker_id, "health_port": self.health_server.actual_port},
        )
        try:
            await self.consumer.start()
        finally:
            self._running = False

    async def stop(self) -> None:
        logger.info("Stopping TaskWorker", extra=self.stats)
        self._running = False

        if self.consumer:
            await self.consumer.stop()
            self.consumer = None
        await self.retry_handler.stop()
        await self._dlq_producer.stop()

        self.health_server.set_ready(transport_connected=False)
        await self.health_server.stop()
        logger.info("TaskWorker stopped")

    async def handle_message(self, message: PipelineMessage) -> None:
        """Process one delivery.

        Undecodable messages raise (the consumer dead-letters them as
        permanent failures). Processing failures are routed through the
        retry handler; only a routing failure propagates.
        """
        self.health_server.record_heartbeat()
        task = SensemakeTask.from_message_bytes(message.value or b"")
        retry_count = parse_retry_count(message.header_dict().get(RETRY_COUNT_HEADER)) or 0
        self._tasks_processed += 1

        with LogContext(task_id=task.task_id, worker_id=self.worker_id):
            try:
                await self.processor.process(task, retry_count=retry_count)
            except PipelineError as error:
                self._tasks_failed += 1
                await self.retry_handler.handle_failure(
                    message,
                    task_id=task.task_id,
                    retry_count=retry_count,
                    error=error,
                    error_category=error.category,
                )
                return

        self._tasks_succeeded += 1

    @property
    def stats(self) -> dict:
        return {
            "tasks_processed": self._tasks_processed,
            "tasks_succeeded": self._tasks_succeeded,
            "tasks_failed": self._tasks_failed,
        }
