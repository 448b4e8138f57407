"""Process runners for the API, the task worker and the retry scheduler.

Each runner wires its component from configuration and runs it until the
shutdown event is set.
"""

import asyncio
import logging
import os
from contextlib import suppress
from typing import Callable, Optional

from config.config import SensemakerConfig
from core.logging.context import set_log_context
from sensemaker.api.app import run_api
from sensemaker.common.retry.scheduler import RetryScheduler
from sensemaker.engine.loader import load_engine_factory
from sensemaker.storage.gateway import create_gateway
from sensemaker.tasks.processor import TaskProcessor
from sensemaker.tasks.worker import TaskWorker

logger = logging.getLogger(__name__)

DEFAULT_STARTUP_RETRIES = 5
DEFAULT_STARTUP_BACKOFF_BASE = 5  # seconds


async def _start_with_retry(
    start_fn: Callable,
    label: str,
    max_retries: Optional[int] = None,
    backoff_base: Optional[int] = None,
) -> None:
    """Retry an async start function with linear backoff.

    On exhaustion, re-raises the last exception.
    """
    if max_retries is None:
        max_retries = int(os.getenv("STARTUP_MAX_RETRIES", str(DEFAULT_STARTUP_RETRIES)))
    if backoff_base is None:
        backoff_base = int(os.getenv("STARTUP_BACKOFF_SECONDS", str(DEFAULT_STARTUP_BACKOFF_BASE)))

    for attempt in range(1, max_retries + 1):
        try:
            await start_fn()
            return
        except Exception as e:
            if attempt == max_retries:
                logger.error(
                    f"Failed to start {label} after {max_retries} attempts, giving up",
                    extra={"error": str(e), "attempts": max_retries},
                )
                raise
            delay = backoff_base * attempt
            logger.warning(
                f"Failed to start {label} (attempt {attempt}/{max_retries}), "
                f"retrying in {delay}s",
                extra={"error": str(e), "attempt": attempt, "delay": delay},
            )
            await asyncio.sleep(delay)


async def execute_worker_with_shutdown(
    worker_instance,
    stage_name: str,
    shutdown_event: asyncio.Event,
) -> None:
    """Run ``worker_instance.start()`` and stop it once ``shutdown_event`` is set.

    stop() is called exactly once, either by the shutdown watcher or on the
    way out when start() returns or raises first.
    """
    set_log_context(stage=stage_name)
    logger.info(f"Starting {stage_name}...")

    async def shutdown_watcher():
        await shutdown_event.wait()
        logger.info(f"Shutdown signal received, stopping {stage_name}...")
        await worker_instance.stop()

    watcher_task = asyncio.create_task(shutdown_watcher())

    try:
        await _start_with_retry(worker_instance.start, stage_name)
    finally:
        if shutdown_event.is_set():
            await watcher_task
        else:
            watcher_task.cancel()
            with suppress(asyncio.CancelledError):
                await watcher_task
            await worker_instance.stop()


async def run_task_worker(config: SensemakerConfig, shutdown_event: asyncio.Event) -> None:
    engine_factory = load_engine_factory(config.engine_factory)
    gateway = await create_gateway(config)
    processor = TaskProcessor(gateway, engine_factory, engine_base_url=config.engine_base_url)
    worker = TaskWorker(config, processor)
    try:
        await execute_worker_with_shutdown(worker, "task-worker", shutdown_event)
    finally:
        await gateway.close()


async def run_retry_scheduler(config: SensemakerConfig, shutdown_event: asyncio.Event) -> None:
    scheduler = RetryScheduler(config)
    await execute_worker_with_shutdown(scheduler, "retry-scheduler", shutdown_event)


async def run_api_server(config: SensemakerConfig, shutdown_event: asyncio.Event) -> None:
    set_log_context(stage="api")
    await run_api(config, shutdown_event)


RUNNERS = {
    "api": run_api_server,
    "worker": run_task_worker,
    "retry-scheduler": run_retry_scheduler,
}
