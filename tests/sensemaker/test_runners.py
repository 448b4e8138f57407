"""
Tests for process runners and the command line.

Test Coverage:
    - Startup retries with backoff and gives up after the limit
    - Workers are stopped exactly once, on shutdown or when start() returns
    - Every command maps to a runner
"""

import asyncio
from unittest.mock import AsyncMock

import pytest

from sensemaker.__main__ import parse_args
from sensemaker.runners import RUNNERS, _start_with_retry, execute_worker_with_shutdown


class BlockingWorker:
    """start() blocks until stop() is called."""

    def __init__(self):
        self._stopped = asyncio.Event()
        self.stop_calls = 0

    async def start(self):
        await self._stopped.wait()

    async def stop(self):
        self.stop_calls += 1
        self._stopped.set()


class TestStartWithRetry:
    @pytest.mark.asyncio
    async def test_retries_until_success(self):
        start = AsyncMock(side_effect=[ConnectionError("no broker"), None])

        await _start_with_retry(start, "worker", max_retries=3, backoff_base=0)

        assert start.await_count == 2

    @pytest.mark.asyncio
    async def test_gives_up(self):
        start = AsyncMock(side_effect=ConnectionError("no broker"))

        with pytest.raises(ConnectionError):
            await _start_with_retry(start, "worker", max_retries=2, backoff_base=0)

        assert start.await_count == 2


class TestExecuteWorkerWithShutdown:
    @pytest.mark.asyncio
    async def test_stops_on_shutdown(self):
        worker = BlockingWorker()
        shutdown = asyncio.Event()

        run = asyncio.create_task(execute_worker_with_shutdown(worker, "task-worker", shutdown))
        await asyncio.sleep(0)
        shutdown.set()
        await asyncio.wait_for(run, timeout=1)

        assert worker.stop_calls == 1

    @pytest.mark.asyncio
    async def test_stops_when_start_returns(self):
        worker = AsyncMock()

        await execute_worker_with_shutdown(worker, "retry-scheduler", asyncio.Event())

        worker.stop.assert_awaited_once()


class TestCommandLine:
    def test_commands(self):
        assert set(RUNNERS) == {"api", "worker", "retry-scheduler"}
        args = parse_args(["worker", "--metrics-port", "9100"])
        assert args.command == "worker"
        assert args.metrics_port == 9100

    def test_unknown_command(self):
        with pytest.raises(SystemExit):
            parse_args(["scheduler"])
