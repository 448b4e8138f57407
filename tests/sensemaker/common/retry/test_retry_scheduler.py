"""
Unit tests for RetryScheduler message handling.

Test Coverage:
    - Due messages are routed to their target topic with the retry count
    - Future messages wait in the delay queue and route once due
    - Malformed headers, unknown targets and bad values go to the DLQ
    - retry_count past the budget goes to the DLQ as exhausted
    - Routing failures requeue the delayed message
    - Stats track each outcome
"""

from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, Mock

import pytest

from conftest import make_pipeline_message
from core.types import ErrorCategory
from sensemaker.common.retry.scheduler import RetryScheduler


def _retry_headers(
    retry_count="1",
    scheduled=None,
    target_topic="sensemaker-tasks",
    error_category="transient",
):
    if scheduled is None:
        scheduled = (datetime.now(UTC) - timedelta(seconds=1)).isoformat()
    headers = {
        "retry_count": retry_count,
        "scheduled_retry_time": scheduled,
        "target_topic": target_topic,
        "error_category": error_category,
    }
    return [(k, v.encode("utf-8")) for k, v in headers.items() if v is not None]


def _retry_message(**header_overrides):
    return make_pipeline_message(
        topic="sensemaker-tasks.retry",
        key=b"task_1",
        value=b'{"taskId": "task_1"}',
        headers=_retry_headers(**header_overrides),
    )


@pytest.fixture
def scheduler(sensemaker_config, tmp_path):
    scheduler = RetryScheduler(
        sensemaker_config, persistence_dir=str(tmp_path / "retry"), health_port=None
    )
    scheduler._producer = Mock()
    scheduler._producer.send = AsyncMock()
    scheduler._dlq_producer = Mock()
    scheduler._dlq_producer.send = AsyncMock()
    return scheduler


class TestRouting:
    @pytest.mark.asyncio
    async def test_due_message_routed_immediately(self, scheduler):
        await scheduler.handle_retry_message(_retry_message(retry_count="2"))

        kwargs = scheduler._producer.send.await_args.kwargs
        assert kwargs["topic"] == "sensemaker-tasks"
        assert kwargs["key"] == b"task_1"
        assert kwargs["value"] == b'{"taskId": "task_1"}'
        assert kwargs["headers"] == {
            "redelivered_from": "sensemaker-tasks.retry",
            "retry_count": "2",
            "error_category": "transient",
        }
        assert scheduler.stats["messages_routed"] == 1

    @pytest.mark.asyncio
    async def test_future_message_delayed_then_routed(self, scheduler):
        scheduled = datetime.now(UTC) + timedelta(minutes=5)

        await scheduler.handle_retry_message(_retry_message(scheduled=scheduled.isoformat()))

        scheduler._producer.send.assert_not_awaited()
        assert len(scheduler.queue) == 1
        assert scheduler.stats["messages_delayed"] == 1

        assert await scheduler.process_ready(datetime.now(UTC)) == 0
        routed = await scheduler.process_ready(scheduled + timedelta(seconds=1))

        assert routed == 1
        assert len(scheduler.queue) == 0
        assert scheduler._producer.send.await_args.kwargs["headers"]["retry_count"] == "1"

    @pytest.mark.asyncio
    async def test_last_allowed_retry_is_routed(self, scheduler):
        await scheduler.handle_retry_message(_retry_message(retry_count="3"))

        scheduler._producer.send.assert_awaited_once()
        scheduler._dlq_producer.send.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_routing_failure_requeues(self, scheduler):
        scheduled = datetime.now(UTC) + timedelta(minutes=5)
        await scheduler.handle_retry_message(_retry_message(scheduled=scheduled.isoformat()))
        scheduler._producer.send.side_effect = RuntimeError("broker down")

        routed = await scheduler.process_ready(scheduled + timedelta(seconds=1))

        assert routed == 0
        assert len(scheduler.queue) == 1

    @pytest.mark.asyncio
    async def test_target_write_failure_propagates(self, scheduler):
        scheduler._producer.send.side_effect = RuntimeError("broker down")

        with pytest.raises(RuntimeError):
            await scheduler.handle_retry_message(_retry_message())


class TestDeadLettering:
    @pytest.mark.asyncio
    async def test_exhausted(self, scheduler):
        message = _retry_message(retry_count="4")

        await scheduler.handle_retry_message(message)

        scheduler._producer.send.assert_not_awaited()
        args = scheduler._dlq_producer.send.await_args
        assert args.args[0] is message
        assert args.args[2] == ErrorCategory.TRANSIENT
        assert args.kwargs == {"reason": "exhausted", "retry_count": 4}
        assert scheduler.stats["messages_exhausted"] == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "overrides",
        [
            {"target_topic": None},
            {"target_topic": "some-other-topic"},
            {"retry_count": "soon"},
            {"scheduled": "whenever"},
        ],
    )
    async def test_malformed(self, scheduler, overrides):
        await scheduler.handle_retry_message(_retry_message(**overrides))

        scheduler._producer.send.assert_not_awaited()
        assert scheduler._dlq_producer.send.await_args.kwargs["reason"] == "malformed"
        assert scheduler.stats["messages_malformed"] == 1

    @pytest.mark.asyncio
    async def test_unknown_category_header(self, scheduler):
        await scheduler.handle_retry_message(
            _retry_message(target_topic=None, error_category="strange")
        )

        assert scheduler._dlq_producer.send.await_args.args[2] == ErrorCategory.UNKNOWN
