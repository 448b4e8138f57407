"""
Unit tests for TaskRetryHandler.

Test Coverage:
    - Retryable failures go to the retry topic with the next retry count
    - Delay follows the configured schedule
    - Permanent failures and exhausted budgets go to the DLQ
    - Retry producer failures propagate
    - Sending before start() raises
"""

from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, Mock

import pytest

from conftest import make_pipeline_message
from core.errors import TransportError
from core.types import ErrorCategory
from sensemaker.common.retry.handler import ACTION_DLQ, ACTION_RETRY, TaskRetryHandler


def _make_handler(config, retry_producer=None):
    dlq_producer = Mock()
    dlq_producer.topic = "sensemaker-failed-tasks"
    dlq_producer.send = AsyncMock()
    if retry_producer is None:
        retry_producer = Mock()
        retry_producer.send = AsyncMock()
    handler = TaskRetryHandler(config, dlq_producer, retry_producer=retry_producer)
    return handler, dlq_producer, retry_producer


class TestRetryRouting:
    @pytest.mark.asyncio
    async def test_first_failure_scheduled_for_retry(self, sensemaker_config):
        handler, dlq, retry = _make_handler(sensemaker_config)
        message = make_pipeline_message(value=b'{"taskId": "task_1"}')
        before = datetime.now(UTC)

        action = await handler.handle_failure(
            message, "task_1", 0, RuntimeError("timeout"), ErrorCategory.TRANSIENT
        )

        assert action == ACTION_RETRY
        dlq.send.assert_not_awaited()
        kwargs = retry.send.await_args.kwargs
        assert kwargs["topic"] == "sensemaker-tasks.retry"
        assert kwargs["key"] == "task_1"
        assert kwargs["value"] == b'{"taskId": "task_1"}'
        headers = kwargs["headers"]
        assert headers["retry_count"] == "1"
        assert headers["target_topic"] == "sensemaker-tasks"
        assert headers["retry_delay_seconds"] == "30"
        scheduled = datetime.fromisoformat(headers["scheduled_retry_time"])
        assert scheduled >= before + timedelta(seconds=30)

    @pytest.mark.asyncio
    async def test_delay_follows_schedule(self, sensemaker_config):
        handler, _, retry = _make_handler(sensemaker_config)

        await handler.handle_failure(
            make_pipeline_message(), "task_1", 2, RuntimeError("503"), ErrorCategory.TRANSIENT
        )

        headers = retry.send.await_args.kwargs["headers"]
        assert headers["retry_count"] == "3"
        assert headers["retry_delay_seconds"] == "300"

    @pytest.mark.asyncio
    async def test_auth_failures_are_retried(self, sensemaker_config):
        handler, dlq, retry = _make_handler(sensemaker_config)

        action = await handler.handle_failure(
            make_pipeline_message(), "task_1", 0, RuntimeError("401"), ErrorCategory.AUTH
        )

        assert action == ACTION_RETRY
        assert retry.send.await_args.kwargs["headers"]["error_category"] == "auth"


class TestDlqRouting:
    @pytest.mark.asyncio
    async def test_permanent_failure(self, sensemaker_config):
        handler, dlq, retry = _make_handler(sensemaker_config)
        message = make_pipeline_message()
        error = ValueError("no comments")

        action = await handler.handle_failure(
            message, "task_1", 0, error, ErrorCategory.PERMANENT
        )

        assert action == ACTION_DLQ
        retry.send.assert_not_awaited()
        dlq.send.assert_awaited_once_with(
            message, error, ErrorCategory.PERMANENT, reason="permanent", retry_count=0
        )

    @pytest.mark.asyncio
    async def test_exhausted_budget(self, sensemaker_config):
        handler, dlq, retry = _make_handler(sensemaker_config)

        action = await handler.handle_failure(
            make_pipeline_message(), "task_1", 3, RuntimeError("timeout"), ErrorCategory.TRANSIENT
        )

        assert action == ACTION_DLQ
        assert dlq.send.await_args.kwargs["reason"] == "exhausted"
        retry.send.assert_not_awaited()


class TestFailures:
    @pytest.mark.asyncio
    async def test_retry_send_failure_propagates(self, sensemaker_config):
        retry_producer = Mock()
        retry_producer.send = AsyncMock(side_effect=TransportError("broker down"))
        handler, _, _ = _make_handler(sensemaker_config, retry_producer=retry_producer)

        with pytest.raises(TransportError):
            await handler.handle_failure(
                make_pipeline_message(), "task_1", 0, RuntimeError("x"), ErrorCategory.UNKNOWN
            )

    @pytest.mark.asyncio
    async def test_requires_start_without_producer(self, sensemaker_config):
        dlq_producer = Mock()
        dlq_producer.topic = "sensemaker-failed-tasks"
        handler = TaskRetryHandler(sensemaker_config, dlq_producer)

        with pytest.raises(RuntimeError, match="not started"):
            await handler.handle_failure(
                make_pipeline_message(), "task_1", 0, RuntimeError("x"), ErrorCategory.UNKNOWN
            )
