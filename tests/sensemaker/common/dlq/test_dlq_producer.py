"""
Unit tests for the DLQ producer.

Test Coverage:
    - Envelope carries the original record verbatim plus failure context
    - send publishes to the configured DLQ topic with DLQ headers
    - Synthetic key when the original record has none
    - Broker failures surface as TransportError
    - stop() is a no-op before first use
"""

import json
from unittest.mock import AsyncMock, Mock

import pytest

from conftest import make_pipeline_message
from core.errors import TransportError
from core.types import ErrorCategory
from sensemaker.common.dlq.producer import DLQProducer, build_dlq_envelope


def _make_producer(config):
    producer = DLQProducer(
        config=config, worker_name="task_worker", group_id="sensemaker-task_worker", worker_id="w-1"
    )
    kafka = Mock()
    kafka.send_and_wait = AsyncMock(return_value=Mock(partition=0, offset=11))
    kafka.flush = AsyncMock()
    kafka.stop = AsyncMock()
    producer._producer = kafka
    return producer, kafka


class TestBuildEnvelope:
    def test_preserves_original_record(self):
        message = make_pipeline_message(
            value=b'{"taskId": "task_1"}', headers=[("retry_count", b"2")]
        )

        envelope = build_dlq_envelope(
            message, ValueError("bad"), ErrorCategory.PERMANENT, "permanent", 2, worker_id="w-1"
        )

        assert envelope["original_topic"] == "sensemaker-tasks"
        assert envelope["original_offset"] == 7
        assert envelope["original_key"] == "task_1700000000000_abcdef123"
        assert envelope["original_value"] == '{"taskId": "task_1"}'
        assert envelope["original_headers"] == {"retry_count": "2"}
        assert envelope["error_type"] == "ValueError"
        assert envelope["error_message"] == "bad"
        assert envelope["error_category"] == "permanent"
        assert envelope["dlq_reason"] == "permanent"
        assert envelope["retry_count"] == 2
        assert envelope["worker_id"] == "w-1"

    def test_string_errors(self):
        envelope = build_dlq_envelope(
            make_pipeline_message(value=None), "Missing headers", ErrorCategory.UNKNOWN, "malformed", 0
        )

        assert envelope["original_value"] is None
        assert envelope["error_message"] == "Missing headers"


class TestSend:
    @pytest.mark.asyncio
    async def test_publishes_to_dlq_topic(self, sensemaker_config):
        producer, kafka = _make_producer(sensemaker_config)

        await producer.send(
            make_pipeline_message(), ValueError("bad"), ErrorCategory.PERMANENT, "permanent"
        )

        args = kafka.send_and_wait.await_args
        assert args.args[0] == "sensemaker-failed-tasks"
        assert args.kwargs["key"] == b"task_1700000000000_abcdef123"
        body = json.loads(args.kwargs["value"])
        assert body["consumer_group"] == "sensemaker-task_worker"
        headers = dict(args.kwargs["headers"])
        assert headers["dlq_reason"] == b"permanent"
        assert headers["dlq_source_topic"] == b"sensemaker-tasks"

    @pytest.mark.asyncio
    async def test_synthetic_key(self, sensemaker_config):
        producer, kafka = _make_producer(sensemaker_config)

        await producer.send(
            make_pipeline_message(key=None, offset=3), "bad", ErrorCategory.UNKNOWN, "malformed"
        )

        assert kafka.send_and_wait.await_args.kwargs["key"] == b"dlq-sensemaker-tasks-0-3"

    @pytest.mark.asyncio
    async def test_failure_raises_transport_error(self, sensemaker_config):
        producer, kafka = _make_producer(sensemaker_config)
        kafka.send_and_wait.side_effect = RuntimeError("broker down")

        with pytest.raises(TransportError):
            await producer.send(
                make_pipeline_message(), ValueError("bad"), ErrorCategory.PERMANENT, "permanent"
            )

    @pytest.mark.asyncio
    async def test_stop(self, sensemaker_config):
        producer, kafka = _make_producer(sensemaker_config)

        await producer.stop()
        await DLQProducer(sensemaker_config, "w", "g", "id").stop()

        kafka.stop.assert_awaited_once()
        assert producer._producer is None
