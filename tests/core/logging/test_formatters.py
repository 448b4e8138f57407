"""
Tests for log formatters and context propagation.

Test Coverage:
    - JSON output carries context variables and known extra fields
    - Numeric extras keep numeric types
    - Credentials in URL query strings are redacted
    - Console output tags the task id
    - LogContext restores the previous context on exit
    - log_with_context drops reserved LogRecord keys
"""

import json
import logging

import pytest

from core.logging import (
    ConsoleFormatter,
    JSONFormatter,
    LogContext,
    clear_log_context,
    get_log_context,
    log_with_context,
    set_log_context,
)


def make_record(msg="hello", level=logging.INFO, **extra):
    record = logging.LogRecord("sensemaker.test", level, __file__, 10, msg, (), None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


@pytest.fixture(autouse=True)
def _clean_context():
    clear_log_context()
    yield
    clear_log_context()


class TestJSONFormatter:
    def test_context_and_extras(self):
        set_log_context(task_id="task_1", stage="worker")

        entry = json.loads(
            JSONFormatter().format(make_record(comments_count="12", format="pol.is"))
        )

        assert entry["message"] == "hello"
        assert entry["task_id"] == "task_1"
        assert entry["stage"] == "worker"
        assert entry["comments_count"] == 12
        assert entry["format"] == "pol.is"

    def test_uncoercible_numeric_becomes_null(self):
        entry = json.loads(JSONFormatter().format(make_record(attempt="first")))
        assert entry["attempt"] is None

    def test_credentials_redacted_from_paths(self):
        entry = json.loads(
            JSONFormatter().format(
                make_record(http_path="/sensemake?OPENROUTER_API_KEY=sk-live&output_lang=en")
            )
        )
        assert entry["http_path"] == "/sensemake?OPENROUTER_API_KEY=[REDACTED]&output_lang=en"

    def test_exception_included(self):
        try:
            raise ValueError("boom")
        except ValueError:
            import sys

            record = logging.LogRecord(
                "sensemaker.test", logging.ERROR, __file__, 10, "failed", (), sys.exc_info()
            )

        entry = json.loads(JSONFormatter().format(record))

        assert entry["exception"]["type"] == "ValueError"
        assert entry["exception"]["message"] == "boom"
        assert "file" in entry


class TestConsoleFormatter:
    def test_task_tag(self):
        output = ConsoleFormatter().format(make_record(task_id="task_9", attempt=2))

        assert "[task_9]" in output
        assert "[attempt:2]" in output
        assert output.endswith("hello")


class TestLogContext:
    def test_restores_previous_values(self):
        set_log_context(task_id="outer")

        with LogContext(task_id="inner", stage="summarize"):
            assert get_log_context()["task_id"] == "inner"
            assert get_log_context()["stage"] == "summarize"

        assert get_log_context()["task_id"] == "outer"
        assert get_log_context()["stage"] == ""


class TestLogWithContext:
    def test_reserved_keys_dropped(self, caplog):
        logger = logging.getLogger("sensemaker.test.context")

        with caplog.at_level(logging.INFO, logger="sensemaker.test.context"):
            log_with_context(logger, logging.INFO, "Uploaded", filename="x.csv", comments_count=3)

        record = caplog.records[-1]
        assert record.comments_count == 3
        assert record.filename != "x.csv"
