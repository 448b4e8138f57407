"""
Unit tests for task and result records.

Test Coverage:
    - Task id format
    - Task message serialization with camelCase keys
    - Completed record keeps a null additionalContext
    - Result documents parse into the right record type
"""

import json
import re

import pytest
from pydantic import ValidationError

from sensemaker.schemas.comments import Comment, SimpleVotes, VoteTally
from sensemaker.schemas.tasks import (
    CompletedResult,
    FailedResult,
    SensemakeTask,
    StatusRecord,
    generate_task_id,
    parse_result_record,
)


def make_task(**overrides):
    fields = dict(
        task_id="task_1700000000000_abcdef123",
        comments=[
            Comment(id="1", text="Hello", vote_info=SimpleVotes(tally=VoteTally(agree_count=2)))
        ],
        model_key="sk-test",
        model_name="openai/gpt-4o-mini",
    )
    fields.update(overrides)
    return SensemakeTask(**fields)


class TestGenerateTaskId:
    def test_format(self):
        assert re.fullmatch(r"task_\d{13}_[0-9a-f]{9}", generate_task_id())

    def test_unique(self):
        assert len({generate_task_id() for _ in range(50)}) == 50


class TestSensemakeTask:
    def test_message_uses_wire_names(self):
        payload = json.loads(make_task(additional_context="City budget").to_message_bytes())

        assert payload["taskId"] == "task_1700000000000_abcdef123"
        assert payload["modelKey"] == "sk-test"
        assert payload["modelName"] == "openai/gpt-4o-mini"
        assert payload["additionalContext"] == "City budget"
        assert payload["outputLanguage"] == "en"
        assert "createdAt" in payload
        assert payload["comments"][0]["voteInfo"] == {
            "agreeCount": 2,
            "disagreeCount": 0,
            "passCount": 0,
        }

    def test_message_reads_back(self):
        task = make_task(output_language="fr")

        restored = SensemakeTask.from_message_bytes(task.to_message_bytes())

        assert restored == task

    def test_invalid_message(self):
        with pytest.raises(ValidationError):
            SensemakeTask.from_message_bytes(b'{"taskId": "t"}')


class TestResultRecords:
    def test_completed_keeps_null_context(self):
        record = CompletedResult(
            task_id="t1",
            model="m",
            comments_processed=3,
            output_language="en",
            summary="## Overview",
        )

        document = record.to_dict()

        assert document["status"] == "completed"
        assert document["success"] is True
        assert document["commentsProcessed"] == 3
        assert document["additionalContext"] is None

    def test_failed_omits_missing_suggestion(self):
        document = FailedResult(task_id="t1", error="Processing Error", message="boom").to_dict()

        assert document["status"] == "failed"
        assert document["success"] is False
        assert "suggestion" not in document
        assert document["attempt"] == 1

    def test_parse_by_status(self):
        completed = CompletedResult(
            task_id="t1", model="m", comments_processed=1, output_language="en", summary="s"
        ).to_dict()
        failed = FailedResult(task_id="t1", error="e", message="m").to_dict()

        assert isinstance(parse_result_record(completed), CompletedResult)
        assert isinstance(parse_result_record(failed), FailedResult)

    def test_status_record_cannot_parse_as_result(self):
        with pytest.raises(ValidationError):
            parse_result_record(StatusRecord(task_id="t1").to_dict())

    def test_attempt_must_be_positive(self):
        with pytest.raises(ValidationError):
            StatusRecord(task_id="t1", attempt=0)
