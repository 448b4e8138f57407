"""
pytest configuration for sensemaker tests.

Adds src directory to Python path for imports and provides shared fixtures:
a config that needs no broker, an in-memory result store and a scripted
analysis engine.
"""

import sys
from pathlib import Path
from typing import Any

import pytest

# Add src directory to Python path
src_dir = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_dir))

from config.config import SensemakerConfig  # noqa: E402
from sensemaker.common.types import PipelineMessage  # noqa: E402
from sensemaker.storage.gateway import ResultStoreGateway  # noqa: E402


class MemoryResultStore:
    """Dict-backed result store with the same contract as the real backends."""

    def __init__(self):
        self.documents: dict[str, dict[str, Any]] = {}
        self.closed = False

    async def get_json(self, key: str) -> dict[str, Any] | None:
        return self.documents.get(key)

    async def put_json(self, key: str, document: dict[str, Any]) -> None:
        self.documents[key] = document

    async def delete(self, key: str) -> bool:
        return self.documents.pop(key, None) is not None

    async def close(self) -> None:
        self.closed = True


class FakeSummary:
    """Summary with typed content blocks, rendered one block per line."""

    def __init__(self, contents: list[dict[str, str]]):
        self.contents = contents

    def without_contents(self, predicate):
        return FakeSummary([c for c in self.contents if not predicate(c)])

    def get_text(self, format: str) -> str:
        return "\n".join(c["text"] for c in self.contents)


class FakeEngine:
    """Scripted engine recording the order and arguments of stage calls."""

    def __init__(self, topics=None, categorized=None, summary=None, fail_stage=None, error=None):
        self.topics = topics if topics is not None else [{"name": "Transport"}]
        self.categorized = categorized
        self.summary = summary or FakeSummary(
            [
                {"type": "Overview", "text": "## Overview"},
                {"type": "TopicSummary", "text": "## Transport details"},
                {"type": "Conclusion", "text": "## Conclusion"},
            ]
        )
        self.fail_stage = fail_stage
        self.error = error or RuntimeError("engine exploded")
        self.calls: list[tuple[str, tuple]] = []

    def _maybe_fail(self, stage):
        if self.fail_stage == stage:
            raise self.error

    async def learn_topics(self, comments, *args):
        self.calls.append(("learn_topics", args))
        self._maybe_fail("learn_topics")
        return self.topics

    async def categorize_comments(self, comments, *args):
        self.calls.append(("categorize_comments", args))
        self._maybe_fail("categorize_comments")
        if self.categorized is not None:
            return self.categorized
        return [
            {"id": c.id, "text": c.text, "topics": [{"name": "Transport"}]} for c in comments
        ]

    def summarize(self, comments, *args):
        self.calls.append(("summarize", args))
        self._maybe_fail("summarize")
        return self.summary


def make_pipeline_message(
    topic="sensemaker-tasks",
    partition=0,
    offset=7,
    timestamp=1700000000000,
    key=b"task_1700000000000_abcdef123",
    value=b"{}",
    headers=None,
):
    return PipelineMessage(
        topic=topic,
        partition=partition,
        offset=offset,
        timestamp=timestamp,
        key=key,
        value=value,
        headers=headers,
    )


@pytest.fixture
def sensemaker_config(tmp_path):
    """Config pointing at a local broker address and a temporary result directory."""
    return SensemakerConfig(
        bootstrap_servers="localhost:9092",
        storage_local_path=str(tmp_path / "results"),
        default_model="openai/gpt-4o-mini",
        health_port=0,
    )


@pytest.fixture
def memory_store():
    return MemoryResultStore()


@pytest.fixture
def gateway(memory_store):
    return ResultStoreGateway(memory_store)
