"""
Tests for the local JSON file result store.

Test Coverage:
    - put/get round trip and overwrite
    - Missing keys read as None and delete as False
    - Corrupt documents raise StorageError
    - No temporary files left behind after a write
"""

from datetime import UTC, datetime

import pytest

from core.errors import StorageError
from sensemaker.storage.json_store import LocalResultStore


@pytest.fixture
def store(tmp_path):
    return LocalResultStore(tmp_path / "results")


class TestLocalResultStore:
    @pytest.mark.asyncio
    async def test_put_and_get(self, store):
        await store.put_json("task_1.json", {"status": "completed", "summary": "## Overview"})

        assert await store.get_json("task_1.json") == {
            "status": "completed",
            "summary": "## Overview",
        }

    @pytest.mark.asyncio
    async def test_overwrite(self, store):
        await store.put_json("task_1.json", {"attempt": 1})
        await store.put_json("task_1.json", {"attempt": 2})

        assert await store.get_json("task_1.json") == {"attempt": 2}

    @pytest.mark.asyncio
    async def test_serializes_datetimes(self, store):
        await store.put_json("task_1.json", {"at": datetime(2025, 1, 1, tzinfo=UTC)})

        assert (await store.get_json("task_1.json"))["at"].startswith("2025-01-01")

    @pytest.mark.asyncio
    async def test_missing_key(self, store):
        assert await store.get_json("absent.json") is None
        assert await store.delete("absent.json") is False

    @pytest.mark.asyncio
    async def test_delete(self, store):
        await store.put_json("task_1.json", {})

        assert await store.delete("task_1.json") is True
        assert await store.get_json("task_1.json") is None

    @pytest.mark.asyncio
    async def test_corrupt_document(self, store):
        (store.storage_path / "task_1.json").write_text("{not json")

        with pytest.raises(StorageError):
            await store.get_json("task_1.json")

    @pytest.mark.asyncio
    async def test_no_temp_files_left(self, store):
        await store.put_json("task_1.json", {"a": 1})

        assert [p.name for p in store.storage_path.iterdir()] == ["task_1.json"]
