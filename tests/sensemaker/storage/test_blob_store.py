"""
Tests for the Azure Blob result store with a mocked container client.

Test Coverage:
    - Reads decode JSON and map missing blobs to None
    - Writes overwrite with a JSON content type
    - Deletes report whether a blob existed
    - Azure failures surface as StorageError
    - Use before initialize() raises StorageError
"""

from unittest.mock import AsyncMock, Mock

import pytest
from azure.core.exceptions import HttpResponseError, ResourceNotFoundError

from core.errors import StorageError
from sensemaker.storage.blob_store import BlobResultStore


def _make_store():
    store = BlobResultStore("UseDevelopmentStorage=true", "sensemaker-results")
    blob_client = Mock()
    blob_client.upload_blob = AsyncMock()
    blob_client.delete_blob = AsyncMock()
    download = Mock(readall=AsyncMock(return_value=b'{"status": "completed"}'))
    blob_client.download_blob = AsyncMock(return_value=download)
    container = Mock()
    container.get_blob_client.return_value = blob_client
    store._container = container
    return store, blob_client


class TestBlobResultStore:
    @pytest.mark.asyncio
    async def test_get_json(self):
        store, blob = _make_store()

        assert await store.get_json("task_1.json") == {"status": "completed"}
        store._container.get_blob_client.assert_called_with("task_1.json")

    @pytest.mark.asyncio
    async def test_missing_blob(self):
        store, blob = _make_store()
        blob.download_blob.side_effect = ResourceNotFoundError("gone")

        assert await store.get_json("task_1.json") is None

    @pytest.mark.asyncio
    async def test_put_json(self):
        store, blob = _make_store()

        await store.put_json("task_1.json", {"a": 1})

        args = blob.upload_blob.await_args
        assert args.args[0] == '{"a": 1}'
        assert args.kwargs["overwrite"] is True
        assert args.kwargs["content_settings"].content_type == "application/json"

    @pytest.mark.asyncio
    async def test_delete(self):
        store, blob = _make_store()

        assert await store.delete("task_1.json") is True
        blob.delete_blob.side_effect = ResourceNotFoundError("gone")
        assert await store.delete("task_1.json") is False

    @pytest.mark.asyncio
    async def test_azure_failure(self):
        store, blob = _make_store()
        blob.upload_blob.side_effect = HttpResponseError("throttled")

        with pytest.raises(StorageError):
            await store.put_json("task_1.json", {})

    @pytest.mark.asyncio
    async def test_requires_initialize(self):
        store = BlobResultStore("UseDevelopmentStorage=true", "sensemaker-results")

        with pytest.raises(StorageError, match="not initialized"):
            await store.get_json("task_1.json")
