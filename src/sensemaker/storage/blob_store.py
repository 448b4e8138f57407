"""Azure Blob Storage result store.

Storage structure:
    container/{key} -> JSON document (content type application/json)
"""

import json
import logging
from typing import Any

from azure.core.exceptions import AzureError, ResourceNotFoundError
from azure.storage.blob import ContentSettings
from azure.storage.blob.aio import BlobServiceClient, ContainerClient

from core.errors import StorageError
from core.utils import json_serializer

logger = logging.getLogger(__name__)


class BlobResultStore:
    """Azure Blob Storage implementation of the result store."""

    def __init__(self, connection_string: str, container_name: str):
        self.connection_string = connection_string
        self.container_name = container_name
        self._client: BlobServiceClient | None = None
        self._container: ContainerClient | None = None

    async def initialize(self) -> None:
        """Create the blob client and make sure the container exists."""
        self._client = BlobServiceClient.from_connection_string(self.connection_string)
        self._container = self._client.get_container_client(self.container_name)
        try:
            if not await self._container.exists():
                await self._container.create_container()
        except AzureError as e:
            raise StorageError(
                f"Failed to open container {self.container_name}", cause=e
            ) from e

        logger.info(
            "BlobResultStore client initialized",
            extra={"container_name": self.container_name},
        )

    def _blob(self, key: str):
        if self._container is None:
            raise StorageError("BlobResultStore not initialized. Call initialize() first.")
        return self._container.get_blob_client(key)

    async def get_json(self, key: str) -> dict[str, Any] | None:
        blob_client = self._blob(key)
        try:
            download = await blob_client.download_blob()
            content = await download.readall()
        except ResourceNotFoundError:
            return None
        except AzureError as e:
            raise StorageError(f"Failed to read {key}", cause=e) from e

        try:
            return json.loads(content)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise StorageError(f"Stored document {key} is not valid JSON", cause=e) from e

    async def put_json(self, key: str, document: dict[str, Any]) -> None:
        blob_client = self._blob(key)
        try:
            await blob_client.upload_blob(
                json.dumps(document, default=json_serializer),
                overwrite=True,
                content_settings=ContentSettings(content_type="application/json"),
            )
        except AzureError as e:
            raise StorageError(f"Failed to write {key}", cause=e) from e

        logger.debug("Stored document", extra={"key": key})

    async def delete(self, key: str) -> bool:
        blob_client = self._blob(key)
        try:
            await blob_client.delete_blob()
        except ResourceNotFoundError:
            return False
        except AzureError as e:
            raise StorageError(f"Failed to delete {key}", cause=e) from e
        return True

    async def close(self) -> None:
        if self._client is not None:
            await self._client.close()
            self._client = None
            self._container = None
            logger.debug("BlobResultStore client closed")
