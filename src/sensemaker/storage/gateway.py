"""Result store gateway: typed reads and writes of task status and result records."""

import logging
import re
from typing import Union

from pydantic import ValidationError

from config.config import SensemakerConfig
from core.errors import InvalidTaskError, StorageError, TaskNotFoundError
from sensemaker.schemas.tasks import (
    CompletedResult,
    FailedResult,
    StatusRecord,
    parse_result_record,
)
from sensemaker.storage.store import (
    RESULT_SUFFIX,
    STATUS_SUFFIX,
    ResultStore,
    result_key,
    status_key,
)

logger = logging.getLogger(__name__)

# Task ids become storage keys; anything outside this alphabet cannot exist
_TASK_ID_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]{0,127}$")

# The result key of "<id>-status" is the status key of "<id>"
_STATUS_KEY_STEM = STATUS_SUFFIX[: -len(RESULT_SUFFIX)]


def is_valid_task_id(task_id: str) -> bool:
    if not _TASK_ID_PATTERN.match(task_id or ""):
        return False
    return not task_id.endswith(_STATUS_KEY_STEM)


def _require_valid_task_id(task_id: str) -> None:
    if not is_valid_task_id(task_id):
        raise InvalidTaskError(
            f"Invalid task id: {task_id!r}", context={"task_id": task_id}
        )


class ResultStoreGateway:
    """Reads and writes the two per-task documents.

    The result document and the status document use distinct keys so a
    result never depends on the status record surviving.
    """

    def __init__(self, store: ResultStore, prefix: str = ""):
        self.store = store
        self.prefix = prefix

    async def write_status(self, task_id: str, attempt: int = 1) -> StatusRecord:
        _require_valid_task_id(task_id)
        record = StatusRecord(task_id=task_id, attempt=attempt)
        await self.store.put_json(status_key(task_id, self.prefix), record.to_dict())
        logger.debug("Status record written", extra={"task_id": task_id, "attempt": attempt})
        return record

    async def read_status(self, task_id: str) -> StatusRecord | None:
        if not is_valid_task_id(task_id):
            return None
        document = await self.store.get_json(status_key(task_id, self.prefix))
        if document is None:
            return None
        try:
            return StatusRecord.model_validate(document)
        except ValidationError as e:
            raise StorageError(f"Malformed status record for {task_id}", cause=e) from e

    async def write_result(self, record: Union[CompletedResult, FailedResult]) -> None:
        """Overwrite the task's result document; redeliveries simply replace it."""
        _require_valid_task_id(record.task_id)
        await self.store.put_json(result_key(record.task_id, self.prefix), record.to_dict())
        logger.debug(
            "Result record written",
            extra={"task_id": record.task_id, "status": record.status},
        )

    async def read_result(self, task_id: str) -> Union[CompletedResult, FailedResult]:
        """Return the task's result record.

        Raises:
            TaskNotFoundError: No result document exists (unknown id or still queued)
            StorageError: The store failed or holds a malformed document
        """
        if not is_valid_task_id(task_id):
            raise TaskNotFoundError(task_id)

        document = await self.store.get_json(result_key(task_id, self.prefix))
        if document is None:
            raise TaskNotFoundError(task_id)
        try:
            return parse_result_record(document)
        except ValidationError as e:
            raise StorageError(f"Malformed result record for {task_id}", cause=e) from e

    async def delete_task(self, task_id: str) -> None:
        """Remove the result and status documents.

        Raises:
            TaskNotFoundError: The result document was already absent
        """
        if not is_valid_task_id(task_id):
            raise TaskNotFoundError(task_id)

        result_deleted = await self.store.delete(result_key(task_id, self.prefix))
        status_deleted = await self.store.delete(status_key(task_id, self.prefix))

        logger.info(
            "Task records deleted",
            extra={
                "task_id": task_id,
                "result_deleted": result_deleted,
                "status_deleted": status_deleted,
            },
        )
        if not result_deleted:
            raise TaskNotFoundError(task_id)

    async def close(self) -> None:
        await self.store.close()


async def create_result_store(config: SensemakerConfig) -> ResultStore:
    """Build the configured result store backend."""
    if config.storage_backend == "blob":
        from sensemaker.storage.blob_store import BlobResultStore

        store = BlobResultStore(config.storage_connection_string, config.storage_container)
        await store.initialize()
        return store

    from sensemaker.storage.json_store import LocalResultStore

    return LocalResultStore(config.storage_local_path)


async def create_gateway(config: SensemakerConfig) -> ResultStoreGateway:
    store = await create_result_store(config)
    logger.info(
        "Result store ready",
        extra={"storage_backend": config.storage_backend, "storage_prefix": config.storage_prefix},
    )
    return ResultStoreGateway(store, prefix=config.storage_prefix)
