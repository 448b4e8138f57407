"""Local JSON file result store for development and single-host deployments.

Storage structure:
    storage_path/{key} -> JSON document

Example:
    ./data/results/task_1718000000000_a1b2c3d4e.json
"""

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any

from core.errors import StorageError
from core.utils import json_serializer

logger = logging.getLogger(__name__)


class LocalResultStore:
    """Filesystem implementation of the result store.

    Writes go to a temporary file in the target directory and are renamed
    into place, so readers never observe a partially written document.
    """

    def __init__(self, storage_path: str | Path):
        self.storage_path = Path(storage_path)
        self.storage_path.mkdir(parents=True, exist_ok=True)
        logger.info(f"Initialized local result store at: {self.storage_path}")

    def _path(self, key: str) -> Path:
        return self.storage_path / key

    async def get_json(self, key: str) -> dict[str, Any] | None:
        file_path = self._path(key)
        try:
            with open(file_path, "r", encoding="utf-8") as f:
                return json.load(f)
        except FileNotFoundError:
            return None
        except (OSError, json.JSONDecodeError) as e:
            raise StorageError(f"Failed to read {key}", cause=e) from e

    async def put_json(self, key: str, document: dict[str, Any]) -> None:
        file_path = self._path(key)
        try:
            file_path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                dir=file_path.parent, prefix=f".{file_path.name}.", suffix=".tmp"
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(document, f, default=json_serializer)
                os.replace(tmp_name, file_path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as e:
            raise StorageError(f"Failed to write {key}", cause=e) from e

        logger.debug("Stored document", extra={"key": key})

    async def delete(self, key: str) -> bool:
        try:
            self._path(key).unlink()
        except FileNotFoundError:
            return False
        except OSError as e:
            raise StorageError(f"Failed to delete {key}", cause=e) from e
        return True

    async def close(self) -> None:
        pass
