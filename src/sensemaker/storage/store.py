"""Result store contract and key layout.

Every task owns two documents:
    {prefix}{taskId}.json          -> completed or failed result
    {prefix}{taskId}-status.json   -> processing status record
"""

from typing import Any, Protocol, runtime_checkable

RESULT_SUFFIX = ".json"
STATUS_SUFFIX = "-status.json"


@runtime_checkable
class ResultStore(Protocol):
    """Durable key -> JSON document store shared by the API and the workers."""

    async def get_json(self, key: str) -> dict[str, Any] | None:
        """Return the document stored under key, or None if absent."""
        ...

    async def put_json(self, key: str, document: dict[str, Any]) -> None:
        """Create or overwrite the document stored under key."""
        ...

    async def delete(self, key: str) -> bool:
        """Remove key. Returns True if something was deleted."""
        ...

    async def close(self) -> None:
        ...


def result_key(task_id: str, prefix: str = "") -> str:
    return f"{prefix}{task_id}{RESULT_SUFFIX}"


def status_key(task_id: str, prefix: str = "") -> str:
    return f"{prefix}{task_id}{STATUS_SUFFIX}"
