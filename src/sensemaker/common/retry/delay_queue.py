"""In-memory delay queue with disk persistence for retry scheduling."""

import base64
import heapq
import json
import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from pathlib import Path

logger = logging.getLogger(__name__)

PERSISTENCE_VERSION = 1


@dataclass
class DelayedMessage:
    """In-memory representation of a delayed retry message."""

    scheduled_time: datetime
    target_topic: str
    retry_count: int
    message_key: bytes | None
    message_value: bytes
    headers: dict[str, str] = field(default_factory=dict)

    def __lt__(self, other: "DelayedMessage") -> bool:
        return self.scheduled_time < other.scheduled_time

    def to_dict(self) -> dict:
        return {
            "scheduled_time": self.scheduled_time.isoformat(),
            "target_topic": self.target_topic,
            "retry_count": self.retry_count,
            "message_key": (
                base64.b64encode(self.message_key).decode("ascii") if self.message_key else None
            ),
            "message_value": base64.b64encode(self.message_value).decode("ascii"),
            "headers": self.headers,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "DelayedMessage":
        scheduled_time = datetime.fromisoformat(data["scheduled_time"])
        if scheduled_time.tzinfo is None:
            scheduled_time = scheduled_time.replace(tzinfo=UTC)
        return cls(
            scheduled_time=scheduled_time,
            target_topic=data["target_topic"],
            retry_count=int(data["retry_count"]),
            message_key=base64.b64decode(data["message_key"]) if data.get("message_key") else None,
            message_value=base64.b64decode(data["message_value"]),
            headers=data.get("headers") or {},
        )


class DelayQueue:
    """Min-heap delay queue with periodic disk persistence.

    Messages are ordered by scheduled_time. Provides push/pop operations
    and JSON-based disk persistence for crash recovery.
    """

    def __init__(self, name: str, persistence_file: Path):
        self._name = name
        self._persistence_file = persistence_file
        self._heap: list[DelayedMessage] = []

    def __len__(self) -> int:
        return len(self._heap)

    @property
    def next_scheduled_time(self) -> datetime | None:
        if not self._heap:
            return None
        return self._heap[0].scheduled_time

    def push(self, message: DelayedMessage) -> None:
        heapq.heappush(self._heap, message)

    def pop_ready(self, now: datetime) -> list[DelayedMessage]:
        """Pop all messages whose scheduled_time <= now, earliest first."""
        ready = []
        while self._heap and self._heap[0].scheduled_time <= now:
            ready.append(heapq.heappop(self._heap))
        return ready

    def requeue_with_delay(self, message: DelayedMessage, delay_seconds: int = 5) -> None:
        """Put a message back with a new delay (e.g. after routing failure)."""
        message.scheduled_time = datetime.now(UTC) + timedelta(seconds=delay_seconds)
        heapq.heappush(self._heap, message)

    def persist_to_disk(self) -> None:
        """Persist the queue to disk as JSON.

        An empty queue removes any stale file so a restart does not replay
        messages that were already routed.
        """
        try:
            if not self._heap:
                if self._persistence_file.exists():
                    self._persistence_file.unlink()
                return

            data = {
                "version": PERSISTENCE_VERSION,
                "name": self._name,
                "last_persisted": datetime.now(UTC).isoformat(),
                "messages": [msg.to_dict() for msg in self._heap],
            }

            self._persistence_file.parent.mkdir(parents=True, exist_ok=True)
            # Write atomically (write to temp file, then rename)
            temp_file = self._persistence_file.with_suffix(".tmp")
            with open(temp_file, "w") as f:
                json.dump(data, f, indent=2)
            temp_file.replace(self._persistence_file)

            logger.debug(
                "Persisted delayed queue to disk",
                extra={"queue_size": len(self._heap), "file": str(self._persistence_file)},
            )

        except OSError as e:
            logger.error(
                "Failed to persist delayed queue to disk",
                extra={"file": str(self._persistence_file), "error": str(e)},
                exc_info=True,
            )

    def restore_from_disk(self) -> int:
        """Restore queue from disk. Returns number of messages restored.

        Overdue messages are kept; they become ready immediately.
        """
        if not self._persistence_file.exists():
            logger.debug(
                "No persistence file found, starting with empty queue",
                extra={"file": str(self._persistence_file)},
            )
            return 0

        try:
            with open(self._persistence_file) as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.error(
                "Failed to read delayed queue from disk",
                extra={"file": str(self._persistence_file), "error": str(e)},
                exc_info=True,
            )
            return 0

        if data.get("version") != PERSISTENCE_VERSION:
            logger.warning(
                "Unknown persistence file version, ignoring",
                extra={"version": data.get("version")},
            )
            return 0

        if data.get("name") != self._name:
            logger.warning(
                "Persistence file belongs to another queue, ignoring",
                extra={"expected_name": self._name, "file_name": data.get("name")},
            )
            return 0

        restored_count = 0
        skipped_count = 0
        for msg_data in data.get("messages", []):
            try:
                heapq.heappush(self._heap, DelayedMessage.from_dict(msg_data))
                restored_count += 1
            except (KeyError, TypeError, ValueError):
                skipped_count += 1

        logger.info(
            "Restored delayed queue from disk",
            extra={
                "restored_count": restored_count,
                "skipped_count": skipped_count,
                "file": str(self._persistence_file),
                "last_persisted": data.get("last_persisted"),
            },
        )

        self._persistence_file.unlink()
        return restored_count
