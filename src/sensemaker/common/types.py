"""Transport message types for the task queue."""

from dataclasses import dataclass

__all__ = [
    "PipelineMessage",
    "ProduceResult",
    "from_consumer_record",
    "decode_headers",
]


@dataclass(frozen=True)
class PipelineMessage:
    """Message received from a Kafka topic."""

    topic: str
    partition: int
    offset: int
    timestamp: int
    key: bytes | None = None
    value: bytes | None = None
    headers: list[tuple[str, bytes]] | None = None

    @property
    def key_str(self) -> str | None:
        if self.key is None:
            return None
        return self.key.decode("utf-8", errors="replace")

    def header_dict(self) -> dict[str, str]:
        return decode_headers(self.headers)


@dataclass(frozen=True)
class ProduceResult:
    """Confirmation of a published message."""

    topic: str
    partition: int
    offset: int


def decode_headers(headers) -> dict[str, str]:
    """Decode a list of (key, bytes) header pairs into a str dict.

    Malformed entries are skipped; later duplicates win.
    """
    decoded: dict[str, str] = {}
    if not headers:
        return decoded

    items = headers.items() if isinstance(headers, dict) else headers
    for entry in items:
        if not (isinstance(entry, tuple) and len(entry) == 2):
            continue
        key, value = entry
        key_str = key.decode("utf-8", errors="replace") if isinstance(key, bytes) else str(key)
        if isinstance(value, bytes):
            value_str = value.decode("utf-8", errors="replace")
        elif value is None:
            value_str = ""
        else:
            value_str = str(value)
        decoded[key_str] = value_str
    return decoded


def from_consumer_record(record) -> PipelineMessage:
    """Convert aiokafka ConsumerRecord to PipelineMessage."""
    headers = None
    if getattr(record, "headers", None):
        headers = [(k, v) for k, v in record.headers]

    return PipelineMessage(
        topic=record.topic,
        partition=record.partition,
        offset=record.offset,
        timestamp=record.timestamp,
        key=record.key,
        value=record.value,
        headers=headers,
    )
