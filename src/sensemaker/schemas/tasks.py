"""
Task message and result store records.

``SensemakeTask`` is what crosses the queue. ``StatusRecord`` and the two
result records are what the worker writes to the result store and what the
polling endpoint reads back; each carries a ``status`` discriminant.
"""

import json
import secrets
import time
from datetime import UTC, datetime
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

from sensemaker.schemas.comments import Comment

TASK_ID_PREFIX = "task"
TASK_ID_SUFFIX_LENGTH = 9

STATUS_PROCESSING = "processing"
STATUS_COMPLETED = "completed"
STATUS_FAILED = "failed"
STATUS_QUEUED = "queued"


def generate_task_id() -> str:
    """``task_<epoch millis>_<9 hex chars>``."""
    millis = int(time.time() * 1000)
    suffix = secrets.token_hex(5)[:TASK_ID_SUFFIX_LENGTH]
    return f"{TASK_ID_PREFIX}_{millis}_{suffix}"


def utc_now() -> datetime:
    return datetime.now(UTC)


class _WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, protected_namespaces=())

    def to_dict(self) -> dict:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class SensemakeTask(_WireModel):
    """Queue message for one analysis run."""

    task_id: str = Field(alias="taskId")
    comments: list[Comment]
    model_key: str = Field(alias="modelKey")
    model_name: str = Field(alias="modelName")
    additional_context: Optional[str] = Field(None, alias="additionalContext")
    output_language: str = Field("en", alias="outputLanguage")
    created_at: datetime = Field(default_factory=utc_now, alias="createdAt")

    def to_message_bytes(self) -> bytes:
        return json.dumps(self.to_dict(), ensure_ascii=False).encode("utf-8")

    @classmethod
    def from_message_bytes(cls, value: bytes) -> "SensemakeTask":
        return cls.model_validate(json.loads(value))


class StatusRecord(_WireModel):
    status: Literal["processing"] = STATUS_PROCESSING
    task_id: str = Field(alias="taskId")
    attempt: int = Field(1, ge=1)
    started_at: datetime = Field(default_factory=utc_now, alias="startedAt")


class CompletedResult(_WireModel):
    status: Literal["completed"] = STATUS_COMPLETED
    success: Literal[True] = True
    task_id: str = Field(alias="taskId")
    model: str
    comments_processed: int = Field(alias="commentsProcessed")
    # Echoed as null when absent, so it is always present in the document
    additional_context: Optional[str] = Field(None, alias="additionalContext")
    output_language: str = Field(alias="outputLanguage")
    summary: str
    completed_at: datetime = Field(default_factory=utc_now, alias="completedAt")

    def to_dict(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


class FailedResult(_WireModel):
    status: Literal["failed"] = STATUS_FAILED
    success: Literal[False] = False
    task_id: str = Field(alias="taskId")
    error: str
    message: str
    suggestion: Optional[str] = None
    attempt: int = Field(1, ge=1)
    failed_at: datetime = Field(default_factory=utc_now, alias="failedAt")


ResultRecord = Annotated[Union[CompletedResult, FailedResult], Field(discriminator="status")]

_result_adapter: TypeAdapter = TypeAdapter(ResultRecord)


def parse_result_record(document: dict) -> Union[CompletedResult, FailedResult]:
    """Validate a stored result document into its record type."""
    return _result_adapter.validate_python(document)


__all__ = [
    "STATUS_PROCESSING",
    "STATUS_COMPLETED",
    "STATUS_FAILED",
    "STATUS_QUEUED",
    "generate_task_id",
    "utc_now",
    "SensemakeTask",
    "StatusRecord",
    "CompletedResult",
    "FailedResult",
    "ResultRecord",
    "parse_result_record",
]
