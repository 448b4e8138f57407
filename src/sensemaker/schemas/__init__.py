"""Pydantic models for canonical comments, queue messages and stored records."""

from sensemaker.schemas.comments import (
    Comment,
    GroupedVotes,
    SimpleVotes,
    Tally,
    Topic,
    VoteTally,
)
from sensemaker.schemas.tasks import (
    CompletedResult,
    FailedResult,
    ResultRecord,
    SensemakeTask,
    StatusRecord,
    generate_task_id,
    parse_result_record,
)

__all__ = [
    "Comment",
    "Topic",
    "VoteTally",
    "SimpleVotes",
    "GroupedVotes",
    "Tally",
    "SensemakeTask",
    "StatusRecord",
    "CompletedResult",
    "FailedResult",
    "ResultRecord",
    "generate_task_id",
    "parse_result_record",
]
