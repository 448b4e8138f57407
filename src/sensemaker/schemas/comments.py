"""
Canonical comment model.

Every upload format is converted into a list of ``Comment`` before anything
else touches it. On the wire a comment's vote info is written in its
metadata-only numeric form; reading it back runs the tally normalizer, so a
comment that crossed the queue is indistinguishable from a freshly parsed one.
"""

from typing import Annotated, Any, Literal, Optional, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_serializer,
    field_validator,
)


class VoteTally(BaseModel):
    """Agree/disagree/pass counts for one comment (or one group's view of it)."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    agree_count: int = Field(0, ge=0, alias="agreeCount")
    disagree_count: int = Field(0, ge=0, alias="disagreeCount")
    pass_count: int = Field(0, ge=0, alias="passCount")


class SimpleVotes(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["simple"] = "simple"
    tally: VoteTally


class GroupedVotes(BaseModel):
    """Tallies keyed by respondent group name, in column order."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["grouped"] = "grouped"
    groups: dict[str, VoteTally]


Tally = Annotated[Union[SimpleVotes, GroupedVotes], Field(discriminator="kind")]


class Topic(BaseModel):
    """A topic with optional nested subtopics (at most three levels deep)."""

    model_config = ConfigDict(populate_by_name=True)

    name: str
    subtopics: Optional[list["Topic"]] = None


class Comment(BaseModel):
    """Canonical comment: ``{id, text, voteInfo?, topics?}``."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    text: str = ""
    vote_info: Optional[Tally] = Field(None, alias="voteInfo")
    topics: Optional[list[Topic]] = None

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, value: Any) -> Any:
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
        return value

    @field_validator("vote_info", mode="before")
    @classmethod
    def _normalize_vote_info(cls, value: Any) -> Any:
        # Local import: the normalizer module imports these models
        from sensemaker.ingest.tally import normalize_tally

        return normalize_tally(value)

    @field_serializer("vote_info")
    def _serialize_vote_info(self, value: Optional[Union[SimpleVotes, GroupedVotes]]):
        if value is None:
            return None
        from sensemaker.ingest.tally import tally_metadata

        return tally_metadata(value)

    def to_wire(self) -> dict[str, Any]:
        """JSON-ready dict with camelCase keys and metadata-only vote info."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


__all__ = [
    "VoteTally",
    "SimpleVotes",
    "GroupedVotes",
    "Tally",
    "Topic",
    "Comment",
]
