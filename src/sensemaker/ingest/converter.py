"""
Upload format detection and row conversion.

``normalize_upload`` is the entry point: it picks the JSON or CSV path from
the declared media type or file extension, runs format detection, and
returns canonical comments. ``rows_to_comments`` turns complete-layout CSV
rows into comments, reading vote columns in either the flat
(``agrees``/``disagrees``/``passes``) or grouped (``<group>-agree-count``)
convention.
"""

import logging
from dataclasses import dataclass, field
from typing import Any

from core.errors import EmptyDatasetError, MissingRequiredColumnsError, UnsupportedFormatError
from sensemaker.ingest.csv_formats import CsvStats, Row, parse_csv_data, read_csv_text
from sensemaker.ingest.json_formats import parse_json_comments
from sensemaker.ingest.tally import parse_count, total_votes
from sensemaker.ingest.topics import parse_topics
from sensemaker.schemas.comments import Comment, GroupedVotes, SimpleVotes, Topic, VoteTally

logger = logging.getLogger(__name__)

ID_COLUMNS = ("comment-id", "id")
TEXT_COLUMNS = ("comment_text", "text")

FLAT_AGREE = "agrees"
FLAT_DISAGREE = "disagrees"
FLAT_PASS = "passes"
FLAT_VOTE_COLUMNS = (FLAT_AGREE, FLAT_DISAGREE, FLAT_PASS)

AGREE_SUFFIX = "-agree-count"
DISAGREE_SUFFIX = "-disagree-count"
PASS_SUFFIX = "-pass-count"
GROUP_SUFFIXES = (AGREE_SUFFIX, DISAGREE_SUFFIX, PASS_SUFFIX)

JSON_MEDIA_TYPES = ("application/json",)
CSV_MEDIA_TYPES = ("text/csv",)


@dataclass
class ParsedUpload:
    """Result of normalizing one uploaded file."""

    format: str
    comments: list[Comment]
    stats: CsvStats | None = None
    detected_format: str | None = None
    warnings: list[str] = field(default_factory=list)


def _first_present(headers: list[str], candidates: tuple[str, ...]) -> str | None:
    for name in headers:
        if name in candidates:
            return name
    return None


def group_names(headers: list[str]) -> list[str]:
    """Respondent groups named by ``<group>-agree-count`` columns, in column order."""
    names = []
    for header in headers:
        if header.endswith(AGREE_SUFFIX):
            name = header[: -len(AGREE_SUFFIX)]
            if name and name not in names:
                names.append(name)
    return names


def _flat_votes(row: Row, headers: set[str]) -> SimpleVotes | None:
    if FLAT_AGREE not in headers or FLAT_DISAGREE not in headers:
        return None
    return SimpleVotes(
        tally=VoteTally(
            agree_count=parse_count(row.get(FLAT_AGREE)),
            disagree_count=parse_count(row.get(FLAT_DISAGREE)),
            pass_count=parse_count(row.get(FLAT_PASS)) if FLAT_PASS in headers else 0,
        )
    )


def _grouped_votes(row: Row, headers: set[str], groups: list[str]) -> GroupedVotes | None:
    tallies = {}
    for group in groups:
        agree_col = f"{group}{AGREE_SUFFIX}"
        disagree_col = f"{group}{DISAGREE_SUFFIX}"
        pass_col = f"{group}{PASS_SUFFIX}"
        if agree_col not in headers or disagree_col not in headers:
            continue
        tallies[group] = VoteTally(
            agree_count=parse_count(row.get(agree_col)),
            disagree_count=parse_count(row.get(disagree_col)),
            pass_count=parse_count(row.get(pass_col)) if pass_col in headers else 0,
        )
    return GroupedVotes(groups=tallies) if tallies else None


def _row_topics(row: Row, headers: set[str]) -> list[Topic] | None:
    if "topics" in headers and row.get("topics"):
        return parse_topics(row["topics"]) or None

    if "topic" in headers and row.get("topic"):
        subtopic = row.get("subtopic") if "subtopic" in headers else ""
        return [
            Topic(
                name=row["topic"],
                subtopics=[Topic(name=subtopic)] if subtopic else None,
            )
        ]

    return None


def rows_to_comments(
    headers: list[str],
    rows: list[Row],
    warnings: list[str] | None = None,
) -> list[Comment]:
    """Convert complete-layout CSV rows into canonical comments.

    Rows with an empty id or text are kept with a ``comment-<n>`` id and
    empty text.

    Raises:
        MissingRequiredColumnsError: No id column or no text column.
    """
    id_column = _first_present(headers, ID_COLUMNS)
    text_column = _first_present(headers, TEXT_COLUMNS)

    missing = []
    if id_column is None:
        missing.append("comment-id")
    if text_column is None:
        missing.append("comment_text")
    if missing:
        raise MissingRequiredColumnsError(
            "CSV must contain comment-id (or id) and comment_text (or text) columns",
            missing_columns=missing,
        )

    header_set = set(headers)
    has_flat = any(col in header_set for col in FLAT_VOTE_COLUMNS)
    groups = group_names(headers)

    if has_flat and groups:
        message = (
            "CSV has both flat and grouped vote columns; using flat "
            f"{', '.join(FLAT_VOTE_COLUMNS)} and ignoring groups {groups}"
        )
        logger.warning(message, extra={"columns": headers})
        if warnings is not None:
            warnings.append(message)

    comments = []
    for index, row in enumerate(rows):
        if has_flat:
            vote_info = _flat_votes(row, header_set)
        elif groups:
            vote_info = _grouped_votes(row, header_set, groups)
        else:
            vote_info = None

        comments.append(
            Comment(
                id=row.get(id_column) or f"comment-{index}",
                text=row.get(text_column) or "",
                vote_info=vote_info,
                topics=_row_topics(row, header_set),
            )
        )

    logger.debug(
        "Converted CSV rows to comments",
        extra={
            "comments_count": len(comments),
            "format": "flat" if has_flat else ("grouped" if groups else "none"),
        },
    )
    return comments


def decode_upload(data: bytes | str) -> str:
    if isinstance(data, str):
        return data
    return data.decode("utf-8", errors="replace")


def _media_type(content_type: str | None) -> str:
    if not content_type:
        return ""
    return content_type.split(";", 1)[0].strip().lower()


def resolve_upload_kind(content_type: str | None, filename: str | None) -> str:
    """Return ``"json"`` or ``"csv"`` from the media type or file extension.

    Raises:
        UnsupportedFormatError: Neither matches.
    """
    media_type = _media_type(content_type)
    name = (filename or "").lower()

    if media_type in JSON_MEDIA_TYPES or name.endswith(".json"):
        return "json"
    if media_type in CSV_MEDIA_TYPES or name.endswith(".csv"):
        return "csv"

    raise UnsupportedFormatError("Only JSON and CSV files are supported")


def parse_csv_upload(text: str) -> ParsedUpload:
    headers, rows = read_csv_text(text)
    result = parse_csv_data(headers, rows)
    warnings = list(result.warnings)
    comments = rows_to_comments(result.headers, result.rows, warnings)
    return ParsedUpload(
        format=result.format.value,
        detected_format=result.detected_format.value,
        comments=comments,
        stats=result.stats,
        warnings=warnings,
    )


def normalize_upload(
    data: bytes | str,
    content_type: str | None = None,
    filename: str | None = None,
) -> ParsedUpload:
    """Detect an upload's format and convert it to canonical comments.

    Raises:
        UnsupportedFormatError: Not JSON or CSV, or unreadable JSON.
        MissingRequiredColumnsError: CSV without id/text (or pol.is vote) columns.
        EmptyDatasetError: The file produced no comments.
    """
    kind = resolve_upload_kind(content_type, filename)
    text = decode_upload(data)

    if kind == "json":
        format_name, comments = parse_json_comments(text)
        parsed = ParsedUpload(format=format_name, detected_format=format_name, comments=comments)
    else:
        parsed = parse_csv_upload(text)

    if not parsed.comments:
        raise EmptyDatasetError("No valid comments found in the uploaded file")

    logger.info(
        "Normalized upload",
        extra={
            "format": parsed.format,
            "comments_count": len(parsed.comments),
            "content_type": content_type,
        },
    )
    return parsed


def describe_comment(comment: Comment) -> dict[str, Any]:
    """Wire form of a comment plus vote totals, for the preview endpoint."""
    payload = comment.to_wire()
    vote_info = comment.vote_info
    if isinstance(vote_info, SimpleVotes):
        payload["voteInfo"]["totalCount"] = total_votes(vote_info.tally)
    elif isinstance(vote_info, GroupedVotes):
        for group, tally in vote_info.groups.items():
            payload["voteInfo"][group]["totalCount"] = total_votes(tally)
    return payload


__all__ = [
    "ParsedUpload",
    "group_names",
    "rows_to_comments",
    "decode_upload",
    "resolve_upload_kind",
    "parse_csv_upload",
    "normalize_upload",
    "describe_comment",
]
