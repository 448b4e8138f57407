"""
CSV reading and format detection.

Known exports:

* complete: ``comment-id, comment_text, agrees, disagrees, passes`` (plus
  optional grouped ``<group>-agree-count`` columns and topic columns)
* pol.is: ``comment-id, agrees, disagrees, comment-body, moderated`` with no
  pass count; passes and votes are synthesized from the moderation flag

Anything else is ``unknown`` and goes to the row converter as-is, which
succeeds if it can find id and text columns.
"""

import csv
import io
import logging
from dataclasses import dataclass, field
from enum import Enum

from core.errors import EmptyDatasetError, MissingRequiredColumnsError
from sensemaker.ingest.tally import parse_count

logger = logging.getLogger(__name__)

BOM = "\ufeff"

COMPLETE_COLUMNS = ("comment-id", "comment_text", "agrees", "disagrees", "passes")
POLIS_COLUMNS = ("comment-id", "agrees", "disagrees", "comment-body")
POLIS_REQUIRED_COLUMNS = ("agrees", "disagrees", "moderated")
POLIS_BODY_COLUMN = "comment-body"
TEXT_COLUMN = "comment_text"

# Column order of a converted pol.is export; other columns follow in file order
POLIS_COLUMN_ORDER = (
    "timestamp",
    "datetime",
    "comment-id",
    "author-id",
    "agrees",
    "disagrees",
    "passes",
    "votes",
    "moderated",
    "comment_text",
)

# Moderation flags meaning the comment was explicitly accepted or rejected
MODERATED_NO_PASS = ("1", "-1")

Row = dict[str, str]


class CsvFormat(str, Enum):
    COMPLETE = "complete"
    POLIS = "pol.is"
    UNKNOWN = "unknown"


@dataclass
class CsvStats:
    """Vote statistics reported by the pol.is conversion."""

    total_votes: int
    passes_count: int
    votes_min: int
    votes_max: int

    def to_dict(self) -> dict:
        return {
            "totalVotes": self.total_votes,
            "passesCount": self.passes_count,
            "votesRange": {"min": self.votes_min, "max": self.votes_max},
        }


@dataclass
class CsvParseResult:
    headers: list[str]
    rows: list[Row]
    detected_format: CsvFormat
    format: CsvFormat
    stats: CsvStats | None = None
    warnings: list[str] = field(default_factory=list)


def read_csv_text(text: str) -> tuple[list[str], list[Row]]:
    """Split CSV text into trimmed headers and row dicts.

    A leading BOM is dropped, blank lines are skipped and short rows are
    padded with empty strings.

    Raises:
        EmptyDatasetError: No header, or a header with no data rows.
    """
    if text.startswith(BOM):
        text = text[len(BOM):]

    records = [
        [value.strip() for value in record]
        for record in csv.reader(io.StringIO(text))
        if any(value.strip() for value in record)
    ]

    if len(records) < 2:
        raise EmptyDatasetError(
            "CSV file must have at least a header row and one data row"
        )

    headers = records[0]
    rows = []
    for record in records[1:]:
        rows.append({
            header: record[index] if index < len(record) else ""
            for index, header in enumerate(headers)
        })

    logger.debug(
        "Read CSV rows",
        extra={"columns": headers, "comments_count": len(rows)},
    )
    return headers, rows


def detect_csv_format(headers: list[str]) -> CsvFormat:
    """Classify a CSV by its column set, most specific format first."""
    columns = set(headers)

    if all(col in columns for col in COMPLETE_COLUMNS):
        return CsvFormat.COMPLETE

    if all(col in columns for col in POLIS_COLUMNS):
        return CsvFormat.POLIS

    # Variant pol.is exports are recognised by the body column alone
    if POLIS_BODY_COLUMN in columns:
        return CsvFormat.POLIS

    return CsvFormat.UNKNOWN


def passes_for_moderation(moderated: str) -> int:
    """Synthesized pass count for a pol.is moderation flag.

    ``1`` (accepted) and ``-1`` (rejected) carry no pass; ``0`` and any other
    value count as one pass.
    """
    return 0 if moderated.strip() in MODERATED_NO_PASS else 1


def convert_polis(headers: list[str], rows: list[Row]) -> tuple[list[str], list[Row], CsvStats]:
    """Convert a pol.is export to the complete layout.

    Renames ``comment-body`` to ``comment_text`` and adds ``passes`` and
    ``votes`` (``agrees + disagrees + passes``) to every row. Input rows are
    not modified.

    Raises:
        MissingRequiredColumnsError: ``agrees``, ``disagrees`` or
            ``moderated`` is absent.
    """
    missing = [col for col in POLIS_REQUIRED_COLUMNS if col not in headers]
    if missing:
        raise MissingRequiredColumnsError(
            f"Failed to convert pol.is format: missing required columns: {', '.join(missing)}",
            missing_columns=missing,
        )

    converted: list[Row] = []
    for row in rows:
        new_row = dict(row)
        if POLIS_BODY_COLUMN in new_row:
            new_row[TEXT_COLUMN] = new_row.pop(POLIS_BODY_COLUMN)

        passes = passes_for_moderation(new_row.get("moderated", ""))
        votes = parse_count(new_row.get("agrees")) + parse_count(new_row.get("disagrees")) + passes
        new_row["passes"] = str(passes)
        new_row["votes"] = str(votes)
        converted.append(new_row)

    updated = [TEXT_COLUMN if h == POLIS_BODY_COLUMN else h for h in headers]
    for col in ("votes", "passes"):
        if col not in updated:
            updated.append(col)

    ordered = [col for col in POLIS_COLUMN_ORDER if col in updated]
    ordered.extend(col for col in updated if col not in ordered)

    votes_values = [int(row["votes"]) for row in converted]
    passes_count = sum(1 for row in converted if row["passes"] == "1")
    stats = CsvStats(
        # Reported figure adds the pass count on top of per-row votes
        total_votes=sum(votes_values) + passes_count,
        passes_count=passes_count,
        votes_min=min(votes_values),
        votes_max=max(votes_values),
    )

    logger.info(
        "Converted pol.is export",
        extra={
            "comments_count": len(converted),
            "columns": ordered,
            "operation": "convert_polis",
        },
    )
    return ordered, converted, stats


def parse_csv_data(headers: list[str], rows: list[Row]) -> CsvParseResult:
    """Detect the format and bring the rows into the complete layout where possible."""
    detected = detect_csv_format(headers)
    logger.info("Detected CSV format", extra={"format": detected.value, "columns": headers})

    if detected is CsvFormat.POLIS:
        new_headers, new_rows, stats = convert_polis(headers, rows)
        return CsvParseResult(
            headers=new_headers,
            rows=new_rows,
            detected_format=detected,
            format=CsvFormat.COMPLETE,
            stats=stats,
        )

    return CsvParseResult(headers=headers, rows=rows, detected_format=detected, format=detected)


__all__ = [
    "CsvFormat",
    "CsvStats",
    "CsvParseResult",
    "Row",
    "read_csv_text",
    "detect_csv_format",
    "passes_for_moderation",
    "convert_polis",
    "parse_csv_data",
]
