"""
Upload ingestion: format detection and conversion to canonical comments.

Provides:
- normalize_upload() entry point for raw uploaded bytes
- Tally normalization (tally)
- Topic string parsing (topics)
- CSV and JSON format handling (csv_formats, json_formats, converter)
"""

from sensemaker.ingest.converter import (
    ParsedUpload,
    describe_comment,
    normalize_upload,
    rows_to_comments,
)
from sensemaker.ingest.csv_formats import CsvFormat, detect_csv_format
from sensemaker.ingest.tally import normalize_tally, tally_metadata, total_votes
from sensemaker.ingest.topics import parse_flat_topics, parse_topics

__all__ = [
    "ParsedUpload",
    "normalize_upload",
    "rows_to_comments",
    "describe_comment",
    "CsvFormat",
    "detect_csv_format",
    "normalize_tally",
    "tally_metadata",
    "total_votes",
    "parse_topics",
    "parse_flat_topics",
]
