"""
JSON upload parsing.

Accepts a top-level array of comment-like objects or an object with a
``comments`` array. Polis.tw exports (``tid``/``txt``/``agree_count``...)
are recognised from the first item and mapped field by field; everything
else goes through the standard mapping.
"""

import json
import logging
from typing import Any

from core.errors import UnsupportedFormatError
from sensemaker.ingest.tally import parse_count
from sensemaker.ingest.topics import coerce_topics
from sensemaker.schemas.comments import Comment, SimpleVotes, VoteTally

logger = logging.getLogger(__name__)

POLIS_TW_FIELDS = ("txt", "tid", "agree_count", "disagree_count", "pass_count", "count")

FORMAT_JSON = "json"
FORMAT_POLIS_TW = "polis.tw"


def detect_polis_tw(items: list[Any]) -> bool:
    if not items or not isinstance(items[0], dict):
        return False
    return all(name in items[0] for name in POLIS_TW_FIELDS)


def _polis_tw_comment(item: Any, index: int) -> Comment:
    if not isinstance(item, dict):
        return Comment(id=f"polis-{index}", text="")

    tid = item.get("tid")
    return Comment(
        id=str(tid) if tid is not None and tid != "" else f"polis-{index}",
        text=str(item.get("txt") or ""),
        vote_info=SimpleVotes(
            tally=VoteTally(
                agree_count=parse_count(item.get("agree_count")),
                disagree_count=parse_count(item.get("disagree_count")),
                pass_count=parse_count(item.get("pass_count")),
            )
        ),
        topics=coerce_topics(item.get("topics")),
    )


def _standard_comment(item: Any, index: int) -> Comment:
    if not isinstance(item, dict):
        return Comment(id=f"comment-{index}", text="")

    return Comment(
        id=str(item.get("id") or f"comment-{index}"),
        text=str(item.get("text") or item.get("comment_text") or ""),
        vote_info=item.get("voteInfo") or item.get("votes") or None,
        topics=coerce_topics(item.get("topics")),
    )


def _comment_items(data: Any) -> list[Any]:
    if isinstance(data, list):
        return data
    if isinstance(data, dict) and isinstance(data.get("comments"), list):
        return data["comments"]
    raise UnsupportedFormatError(
        "Invalid JSON format: expected array of comments or object with comments array"
    )


def parse_json_comments(text: str) -> tuple[str, list[Comment]]:
    """Parse JSON upload text into canonical comments.

    Returns:
        (format name, comments)

    Raises:
        UnsupportedFormatError: Not valid JSON, or an unexpected top-level shape.
    """
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise UnsupportedFormatError(f"Invalid JSON: {e.msg}", cause=e) from e

    items = _comment_items(data)

    if detect_polis_tw(items):
        logger.info("Detected Polis.tw JSON export", extra={"comments_count": len(items)})
        return FORMAT_POLIS_TW, [_polis_tw_comment(item, i) for i, item in enumerate(items)]

    return FORMAT_JSON, [_standard_comment(item, i) for i, item in enumerate(items)]


__all__ = ["parse_json_comments", "detect_polis_tw", "FORMAT_JSON", "FORMAT_POLIS_TW"]
