"""
Vote tally normalization.

Uploads describe votes in several shapes: ``{agrees, disagrees, passes}``
from CSV exports, ``{agreeCount, ...}`` from sensemaking JSON, ``agree_count``
from Polis.tw, or a mapping of respondent group to any of those. Everything
is reduced once, here, to a tagged variant:

    Tally = SimpleVotes(tally) | GroupedVotes(groups)

Downstream code dispatches on the variant and never re-inspects raw shapes.
Totals are computed by ``total_votes``; the models carry data only so they
cross the queue unchanged.
"""

import re
from collections.abc import Mapping
from typing import Any, Optional

from sensemaker.schemas.comments import GroupedVotes, SimpleVotes, Tally, VoteTally

AGREE_ALIASES = ("agreeCount", "agree_count", "agrees", "agree")
DISAGREE_ALIASES = ("disagreeCount", "disagree_count", "disagrees", "disagree")
PASS_ALIASES = ("passCount", "pass_count", "passes", "pass")

_INT_PREFIX = re.compile(r"^\s*([+-]?\d+)")


def parse_count(value: Any) -> int:
    """Parse a vote count with integer-prefix semantics.

    ``"12abc"`` -> 12, ``"3.7"`` -> 3, ``" 4 "`` -> 4. Anything without a
    leading integer is 0 and negative counts clamp to 0.
    """
    if value is None or isinstance(value, bool):
        return 0
    if isinstance(value, int):
        return max(value, 0)
    if isinstance(value, float):
        if value != value or value in (float("inf"), float("-inf")):
            return 0
        return max(int(value), 0)

    match = _INT_PREFIX.match(str(value))
    if not match:
        return 0
    return max(int(match.group(1)), 0)


def total_votes(tally: VoteTally, include_pass: bool = True) -> int:
    total = tally.agree_count + tally.disagree_count
    if include_pass:
        total += tally.pass_count
    return total


def combined_tally(tally: Tally) -> VoteTally:
    """Collapse a grouped tally into one tally summed across groups."""
    if isinstance(tally, SimpleVotes):
        return tally.tally
    return VoteTally(
        agree_count=sum(t.agree_count for t in tally.groups.values()),
        disagree_count=sum(t.disagree_count for t in tally.groups.values()),
        pass_count=sum(t.pass_count for t in tally.groups.values()),
    )


def _lookup(source: Any, aliases: tuple[str, ...]) -> Any:
    for name in aliases:
        if isinstance(source, Mapping):
            if name in source and source[name] is not None:
                return source[name]
        else:
            value = getattr(source, name, None)
            if value is not None:
                return value
    return None


def _has_tally_attributes(source: Any) -> bool:
    return any(
        getattr(source, name, None) is not None
        for name in AGREE_ALIASES + DISAGREE_ALIASES + PASS_ALIASES
    )


def read_tally(source: Any) -> VoteTally:
    """Read one tally from a mapping or attribute-bearing object via the alias table."""
    if isinstance(source, VoteTally):
        return source
    if isinstance(source, SimpleVotes):
        return source.tally
    return VoteTally(
        agree_count=parse_count(_lookup(source, AGREE_ALIASES)),
        disagree_count=parse_count(_lookup(source, DISAGREE_ALIASES)),
        pass_count=parse_count(_lookup(source, PASS_ALIASES)),
    )


def _is_group_member(value: Any) -> bool:
    return isinstance(value, (Mapping, VoteTally, SimpleVotes))


def normalize_tally(value: Any) -> Optional[Tally]:
    """Convert any supported vote representation to the canonical variant.

    Returns None when the value carries no vote information (None, numbers,
    strings, lists).
    """
    if value is None:
        return None
    if isinstance(value, (SimpleVotes, GroupedVotes)):
        return value
    if isinstance(value, VoteTally):
        return SimpleVotes(tally=value)

    if isinstance(value, Mapping):
        if value and all(_is_group_member(v) for v in value.values()):
            return GroupedVotes(groups={str(k): read_tally(v) for k, v in value.items()})
        return SimpleVotes(tally=read_tally(value))

    if isinstance(value, (str, bytes, int, float, list, tuple, set)):
        return None

    if _has_tally_attributes(value):
        return SimpleVotes(tally=read_tally(value))

    return None


def _tally_counts(tally: VoteTally) -> dict[str, int]:
    return {
        "agreeCount": tally.agree_count,
        "disagreeCount": tally.disagree_count,
        "passCount": tally.pass_count,
    }


def tally_metadata(tally: Tally) -> dict[str, Any]:
    """Metadata-only form of a tally: plain numeric counts, no variant tag.

    ``normalize_tally(tally_metadata(t)) == t`` for every canonical tally.
    """
    if isinstance(tally, SimpleVotes):
        return _tally_counts(tally.tally)
    return {group: _tally_counts(t) for group, t in tally.groups.items()}


__all__ = [
    "VoteTally",
    "SimpleVotes",
    "GroupedVotes",
    "Tally",
    "parse_count",
    "total_votes",
    "combined_tally",
    "read_tally",
    "normalize_tally",
    "tally_metadata",
]
