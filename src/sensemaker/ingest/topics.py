"""
Topic annotation parsing.

Two grammars exist in the wild:

* nested (CSV ``topics`` column): entries separated by ``;``, levels by ``:``
  -- ``"Education:Math;Science:Physics:Optics"``
* flat (JSON ``topics`` given as a string): a comma list of names with no
  nesting -- ``"Education, Technology"``

The two are not interchangeable: the nested parser reads a comma list as a
single entry.
"""

from typing import Any

from pydantic import ValidationError

from sensemaker.schemas.comments import Topic

ENTRY_SEPARATOR = ";"
LEVEL_SEPARATOR = ":"
FLAT_SEPARATOR = ","
MAX_DEPTH = 3

_QUOTES = "\"'"


def _strip_quotes(value: str) -> str:
    value = value.strip()
    if value[:1] in _QUOTES:
        value = value[1:]
    if value[-1:] in _QUOTES:
        value = value[:-1]
    return value


def _find_by_name(nodes: list[dict[str, Any]], name: str) -> dict[str, Any] | None:
    for node in nodes:
        if node["name"] == name:
            return node
    return None


def _to_topic(node: dict[str, Any]) -> Topic:
    children = [_to_topic(child) for child in node["subtopics"]]
    return Topic(name=node["name"], subtopics=children or None)


def parse_topics(topics_string: str | None) -> list[Topic]:
    """Parse the nested ``topic[:subtopic[:subsubtopic]]`` grammar.

    Topics keep first-seen order. A repeated subtopic name is merged into the
    first subtopic of that name; repeated sub-subtopics are kept once. Levels
    past the third are ignored.
    """
    if not topics_string or not topics_string.strip():
        return []

    accumulator: dict[str, dict[str, Any]] = {}

    for raw_entry in _strip_quotes(topics_string).split(ENTRY_SEPARATOR):
        levels = [_strip_quotes(part) for part in raw_entry.split(LEVEL_SEPARATOR)][:MAX_DEPTH]
        if not levels or not levels[0]:
            continue

        topic_name = levels[0]
        topic = accumulator.setdefault(topic_name, {"name": topic_name, "subtopics": []})

        if len(levels) < 2 or not levels[1]:
            continue

        subtopic = _find_by_name(topic["subtopics"], levels[1])
        if subtopic is None:
            subtopic = {"name": levels[1], "subtopics": []}
            topic["subtopics"].append(subtopic)

        if len(levels) < 3 or not levels[2]:
            continue

        if _find_by_name(subtopic["subtopics"], levels[2]) is None:
            subtopic["subtopics"].append({"name": levels[2], "subtopics": []})

    return [_to_topic(node) for node in accumulator.values()]


def parse_flat_topics(topics_string: str | None) -> list[Topic]:
    """Parse a comma-separated list of top-level topic names, in order."""
    if not topics_string or not topics_string.strip():
        return []

    names = (_strip_quotes(part) for part in _strip_quotes(topics_string).split(FLAT_SEPARATOR))
    return [Topic(name=name) for name in names if name]


def coerce_topics(value: Any) -> list[Topic] | None:
    """Read a JSON ``topics`` field: a flat string or a list of names/objects."""
    if value is None:
        return None
    if isinstance(value, str):
        return parse_flat_topics(value) or None
    if not isinstance(value, list):
        return None

    topics = []
    for item in value:
        if isinstance(item, str):
            if item.strip():
                topics.append(Topic(name=item.strip()))
        elif isinstance(item, dict) and item.get("name"):
            try:
                topics.append(Topic.model_validate(item))
            except ValidationError:
                # Malformed subtopics: keep the top-level name
                topics.append(Topic(name=str(item["name"])))
    return topics or None


__all__ = ["parse_topics", "parse_flat_topics", "coerce_topics"]
