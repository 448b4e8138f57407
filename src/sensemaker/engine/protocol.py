"""Contract of the external analysis engine.

The engine itself (topic learning, categorization, summarization and the
text-generation provider behind them) lives outside this service. Anything
satisfying these protocols can be plugged in through ``engine.factory``.
Methods may be plain or ``async``; the processor awaits results that are
awaitable.
"""

from collections.abc import Callable, Sequence
from typing import Any, Protocol, runtime_checkable

from sensemaker.schemas.comments import Comment, Topic

# Summarization modes understood by the engine
AGGREGATE_VOTE = "AGGREGATE_VOTE"

# Content blocks excluded from the rendered summary
TOPIC_SUMMARY_TYPE = "TopicSummary"

MARKDOWN = "MARKDOWN"

TOPIC_DEPTH = 2


@runtime_checkable
class Summary(Protocol):
    """Structured summary returned by the engine's final stage."""

    def without_contents(self, predicate: Callable[[Any], bool]) -> "Summary":
        """Copy of the summary without the content blocks matching predicate."""
        ...

    def get_text(self, format: str) -> str:
        """Render the summary (e.g. ``"MARKDOWN"``)."""
        ...


@runtime_checkable
class AnalysisEngine(Protocol):
    """Three-stage analysis: learn topics, categorize, summarize."""

    def learn_topics(
        self,
        comments: Sequence[Comment],
        include_subtopics: bool = True,
        topics: Sequence[Topic] | None = None,
        additional_context: str | None = None,
        topic_depth: int = TOPIC_DEPTH,
        output_lang: str = "en",
    ) -> Any:
        ...

    def categorize_comments(
        self,
        comments: Sequence[Comment],
        include_subtopics: bool = True,
        topics: Sequence[Topic] | None = None,
        additional_context: str | None = None,
        topic_depth: int = TOPIC_DEPTH,
        output_lang: str = "en",
    ) -> Any:
        ...

    def summarize(
        self,
        comments: Sequence[Comment],
        summarization_type: str = AGGREGATE_VOTE,
        topics: Sequence[Topic] | None = None,
        additional_context: str | None = None,
        output_lang: str = "en",
    ) -> Any:
        ...


class EngineFactory(Protocol):
    """Builds one engine per task from the task's credential and model."""

    def __call__(self, *, api_key: str, model_name: str, base_url: str) -> AnalysisEngine:
        ...


def is_topic_summary(content: Any) -> bool:
    """Predicate for per-topic content blocks (dicts or objects with a ``type``)."""
    if isinstance(content, dict):
        return content.get("type") == TOPIC_SUMMARY_TYPE
    return getattr(content, "type", None) == TOPIC_SUMMARY_TYPE
