"""Analysis engine contract and factory loading."""

from sensemaker.engine.loader import load_engine_factory
from sensemaker.engine.protocol import (
    AGGREGATE_VOTE,
    MARKDOWN,
    TOPIC_DEPTH,
    TOPIC_SUMMARY_TYPE,
    AnalysisEngine,
    EngineFactory,
    Summary,
    is_topic_summary,
)

__all__ = [
    "AGGREGATE_VOTE",
    "MARKDOWN",
    "TOPIC_DEPTH",
    "TOPIC_SUMMARY_TYPE",
    "AnalysisEngine",
    "EngineFactory",
    "Summary",
    "is_topic_summary",
    "load_engine_factory",
]
