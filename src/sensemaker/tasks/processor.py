"""
Task processor: runs one analysis task end to end.

For a delivered task this writes a ``processing`` status record, drives the
analysis engine through its three stages in order, renders the summary, and
writes the terminal result record. Failures are persisted as a ``failed``
result (best-effort) and re-raised as a classified ``PipelineError`` so the
queue layer can retry or dead-letter the delivery.
"""

import inspect
import logging
import time
from typing import Any

from core.errors import (
    AnalysisEngineEmptyResponseError,
    AnalysisEngineError,
    InvalidTaskError,
    PipelineError,
    wrap_engine_exception,
)
from core.logging import LogContext, StageLogContext, log_exception
from sensemaker.common.metrics import record_task_completed, record_task_failed
from sensemaker.engine.protocol import (
    AGGREGATE_VOTE,
    MARKDOWN,
    TOPIC_DEPTH,
    AnalysisEngine,
    EngineFactory,
    is_topic_summary,
)
from sensemaker.schemas.tasks import CompletedResult, FailedResult, SensemakeTask
from sensemaker.storage.gateway import ResultStoreGateway

logger = logging.getLogger(__name__)

ERROR_LABEL_EMPTY_RESPONSE = "AI Model Error"
ERROR_LABEL_PROCESSING = "Processing Error"


async def _resolve(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


def _field(item: Any, name: str) -> Any:
    if isinstance(item, dict):
        return item.get(name)
    return getattr(item, name, None)


def validate_categorized(categorized: Any) -> list:
    """Check the categorization stage output before it is summarized.

    Raises:
        AnalysisEngineError: If the output is not a list of comments that
            each carry an id, text and a topic list
    """
    if not isinstance(categorized, list):
        raise AnalysisEngineError(
            "Categorization failed: expected array of comments",
            context={"received_type": type(categorized).__name__},
        )

    for index, comment in enumerate(categorized):
        if comment is None:
            raise AnalysisEngineError(f"Invalid categorized comment at index {index}")
        if not _field(comment, "id") or not _field(comment, "text"):
            raise AnalysisEngineError(
                f"Invalid categorized comment at index {index}: missing id or text"
            )
        if not isinstance(_field(comment, "topics"), list):
            raise AnalysisEngineError(
                f"Invalid categorized comment at index {index}: topics must be an array"
            )
    return categorized


def failed_result_for(task_id: str, error: PipelineError, attempt: int) -> FailedResult:
    """Failed result record for a classified error."""
    if isinstance(error, AnalysisEngineEmptyResponseError):
        return FailedResult(
            task_id=task_id,
            error=ERROR_LABEL_EMPTY_RESPONSE,
            message=error.user_message,
            suggestion=error.suggestion,
            attempt=attempt,
        )
    return FailedResult(
        task_id=task_id,
        error=ERROR_LABEL_PROCESSING,
        message=error.message or type(error).__name__,
        attempt=attempt,
    )


class TaskProcessor:
    """Runs analysis tasks against engines built by ``engine_factory``."""

    def __init__(
        self,
        gateway: ResultStoreGateway,
        engine_factory: EngineFactory,
        engine_base_url: str = "",
    ):
        self.gateway = gateway
        self.engine_factory = engine_factory
        self.engine_base_url = engine_base_url

    def build_engine(self, task: SensemakeTask) -> AnalysisEngine:
        return self.engine_factory(
            api_key=task.model_key,
            model_name=task.model_name,
            base_url=self.engine_base_url,
        )

    async def process(self, task: SensemakeTask, retry_count: int = 0) -> CompletedResult:
        """Run one delivery of ``task``.

        Args:
            task: The dequeued task
            retry_count: Redeliveries already made; the attempt number is retry_count + 1

        Returns:
            The completed result record, already written to the store

        Raises:
            PipelineError: Classified failure, after the failed result was recorded
        """
        attempt = retry_count + 1
        start_time = time.perf_counter()

        with LogContext(task_id=task.task_id):
            logger.info(
                "Processing task",
                extra={
                    "attempt": attempt,
                    "comments_count": len(task.comments),
                    "model_name": task.model_name,
                    "output_language": task.output_language,
                },
            )
            try:
                await self.gateway.write_status(task.task_id, attempt=attempt)
                result = await self._run(task)
                await self.gateway.write_result(result)
            except Exception as e:
                error = wrap_engine_exception(e)
                duration = time.perf_counter() - start_time
                log_exception(
                    logger,
                    e,
                    "Task failed",
                    attempt=attempt,
                    error_category=error.category.value,
                    duration_ms=round(duration * 1000, 2),
                )
                record_task_failed(error.category.value, duration)
                await self._record_failure(task.task_id, error, attempt)
                if error is e:
                    raise
                raise error from e

            duration = time.perf_counter() - start_time
            record_task_completed(duration)
            logger.info(
                "Task completed",
                extra={
                    "attempt": attempt,
                    "comments_count": result.comments_processed,
                    "duration_ms": round(duration * 1000, 2),
                },
            )
            return result

    async def _run(self, task: SensemakeTask) -> CompletedResult:
        if not task.comments:
            raise InvalidTaskError(
                "Invalid input: comments must be a non-empty array",
                context={"task_id": task.task_id},
            )

        engine = self.build_engine(task)
        comments = task.comments
        context = task.additional_context or None
        lang = task.output_language

        with StageLogContext("learn_topics", task_id=task.task_id, logger=logger) as stage:
            topics = await _resolve(
                engine.learn_topics(comments, True, None, context, TOPIC_DEPTH, lang)
            )
            stage.set_result(topics_count=len(topics) if isinstance(topics, list) else None)

        with StageLogContext("categorize_comments", task_id=task.task_id, logger=logger) as stage:
            categorized = validate_categorized(
                await _resolve(
                    engine.categorize_comments(comments, True, topics, context, TOPIC_DEPTH, lang)
                )
            )
            stage.set_result(comments_count=len(categorized))

        with StageLogContext("summarize", task_id=task.task_id, logger=logger):
            summary = await _resolve(
                engine.summarize(categorized, AGGREGATE_VOTE, topics, context, lang)
            )
            markdown = summary.without_contents(is_topic_summary).get_text(MARKDOWN)

        return CompletedResult(
            task_id=task.task_id,
            model=task.model_name,
            comments_processed=len(comments),
            additional_context=context,
            output_language=lang,
            summary=markdown,
        )

    async def _record_failure(self, task_id: str, error: PipelineError, attempt: int) -> None:
        """Write the failed result; a storage failure here is logged, never raised."""
        try:
            await self.gateway.write_result(failed_result_for(task_id, error, attempt))
        except Exception as storage_error:
            log_exception(
                logger,
                storage_error,
                "Failed to record task failure",
                level=logging.WARNING,
                attempt=attempt,
            )
