"""Context managers for structured logging."""

import logging
import time
from contextlib import contextmanager
from typing import Any, Dict, Optional

from core.logging.context import get_log_context, set_log_context
from core.logging.utilities import log_with_context


class LogContext:
    """
    Context manager for temporary log context.

    Usage:
        with LogContext(task_id=task.task_id, stage="analyze"):
            # All logs in this block carry task_id and stage
            do_work()
    """

    def __init__(
        self,
        task_id: Optional[str] = None,
        stage: Optional[str] = None,
        worker_id: Optional[str] = None,
        domain: Optional[str] = None,
    ):
        self.new_context = {
            "task_id": task_id,
            "stage": stage,
            "worker_id": worker_id,
            "domain": domain,
        }
        self.old_context: Dict[str, str] = {}

    def __enter__(self) -> "LogContext":
        self.old_context = get_log_context()
        for key, value in self.new_context.items():
            if value is not None:
                set_log_context(**{key: value})
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        set_log_context(**{key: self.old_context.get(key, "") for key in self.new_context})
        return False


class StageLogContext(LogContext):
    """
    Context manager for a processing stage with automatic timing.

    Usage:
        with StageLogContext("learn_topics", task_id=task_id) as ctx:
            topics = await engine.learn_topics(...)
            ctx.set_result(topics_count=len(topics))
    """

    def __init__(
        self,
        stage: str,
        task_id: Optional[str] = None,
        logger: Optional[logging.Logger] = None,
    ):
        super().__init__(stage=stage, task_id=task_id)
        self.stage = stage
        self.logger = logger
        self.start_time: Optional[float] = None
        self.result_context: Dict[str, Any] = {}

    def __enter__(self) -> "StageLogContext":
        super().__enter__()
        self.start_time = time.perf_counter()
        return self

    def set_result(self, **kwargs: Any) -> None:
        """Set result context to be logged on exit."""
        self.result_context.update(kwargs)

    def __exit__(self, exc_type, exc_val, exc_tb):
        duration_ms = (time.perf_counter() - self.start_time) * 1000
        self.result_context["duration_ms"] = round(duration_ms, 2)
        if self.logger is not None and exc_val is None:
            log_with_context(
                self.logger,
                logging.INFO,
                f"Stage complete: {self.stage}",
                **self.result_context,
            )
        super().__exit__(exc_type, exc_val, exc_tb)
        return False


@contextmanager
def log_phase(
    logger: logging.Logger,
    phase: str,
    level: int = logging.DEBUG,
    **context: Any,
):
    """
    Time a phase and log its duration on exit.

    Example:
        with log_phase(logger, "parse_upload", content_type=ctype):
            comments = normalize_upload(data, ctype)
    """
    start = time.perf_counter()
    try:
        yield
    finally:
        duration_ms = (time.perf_counter() - start) * 1000
        log_with_context(
            logger,
            level,
            f"Phase complete: {phase}",
            duration_ms=round(duration_ms, 2),
            **context,
        )
