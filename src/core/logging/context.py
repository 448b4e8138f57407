"""Context variables for structured logging."""

from contextvars import ContextVar
from typing import Dict, Optional

_task_id: ContextVar[str] = ContextVar("task_id", default="")
_stage_name: ContextVar[str] = ContextVar("stage_name", default="")
_worker_id: ContextVar[str] = ContextVar("worker_id", default="")
_domain: ContextVar[str] = ContextVar("domain", default="")


def set_log_context(
    task_id: Optional[str] = None,
    stage: Optional[str] = None,
    worker_id: Optional[str] = None,
    domain: Optional[str] = None,
) -> None:
    if task_id is not None:
        _task_id.set(task_id)
    if stage is not None:
        _stage_name.set(stage)
    if worker_id is not None:
        _worker_id.set(worker_id)
    if domain is not None:
        _domain.set(domain)


def get_log_context() -> Dict[str, str]:
    return {
        "task_id": _task_id.get(),
        "stage": _stage_name.get(),
        "worker_id": _worker_id.get(),
        "domain": _domain.get(),
    }


def clear_log_context() -> None:
    _task_id.set("")
    _stage_name.set("")
    _worker_id.set("")
    _domain.set("")
