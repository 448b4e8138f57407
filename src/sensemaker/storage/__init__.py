"""Durable result store: backends and the typed gateway over them."""

from sensemaker.storage.gateway import (
    ResultStoreGateway,
    create_gateway,
    create_result_store,
    is_valid_task_id,
)
from sensemaker.storage.json_store import LocalResultStore
from sensemaker.storage.store import ResultStore, result_key, status_key

__all__ = [
    "ResultStore",
    "ResultStoreGateway",
    "LocalResultStore",
    "create_gateway",
    "create_result_store",
    "is_valid_task_id",
    "result_key",
    "status_key",
]
