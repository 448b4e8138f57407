"""
Tests for logging setup.

Test Coverage:
    - Log file path layout with date folder, role and worker id
    - File mode writes JSON lines and sets the log context
    - Stdout mode installs a single stream handler
    - Noisy client library loggers are quieted
"""

import json
import logging

import pytest

from core.logging import clear_log_context, get_log_context
from core.logging.setup import get_log_file_path, setup_logging


@pytest.fixture(autouse=True)
def _restore_root_logger():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    for handler in root.handlers:
        handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)
    clear_log_context()


class TestLogFilePath:
    def test_layout(self, tmp_path):
        path = get_log_file_path(tmp_path, domain="sensemaker", stage="worker", worker_id="brave-otter")

        assert path.parent.parent == tmp_path
        assert path.name.startswith("sensemaker_worker_")
        assert path.name.endswith("_brave-otter.log")

    def test_default_name(self, tmp_path):
        assert get_log_file_path(tmp_path).name.startswith("sensemaker_")


class TestSetupLogging:
    def test_file_mode_writes_json(self, tmp_path):
        logger = setup_logging(
            name="sensemaker.test",
            stage="worker",
            domain="sensemaker",
            log_dir=tmp_path,
            worker_id="brave-otter",
        )

        logger.info("Task queued", extra={"comments_count": 3})
        for handler in logging.getLogger().handlers:
            handler.flush()

        assert get_log_context()["worker_id"] == "brave-otter"
        log_files = list(tmp_path.rglob("*.log"))
        assert len(log_files) == 1
        entry = json.loads(log_files[0].read_text().strip().splitlines()[-1])
        assert entry["message"] == "Task queued"
        assert entry["stage"] == "worker"
        assert entry["comments_count"] == 3

    def test_stdout_mode(self, tmp_path):
        setup_logging(stage="api", log_dir=tmp_path, log_to_stdout=True)

        handlers = logging.getLogger().handlers
        assert len(handlers) == 1
        assert isinstance(handlers[0], logging.StreamHandler)
        assert list(tmp_path.iterdir()) == []

    def test_noisy_loggers_quieted(self, tmp_path):
        setup_logging(log_dir=tmp_path, log_to_stdout=True)

        assert logging.getLogger("aiokafka").level == logging.WARNING
