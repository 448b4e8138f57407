"""
Entry point for the sensemaker service processes.

Usage:
    # HTTP API (submit, poll, delete, preview)
    python -m sensemaker api

    # Task worker (consumes the tasks topic and runs the analysis)
    python -m sensemaker worker

    # Retry scheduler (redelivers failed tasks after their backoff delay)
    python -m sensemaker retry-scheduler

    # Alternate config file and metrics port
    python -m sensemaker worker --config /etc/sensemaker/config.yaml --metrics-port 9100
"""

import argparse
import asyncio
import logging
import os
import signal
import sys
from pathlib import Path

from dotenv import load_dotenv
from prometheus_client import start_http_server

from config.config import load_config
from core.logging.setup import get_logger, log_worker_startup, setup_logging
from core.utils import generate_worker_id
from sensemaker.runners import RUNNERS

# Project root directory (where .env file is located)
# __main__.py is at src/sensemaker/__main__.py, so root is 3 levels up
PROJECT_ROOT = Path(__file__).parent.parent.parent

logger = logging.getLogger(__name__)


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Run sensemaker service processes",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "command",
        choices=sorted(RUNNERS),
        help="Which process to run",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to config.yaml (default: SENSEMAKER_CONFIG or src/config/config.yaml)",
    )
    parser.add_argument(
        "--metrics-port",
        type=int,
        default=None,
        help="Port for the Prometheus metrics server (default: observability.metrics_port)",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default="INFO",
        help="Console logging level (default: INFO)",
    )
    parser.add_argument(
        "--log-to-stdout",
        action="store_true",
        help="Send all log output to stdout only, skipping file handlers. "
        "Can also be set via LOG_TO_STDOUT.",
    )
    return parser.parse_args(argv)


def setup_signal_handlers(loop: asyncio.AbstractEventLoop, shutdown_event: asyncio.Event):
    """First signal sets the shutdown event; a second one cancels every task."""

    def handle_signal(sig):
        logger.info("Received signal, initiating graceful shutdown", extra={"signal": sig.name})
        if not shutdown_event.is_set():
            shutdown_event.set()
        else:
            logger.warning("Received second signal, forcing immediate shutdown...")
            for task in asyncio.all_tasks(loop):
                task.cancel()

    if sys.platform == "win32":
        logger.debug("Signal handlers not supported on Windows, using KeyboardInterrupt")
        return

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, lambda s=sig: handle_signal(s))


def main(argv=None) -> int:
    load_dotenv(PROJECT_ROOT / ".env")

    global logger
    args = parse_args(argv)

    config = load_config(args.config)
    worker_id = os.getenv("WORKER_ID") or generate_worker_id(f"sensemaker-{args.command}")

    setup_logging(
        name="sensemaker",
        stage=args.command,
        domain="sensemaker",
        log_dir=Path(config.log_dir),
        json_format=config.json_logs,
        console_level=getattr(logging, args.log_level),
        worker_id=worker_id,
        log_to_stdout=args.log_to_stdout or config.log_to_stdout,
    )
    logger = get_logger(__name__)

    log_worker_startup(
        logger,
        worker_name=args.command,
        kafka_bootstrap_servers=config.bootstrap_servers,
        input_topic=config.get_topic("retry" if args.command == "retry-scheduler" else "tasks"),
        extra_config={
            "storage_backend": config.storage_backend,
            "worker_id": worker_id,
        },
    )

    metrics_port = args.metrics_port or config.metrics_port
    if metrics_port:
        start_http_server(metrics_port)
        logger.info("Metrics server started", extra={"port": metrics_port})

    runner = RUNNERS[args.command]
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    shutdown_event = asyncio.Event()
    setup_signal_handlers(loop, shutdown_event)

    try:
        loop.run_until_complete(runner(config, shutdown_event))
    except KeyboardInterrupt:
        logger.info("Keyboard interrupt received, shutting down...")
    except Exception as e:
        logger.error("Fatal error", extra={"error": str(e)}, exc_info=True)
        return 1
    finally:
        loop.close()
        logger.info("Shutdown complete", extra={"command": args.command})
    return 0


if __name__ == "__main__":
    sys.exit(main())
