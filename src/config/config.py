"""Sensemaker service configuration from YAML file.

Loads from config/config.yaml with all settings in one place:
- Kafka connection settings, topics and per-worker consumer overrides
- Retry schedule for failed analysis tasks
- Result store backend (local directory or Azure Blob Storage)
- HTTP API, analysis engine and observability settings

Environment variables ARE supported using ${VAR_NAME} syntax in YAML files.
The SENSEMAKER_CONFIG environment variable points at an alternate file.
"""

import json
import logging
import os
import re
import sys
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

# Configure module logger
logger = logging.getLogger(__name__)


def load_yaml(path: Path) -> Dict[str, Any]:
    """Load YAML file and return dict."""
    if not path.exists():
        return {}
    with open(path, "r") as f:
        return yaml.safe_load(f) or {}


def _expand_env_vars(data: Any) -> Any:
    """Recursively expand ${VAR_NAME} and ${VAR_NAME:-default} environment variables in config data."""
    if isinstance(data, dict):
        return {key: _expand_env_vars(value) for key, value in data.items()}
    elif isinstance(data, list):
        return [_expand_env_vars(item) for item in data]
    elif isinstance(data, str):
        pattern = r"\$\{([^}:]+)(?::-(([^}]*))?)?\}"

        def replacer(match):
            var_name = match.group(1)
            default_value = match.group(2) if match.group(2) is not None else match.group(0)
            return os.getenv(var_name, default_value)

        return re.sub(pattern, replacer, data)
    else:
        return data


# Default config file: config/config.yaml in src/ directory
DEFAULT_CONFIG_FILE = Path(__file__).parent / "config.yaml"
CONFIG_ENV_VAR = "SENSEMAKER_CONFIG"

DEFAULT_TOPICS = {
    "tasks": "sensemaker-tasks",
    "retry": "sensemaker-tasks.retry",
    "dlq": "sensemaker-failed-tasks",
}

# One analysis may run for tens of minutes; the consumer must not be
# evicted from the group while a single message is in flight.
TASK_WORKER_CONSUMER_DEFAULTS = {
    "max_poll_records": 1,
    "max_poll_interval_ms": 3600000,
    "session_timeout_ms": 45000,
    "heartbeat_interval_ms": 10000,
    "enable_auto_commit": False,
}

STORAGE_BACKENDS = ["local", "blob"]


@dataclass
class SensemakerConfig:
    """Sensemaker service configuration.

    Configuration structure:
        kafka:
          connection: {...}           # Shared connection settings
          consumer_defaults: {...}    # Default consumer settings
          producer_defaults: {...}    # Default producer settings
          topics: {tasks, retry, dlq}
          consumer_group_prefix: sensemaker
          retry_delays: [30, 120, 300]
          task_worker:
            consumer: {...}
          retry_scheduler:
            consumer: {...}
            processing: {persistence_dir: ...}
        storage: {...}                # Result store backend
        api: {...}                    # HTTP surface
        engine: {...}                 # Analysis engine factory
        observability: {...}          # Health, metrics and log output

    All Kafka timing values in milliseconds unless otherwise noted.
    """

    # =========================================================================
    # CONNECTION SETTINGS (shared across all consumers/producers)
    # =========================================================================
    bootstrap_servers: str = ""
    security_protocol: str = "PLAINTEXT"
    sasl_mechanism: str = "PLAIN"
    sasl_plain_username: str = ""
    sasl_plain_password: str = ""
    request_timeout_ms: int = 120000  # 2 minutes
    metadata_max_age_ms: int = 300000  # 5 minutes
    connections_max_idle_ms: int = 540000  # 9 minutes

    # =========================================================================
    # DEFAULT SETTINGS (applied to all consumers/producers unless overridden)
    # =========================================================================
    consumer_defaults: Dict[str, Any] = field(default_factory=dict)
    producer_defaults: Dict[str, Any] = field(default_factory=dict)

    # =========================================================================
    # TOPICS AND WORKERS
    # =========================================================================
    topics: Dict[str, str] = field(default_factory=lambda: dict(DEFAULT_TOPICS))
    consumer_group_prefix: str = "sensemaker"
    workers: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    retry_delays: List[int] = field(default_factory=lambda: [30, 120, 300])

    # =========================================================================
    # RESULT STORE
    # =========================================================================
    storage_backend: str = "local"
    storage_local_path: str = "data/results"
    storage_connection_string: str = ""
    storage_container: str = "sensemaker-results"
    storage_prefix: str = ""

    # =========================================================================
    # HTTP API
    # =========================================================================
    api_host: str = "0.0.0.0"
    api_port: int = 8787
    max_upload_bytes: int = 20 * 1024 * 1024
    default_api_key: str = ""
    default_model: str = ""

    # =========================================================================
    # ANALYSIS ENGINE
    # =========================================================================
    engine_factory: str = ""
    engine_base_url: str = "https://openrouter.ai/api/v1"

    # =========================================================================
    # OBSERVABILITY
    # =========================================================================
    health_port: int = 8080
    metrics_port: Optional[int] = None
    log_dir: str = "logs"
    log_to_stdout: bool = False
    json_logs: bool = True

    def get_topic(self, topic_key: str) -> str:
        if topic_key not in self.topics:
            raise ValueError(
                f"Topic '{topic_key}' not configured. "
                f"Available topics: {list(self.topics.keys())}"
            )
        return self.topics[topic_key]

    def get_worker_config(self, worker_name: str, component: str) -> Dict[str, Any]:
        """Get merged configuration for a worker's component.

        Merge priority (highest to lowest):
        1. Worker-specific config (e.g., kafka.task_worker.consumer)
        2. Built-in task worker consumer settings
        3. Default config (consumer_defaults or producer_defaults)
        """
        if component == "consumer":
            result = self.consumer_defaults.copy()
            if worker_name == "task_worker":
                result.update(TASK_WORKER_CONSUMER_DEFAULTS)
        elif component == "producer":
            result = self.producer_defaults.copy()
        elif component == "processing":
            result = {}
        else:
            raise ValueError(
                f"Invalid component: {component}. Must be 'consumer', 'producer', or 'processing'"
            )

        worker_config = self.workers.get(worker_name, {})
        result.update(worker_config.get(component, {}))
        return result

    def get_consumer_group(self, worker_name: str) -> str:
        """Get consumer group name for a worker.

        An explicit group_id in the worker's consumer config wins over the prefix.
        """
        worker_config = self.get_worker_config(worker_name, "consumer")
        if "group_id" in worker_config:
            return worker_config["group_id"]
        return f"{self.consumer_group_prefix}-{worker_name}"

    def get_max_retries(self) -> int:
        return len(self.retry_delays)

    def validate(self) -> None:
        """Validate configuration for correctness and constraints."""
        if not self.bootstrap_servers:
            raise ValueError("bootstrap_servers is required in kafka.connection section")

        for key in DEFAULT_TOPICS:
            if not self.topics.get(key):
                raise ValueError(f"kafka.topics.{key} must be set")

        if any(not isinstance(d, int) or d < 0 for d in self.retry_delays):
            raise ValueError(
                f"kafka.retry_delays must be non-negative integers, got {self.retry_delays}"
            )

        self._validate_consumer_settings(self.consumer_defaults, "consumer_defaults")
        self._validate_producer_settings(self.producer_defaults, "producer_defaults")

        for worker_name, worker_config in self.workers.items():
            if "consumer" in worker_config:
                self._validate_consumer_settings(
                    self.get_worker_config(worker_name, "consumer"),
                    f"{worker_name}.consumer",
                )
            if "producer" in worker_config:
                self._validate_producer_settings(
                    worker_config["producer"], f"{worker_name}.producer"
                )

        storage = {"backend": self.storage_backend}
        self._validate_enum(storage, "backend", STORAGE_BACKENDS, "storage")
        if self.storage_backend == "blob" and not self.storage_connection_string:
            raise ValueError("storage.connection_string is required when storage.backend is 'blob'")

        api = {"port": self.api_port, "max_upload_bytes": self.max_upload_bytes}
        self._validate_range(api, "port", 1, 65535, "api")
        self._validate_min(api, "max_upload_bytes", 0, inclusive=False, context="api")

        if self.engine_factory and ":" not in self.engine_factory:
            raise ValueError(
                f"engine.factory must be 'module:callable', got '{self.engine_factory}'"
            )

    @staticmethod
    def _validate_enum(
        settings: Dict[str, Any],
        key: str,
        valid_values: List[Any],
        context: str
    ) -> None:
        """Validate that a setting's value is in a list of valid values."""
        if key in settings and settings[key] not in valid_values:
            raise ValueError(
                f"{context}: {key} must be one of {valid_values}, "
                f"got '{settings[key]}'"
            )

    @staticmethod
    def _validate_min(
        settings: Dict[str, Any],
        key: str,
        min_value: float,
        inclusive: bool,
        context: str
    ) -> None:
        """Validate that a setting's value meets a minimum threshold."""
        if key in settings:
            value = settings[key]
            if inclusive and value < min_value:
                raise ValueError(
                    f"{context}: {key} must be >= {min_value}, got {value}"
                )
            elif not inclusive and value <= min_value:
                raise ValueError(
                    f"{context}: {key} must be > {min_value}, got {value}"
                )

    @staticmethod
    def _validate_range(
        settings: Dict[str, Any],
        key: str,
        min_value: float,
        max_value: float,
        context: str
    ) -> None:
        """Validate that a setting's value is within a range (inclusive)."""
        if key in settings:
            value = settings[key]
            if not (min_value <= value <= max_value):
                raise ValueError(
                    f"{context}: {key} must be between {min_value} and {max_value}, got {value}"
                )

    def _validate_consumer_settings(self, settings: Dict[str, Any], context: str) -> None:
        """Validate consumer settings against Kafka requirements and logical constraints."""
        if "heartbeat_interval_ms" in settings and "session_timeout_ms" in settings:
            heartbeat = settings["heartbeat_interval_ms"]
            session_timeout = settings["session_timeout_ms"]
            if heartbeat >= session_timeout / 3:
                raise ValueError(
                    f"{context}: heartbeat_interval_ms ({heartbeat}) must be < "
                    f"session_timeout_ms/3 ({session_timeout/3:.0f})"
                )

        if "session_timeout_ms" in settings and "max_poll_interval_ms" in settings:
            session_timeout = settings["session_timeout_ms"]
            max_poll_interval = settings["max_poll_interval_ms"]
            if session_timeout >= max_poll_interval:
                raise ValueError(
                    f"{context}: session_timeout_ms ({session_timeout}) must be < "
                    f"max_poll_interval_ms ({max_poll_interval})"
                )

        self._validate_min(settings, "max_poll_records", 1, inclusive=True, context=context)
        self._validate_enum(settings, "auto_offset_reset", ["earliest", "latest", "none"], context)

    def _validate_producer_settings(self, settings: Dict[str, Any], context: str) -> None:
        self._validate_enum(settings, "acks", ["0", "1", "all", 0, 1], context)
        self._validate_enum(settings, "compression_type", ["none", "gzip", "snappy", "lz4", "zstd"], context)
        self._validate_min(settings, "linger_ms", 0, inclusive=True, context=context)


def _deep_merge(base: Dict[str, Any], overlay: Dict[str, Any]) -> Dict[str, Any]:
    """Deep merge overlay into base dict."""
    result = base.copy()
    for key, value in overlay.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _as_int(value: Any, default: Optional[int]) -> Optional[int]:
    if value is None or value == "":
        return default
    return int(value)


def _as_bool(value: Any, default: bool) -> bool:
    if value is None or value == "":
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("1", "true", "yes", "on")


_WORKER_SECTION_KEYS = ("connection", "consumer_defaults", "producer_defaults", "topics",
                        "consumer_group_prefix", "retry_delays")


def resolve_config_path(config_path: Optional[Path] = None) -> Path:
    if config_path is not None:
        return config_path
    env_path = os.getenv(CONFIG_ENV_VAR)
    if env_path:
        return Path(env_path)
    return DEFAULT_CONFIG_FILE


def load_config(
    config_path: Optional[Path] = None,
    overrides: Optional[Dict[str, Any]] = None,
) -> SensemakerConfig:
    """Load service configuration from a YAML file.

    Overrides are deep-merged over the file contents before the dataclass
    is built, then the result is validated.
    """
    config_path = resolve_config_path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(
            f"Configuration file not found: {config_path}\n"
            f"Set {CONFIG_ENV_VAR} or create config/config.yaml"
        )

    logger.info("Loading configuration from file: %s", config_path)
    yaml_data = _expand_env_vars(load_yaml(config_path))

    if overrides:
        logger.debug("Applying overrides: %s", list(overrides.keys()))
        yaml_data = _deep_merge(yaml_data, overrides)

    if "kafka" not in yaml_data:
        raise ValueError("Invalid config file: missing 'kafka:' section")

    kafka = yaml_data["kafka"]
    connection = kafka.get("connection", {})
    storage = yaml_data.get("storage", {})
    api = yaml_data.get("api", {})
    engine = yaml_data.get("engine", {})
    observability = yaml_data.get("observability", {})

    workers = {
        name: section
        for name, section in kafka.items()
        if name not in _WORKER_SECTION_KEYS and isinstance(section, dict)
    }

    config = SensemakerConfig(
        bootstrap_servers=connection.get("bootstrap_servers", ""),
        security_protocol=connection.get("security_protocol", "PLAINTEXT"),
        sasl_mechanism=connection.get("sasl_mechanism", "PLAIN"),
        sasl_plain_username=connection.get("sasl_plain_username", ""),
        sasl_plain_password=connection.get("sasl_plain_password", ""),
        request_timeout_ms=_as_int(connection.get("request_timeout_ms"), 120000),
        metadata_max_age_ms=_as_int(connection.get("metadata_max_age_ms"), 300000),
        connections_max_idle_ms=_as_int(connection.get("connections_max_idle_ms"), 540000),
        consumer_defaults=kafka.get("consumer_defaults", {}),
        producer_defaults=kafka.get("producer_defaults", {}),
        topics={**DEFAULT_TOPICS, **kafka.get("topics", {})},
        consumer_group_prefix=kafka.get("consumer_group_prefix", "sensemaker"),
        workers=workers,
        retry_delays=[int(d) for d in kafka.get("retry_delays", [30, 120, 300])],
        storage_backend=storage.get("backend", "local"),
        storage_local_path=storage.get("local_path", "data/results"),
        storage_connection_string=storage.get("connection_string", ""),
        storage_container=storage.get("container", "sensemaker-results"),
        storage_prefix=storage.get("prefix", ""),
        api_host=api.get("host", "0.0.0.0"),
        api_port=_as_int(api.get("port"), 8787),
        max_upload_bytes=_as_int(api.get("max_upload_bytes"), 20 * 1024 * 1024),
        default_api_key=api.get("default_api_key", ""),
        default_model=api.get("default_model", ""),
        engine_factory=engine.get("factory", ""),
        engine_base_url=engine.get("base_url", "https://openrouter.ai/api/v1"),
        health_port=_as_int(observability.get("health_port"), 8080),
        metrics_port=_as_int(observability.get("metrics_port"), None),
        log_dir=observability.get("log_dir", "logs"),
        log_to_stdout=_as_bool(observability.get("log_to_stdout"), False),
        json_logs=_as_bool(observability.get("json_logs"), True),
    )

    logger.debug(
        "Configuration loaded",
        extra={
            "storage_backend": config.storage_backend,
            "target_topic": config.get_topic("tasks"),
        },
    )

    config.validate()
    logger.debug("Configuration validation passed")

    return config


def redacted(config: SensemakerConfig) -> Dict[str, Any]:
    """Config as a dict with credentials masked, for --show-merged and startup logs."""
    data = asdict(config)
    for key in ("sasl_plain_password", "storage_connection_string", "default_api_key"):
        if data.get(key):
            data[key] = "***"
    return data


_config: Optional[SensemakerConfig] = None


def get_config() -> SensemakerConfig:
    """Get or load the singleton config instance."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def set_config(config: SensemakerConfig) -> None:
    """Set the singleton config instance (useful for testing)."""
    global _config
    _config = config


def reset_config() -> None:
    """Reset the singleton config instance (forces reload on next get_config() call)."""
    global _config
    _config = None


def _cli_main() -> int:
    """CLI entry point for config validation and debugging."""
    import argparse

    parser = argparse.ArgumentParser(
        description="Sensemaker Configuration Tool",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Validate configuration
  python -m config.config --validate

  # Show merged configuration (credentials masked)
  python -m config.config --show-merged

  # Use a custom config file
  python -m config.config --config /path/to/config.yaml --validate

  # JSON output for automation
  python -m config.config --validate --json
        """,
    )

    parser.add_argument(
        "--validate",
        action="store_true",
        help="Validate configuration structure and constraints",
    )
    parser.add_argument(
        "--show-merged",
        action="store_true",
        help="Display the resolved configuration",
    )
    parser.add_argument(
        "--config",
        type=Path,
        help=f"Path to config.yaml file (default: ${CONFIG_ENV_VAR} or src/config/config.yaml)",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Output in JSON format instead of human-readable",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable debug logging",
    )

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s: %(message)s",
    )

    if not args.validate and not args.show_merged:
        parser.print_help()
        return 0

    try:
        config = load_config(config_path=args.config)
        output = {}

        if args.validate:
            # Validation happens during load_config(), if we got here it passed
            if args.json:
                output["validation"] = {"passed": True, "errors": []}
            else:
                print("✓ Configuration validation passed")
                print(f"  - Storage backend: {config.storage_backend}")
                print(f"  - Task topic: {config.get_topic('tasks')}")
                print(f"  - Retry delays: {config.retry_delays}")

        if args.show_merged:
            if args.json:
                output["merged_config"] = redacted(config)
            else:
                print("\nConfiguration:")
                print("=" * 80)
                print(yaml.dump(redacted(config), default_flow_style=False, sort_keys=False))
                print("=" * 80)

        if args.json:
            print(json.dumps(output, indent=2))

        return 0

    except FileNotFoundError as e:
        if args.json:
            print(json.dumps({"error": str(e)}))
        else:
            print(f"✗ Error: {e}", file=sys.stderr)
        return 1

    except ValueError as e:
        if args.json:
            print(json.dumps({"error": str(e)}))
        else:
            print(f"✗ Validation error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(_cli_main())
