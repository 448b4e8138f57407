"""Configuration loading for the Sensemaker service.

Configuration is read from a single YAML file (``config/config.yaml`` next
to this package, or the path in ``SENSEMAKER_CONFIG``).

Usage:
    >>> from config import load_config, get_config
    >>> config = load_config()
    >>> config.get_topic("tasks")
    'sensemaker-tasks'

Settings are resolved in the following priority (highest to lowest):

1. Explicit overrides passed to load_config()
2. Environment variables referenced from the YAML file
3. YAML values
4. Dataclass defaults

Validate a file from the command line with ``python -m config.config --validate``.
"""

from config.config import (
    SensemakerConfig,
    get_config,
    load_config,
    reset_config,
    set_config,
)

__all__ = [
    "load_config",
    "get_config",
    "set_config",
    "reset_config",
    "SensemakerConfig",
]
