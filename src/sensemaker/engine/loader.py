"""Resolve the configured ``module:callable`` analysis engine factory."""

import importlib
import logging

from sensemaker.engine.protocol import EngineFactory

logger = logging.getLogger(__name__)


def load_engine_factory(spec: str) -> EngineFactory:
    """Import ``package.module:callable`` and return the callable.

    Raises:
        ValueError: If the reference is empty, malformed, or does not resolve
            to a callable
    """
    if not spec or ":" not in spec:
        raise ValueError(
            f"Analysis engine factory must be 'module:callable', got '{spec}'. "
            "Set engine.factory (SENSEMAKER_ENGINE_FACTORY)."
        )

    module_name, _, attr_path = spec.partition(":")
    try:
        target = importlib.import_module(module_name)
    except ImportError as e:
        raise ValueError(f"Cannot import analysis engine module '{module_name}': {e}") from e

    for attr in attr_path.split("."):
        try:
            target = getattr(target, attr)
        except AttributeError as e:
            raise ValueError(f"'{spec}' does not name an attribute of {module_name}") from e

    if not callable(target):
        raise ValueError(f"Analysis engine factory '{spec}' is not callable")

    logger.info("Loaded analysis engine factory", extra={"engine_factory": spec})
    return target
