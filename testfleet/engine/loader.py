"""Load the execution engine named on the command line."""

import importlib
import logging

from testfleet.utils.errors import ConfigurationError
from .base import ExecutionEngine

logger = logging.getLogger(__name__)

ENGINE_ENV = "TESTFLEET_ENGINE"


def load_engine(target: str) -> ExecutionEngine:
    """Import and instantiate an engine from 'package.module:factory'.

    The factory is called without arguments; a class works as well.

    Raises:
        ConfigurationError: If the target is malformed or cannot be imported
    """
    if not target:
        raise ConfigurationError(
            f"No execution engine configured; pass --engine or set {ENGINE_ENV}",
            field="engine",
        )

    module_name, sep, attr = target.partition(":")
    if not sep or not module_name or not attr:
        raise ConfigurationError(
            f"Engine must be given as 'module:factory', got {target!r}",
            field="engine",
        )

    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        raise ConfigurationError(
            f"Failed to import engine module {module_name}: {e}", field="engine"
        ) from e

    factory = getattr(module, attr, None)
    if factory is None or not callable(factory):
        raise ConfigurationError(
            f"Engine factory {attr!r} not found in {module_name}", field="engine"
        )

    logger.debug(f"Loaded execution engine {target}")
    return factory()
