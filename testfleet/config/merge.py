"""Merge the local configuration with an orchestrator override.

The override wins for a field only when it carries a non-default value:
non-zero numbers, non-empty text, non-empty lists. The DEFAULT_NODES marker
never wins.
"""

import logging
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from testfleet.utils.errors import ConfigurationError
from .models import DEFAULT_NODES, GlobalConfig, OverrideFields

logger = logging.getLogger(__name__)


class FieldCategory(str, Enum):
    """Value category of a mergeable field."""

    NUMBER = "number"
    TEXT = "text"
    LIST = "list"
    NODES = "nodes"


# Every field the orchestrator may override
MERGE_TABLE: Tuple[Tuple[str, FieldCategory], ...] = (
    ("application_package", FieldCategory.TEXT),
    ("test_application_package", FieldCategory.TEXT),
    ("rerun_failed_test", FieldCategory.NUMBER),
    ("global_retry_limit", FieldCategory.NUMBER),
    ("output_directory_path", FieldCategory.TEXT),
    ("report_title", FieldCategory.TEXT),
    ("report_subtitle", FieldCategory.TEXT),
    ("nodes", FieldCategory.NODES),
)


def _category_of(value: Any) -> Optional[FieldCategory]:
    if value is DEFAULT_NODES:
        return FieldCategory.NODES
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return FieldCategory.NUMBER
    if isinstance(value, str):
        return FieldCategory.TEXT
    if isinstance(value, (list, tuple)):
        return FieldCategory.LIST
    return None


def _is_compatible(category: FieldCategory, value: Any) -> bool:
    actual = _category_of(value)
    if category in (FieldCategory.LIST, FieldCategory.NODES):
        # Lists are compatible with each other whatever their elements
        return actual in (FieldCategory.LIST, FieldCategory.NODES)
    return actual == category


def is_non_default(value: Any) -> Optional[bool]:
    """Tell whether a value differs from its type's default.

    Returns:
        True/False, or None when the value has no known default
    """
    if value is DEFAULT_NODES:
        return False
    category = _category_of(value)
    if category == FieldCategory.NUMBER:
        return value != 0
    if category == FieldCategory.TEXT:
        return len(value) > 0
    if category == FieldCategory.LIST:
        return len(value) > 0
    return None


def merge_configs(local: GlobalConfig, override: OverrideFields) -> GlobalConfig:
    """Apply the orchestrator override on top of the local configuration.

    Args:
        local: Configuration loaded from the local file
        override: Fragment fetched from the orchestration service

    Returns:
        New configuration with the overridden fields replaced

    Raises:
        ConfigurationError: If an override value does not fit its field
    """
    updates: Dict[str, Any] = {}

    for name, category in MERGE_TABLE:
        value = getattr(override, name)
        if value is None:
            continue

        if not _is_compatible(category, value):
            raise ConfigurationError(
                f"Orchestrator provided invalid value for '{name}' key",
                field=name,
            )

        should_override = is_non_default(value)
        if should_override is None:
            raise ConfigurationError(
                f"Orchestrator provided invalid value for '{name}' key",
                field=name,
            )

        if should_override:
            updates[name] = list(value) if category == FieldCategory.NODES else value

    if updates:
        logger.info(f"Orchestrator overrides: {', '.join(sorted(updates))}")

    return local.model_copy(update=updates)
