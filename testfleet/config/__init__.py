"""Configuration models, loading and orchestrator override merging."""

from .models import (
    DEFAULT_NODES,
    DeviceSelection,
    GlobalConfig,
    NodeConfig,
    OverrideFields,
)
from .merge import MERGE_TABLE, FieldCategory, is_non_default, merge_configs
from .loader import load_config, request_config

__all__ = [
    "DEFAULT_NODES",
    "DeviceSelection",
    "GlobalConfig",
    "NodeConfig",
    "OverrideFields",
    "MERGE_TABLE",
    "FieldCategory",
    "is_non_default",
    "merge_configs",
    "load_config",
    "request_config",
]
