"""Execution-engine interface and the run driver."""

from .base import (
    DeviceProvider,
    ExecutionEngine,
    RunRule,
    RunSettings,
    SuiteLoader,
    build_run_settings,
)
from .loader import ENGINE_ENV, load_engine
from .runner import list_tests, run_suite, serve_node

__all__ = [
    "DeviceProvider",
    "ExecutionEngine",
    "RunRule",
    "RunSettings",
    "SuiteLoader",
    "build_run_settings",
    "ENGINE_ENV",
    "load_engine",
    "list_tests",
    "run_suite",
    "serve_node",
]
