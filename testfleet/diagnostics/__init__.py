"""Logging setup and the per-node bootstrap trail."""

from .logger import BootstrapStep, NodeLogger, setup_logging

__all__ = [
    "BootstrapStep",
    "NodeLogger",
    "setup_logging",
]
