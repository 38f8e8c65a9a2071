"""Utility modules for testfleet."""

from .errors import (
    TestFleetError,
    ConfigurationError,
    DeploymentError,
    SSHConnectionError,
    ProtocolError,
    NodeUnreachableError,
    TeardownError,
    InventoryNotReadyError,
    OrchestratorAPIError,
    AuthenticationError,
)
from .retry import retry_with_backoff

__all__ = [
    "TestFleetError",
    "ConfigurationError",
    "DeploymentError",
    "SSHConnectionError",
    "ProtocolError",
    "NodeUnreachableError",
    "TeardownError",
    "InventoryNotReadyError",
    "OrchestratorAPIError",
    "AuthenticationError",
    "retry_with_backoff",
]
