"""Remote node bootstrap, protocol and inventory aggregation."""

from .protocol import (
    LOCAL_BASE_PORT,
    REMOTE_PORT,
    RemoteDevice,
    RemoteInventory,
    RemoteTestCase,
)
from .client import RemoteNodeClient
from .server import NodeServer
from .inventory import DeviceMapper, NodeBoundDevice, RemoteSshNode, SetOnce, TestCase
from .bundle import DeploymentBundle
from .orchestrator import NodeOrchestrator, bootstrap_command, local_port_for

__all__ = [
    "LOCAL_BASE_PORT",
    "REMOTE_PORT",
    "RemoteDevice",
    "RemoteInventory",
    "RemoteTestCase",
    "RemoteNodeClient",
    "NodeServer",
    "DeviceMapper",
    "NodeBoundDevice",
    "RemoteSshNode",
    "SetOnce",
    "TestCase",
    "DeploymentBundle",
    "NodeOrchestrator",
    "bootstrap_command",
    "local_port_for",
]
