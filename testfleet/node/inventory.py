"""Devices and test cases aggregated from remote nodes."""

import asyncio
import threading
from dataclasses import dataclass, field
from typing import Dict, Generic, Optional, Tuple, TypeVar

from testfleet.config.models import NodeConfig
from testfleet.utils.errors import InventoryNotReadyError
from .client import RemoteNodeClient
from .protocol import RemoteDevice, RemoteTestCase

T = TypeVar("T")


@dataclass(eq=False)
class RemoteSshNode:
    """A bootstrapped node: its configuration and the client reaching it."""

    config: NodeConfig
    client: RemoteNodeClient

    @property
    def name(self) -> str:
        return self.config.name


@dataclass(eq=False)
class NodeBoundDevice:
    """A device paired with the node hosting it.

    Compared by identity: one instance per (node, device) pair.
    """

    node: RemoteSshNode
    device: RemoteDevice

    @property
    def serial(self) -> str:
        return self.device.serial

    @property
    def display_name(self) -> str:
        return f"{self.node.name}/{self.device.serial}"

    def __repr__(self) -> str:
        return f"NodeBoundDevice({self.display_name})"


@dataclass(eq=False)
class TestCase:
    """Engine-side test case running on a node-bound device."""

    __test__ = False

    package: str
    class_name: str
    method: str
    device: NodeBoundDevice
    annotations: Tuple[str, ...] = ()

    @property
    def display_name(self) -> str:
        return f"{self.package}.{self.class_name}#{self.method}"


@dataclass
class DeviceMapper:
    """Memoizing map from raw device descriptors to node-bound devices.

    A device listed by the node and referenced by its test cases maps to
    the same NodeBoundDevice.
    """

    node: RemoteSshNode
    _bound: Dict[RemoteDevice, NodeBoundDevice] = field(default_factory=dict)

    def __call__(self, device: RemoteDevice) -> NodeBoundDevice:
        bound = self._bound.get(device)
        if bound is None:
            bound = NodeBoundDevice(self.node, device)
            self._bound[device] = bound
        return bound

    def to_test_case(self, test: RemoteTestCase) -> TestCase:
        return TestCase(
            package=test.package,
            class_name=test.class_name,
            method=test.method,
            device=self(test.device),
            annotations=tuple(test.annotations),
        )


class SetOnce(Generic[T]):
    """Single-assignment value shared between the bootstrap and providers.

    get() never blocks and fails before the value is set; wait() blocks
    until it is.
    """

    def __init__(self, name: str):
        self.name = name
        self._lock = threading.Lock()
        self._value: Optional[T] = None
        self._is_set = False
        self._event = asyncio.Event()

    @property
    def is_set(self) -> bool:
        return self._is_set

    def set(self, value: T) -> None:
        with self._lock:
            if self._is_set:
                raise RuntimeError(f"{self.name} inventory already set")
            self._value = value
            self._is_set = True
        self._event.set()

    def get(self) -> T:
        with self._lock:
            if not self._is_set:
                raise InventoryNotReadyError(
                    f"{self.name} inventory requested before all nodes connected"
                )
            return self._value

    async def wait(self) -> T:
        await self._event.wait()
        return self.get()
