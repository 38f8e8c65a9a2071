"""Shared fixtures: configurations and fake node transports."""

from pathlib import Path
from typing import Dict, List, Optional, Tuple

import pytest

from testfleet.config.models import GlobalConfig, NodeConfig
from testfleet.node.bundle import DeploymentBundle
from testfleet.node.protocol import RemoteDevice, RemoteInventory, RemoteTestCase
from testfleet.utils.errors import SSHConnectionError


class FakeSession:
    """In-memory stand-in for SSHSession recording every call."""

    def __init__(
        self,
        node: NodeConfig,
        fail_on: Optional[str] = None,
        close_error: Optional[Exception] = None,
        home: str = "/home/ci",
    ):
        self.name = node.name
        self.node = node
        self.fail_on = fail_on
        self.close_error = close_error
        self.home = home
        self.connected = False
        self.close_calls = 0
        self.commands: List[str] = []
        self.background: List[Tuple[str, Optional[str]]] = []
        self.uploaded_files: Dict[str, Path] = {}
        self.uploaded_content: Dict[str, bytes] = {}
        self.forwards: List[Tuple[int, int]] = []

    def _maybe_fail(self, stage: str) -> None:
        if self.fail_on == stage:
            raise SSHConnectionError(f"{stage} failed", node=self.name, stage=stage)

    @property
    def is_open(self) -> bool:
        return self.connected and self.close_calls == 0

    async def connect(self) -> None:
        self._maybe_fail("connect")
        self.connected = True

    async def close(self) -> None:
        self.close_calls += 1
        if self.close_error:
            raise self.close_error

    async def run_for_stdout(self, command: str) -> str:
        self._maybe_fail("command")
        self.commands.append(command)
        expression = command.replace("echo ", "")
        if expression.startswith("~"):
            expression = self.home + expression[1:]
        return expression.replace("$HOME", self.home)

    async def upload_files(self, files) -> None:
        self._maybe_fail("upload")
        for local, remote in files:
            self.uploaded_files[remote] = local

    async def upload_content(self, content: bytes, remote_path: str) -> None:
        self._maybe_fail("upload")
        self.uploaded_content[remote_path] = content

    async def forward_local_port(self, local_port: int, remote_port: int) -> int:
        self._maybe_fail("forward")
        self.forwards.append((local_port, remote_port))
        return local_port

    async def run_background(self, command: str, log_path: Optional[str] = None) -> None:
        self._maybe_fail("start")
        self.background.append((command, log_path))


class FakeNodeClient:
    """Stand-in for RemoteNodeClient returning a canned inventory."""

    def __init__(self, port: int, node: str, inventory=None, errors=()):
        self.port = port
        self.node = node
        self.inventory = inventory if inventory is not None else RemoteInventory()
        self.errors = list(errors)
        self.calls = 0

    async def init(self) -> RemoteInventory:
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return self.inventory


def make_device(serial: str, model: str = "Pixel 7") -> RemoteDevice:
    return RemoteDevice(serial=serial, model=model, manufacturer="Google", api_level=34)


def make_test(method: str, device: RemoteDevice, cls: str = "LoginTest") -> RemoteTestCase:
    return RemoteTestCase(
        package="com.example.app", class_name=cls, method=method, device=device
    )


@pytest.fixture
def key_file(tmp_path) -> Path:
    path = tmp_path / "id_ed25519"
    path.write_text("not a real key")
    return path


@pytest.fixture
def artifacts(tmp_path) -> Dict[str, Path]:
    app = tmp_path / "app-debug.apk"
    test = tmp_path / "app-debug-androidTest.apk"
    payload = tmp_path / "testfleet.pyz"
    for path in (app, test, payload):
        path.write_bytes(b"\x00")
    return {"app": app, "test": test, "payload": payload}


@pytest.fixture
def bundle(artifacts) -> DeploymentBundle:
    return DeploymentBundle(payload=artifacts["payload"])


@pytest.fixture
def make_node(key_file):
    def _make_node(name: str, **overrides) -> NodeConfig:
        values = dict(
            name=name,
            host=f"{name}.lab.internal",
            username="ci",
            path_to_private_key=str(key_file),
            deployment_path="$HOME/testfleet",
        )
        values.update(overrides)
        return NodeConfig(**values)

    return _make_node


@pytest.fixture
def make_config(artifacts):
    def _make_config(nodes: List[NodeConfig], **overrides) -> GlobalConfig:
        values = dict(
            application_package=str(artifacts["app"]),
            test_application_package=str(artifacts["test"]),
            nodes=nodes,
        )
        values.update(overrides)
        return GlobalConfig(**values)

    return _make_config
