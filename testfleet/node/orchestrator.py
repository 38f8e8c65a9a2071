"""Bootstrap remote nodes and aggregate their devices and test cases.

For every remote node the orchestrator opens an SSH session, uploads the
controller bundle, the artifacts under test and a node-scoped
configuration, tunnels a local port to the node listener, starts the node
process and asks it for its inventory.

Nodes are bootstrapped concurrently. The first failure cancels the nodes
still in flight and is re-raised; sessions of nodes that had already
finished stay registered and are closed by disconnect(). Callers should
use the orchestrator as an async context manager so teardown runs on
every exit path:

    async with NodeOrchestrator(config, bundle) as orchestrator:
        devices = await orchestrator.connect()
        ...
"""

import asyncio
import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional, Tuple

from testfleet.config.models import GlobalConfig, NodeConfig
from testfleet.diagnostics.logger import NodeLogger
from testfleet.ssh.connection import SSHSession
from testfleet.utils.errors import (
    ConfigurationError,
    DeploymentError,
    NodeUnreachableError,
    SSHConnectionError,
    TeardownError,
    TestFleetError,
)
from testfleet.utils.retry import retry_with_backoff
from .bundle import DeploymentBundle
from .client import RemoteNodeClient
from .inventory import DeviceMapper, NodeBoundDevice, RemoteSshNode, SetOnce, TestCase
from .protocol import LOCAL_BASE_PORT, REMOTE_PORT, RemoteInventory

logger = logging.getLogger(__name__)

RELATIVE_CONFIG_PATH = "config.json"
RELATIVE_LOG_PATH = "node.log"

# Waiting for the node listener after the start command returned
DEFAULT_READINESS_TIMEOUT = 60.0
DEFAULT_READINESS_INTERVAL = 0.5

SessionFactory = Callable[[NodeConfig], SSHSession]
ClientFactory = Callable[[int, NodeConfig], RemoteNodeClient]


def local_port_for(node_index: int, base_port: int = LOCAL_BASE_PORT) -> int:
    """Local forwarded port of the node at node_index in the config."""
    return base_port + node_index


def bootstrap_command(
    deployment_path: str, relative_bin_path: str, relative_config_path: str
) -> str:
    return (
        f"cd {deployment_path} && "
        f"chmod +x ./{relative_bin_path} && "
        f"./{relative_bin_path} config _node -c ./{relative_config_path}"
    )


def _default_session_factory(node: NodeConfig) -> SSHSession:
    return SSHSession(
        node.name,
        node.host,
        node.port,
        node.username,
        Path(node.path_to_private_key).expanduser(),
    )


def _default_client_factory(port: int, node: NodeConfig) -> RemoteNodeClient:
    return RemoteNodeClient(port, node=node.name)


@dataclass
class _NodeResult:
    session: SSHSession
    devices: List[NodeBoundDevice]
    tests: List[TestCase]


class RemoteDeviceProvider:
    """Engine device provider backed by the aggregated device inventory."""

    def __init__(self, devices: SetOnce[List[NodeBoundDevice]]):
        self._devices = devices

    def provide_devices(self) -> List[NodeBoundDevice]:
        return list(self._devices.get())


class RemoteSuiteLoader:
    """Engine test-case provider backed by the aggregated test inventory."""

    def __init__(self, tests: SetOnce[List[TestCase]]):
        self._tests = tests

    def load_test_suite(self) -> List[TestCase]:
        return list(self._tests.get())


class DisconnectRule:
    """Run rule closing every node session after the run."""

    def __init__(self, orchestrator: "NodeOrchestrator"):
        self._orchestrator = orchestrator

    async def before(self) -> None:
        # connect() runs before the engine starts
        pass

    async def after(self) -> None:
        await self._orchestrator.disconnect()


class NodeOrchestrator:
    """Deploys to remote nodes and exposes their devices and tests."""

    def __init__(
        self,
        config: GlobalConfig,
        bundle: DeploymentBundle,
        session_factory: SessionFactory = _default_session_factory,
        client_factory: ClientFactory = _default_client_factory,
        local_base_port: int = LOCAL_BASE_PORT,
        remote_port: int = REMOTE_PORT,
        readiness_timeout: float = DEFAULT_READINESS_TIMEOUT,
        readiness_interval: float = DEFAULT_READINESS_INTERVAL,
    ):
        """Initialize the orchestrator.

        Args:
            config: Effective run configuration
            bundle: Controller artifacts to deploy
            session_factory: Builds an unconnected SSH session for a node
            client_factory: Builds a node client for a forwarded local port
            local_base_port: First local port; node i uses base + i
            remote_port: Port the node process listens on
            readiness_timeout: How long to wait for a started node to answer
            readiness_interval: First wait between readiness attempts
        """
        self.config = config
        self.bundle = bundle
        self.session_factory = session_factory
        self.client_factory = client_factory
        self.local_base_port = local_base_port
        self.remote_port = remote_port
        self.readiness_timeout = readiness_timeout
        self.readiness_interval = readiness_interval

        self.devices: SetOnce[List[NodeBoundDevice]] = SetOnce("device")
        self.tests: SetOnce[List[TestCase]] = SetOnce("test")

        self._sessions: List[SSHSession] = []
        self._sessions_lock = threading.Lock()
        self._devices_lock = threading.Lock()

    async def __aenter__(self) -> "NodeOrchestrator":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.disconnect()

    @property
    def sessions(self) -> List[SSHSession]:
        with self._sessions_lock:
            return list(self._sessions)

    def _indexed_remote_nodes(self) -> List[Tuple[int, NodeConfig]]:
        return [
            (index, node)
            for index, node in enumerate(self.config.nodes)
            if not node.is_local
        ]

    async def connect(self) -> List[NodeBoundDevice]:
        """Bootstrap every remote node and publish the aggregated inventory.

        Returns:
            Devices of all nodes, in configuration order

        Raises:
            TestFleetError: The first node failure, naming the node
        """
        nodes = self._indexed_remote_nodes()
        logger.info(f"Connecting to {len(nodes)} remote nodes")

        tasks = [
            asyncio.create_task(self._bootstrap(index, node), name=f"bootstrap-{node.name}")
            for index, node in nodes
        ]

        try:
            if tasks:
                await asyncio.wait(tasks, return_when=asyncio.FIRST_EXCEPTION)
        except asyncio.CancelledError:
            await self._cancel(tasks)
            raise

        failed = [t for t in tasks if t.done() and not t.cancelled() and t.exception()]
        if failed:
            await self._cancel(tasks)
            raise failed[0].exception()

        all_devices: List[NodeBoundDevice] = []
        all_tests: List[TestCase] = []
        for task in tasks:
            result = task.result()
            with self._devices_lock:
                all_devices.extend(result.devices)
            all_tests.extend(result.tests)

        self.devices.set(all_devices)
        self.tests.set(all_tests)

        logger.info(
            f"Connected {len(nodes)} nodes: {len(all_devices)} devices, "
            f"{len(all_tests)} test cases"
        )
        return all_devices

    async def _cancel(self, tasks: List[asyncio.Task]) -> None:
        for task in tasks:
            if not task.done():
                task.cancel()
        # Nodes that finished before the cancel landed keep their session
        await asyncio.gather(*tasks, return_exceptions=True)

    async def disconnect(self) -> None:
        """Close every registered session. Never raises."""
        with self._sessions_lock:
            sessions, self._sessions = self._sessions, []

        for session in sessions:
            try:
                await session.close()
            except Exception as e:
                error = TeardownError(
                    f"Error while closing SSH session: {e}", node=session.name
                )
                logger.warning(f"{error} (node {error.node})", exc_info=True)

    def device_providers(self) -> List[RemoteDeviceProvider]:
        return [RemoteDeviceProvider(self.devices)]

    def suite_loaders(self) -> List[RemoteSuiteLoader]:
        return [RemoteSuiteLoader(self.tests)]

    def run_rules(self) -> List[DisconnectRule]:
        return [DisconnectRule(self)]

    def _register(self, session: SSHSession) -> None:
        with self._sessions_lock:
            self._sessions.append(session)

    @staticmethod
    def _check_credentials(node: NodeConfig) -> Path:
        if not node.path_to_private_key:
            raise ConfigurationError(
                f"Node {node.name} has no private key set",
                field="pathToPrivateKey",
                node=node.name,
            )
        key_path = Path(node.path_to_private_key).expanduser()
        if not key_path.is_file():
            raise ConfigurationError(
                f"Private key for node {node.name} is not a file: {key_path}",
                field="pathToPrivateKey",
                node=node.name,
            )
        return key_path

    async def _bootstrap(self, index: int, node: NodeConfig) -> _NodeResult:
        try:
            return await self._bootstrap_node(index, node)
        except TestFleetError as e:
            if e.node is None:
                e.node = node.name
            raise
        except (asyncio.CancelledError, KeyboardInterrupt):
            raise
        except Exception as e:
            raise DeploymentError(
                f"Bootstrap of node {node.name} failed: {e}",
                node=node.name,
                stage="bootstrap",
            ) from e

    async def _bootstrap_node(self, index: int, node: NodeConfig) -> _NodeResult:
        log = NodeLogger(node=node.name, host=node.host)
        self._check_credentials(node)

        session = self.session_factory(node)
        try:
            await session.connect()
            log.stage("connect", "SSH session open")

            deployment_path = await node.resolve_deployment_path(
                lambda expression: session.run_for_stdout(f"echo {expression}")
            )
            log.stage("resolve", "Deployment path resolved", path=deployment_path)

            await self._upload_binaries(session, deployment_path)
            relative_config_path = await self._upload_config(session, node, deployment_path)
            log.stage("upload", "Bundle, artifacts and config uploaded")

            local_port = await self._setup_port_forwarding(session, node, index)
            log.stage("forward", "Port forwarded", local_port=local_port)

            await self._start_node(session, node, deployment_path, relative_config_path)
            log.stage("start", "Node process started")

            client = self.client_factory(local_port, node)
            inventory = await self._fetch_inventory(client)

            mapper = DeviceMapper(RemoteSshNode(node, client))
            tests = [mapper.to_test_case(test) for test in inventory.test_cases]
            devices = [mapper(device) for device in inventory.devices]
            log.stage("inventory", "Inventory received", devices=len(devices), tests=len(tests))
        except asyncio.CancelledError:
            log.debug(f"Bootstrap cancelled after {log.last_stage or 'start'}")
            await self._close_quietly(session)
            raise
        except Exception as e:
            log.failed(e)
            await self._close_quietly(session)
            raise

        self._register(session)
        return _NodeResult(session=session, devices=devices, tests=tests)

    async def _close_quietly(self, session: SSHSession) -> None:
        try:
            await session.close()
        except Exception as e:
            logger.warning(f"Error while closing SSH session to {session.name}: {e}")

    async def _upload_binaries(self, session: SSHSession, deployment_path: str) -> None:
        await session.upload_content(
            self.bundle.launcher,
            f"{deployment_path}/{self.bundle.relative_bin_path}",
        )
        await session.upload_files(
            [
                (self.bundle.payload, f"{deployment_path}/{self.bundle.relative_lib_path}"),
                (
                    Path(self.config.application_package),
                    f"{deployment_path}/{self.config.relative_app_path}",
                ),
                (
                    Path(self.config.test_application_package),
                    f"{deployment_path}/{self.config.relative_test_path}",
                ),
            ]
        )

    async def _upload_config(
        self, session: SSHSession, node: NodeConfig, deployment_path: str
    ) -> str:
        node_config = self.config.for_node(node)
        await session.upload_content(
            node_config.to_json().encode("utf-8"),
            f"{deployment_path}/{RELATIVE_CONFIG_PATH}",
        )
        return RELATIVE_CONFIG_PATH

    async def _setup_port_forwarding(
        self, session: SSHSession, node: NodeConfig, index: int
    ) -> int:
        local_port = local_port_for(index, self.local_base_port)
        try:
            return await session.forward_local_port(local_port, self.remote_port)
        except SSHConnectionError as e:
            raise DeploymentError(
                f"Failed to set up port forwarding for node {node.name}: {e}",
                node=node.name,
                stage="forward",
            ) from e

    async def _start_node(
        self,
        session: SSHSession,
        node: NodeConfig,
        deployment_path: str,
        relative_config_path: str,
    ) -> None:
        command = bootstrap_command(
            deployment_path, self.bundle.relative_bin_path, relative_config_path
        )
        try:
            await session.run_background(
                command, log_path=f"{deployment_path}/{RELATIVE_LOG_PATH}"
            )
        except SSHConnectionError as e:
            raise DeploymentError(
                f"Failed to start the node {node.name}: {e}",
                node=node.name,
                stage="start",
            ) from e

    async def _fetch_inventory(self, client: RemoteNodeClient) -> RemoteInventory:
        def _on_retry(error: Exception, attempt: int, wait: float) -> None:
            logger.debug(
                f"Node {client.node} not ready (attempt {attempt}): {error}. "
                f"Retrying in {wait:.1f}s"
            )

        return await retry_with_backoff(
            client.init,
            max_elapsed_time=self.readiness_timeout,
            initial_interval=self.readiness_interval,
            retryable_exceptions=(NodeUnreachableError,),
            on_retry=_on_retry,
        )
