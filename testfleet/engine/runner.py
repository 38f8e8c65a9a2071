"""Drive a run: connect remote nodes, run the engine, tear down."""

import logging
from typing import Callable, List

from testfleet.config.models import GlobalConfig
from testfleet.node.bundle import DeploymentBundle
from testfleet.node.orchestrator import NodeOrchestrator
from testfleet.node.server import NodeServer
from testfleet.utils.errors import ConfigurationError
from .base import ExecutionEngine, build_run_settings

logger = logging.getLogger(__name__)

OrchestratorFactory = Callable[[GlobalConfig, DeploymentBundle], NodeOrchestrator]


async def run_suite(
    config: GlobalConfig,
    engine: ExecutionEngine,
    bundle_factory: Callable[[], DeploymentBundle] = DeploymentBundle.discover,
    orchestrator_factory: OrchestratorFactory = NodeOrchestrator,
) -> bool:
    """Run the suite on local and remote devices.

    Remote nodes are fully connected before the engine starts, and their
    sessions are closed on every exit path.

    Returns:
        True if the engine reports success
    """
    settings = build_run_settings(config)

    if not config.remote_nodes():
        logger.info("No remote nodes configured, running locally")
        return await engine.run(settings, [], [], [])

    orchestrator = orchestrator_factory(config, bundle_factory())
    async with orchestrator:
        await orchestrator.connect()
        return await engine.run(
            settings,
            orchestrator.device_providers(),
            orchestrator.suite_loaders(),
            orchestrator.run_rules(),
        )


async def list_tests(config: GlobalConfig, engine: ExecutionEngine) -> List[str]:
    """Discover local tests, sorted as package.Class#method."""
    inventory = await engine.discover(build_run_settings(config, for_listing=True))
    names = {
        f"{test.package}.{test.class_name}#{test.method}"
        for test in inventory.test_cases
    }
    return sorted(names)


async def serve_node(config: GlobalConfig, engine: ExecutionEngine, port: int) -> None:
    """Serve this machine's inventory to the controller until stopped.

    The uploaded configuration lists exactly one node: this machine.
    """
    if len(config.nodes) != 1:
        raise ConfigurationError(
            f"A node configuration must list exactly one node, found {len(config.nodes)}",
            field="nodes",
        )
    settings = build_run_settings(config, for_listing=True, local_node=config.nodes[0])

    async def _inventory():
        return await engine.discover(settings)

    server = NodeServer(_inventory, port=port)
    await server.serve_forever()
