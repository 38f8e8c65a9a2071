"""Click CLI for testfleet.

Commands:
- run: Run the suite on local and remote devices
- list: List discovered tests
- init-orchestrator: Report discovered tests to the orchestrator
- config _node: Serve this machine as a node (started by the controller)
"""

import asyncio
import functools
import logging
import sys
import tempfile

import click
from rich.console import Console
from rich.table import Table

from testfleet import __version__
from testfleet.client import DEFAULT_ORCHESTRATOR_URL, OrchestratorClient, TestIdentifier
from testfleet.config import load_config, request_config
from testfleet.diagnostics.logger import setup_logging
from testfleet.engine import (
    ENGINE_ENV,
    build_run_settings,
    list_tests,
    load_engine,
    run_suite,
    serve_node,
)
from testfleet.node import DeploymentBundle, REMOTE_PORT
from testfleet.utils.errors import ConfigurationError, TestFleetError

console = Console()
logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "testfleet.json"


def run_async(coro):
    """Run async function in sync context."""
    return asyncio.run(coro)


def reports_errors(func):
    """Print testfleet errors instead of a traceback and exit with 2."""

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except TestFleetError as e:
            where = f" [dim](node {e.node})[/]" if e.node else ""
            console.print(f"[red]Error:[/] {e}{where}")
            sys.exit(2)

    return wrapper


config_option = click.option(
    "-c",
    "--config",
    "config_path",
    default=DEFAULT_CONFIG_PATH,
    show_default=True,
    type=click.Path(dir_okay=False),
    help="Configuration file",
)


def _client_factory(ctx):
    def _factory(token: str) -> OrchestratorClient:
        return OrchestratorClient(
            ctx.obj["orchestrator_url"],
            token,
            debug=ctx.obj["debug"],
        )

    return _factory


@click.group()
@click.version_option(version=__version__)
@click.option(
    "--engine",
    envvar=ENGINE_ENV,
    default="",
    help="Execution engine as 'module:factory'",
)
@click.option(
    "--orchestrator-url",
    envvar="TESTFLEET_ORCHESTRATOR_URL",
    default=DEFAULT_ORCHESTRATOR_URL,
    help="Orchestration service URL",
)
@click.option(
    "--debug",
    is_flag=True,
    help="Enable debug logging",
)
@click.pass_context
def cli(ctx, engine: str, orchestrator_url: str, debug: bool):
    """testfleet - run a device test suite across SSH worker nodes."""
    ctx.ensure_object(dict)
    ctx.obj["engine"] = engine
    ctx.obj["orchestrator_url"] = orchestrator_url
    ctx.obj["debug"] = debug

    setup_logging(level="DEBUG" if debug else "INFO", debug_http=debug)


@cli.command()
@config_option
@click.option(
    "--bundle",
    envvar="TESTFLEET_BUNDLE",
    default=None,
    help="Controller zipapp deployed to remote nodes",
)
@click.pass_context
@reports_errors
def run(ctx, config_path: str, bundle: str):
    """Run the test suite."""
    async def _run() -> bool:
        config = await request_config(config_path, _client_factory(ctx))
        engine = load_engine(ctx.obj["engine"] or config.engine)
        if config.remote_nodes():
            table = Table(title=f"Remote nodes ({len(config.remote_nodes())})")
            table.add_column("Name")
            table.add_column("Host")
            table.add_column("Deployment path")
            for node in config.remote_nodes():
                table.add_row(node.name, f"{node.host}:{node.port}", node.deployment_path)
            console.print(table)

        return await run_suite(
            config,
            engine,
            bundle_factory=lambda: DeploymentBundle.discover(bundle),
        )

    passed = run_async(_run())
    if passed:
        console.print("[bold green]Run passed[/]")
    else:
        console.print("[bold red]Run failed[/]")
    sys.exit(0 if passed else 1)


@cli.command("list")
@config_option
@click.pass_context
@reports_errors
def list_cmd(ctx, config_path: str):
    """List the tests of the suite."""
    async def _list():
        config = await request_config(config_path, _client_factory(ctx))
        engine = load_engine(ctx.obj["engine"] or config.engine)
        if not config.output_directory_path:
            config = config.model_copy(
                update={"output_directory_path": tempfile.mkdtemp(prefix="testfleet")}
            )
        return await list_tests(config, engine)

    names = run_async(_list())
    for name in names:
        click.echo(name)
    sys.exit(0 if names else 1)


@cli.command("init-orchestrator")
@config_option
@click.pass_context
@reports_errors
def init_orchestrator(ctx, config_path: str):
    """Report the tests of the suite to the orchestrator."""
    async def _init() -> int:
        config = await request_config(config_path, _client_factory(ctx))
        engine = load_engine(ctx.obj["engine"] or config.engine)
        if not config.token or not config.test_plan:
            raise ConfigurationError(
                "A token and a test plan are required to initialize the orchestrator",
                field="testPlan",
            )

        inventory = await engine.discover(build_run_settings(config, for_listing=True))
        unique = {
            (test.package, test.class_name, test.method) for test in inventory.test_cases
        }
        tests = [
            TestIdentifier(package=package, class_name=class_name, method=method)
            for package, class_name, method in sorted(unique)
        ]
        if not tests:
            console.print("[yellow]No tests found[/]")
            return 1

        async with _client_factory(ctx)(config.token) as client:
            response = await client.post_tests(config.test_plan, tests)
        console.print(f"[green]Orchestrator accepted {response.accepted} tests[/]")
        return 0

    sys.exit(run_async(_init()))


@cli.group("config")
def config_group():
    """Node-side commands."""


@config_group.command("_node", hidden=True)
@config_option
@click.option("--port", default=REMOTE_PORT, show_default=True, help="Listening port")
@click.pass_context
@reports_errors
def node(ctx, config_path: str, port: int):
    """Serve this machine's devices and tests to the controller."""
    config = load_config(config_path)
    engine = load_engine(ctx.obj["engine"] or config.engine)
    logger.info(f"Starting node {', '.join(n.name for n in config.nodes)} on port {port}")
    run_async(serve_node(config, engine, port))


def main():
    """Entry point for CLI."""
    cli(obj={})


if __name__ == "__main__":
    main()
