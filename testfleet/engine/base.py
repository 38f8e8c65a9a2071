"""Interface of the test-execution engine that actually runs the tests.

The engine is an external collaborator: it discovers local devices and
tests, and runs a suite against device and test providers. Remote node
devices reach it through the providers the NodeOrchestrator exposes.
"""

from dataclasses import dataclass
from typing import Any, List, Optional, Protocol, Sequence, Tuple

from testfleet.config.merge import is_non_default
from testfleet.config.models import GlobalConfig, NodeConfig
from testfleet.node.protocol import RemoteInventory


class DeviceProvider(Protocol):
    def provide_devices(self) -> Sequence[Any]:
        ...


class SuiteLoader(Protocol):
    def load_test_suite(self) -> Sequence[Any]:
        ...


class RunRule(Protocol):
    async def before(self) -> None:
        ...

    async def after(self) -> None:
        ...


@dataclass
class RunSettings:
    """Engine settings derived from the effective configuration.

    Only values the configuration actually supplies are set.
    """

    android_sdk_path: Optional[str] = None
    application_apk: Optional[str] = None
    instrumentation_apk: Optional[str] = None
    retry_per_test_case_quota: Optional[int] = None
    total_allowed_retry_quota: Optional[int] = None
    output_directory: Optional[str] = None
    title: Optional[str] = None
    subtitle: Optional[str] = None
    pooled_devices: Tuple[str, ...] = ()
    coverage_enabled: bool = False


class ExecutionEngine(Protocol):
    """Runs instrumented tests and pools devices."""

    async def discover(self, settings: RunSettings) -> RemoteInventory:
        """List local devices and the test cases available on them."""
        ...

    async def run(
        self,
        settings: RunSettings,
        device_providers: List[DeviceProvider],
        suite_loaders: List[SuiteLoader],
        run_rules: List[RunRule],
    ) -> bool:
        """Run the suite; call every rule's before() and after() once."""
        ...


def _supplied(value: Any) -> bool:
    # Values without a known default count as supplied
    return is_non_default(value) is not False


def build_run_settings(
    config: GlobalConfig,
    for_listing: bool = False,
    local_node: Optional[NodeConfig] = None,
) -> RunSettings:
    """Translate the configuration into engine settings.

    Args:
        config: Effective configuration
        for_listing: Skip report settings, only tests are enumerated
        local_node: Node whose devices are pooled locally (default: the
            single localhost node, if any)
    """
    settings = RunSettings()

    if local_node is None and config.local_nodes():
        local_node = config.single_local_node()
    if local_node is not None:
        local = local_node
        if local.android_sdk_path:
            settings.android_sdk_path = local.android_sdk_path
        if local.udid:
            settings.pooled_devices = tuple(local.udid.devices)

    if _supplied(config.application_package):
        settings.application_apk = config.application_package
    if _supplied(config.test_application_package):
        settings.instrumentation_apk = config.test_application_package
    if _supplied(config.rerun_failed_test):
        settings.retry_per_test_case_quota = config.rerun_failed_test
    if _supplied(config.global_retry_limit):
        settings.total_allowed_retry_quota = config.global_retry_limit
    if _supplied(config.output_directory_path):
        settings.output_directory = config.output_directory_path

    if not for_listing:
        if _supplied(config.report_title):
            settings.title = config.report_title
        if _supplied(config.report_subtitle):
            settings.subtitle = config.report_subtitle

    return settings
