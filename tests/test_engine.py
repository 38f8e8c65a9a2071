"""Tests for engine settings, loading and the run driver."""

import pytest

from conftest import FakeNodeClient, FakeSession, make_device
from fake_engine import FakeEngine
from testfleet.config import DeviceSelection, GlobalConfig, NodeConfig
from testfleet.engine import build_run_settings, list_tests, load_engine, run_suite, serve_node
from testfleet.node import NodeOrchestrator
from testfleet.node.protocol import RemoteInventory
from testfleet.utils.errors import ConfigurationError


@pytest.fixture(autouse=True)
def reset_engine(monkeypatch):
    monkeypatch.setattr(FakeEngine, "inventory", None)
    monkeypatch.setattr(FakeEngine, "passed", True)
    monkeypatch.setattr(FakeEngine, "error", None)
    monkeypatch.setattr(FakeEngine, "instances", [])


class TestBuildRunSettings:
    """Tests for build_run_settings."""

    def test_only_supplied_values_are_set(self):
        """Default values leave engine settings unset."""
        settings = build_run_settings(GlobalConfig(application_package="/b/app.apk"))
        assert settings.application_apk == "/b/app.apk"
        assert settings.instrumentation_apk is None
        assert settings.retry_per_test_case_quota is None
        assert settings.title is None
        assert settings.pooled_devices == ()

    def test_full_config(self):
        """Every supplied value reaches the engine."""
        config = GlobalConfig(
            application_package="/b/app.apk",
            test_application_package="/b/test.apk",
            rerun_failed_test=2,
            global_retry_limit=10,
            output_directory_path="/tmp/out",
            report_title="Nightly",
            report_subtitle="main",
            nodes=[
                NodeConfig(
                    name="local",
                    host="localhost",
                    android_sdk_path="/opt/sdk",
                    udid=DeviceSelection(devices=("emulator-5554",)),
                ),
                NodeConfig(name="rack-1", host="10.0.0.7"),
            ],
        )
        settings = build_run_settings(config)

        assert settings.android_sdk_path == "/opt/sdk"
        assert settings.pooled_devices == ("emulator-5554",)
        assert settings.instrumentation_apk == "/b/test.apk"
        assert settings.retry_per_test_case_quota == 2
        assert settings.total_allowed_retry_quota == 10
        assert settings.output_directory == "/tmp/out"
        assert settings.title == "Nightly"
        assert settings.subtitle == "main"

    def test_listing_skips_report_settings(self):
        """Listing does not need report titles."""
        settings = build_run_settings(GlobalConfig(report_title="Nightly"), for_listing=True)
        assert settings.title is None

    def test_several_local_nodes(self):
        """More than one local node cannot be pooled."""
        config = GlobalConfig(
            nodes=[NodeConfig(name="a", host="localhost"), NodeConfig(name="b", host="localhost")]
        )
        with pytest.raises(ConfigurationError):
            build_run_settings(config)

    def test_explicit_local_node(self):
        """A node-scoped config pools the given node's devices."""
        node = NodeConfig(name="rack-1", host="10.0.0.7", android_sdk_path="/sdk")
        settings = build_run_settings(GlobalConfig(nodes=[node]), local_node=node)
        assert settings.android_sdk_path == "/sdk"


class TestLoadEngine:
    """Tests for load_engine."""

    def test_loads_factory(self):
        """The factory is imported and called."""
        assert isinstance(load_engine("fake_engine:FakeEngine"), FakeEngine)

    @pytest.mark.parametrize(
        "target,message",
        [
            ("", "No execution engine"),
            ("fake_engine", "module:factory"),
            (":FakeEngine", "module:factory"),
            ("no_such_module_here:Engine", "Failed to import"),
            ("fake_engine:Missing", "not found"),
            ("fake_engine:not_callable", "not found"),
        ],
    )
    def test_invalid_targets(self, target, message):
        """Bad engine names are configuration errors."""
        with pytest.raises(ConfigurationError, match=message) as exc_info:
            load_engine(target)
        assert exc_info.value.field == "engine"


class TestRunSuite:
    """Tests for run_suite."""

    @pytest.mark.asyncio
    async def test_local_only(self):
        """Without remote nodes nothing is deployed."""
        engine = FakeEngine()

        def _no_bundle():
            raise AssertionError("bundle must not be needed")

        passed = await run_suite(
            GlobalConfig(nodes=[NodeConfig(name="local", host="localhost")]),
            engine,
            bundle_factory=_no_bundle,
        )
        assert passed
        assert len(engine.runs) == 1
        assert engine.devices == []

    @pytest.mark.asyncio
    async def test_remote_devices_reach_engine(self, make_node, make_config, bundle):
        """Remote devices are connected before the run and closed after."""
        sessions = []

        def _session_factory(node):
            session = FakeSession(node)
            sessions.append(session)
            return session

        def _client_factory(port, node):
            return FakeNodeClient(
                port, node.name, inventory=RemoteInventory(devices=[make_device("d1")])
            )

        def _orchestrator(config, deployment_bundle):
            return NodeOrchestrator(
                config,
                deployment_bundle,
                session_factory=_session_factory,
                client_factory=_client_factory,
            )

        engine = FakeEngine()
        FakeEngine.passed = False
        passed = await run_suite(
            make_config([make_node("rack-1")]),
            engine,
            bundle_factory=lambda: bundle,
            orchestrator_factory=_orchestrator,
        )

        assert passed is False
        assert [d.display_name for d in engine.devices] == ["rack-1/d1"]
        assert sessions[0].close_calls == 1

    @pytest.mark.asyncio
    async def test_sessions_closed_when_engine_fails(self, make_node, make_config, bundle):
        """Sessions are closed even if the engine never runs its rules."""
        sessions = []

        class CrashingEngine:
            async def run(self, settings, device_providers, suite_loaders, run_rules):
                raise RuntimeError("engine crashed")

        def _orchestrator(config, deployment_bundle):
            def _session_factory(node):
                session = FakeSession(node)
                sessions.append(session)
                return session

            return NodeOrchestrator(
                config,
                deployment_bundle,
                session_factory=_session_factory,
                client_factory=lambda port, node: FakeNodeClient(port, node.name),
            )

        with pytest.raises(RuntimeError, match="engine crashed"):
            await run_suite(
                make_config([make_node("rack-1"), make_node("rack-2")]),
                CrashingEngine(),
                bundle_factory=lambda: bundle,
                orchestrator_factory=_orchestrator,
            )

        assert [s.close_calls for s in sessions] == [1, 1]


class TestListTests:
    """Tests for list_tests."""

    @pytest.mark.asyncio
    async def test_sorted_unique_names(self):
        """Tests seen on several devices are listed once."""
        names = await list_tests(GlobalConfig(), FakeEngine())
        assert names == [
            "com.example.app.LoginTest#bad_password",
            "com.example.app.LoginTest#valid_login",
            "com.example.app.SettingsTest#open",
        ]


class TestServeNode:
    """Tests for serve_node."""

    @pytest.mark.asyncio
    async def test_requires_single_node(self):
        """A node config must name exactly one node."""
        config = GlobalConfig(
            nodes=[NodeConfig(name="a", host="h1"), NodeConfig(name="b", host="h2")]
        )
        with pytest.raises(ConfigurationError) as exc_info:
            await serve_node(config, FakeEngine(), port=0)
        assert exc_info.value.field == "nodes"
