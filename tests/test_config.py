"""Tests for configuration models and loading."""

import json

import pytest

from testfleet.config import GlobalConfig, NodeConfig, OverrideFields, load_config, request_config
from testfleet.utils.errors import ConfigurationError


SAMPLE = {
    "token": "secret",
    "testPlan": "nightly",
    "applicationPackage": "/builds/app-debug.apk",
    "testApplicationPackage": "/builds/app-debug-androidTest.apk",
    "rerunFailedTest": 2,
    "globalRetryLimit": 10,
    "outputDirectoryPath": "/tmp/out",
    "reportTitle": "Nightly",
    "nodes": [
        {
            "name": "local",
            "host": "localhost",
            "androidSdkPath": "/opt/android-sdk",
            "UDID": {"devices": ["emulator-5554"]},
        },
        {
            "name": "rack-1",
            "host": "10.0.0.7",
            "port": 2222,
            "username": "ci",
            "pathToPrivateKey": "~/.ssh/id_ed25519",
            "deploymentPath": "$HOME/testfleet",
        },
    ],
    "somethingNew": True,
}


class TestNodeConfig:
    """Tests for NodeConfig."""

    def test_is_local(self):
        """Loopback hosts are local."""
        assert NodeConfig(name="a", host="localhost").is_local
        assert NodeConfig(name="a", host="127.0.0.1").is_local
        assert not NodeConfig(name="a", host="10.0.0.7").is_local

    @pytest.mark.asyncio
    async def test_literal_deployment_path(self):
        """Paths without env references are used as is."""
        node = NodeConfig(name="a", host="h", deployment_path="/srv/testfleet")

        async def _expand(expression):
            raise AssertionError("should not expand")

        assert await node.resolve_deployment_path(_expand) == "/srv/testfleet"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("template", ["$HOME/tf", "${HOME}/tf", "/data/$USER", "~/tf", "~"])
    async def test_env_deployment_path(self, template):
        """Env references are expanded remotely."""
        node = NodeConfig(name="a", host="h", deployment_path=template)
        seen = []

        async def _expand(expression):
            seen.append(expression)
            return "/expanded"

        assert await node.resolve_deployment_path(_expand) == "/expanded"
        assert seen == [template]

    def test_tilde_only_expands_at_start(self):
        """A tilde inside a path is an ordinary character."""
        assert NodeConfig(name="a", host="h", deployment_path="~ci/tf").has_env_reference
        assert not NodeConfig(name="a", host="h", deployment_path="/srv/v1~2").has_env_reference

    def test_frozen(self):
        """Node configs are immutable."""
        node = NodeConfig(name="a", host="h")
        with pytest.raises(Exception):
            node.host = "other"


class TestGlobalConfig:
    """Tests for GlobalConfig derivations."""

    def test_parse_sample(self):
        """camelCase keys are parsed and unknown keys ignored."""
        config = GlobalConfig.model_validate(SAMPLE)
        assert config.test_plan == "nightly"
        assert config.rerun_failed_test == 2
        assert config.nodes[0].udid.devices == ("emulator-5554",)
        assert config.nodes[1].port == 2222
        assert config.nodes[1].path_to_private_key == "~/.ssh/id_ed25519"

    def test_remote_and_local_nodes(self):
        """Nodes split by host."""
        config = GlobalConfig.model_validate(SAMPLE)
        assert [n.name for n in config.remote_nodes()] == ["rack-1"]
        assert [n.name for n in config.local_nodes()] == ["local"]
        assert config.single_local_node().name == "local"

    def test_single_local_node_requires_exactly_one(self):
        """Zero or several local nodes is a configuration error."""
        config = GlobalConfig(
            nodes=[NodeConfig(name="a", host="localhost"), NodeConfig(name="b", host="::1")]
        )
        with pytest.raises(ConfigurationError) as exc_info:
            config.single_local_node()
        assert exc_info.value.field == "nodes"

        with pytest.raises(ConfigurationError):
            GlobalConfig().single_local_node()

    def test_for_node(self):
        """The node config lists only that node and relative artifacts."""
        config = GlobalConfig.model_validate(SAMPLE)
        node = config.nodes[1]
        node_config = config.for_node(node)

        assert node_config.nodes == [node]
        assert node_config.application_package == "app.apk"
        assert node_config.test_application_package == "test.apk"
        assert node_config.report_title == config.report_title
        assert node_config.token == ""
        assert node_config.test_plan is None
        assert config.token == "secret"
        assert config.application_package == "/builds/app-debug.apk"

    def test_relative_name_without_extension(self):
        """Names without a dot keep the whole name."""
        config = GlobalConfig(application_package="app", test_application_package="t.aab")
        assert config.relative_app_path == "app.app"
        assert config.relative_test_path == "test.aab"

    def test_json_round_trip_uses_camel_case(self):
        """Serialized configs use the file schema."""
        config = GlobalConfig.model_validate(SAMPLE)
        data = json.loads(config.for_node(config.nodes[1]).to_json())
        assert data["applicationPackage"] == "app.apk"
        assert data["nodes"][0]["deploymentPath"] == "$HOME/testfleet"
        assert "testPlan" not in data
        assert "secret" not in json.dumps(data)
        assert GlobalConfig.model_validate(data).nodes[0].name == "rack-1"


class TestLoadConfig:
    """Tests for load_config."""

    def test_load(self, tmp_path):
        """Should load a valid file."""
        path = tmp_path / "testfleet.json"
        path.write_text(json.dumps(SAMPLE))
        assert load_config(path).report_title == "Nightly"

    def test_missing_file(self, tmp_path):
        """Unreadable files are configuration errors."""
        with pytest.raises(ConfigurationError, match="Failed to read"):
            load_config(tmp_path / "missing.json")

    def test_invalid_json(self, tmp_path):
        """Malformed JSON is a configuration error."""
        path = tmp_path / "bad.json"
        path.write_text("{nope")
        with pytest.raises(ConfigurationError, match="not valid JSON"):
            load_config(path)

    def test_invalid_field(self, tmp_path):
        """Schema violations name the field."""
        path = tmp_path / "bad.json"
        path.write_text(json.dumps({"globalRetryLimit": "lots"}))
        with pytest.raises(ConfigurationError) as exc_info:
            load_config(path)
        assert exc_info.value.field == "globalRetryLimit"


class FakeOrchestrator:
    def __init__(self, override):
        self.override = override
        self.requested = []

    async def __aenter__(self):
        return self

    async def __aexit__(self, *args):
        return None

    async def get_configuration(self, test_plan):
        self.requested.append(test_plan)
        return self.override


class TestRequestConfig:
    """Tests for the override invocation policy."""

    @pytest.mark.asyncio
    async def test_merges_when_token_and_plan(self, tmp_path):
        """The orchestrator is queried with the local token and plan."""
        path = tmp_path / "testfleet.json"
        path.write_text(json.dumps(SAMPLE))
        fake = FakeOrchestrator(OverrideFields(report_title="From orchestrator"))
        tokens = []

        def _factory(token):
            tokens.append(token)
            return fake

        config = await request_config(path, _factory)
        assert config.report_title == "From orchestrator"
        assert tokens == ["secret"]
        assert fake.requested == ["nightly"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "overrides", [{"token": ""}, {"testPlan": None}, {"testPlan": ""}]
    )
    async def test_skips_fetch_without_token_or_plan(self, tmp_path, overrides):
        """Without both a token and a plan no request is made."""
        path = tmp_path / "testfleet.json"
        path.write_text(json.dumps({**SAMPLE, **overrides}))

        def _factory(token):
            raise AssertionError("orchestrator must not be contacted")

        config = await request_config(path, _factory)
        assert config.report_title == "Nightly"
