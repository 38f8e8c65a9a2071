"""Pydantic models for the testfleet configuration file.

The JSON document uses camelCase keys; unknown keys are ignored so newer
configuration files keep working with older controllers.
"""

import re
from typing import Any, Awaitable, Callable, List, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, StrictInt, StrictStr, ValidationError
from pydantic.alias_generators import to_camel

from testfleet.utils.errors import ConfigurationError

LOCAL_HOSTS = ("localhost", "127.0.0.1", "::1")

# $VAR, ${VAR} or a leading ~
_ENV_REFERENCE = re.compile(r"^~|\$\{?[A-Za-z_][A-Za-z0-9_]*\}?")


class _ConfigModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
        frozen=True,
    )


class DeviceSelection(_ConfigModel):
    """Devices a local node should pool, by serial number."""

    devices: Tuple[str, ...] = ()


class NodeConfig(_ConfigModel):
    """One machine participating in a run."""

    name: str = Field(..., description="Node name used in logs and errors")
    host: str = Field("localhost", description="SSH hostname or IP")
    port: int = Field(22, description="SSH port")
    username: str = Field("", description="SSH username")
    path_to_private_key: Optional[str] = Field(
        None, description="Path to the SSH private key on the controller"
    )
    deployment_path: str = Field(
        "", description="Remote directory, may reference remote env variables"
    )
    android_sdk_path: Optional[str] = None
    udid: Optional[DeviceSelection] = Field(None, alias="UDID")

    @property
    def is_local(self) -> bool:
        return self.host in LOCAL_HOSTS

    @property
    def has_env_reference(self) -> bool:
        return bool(_ENV_REFERENCE.search(self.deployment_path))

    async def resolve_deployment_path(
        self, expand: Callable[[str], Awaitable[str]]
    ) -> str:
        """Resolve the deployment path template.

        Args:
            expand: Coroutine expanding a shell expression on the node

        Returns:
            The literal path, or the remote expansion when the template
            references environment variables
        """
        if not self.has_env_reference:
            return self.deployment_path
        return await expand(self.deployment_path)


class _DefaultNodes:
    """Marker for 'the orchestrator did not configure any nodes'."""

    _instance: Optional["_DefaultNodes"] = None

    def __new__(cls) -> "_DefaultNodes":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "DEFAULT_NODES"


DEFAULT_NODES = _DefaultNodes()


def _relative_artifact_name(prefix: str, path: str) -> str:
    # Text after the last dot, or the whole name when there is none
    return f"{prefix}.{path.rsplit('.', 1)[-1]}"


class GlobalConfig(_ConfigModel):
    """Effective run configuration."""

    token: str = ""
    test_plan: Optional[str] = None
    application_package: str = ""
    test_application_package: str = ""
    rerun_failed_test: int = 0
    global_retry_limit: int = 0
    output_directory_path: str = ""
    report_title: str = ""
    report_subtitle: str = ""
    engine: str = Field("", description="Execution engine as module:factory")
    nodes: List[NodeConfig] = Field(default_factory=list)

    @property
    def relative_app_path(self) -> str:
        return _relative_artifact_name("app", self.application_package)

    @property
    def relative_test_path(self) -> str:
        return _relative_artifact_name("test", self.test_application_package)

    def remote_nodes(self) -> List[NodeConfig]:
        return [node for node in self.nodes if not node.is_local]

    def local_nodes(self) -> List[NodeConfig]:
        return [node for node in self.nodes if node.is_local]

    def single_local_node(self) -> NodeConfig:
        """Return the only local node.

        Raises:
            ConfigurationError: Unless exactly one local node is configured
        """
        local = self.local_nodes()
        if len(local) != 1:
            raise ConfigurationError(
                "Exactly one node (localhost) should be specified under the "
                f"'nodes' key, found {len(local)}",
                field="nodes",
            )
        return local[0]

    def for_node(self, node: NodeConfig) -> "GlobalConfig":
        """Derive the configuration uploaded to a single node.

        Artifact paths point at fixed names inside the node's deployment
        directory instead of the controller's filesystem. The orchestrator
        token and test plan stay on the controller.
        """
        return self.model_copy(
            update={
                "token": "",
                "test_plan": None,
                "nodes": [node],
                "application_package": self.relative_app_path,
                "test_application_package": self.relative_test_path,
            }
        )

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, exclude_none=True, indent=2)


class OverrideFields(BaseModel):
    """Configuration fragment supplied by the orchestration service.

    Absent scalar fields are None; absent nodes are DEFAULT_NODES. Scalars
    are strict: true, "3" or 2.0 for a count is an error, not a coercion.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
        arbitrary_types_allowed=True,
    )

    application_package: Optional[StrictStr] = None
    test_application_package: Optional[StrictStr] = None
    rerun_failed_test: Optional[StrictInt] = None
    global_retry_limit: Optional[StrictInt] = None
    output_directory_path: Optional[StrictStr] = None
    report_title: Optional[StrictStr] = None
    report_subtitle: Optional[StrictStr] = None
    nodes: Union[List[NodeConfig], _DefaultNodes, None] = DEFAULT_NODES

    @classmethod
    def from_payload(cls, payload: Any) -> "OverrideFields":
        """Validate an orchestrator document.

        Raises:
            ConfigurationError: Naming the first invalid field
        """
        if not isinstance(payload, dict):
            raise ConfigurationError(
                f"Orchestrator returned {type(payload).__name__}, expected an object"
            )
        try:
            return cls.model_validate(payload)
        except ValidationError as e:
            error = e.errors()[0]
            field = str(error["loc"][0]) if error["loc"] else None
            raise ConfigurationError(
                f"Orchestrator provided invalid value for '{field}' key: {error['msg']}",
                field=field,
            ) from e
