"""Error hierarchy for testfleet.

Every error raised while bootstrapping a node carries the node name so a
failed run can be traced back to the machine that caused it.
"""

from typing import Optional


class TestFleetError(Exception):
    """Base exception for all testfleet errors."""

    __test__ = False

    def __init__(self, message: str, node: Optional[str] = None):
        super().__init__(message)
        self.node = node


class ConfigurationError(TestFleetError):
    """Raised for malformed or incompatible configuration.

    Covers invalid override values, missing credentials and an invalid
    number of local nodes.
    """

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        node: Optional[str] = None,
    ):
        super().__init__(message, node)
        self.field = field


class DeploymentError(TestFleetError):
    """Raised when deploying to or starting a node fails."""

    def __init__(
        self,
        message: str,
        node: Optional[str] = None,
        stage: Optional[str] = None,
    ):
        super().__init__(message, node)
        self.stage = stage


class SSHConnectionError(DeploymentError):
    """Raised when an SSH connection or remote command fails."""

    def __init__(
        self,
        message: str,
        host: Optional[str] = None,
        port: Optional[int] = None,
        node: Optional[str] = None,
        stage: Optional[str] = None,
    ):
        super().__init__(message, node=node, stage=stage)
        self.host = host
        self.port = port


class ProtocolError(TestFleetError):
    """Raised when a node inventory round trip fails or cannot be parsed."""


class NodeUnreachableError(ProtocolError):
    """Raised when the node listener refuses or drops the connection.

    This is the only protocol failure worth retrying: the remote process
    may still be starting up.
    """


class TeardownError(TestFleetError):
    """Raised when a session fails to close. Logged, never propagated."""


class InventoryNotReadyError(TestFleetError):
    """Raised when an inventory is read before every node was processed."""


class OrchestratorAPIError(TestFleetError):
    """Raised when the orchestration service request fails."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        request_id: Optional[str] = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.request_id = request_id


class AuthenticationError(OrchestratorAPIError):
    """Raised when the orchestration service rejects the token (HTTP 401/403)."""

    def __init__(
        self,
        message: str = "Orchestrator rejected the authentication token",
        status_code: int = 401,
        request_id: Optional[str] = None,
    ):
        super().__init__(message, status_code, request_id)
