"""REST client for the test orchestration service.

Endpoints used:
- GET  /api/v1/test-plans/:plan/configuration - override configuration
- POST /api/v1/test-plans/:plan/tests - report discovered tests
"""

import logging
from typing import Iterable, Optional

import httpx

from testfleet import __version__
from testfleet.config.models import OverrideFields
from testfleet.utils.errors import AuthenticationError, OrchestratorAPIError
from .models import PostTestsRequest, PostTestsResponse, TestIdentifier

logger = logging.getLogger(__name__)

DEFAULT_ORCHESTRATOR_URL = "https://orchestrator.testfleet.dev"

DEFAULT_CONNECT_TIMEOUT = 10.0
DEFAULT_REQUEST_TIMEOUT = 30.0


class OrchestratorClient:
    """REST client for the orchestration service.

    Usage:
        async with OrchestratorClient(url, token) as client:
            override = await client.get_configuration("plan-42")
    """

    def __init__(
        self,
        base_url: str,
        token: str,
        timeout: float = DEFAULT_REQUEST_TIMEOUT,
        debug: bool = False,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize the orchestrator client.

        Args:
            base_url: Base URL of the orchestration service
            token: Authentication token from the configuration file
            timeout: Request timeout in seconds
            debug: Enable verbose request/response logging
            transport: Optional httpx transport (tests)
        """
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout
        self.debug = debug
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def __aenter__(self) -> "OrchestratorClient":
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=httpx.Timeout(self.timeout, connect=DEFAULT_CONNECT_TIMEOUT),
            headers={
                "User-Agent": f"testfleet/{__version__}",
                "Accept": "application/json",
                "Authorization": f"Bearer {self.token}",
            },
            transport=self._transport,
        )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def close(self) -> None:
        """Explicitly close the client (for non-context-manager usage)."""
        if self._client:
            await self._client.aclose()
            self._client = None

    @property
    def client(self) -> httpx.AsyncClient:
        if not self._client:
            raise RuntimeError("Client not initialized. Use 'async with' context.")
        return self._client

    async def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        """Make HTTP request with error handling."""
        if self.debug:
            logger.info(f"Request: {method} {path}")

        try:
            response = await self.client.request(method, path, **kwargs)
        except httpx.TimeoutException as e:
            raise OrchestratorAPIError(f"Request timeout: {method} {path}") from e
        except httpx.ConnectError as e:
            raise OrchestratorAPIError(f"Connection failed: {self.base_url}") from e
        except httpx.RequestError as e:
            raise OrchestratorAPIError(f"Request error: {e}") from e

        if self.debug:
            logger.info(f"Response: {response.status_code} {response.text[:500]}")

        return response

    def _handle_error(self, response: httpx.Response, context: str) -> None:
        """Raise the error matching a non-2xx response."""
        request_id = response.headers.get("X-Request-ID")

        try:
            data = response.json()
            message = data.get("message", data.get("error", str(data)))
        except ValueError:
            message = response.text

        if response.status_code in (401, 403):
            raise AuthenticationError(
                f"{context}: {message}",
                status_code=response.status_code,
                request_id=request_id,
            )

        raise OrchestratorAPIError(
            f"{context}: {message}",
            status_code=response.status_code,
            request_id=request_id,
        )

    async def get_configuration(self, test_plan: str) -> OverrideFields:
        """Fetch the override configuration of a test plan.

        Raises:
            OrchestratorAPIError: On transport or HTTP failure
            ConfigurationError: If the document does not fit the schema
        """
        response = await self._request(
            "GET", f"/api/v1/test-plans/{test_plan}/configuration"
        )
        if response.status_code != 200:
            self._handle_error(response, f"Failed to get configuration for {test_plan}")

        try:
            payload = response.json()
        except ValueError as e:
            raise OrchestratorAPIError(
                f"Orchestrator returned invalid JSON for {test_plan}",
                status_code=response.status_code,
            ) from e

        return OverrideFields.from_payload(payload)

    async def post_tests(
        self, test_plan: str, tests: Iterable[TestIdentifier]
    ) -> PostTestsResponse:
        """Report the discovered tests of a test plan."""
        body = PostTestsRequest(tests=list(tests))
        response = await self._request(
            "POST",
            f"/api/v1/test-plans/{test_plan}/tests",
            json=body.model_dump(by_alias=True),
        )
        if response.status_code not in (200, 201):
            self._handle_error(response, f"Failed to post tests for {test_plan}")

        if not response.content:
            return PostTestsResponse(accepted=len(body.tests))
        return PostTestsResponse(**response.json())
