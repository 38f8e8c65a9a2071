"""Client for the test orchestration service."""

from .models import TestIdentifier, PostTestsRequest, PostTestsResponse
from .orchestrator import OrchestratorClient, DEFAULT_ORCHESTRATOR_URL

__all__ = [
    "TestIdentifier",
    "PostTestsRequest",
    "PostTestsResponse",
    "OrchestratorClient",
    "DEFAULT_ORCHESTRATOR_URL",
]
