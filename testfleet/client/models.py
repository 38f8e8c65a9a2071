"""Pydantic models for orchestration service payloads."""

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class TestIdentifier(BaseModel):
    """A discovered test, as reported to the orchestrator."""

    __test__ = False

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    package: str = Field(..., description="Java package")
    class_name: str = Field(..., alias="class", description="Simple class name")
    method: str = Field(..., description="Test method")

    @property
    def display_name(self) -> str:
        return f"{self.package}.{self.class_name}#{self.method}"


class PostTestsRequest(BaseModel):
    """Request body for POST /api/v1/test-plans/:plan/tests."""

    tests: List[TestIdentifier] = Field(default_factory=list)


class PostTestsResponse(BaseModel):
    """Response from POST /api/v1/test-plans/:plan/tests."""

    accepted: int = 0
    message: Optional[str] = None
