"""Wire protocol between the controller and a node process.

Messages are single-line JSON objects terminated by a newline:

    -> {"type": "inventory"}
    <- {"devices": [...], "testCases": [...]}
    <- {"error": "message"}
"""

import json
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

REMOTE_PORT = 9759
LOCAL_BASE_PORT = 9760

INVENTORY_REQUEST = "inventory"

# Upper bound for one message line
MAX_MESSAGE_BYTES = 16 * 1024 * 1024


class RemoteDevice(BaseModel):
    """A device attached to a node. Compared and hashed by content."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )

    serial: str = Field(..., description="Device serial number")
    model: str = ""
    manufacturer: str = ""
    os_version: str = ""
    api_level: int = 0
    is_tablet: bool = False


class RemoteTestCase(BaseModel):
    """A test case bound to the device a node discovered it for."""

    __test__ = False

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )

    package: str
    class_name: str = Field(..., alias="class")
    method: str
    annotations: Tuple[str, ...] = ()
    device: RemoteDevice


class RemoteInventory(BaseModel):
    """Devices and test cases reported by one node."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    devices: List[RemoteDevice] = Field(default_factory=list)
    test_cases: List[RemoteTestCase] = Field(default_factory=list)


def encode_message(message: Dict[str, Any]) -> bytes:
    return json.dumps(message, separators=(",", ":")).encode("utf-8") + b"\n"


def decode_message(line: bytes) -> Dict[str, Any]:
    """Decode one message line.

    Raises:
        ValueError: If the line is not a JSON object
    """
    message = json.loads(line.decode("utf-8"))
    if not isinstance(message, dict):
        raise ValueError(f"expected a JSON object, got {type(message).__name__}")
    return message


def inventory_response(inventory: RemoteInventory) -> Dict[str, Any]:
    return inventory.model_dump(mode="json", by_alias=True)


def error_response(message: str) -> Dict[str, Any]:
    return {"error": message}


def error_of(message: Dict[str, Any]) -> Optional[str]:
    error = message.get("error")
    return str(error) if error is not None else None
