"""Client for the inventory endpoint of a node process.

The node listener is reached through an SSH-forwarded local port.
"""

import asyncio
import logging
from typing import Optional

from pydantic import ValidationError

from testfleet.utils.errors import NodeUnreachableError, ProtocolError
from .protocol import (
    INVENTORY_REQUEST,
    MAX_MESSAGE_BYTES,
    RemoteInventory,
    decode_message,
    encode_message,
    error_of,
)

logger = logging.getLogger(__name__)

DEFAULT_RPC_TIMEOUT = 120.0


class RemoteNodeClient:
    """Request/response client bound to a forwarded local port.

    Usage:
        client = RemoteNodeClient(9760, node="pixel-rack")
        inventory = await client.init()
    """

    def __init__(
        self,
        port: int,
        host: str = "127.0.0.1",
        node: Optional[str] = None,
        timeout: float = DEFAULT_RPC_TIMEOUT,
    ):
        self.port = port
        self.host = host
        self.node = node
        self.timeout = timeout

    def __repr__(self) -> str:
        return f"RemoteNodeClient({self.host}:{self.port}, node={self.node!r})"

    async def _round_trip(self, request: dict) -> dict:
        try:
            reader, writer = await asyncio.wait_for(
                asyncio.open_connection(self.host, self.port, limit=MAX_MESSAGE_BYTES),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError:
            raise NodeUnreachableError(
                f"Timed out connecting to node listener at {self.host}:{self.port}",
                node=self.node,
            )
        except OSError as e:
            raise NodeUnreachableError(
                f"Node listener at {self.host}:{self.port} unreachable: {e}",
                node=self.node,
            )

        try:
            writer.write(encode_message(request))
            await writer.drain()
            line = await asyncio.wait_for(reader.readline(), timeout=self.timeout)
        except asyncio.TimeoutError:
            raise ProtocolError(
                f"No reply from node within {self.timeout}s", node=self.node
            )
        except (ConnectionError, asyncio.IncompleteReadError) as e:
            raise NodeUnreachableError(
                f"Connection to node dropped: {e}", node=self.node
            )
        except ValueError as e:
            raise ProtocolError(f"Node reply too large: {e}", node=self.node)
        finally:
            writer.close()
            try:
                await writer.wait_closed()
            except (ConnectionError, OSError) as e:
                logger.debug(f"Error closing node connection: {e}")

        if not line:
            # Forwarded port accepted but the remote listener is not up yet
            raise NodeUnreachableError(
                "Node closed the connection without replying", node=self.node
            )

        try:
            return decode_message(line)
        except ValueError as e:
            raise ProtocolError(f"Malformed reply from node: {e}", node=self.node)

    async def init(self) -> RemoteInventory:
        """Fetch the node's devices and test cases.

        Raises:
            NodeUnreachableError: If the listener is not reachable
            ProtocolError: If the reply is malformed or reports an error
        """
        reply = await self._round_trip({"type": INVENTORY_REQUEST})

        error = error_of(reply)
        if error is not None:
            raise ProtocolError(f"Node reported an error: {error}", node=self.node)

        try:
            inventory = RemoteInventory.model_validate(reply)
        except ValidationError as e:
            raise ProtocolError(f"Invalid inventory from node: {e}", node=self.node)

        logger.info(
            f"Node {self.node} reported {len(inventory.devices)} devices, "
            f"{len(inventory.test_cases)} test cases"
        )
        return inventory
