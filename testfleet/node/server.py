"""Node-serving mode: answers inventory requests from the controller."""

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from testfleet.utils.errors import TestFleetError
from .protocol import (
    INVENTORY_REQUEST,
    MAX_MESSAGE_BYTES,
    REMOTE_PORT,
    RemoteInventory,
    decode_message,
    encode_message,
    error_response,
    inventory_response,
)

logger = logging.getLogger(__name__)

InventoryProvider = Callable[[], Awaitable[RemoteInventory]]


class NodeServer:
    """TCP listener serving this node's inventory.

    Only loopback is bound; the controller reaches it through an SSH
    tunnel.
    """

    def __init__(
        self,
        inventory_provider: InventoryProvider,
        host: str = "127.0.0.1",
        port: int = REMOTE_PORT,
    ):
        self.inventory_provider = inventory_provider
        self.host = host
        self.port = port
        self._server: Optional[asyncio.AbstractServer] = None

    @property
    def bound_port(self) -> int:
        if not self._server or not self._server.sockets:
            raise RuntimeError("Server not started")
        return self._server.sockets[0].getsockname()[1]

    async def start(self) -> None:
        self._server = await asyncio.start_server(
            self._handle, self.host, self.port, limit=MAX_MESSAGE_BYTES
        )
        logger.info(f"Node listening on {self.host}:{self.bound_port}")

    async def serve_forever(self) -> None:
        if not self._server:
            await self.start()
        async with self._server:
            await self._server.serve_forever()

    async def close(self) -> None:
        if self._server:
            self._server.close()
            await self._server.wait_closed()
            self._server = None

    async def __aenter__(self) -> "NodeServer":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def _reply_to(self, line: bytes) -> dict:
        try:
            request = decode_message(line)
        except ValueError as e:
            return error_response(f"malformed request: {e}")

        request_type = request.get("type")
        if request_type != INVENTORY_REQUEST:
            return error_response(f"unknown request type: {request_type!r}")

        try:
            inventory = await self.inventory_provider()
        except TestFleetError as e:
            logger.error(f"Inventory discovery failed: {e}")
            return error_response(str(e))
        except Exception as e:
            logger.error(f"Inventory discovery failed: {e}", exc_info=True)
            return error_response(f"inventory discovery failed: {e}")

        return inventory_response(inventory)

    async def _handle(
        self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter
    ) -> None:
        peer = writer.get_extra_info("peername")
        try:
            while True:
                line = await reader.readline()
                if not line:
                    break
                reply = await self._reply_to(line)
                writer.write(encode_message(reply))
                await writer.drain()
        except (ConnectionError, ValueError) as e:
            logger.warning(f"Connection from {peer} failed: {e}")
        finally:
            writer.close()
