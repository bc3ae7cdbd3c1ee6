"""
Bridge channels: the embedded endpoint that relays messages to the device.

A channel only moves messages. Origin filtering and reply matching belong
to :class:`~navigator_keyring.bridge.transport.BridgeTransport`, which
registers a single listener through :meth:`BridgeChannel.open`.
"""
import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Callable, Optional

import aiohttp
import orjson

from .config import get_origin

logger = logging.getLogger("navigator.keyring.bridge")

Listener = Callable[[str, Any], None]


class BridgeChannel(ABC):
    """Bidirectional, origin-scoped message endpoint."""

    @abstractmethod
    async def open(self, listener: Listener) -> None:
        """Start delivering inbound messages as ``listener(origin, data)``."""

    @abstractmethod
    async def post(self, message: dict) -> None:
        """Send one outbound message."""

    @property
    def connected(self) -> bool:
        """False once an opened channel has lost its connection."""
        return True

    async def close(self) -> None:
        """Release the channel."""


class WebSocketChannel(BridgeChannel):
    """Channel over an aiohttp websocket connected to the bridge page.

    Frames are JSON objects in both directions. Inbound frames are reported
    with the origin of the websocket url.
    """

    def __init__(
        self,
        url: str,
        session: Optional[aiohttp.ClientSession] = None,
        heartbeat: Optional[float] = None,
    ):
        self.url = url
        self.origin = get_origin(url)
        self._session = session
        self._own_session = session is None
        self._heartbeat = heartbeat
        self._ws: Optional[aiohttp.ClientWebSocketResponse] = None
        self._reader: Optional[asyncio.Task] = None
        self._listener: Optional[Listener] = None

    @property
    def connected(self) -> bool:
        return self._ws is not None and not self._ws.closed

    async def open(self, listener: Listener) -> None:
        self._listener = listener
        if self.connected:
            return
        if self._reader is not None:
            self._reader.cancel()
        if self._session is None:
            self._session = aiohttp.ClientSession()
        self._ws = await self._session.ws_connect(self.url, heartbeat=self._heartbeat)
        self._reader = asyncio.create_task(self._read_loop(self._ws))
        logger.info("Bridge channel connected to %s", self.url)

    async def _read_loop(self, ws: aiohttp.ClientWebSocketResponse) -> None:
        async for msg in ws:
            if msg.type in (aiohttp.WSMsgType.TEXT, aiohttp.WSMsgType.BINARY):
                try:
                    data = orjson.loads(msg.data)
                except orjson.JSONDecodeError:
                    logger.warning("Dropping malformed frame from %s", self.url)
                    continue
                if self._listener is not None:
                    self._listener(self.origin, data)
            elif msg.type == aiohttp.WSMsgType.ERROR:
                logger.error("Bridge channel error: %s", ws.exception())
                break
        logger.info("Bridge channel to %s closed", self.url)

    async def post(self, message: dict) -> None:
        if not self.connected:
            raise ConnectionError(f"Bridge channel to {self.url} is not open")
        await self._ws.send_str(orjson.dumps(message).decode("utf-8"))

    async def close(self) -> None:
        if self._reader is not None:
            self._reader.cancel()
            self._reader = None
        if self._ws is not None:
            await self._ws.close()
            self._ws = None
        if self._own_session and self._session is not None:
            await self._session.close()
            self._session = None
