"""
Bridge Transport: request/reply messaging with the hardware bridge.

Every request carries a unique ``messageId`` and waits in a pending table
until the matching ``<action>-reply`` arrives or its timeout expires; the
entry is removed in both cases. One listener serves all requests.

Replies are accepted only from the bridge origin. Messages from any other
origin are ignored: the channel may carry unrelated traffic.
"""
import uuid
import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Optional

import aiohttp
from pydantic import ValidationError

from ..exceptions import DeviceError, DeviceTimeoutError
from ..models import BridgeReply, BridgeRequest
from .channel import BridgeChannel
from .config import get_origin

logger = logging.getLogger("navigator.keyring.bridge")

BRIDGE_TARGET = "LEDGER-IFRAME"
REPLY_SUFFIX = "-reply"


def device_error_message(payload: Any) -> str:
    """Extract a readable reason from a failed reply payload."""
    if isinstance(payload, dict):
        error = payload.get("error", payload)
        if isinstance(error, dict):
            return str(error.get("message") or error)
        return str(error)
    return str(payload) if payload else "Unknown error"


@dataclass
class PendingRequest:
    action: str
    future: asyncio.Future

    @property
    def reply_action(self) -> str:
        return f"{self.action}{REPLY_SUFFIX}"


class BridgeTransport:
    """Single dispatcher over a :class:`BridgeChannel`.

    Args:
        channel: channel relaying messages to the bridge.
        bridge_url: bridge address; its origin is the url minus the last
            path segment.
        timeout: seconds to wait for each reply.
    """

    def __init__(self, channel: BridgeChannel, bridge_url: str, timeout: float = 30.0):
        self.channel = channel
        self.bridge_url = bridge_url
        self.origin = get_origin(bridge_url)
        self.timeout = timeout
        self._pending: dict[str, PendingRequest] = {}
        self._opened = False
        self._open_lock = asyncio.Lock()

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    async def _ensure_open(self) -> None:
        """Open the channel, or reopen it after the connection dropped."""
        async with self._open_lock:
            if self._opened and self.channel.connected:
                return
            if self._opened:
                logger.info("Bridge channel to %s dropped, reconnecting", self.bridge_url)
            try:
                await self.channel.open(self.dispatch)
            except (aiohttp.ClientError, OSError) as err:
                self._opened = False
                raise DeviceError(f"Unable to reach bridge at {self.bridge_url}") from err
            self._opened = True

    def dispatch(self, origin: str, data: Any) -> None:
        """Channel listener: route one inbound message to its pending request."""
        if origin != self.origin:
            return
        if not isinstance(data, dict):
            return
        action = data.get("action")
        if not isinstance(action, str) or not action.endswith(REPLY_SUFFIX):
            return
        pending = self._match(action, data.get("messageId"))
        if pending is None:
            logger.debug("No pending request for %s", action)
            return
        if not pending.future.done():
            pending.future.set_result(data)

    def _match(self, reply_action: str, request_id: Optional[str]) -> Optional[PendingRequest]:
        if request_id is not None:
            pending = self._pending.get(request_id)
            if pending is not None and pending.reply_action == reply_action:
                return self._pending.pop(request_id)
            return None
        # bridges that do not echo messageId: oldest request with that action
        for rid, pending in self._pending.items():
            if pending.reply_action == reply_action and not pending.future.done():
                return self._pending.pop(rid)
        return None

    async def send(self, action: str, params: Optional[dict] = None, timeout: Optional[float] = None) -> Any:
        """Send a request and return the reply payload.

        Raises:
            DeviceTimeoutError: No reply within the timeout.
            DeviceError: The device reported a failure or is unreachable.
        """
        await self._ensure_open()
        request_id = uuid.uuid4().hex
        future = asyncio.get_running_loop().create_future()
        self._pending[request_id] = PendingRequest(action, future)
        request = BridgeRequest(
            action=action,
            params=params or {},
            target=BRIDGE_TARGET,
            messageId=request_id,
        )
        wait = timeout or self.timeout
        logger.debug("Bridge request %s (%s)", action, request_id)
        try:
            try:
                await self.channel.post(request.model_dump())
            except (aiohttp.ClientError, ConnectionError) as err:
                # reopen on the next request
                self._opened = False
                raise DeviceError(f"Unable to reach bridge at {self.bridge_url}") from err
            data = await asyncio.wait_for(future, wait)
        except asyncio.TimeoutError as err:
            raise DeviceTimeoutError(
                f"Device did not answer {action} within {wait} seconds"
            ) from err
        finally:
            self._pending.pop(request_id, None)
        try:
            reply = BridgeReply.model_validate(data)
        except ValidationError as err:
            raise DeviceError(f"Malformed reply to {action}", payload=data) from err
        if not reply.success:
            raise DeviceError(device_error_message(reply.payload), payload=reply.payload)
        return reply.payload

    async def close(self) -> None:
        for pending in self._pending.values():
            if not pending.future.done():
                pending.future.cancel()
        self._pending.clear()
        if self._opened:
            await self.channel.close()
            self._opened = False
