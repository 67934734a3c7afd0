"""WebSocket notification channels and their heartbeat.

ASGI gives applications no access to protocol-level ping frames, so the
heartbeat is an application message: the server sends ``{"type": "ping"}``
and any frame received from the client marks the channel alive. A channel
that stayed silent for a whole interval is closed and unbound, which keeps
half-open connections from leaking registry entries.
"""

import asyncio
from typing import Any, Dict, List, Set

from fastapi import WebSocket
from starlette.websockets import WebSocketState

from .observability.logging_config import get_logger
from .registry import SubscriberRegistry
from .schemas import PingEvent

logger = get_logger(__name__)

NORMAL_CLOSURE = 1000
GOING_AWAY = 1001
INVALID_MAILBOX = 4000


class WebSocketChannel:
    """Channel implementation over a Starlette WebSocket bound to one address."""

    def __init__(self, websocket: WebSocket, address: str):
        self.websocket = websocket
        self.address = address
        self.is_alive = True
        self._closed = False
        self._send_lock = asyncio.Lock()

    @property
    def is_open(self) -> bool:
        return (
            not self._closed
            and self.websocket.client_state == WebSocketState.CONNECTED
            and self.websocket.application_state == WebSocketState.CONNECTED
        )

    def mark_alive(self) -> None:
        self.is_alive = True

    def mark_closed(self) -> None:
        self._closed = True

    async def send_json(self, data: Dict[str, Any]) -> None:
        async with self._send_lock:
            await self.websocket.send_json(data)

    async def ping(self) -> None:
        await self.send_json(PingEvent().model_dump(mode="json", by_alias=True))

    async def close(self, code: int = NORMAL_CLOSURE, reason: str = "") -> None:
        if self._closed:
            return
        self._closed = True
        if self.websocket.application_state == WebSocketState.DISCONNECTED:
            return
        try:
            await self.websocket.close(code=code, reason=reason)
        except RuntimeError as e:
            # Peer already gone; the ASGI server refuses a second close
            logger.debug(f"Close on finished channel for {self.address}: {e}")


class Heartbeat:
    """Tracks every open channel, bound or replaced, and pings it periodically."""

    def __init__(self, registry: SubscriberRegistry):
        self.registry = registry
        self._channels: Set[WebSocketChannel] = set()

    def track(self, channel: WebSocketChannel) -> None:
        self._channels.add(channel)

    def discard(self, channel: WebSocketChannel) -> None:
        self._channels.discard(channel)

    def channels(self) -> List[WebSocketChannel]:
        return list(self._channels)

    def __len__(self) -> int:
        return len(self._channels)

    async def terminate(self, channel: WebSocketChannel, reason: str) -> None:
        self.discard(channel)
        self.registry.unbind(channel.address, channel)
        await channel.close(GOING_AWAY, reason)

    async def beat(self) -> int:
        """Run one heartbeat round.

        Returns:
            int: Number of channels terminated this round
        """
        terminated = 0
        for channel in list(self._channels):
            if not channel.is_open:
                self.discard(channel)
                self.registry.unbind(channel.address, channel)
                continue

            if not channel.is_alive:
                logger.info(
                    f"Terminating inactive channel for {channel.address}",
                    extra={"address": channel.address},
                )
                await self.terminate(channel, "Heartbeat timeout")
                terminated += 1
                continue

            channel.is_alive = False
            try:
                await channel.ping()
            except Exception as e:
                logger.info(f"Ping failed for {channel.address}: {e}", extra={"address": channel.address})
                await self.terminate(channel, "Ping failed")
                terminated += 1
        return terminated
