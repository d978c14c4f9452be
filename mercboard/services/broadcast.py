import asyncio
import json
from typing import Any, Optional, Set

import structlog
from fastapi import WebSocket

from ..config import settings


logger = structlog.get_logger(__name__)


EVENT_TYPES = (
    "jobs",
    "pilots",
    "manna",
    "factions",
    "settings",
    "reserves",
    "store-config",
    "facilities-core-major",
    "facilities-minor-slots",
)


def sse_frame(event: str, data: str) -> str:
    return f"event: {event}\ndata: {data}\n\n"


SSE_KEEPALIVE = ": keepalive\n\n"


class Subscriber:
    """A live push connection. ``send`` raises when the peer is gone."""

    async def send(self, event: str, data: str) -> None:
        raise NotImplementedError

    def close(self) -> None:
        pass


class SSESubscriber(Subscriber):
    """Event-stream subscriber; the streaming response drains ``queue``."""

    def __init__(self, maxsize: int = 256) -> None:
        self.queue: "asyncio.Queue[Optional[str]]" = asyncio.Queue(maxsize=maxsize)
        self.closed = False

    async def send(self, event: str, data: str) -> None:
        if self.closed:
            raise ConnectionError("subscriber closed")
        # A reader that stopped draining counts as disconnected
        self.queue.put_nowait(sse_frame(event, data))

    def close(self) -> None:
        if not self.closed:
            self.closed = True
            try:
                self.queue.put_nowait(None)
            except asyncio.QueueFull:
                pass


class WebSocketSubscriber(Subscriber):
    def __init__(self, ws: WebSocket, send_timeout: Optional[float] = None) -> None:
        self.ws = ws
        self.send_timeout = settings.ws_send_timeout_seconds if send_timeout is None else send_timeout

    async def send(self, event: str, data: str) -> None:
        # A peer that stalls past the timeout is treated as gone
        await asyncio.wait_for(
            self.ws.send_text(f'{{"event": {json.dumps(event)}, "data": {data}}}'),
            timeout=self.send_timeout,
        )


class BroadcastHub:
    def __init__(self) -> None:
        self._subscribers: Set[Subscriber] = set()
        self._lock = asyncio.Lock()

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    async def connect(self, subscriber: Subscriber) -> None:
        async with self._lock:
            self._subscribers.add(subscriber)
        logger.info("subscriber_connected", kind=type(subscriber).__name__, total=len(self._subscribers))

    async def disconnect(self, subscriber: Subscriber) -> None:
        async with self._lock:
            self._subscribers.discard(subscriber)
        subscriber.close()
        logger.info("subscriber_disconnected", kind=type(subscriber).__name__, total=len(self._subscribers))

    async def broadcast(self, event: str, payload: Any) -> int:
        """Send to every subscriber; drop the ones that fail. Returns how many were reached."""
        data = json.dumps(payload)
        async with self._lock:
            targets = list(self._subscribers)
        delivered = 0
        for sub in targets:
            try:
                await sub.send(event, data)
                delivered += 1
            except Exception as e:
                async with self._lock:
                    self._subscribers.discard(sub)
                sub.close()
                logger.warning("broadcast_subscriber_dropped", event_type=event, error=str(e) or type(e).__name__)
        return delivered


# Global singleton hub
hub = BroadcastHub()
