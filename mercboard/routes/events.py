import asyncio
import json
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request, WebSocket, WebSocketDisconnect
from fastapi.responses import StreamingResponse

from ..auth.security import require_client, role_from_token
from ..config import settings
from ..logging import structlog
from ..services.broadcast import SSE_KEEPALIVE, SSESubscriber, WebSocketSubscriber, hub, sse_frame


router = APIRouter(tags=["events"])
logger = structlog.get_logger(__name__)

CONNECTED_MESSAGE = {"message": "SSE connection established"}


@router.get("/api/sse")
async def event_stream(request: Request, _=Depends(require_client)):
    """Server-sent change events. Pass the token as ``?token=`` from an EventSource."""

    async def stream():
        subscriber = SSESubscriber()
        await hub.connect(subscriber)
        try:
            yield sse_frame("connected", json.dumps(CONNECTED_MESSAGE))
            while True:
                if await request.is_disconnected():
                    break
                try:
                    frame = await asyncio.wait_for(subscriber.queue.get(), timeout=settings.sse_keepalive_seconds)
                except asyncio.TimeoutError:
                    yield SSE_KEEPALIVE
                    continue
                if frame is None:
                    break
                yield frame
        finally:
            await hub.disconnect(subscriber)

    return StreamingResponse(
        stream(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "Connection": "keep-alive", "X-Accel-Buffering": "no"},
    )


@router.websocket("/ws/events")
async def ws_events(websocket: WebSocket, token: Optional[str] = None):
    if not token:
        await websocket.close(code=4401)
        return
    try:
        role_from_token(token)
    except HTTPException:
        await websocket.close(code=4401)
        return

    await websocket.accept()
    subscriber = WebSocketSubscriber(websocket)
    await hub.connect(subscriber)
    try:
        await websocket.send_text(json.dumps({"event": "connected", "data": CONNECTED_MESSAGE}))
        while True:
            data = await websocket.receive_text()
            # Keep-alives from the client; anything else is ignored
            if data and data.strip().lower() in {"ping", "keepalive"}:
                await websocket.send_text("pong")
    except WebSocketDisconnect:
        pass
    finally:
        await hub.disconnect(subscriber)
