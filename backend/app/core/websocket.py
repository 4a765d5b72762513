"""
Live sync pass events over WebSocket.

WS /ws/sync        — run status snapshot on connect, then one JSON event per pass
sync_events_bridge — background task: Redis 'sync:events' → all /ws/sync clients
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from redis.asyncio import Redis

from services.openproject.config import REDIS_CHANNEL_SYNC

logger = logging.getLogger("opsync.websocket")

router = APIRouter()


class SyncSubscribers:
    """Open /ws/sync sockets; a failed send drops the socket."""

    def __init__(self) -> None:
        self.sockets: set[WebSocket] = set()

    async def add(self, ws: WebSocket) -> None:
        await ws.accept()
        self.sockets.add(ws)
        logger.info("Sync subscriber connected (%d total)", len(self.sockets))

    def discard(self, ws: WebSocket) -> None:
        self.sockets.discard(ws)

    async def push(self, event: str) -> None:
        for ws in list(self.sockets):
            try:
                await ws.send_text(event)
            except Exception as exc:
                logger.debug("Dropping sync subscriber: %s", exc)
                self.sockets.discard(ws)


subscribers = SyncSubscribers()


@router.websocket("/ws/sync")
async def ws_sync(websocket: WebSocket) -> None:
    await subscribers.add(websocket)
    try:
        module = getattr(websocket.app.state, "openproject_module", None)
        status = module.sync.status() if module else None
        await websocket.send_json({"type": "snapshot", "data": status})

        while True:
            if await websocket.receive_text() == "ping":
                await websocket.send_text("pong")
    except WebSocketDisconnect:
        pass
    finally:
        subscribers.discard(websocket)


async def sync_events_bridge(redis: Redis) -> None:
    """Forward Redis 'sync:events' messages to /ws/sync subscribers until cancelled.

    Redis being down only disables live events: the bridge logs and returns.
    """
    pubsub = redis.pubsub()
    try:
        await pubsub.subscribe(REDIS_CHANNEL_SYNC)
        logger.info("Sync events bridge subscribed to %s", REDIS_CHANNEL_SYNC)
        async for message in pubsub.listen():
            if message["type"] != "message":
                continue
            event = message["data"]
            if isinstance(event, bytes):
                event = event.decode("utf-8")
            await subscribers.push(event)
    except Exception as exc:
        logger.error("Sync events bridge stopped: %s", exc)
    finally:
        # Drops the connection without a round trip to a possibly dead server.
        await pubsub.close()
