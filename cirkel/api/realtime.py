"""
cirkel/api/realtime.py
WebSocket endpoint for the live notification feed.

Implements /v1/ws/notifications with bearer JWT + X-User-Id auth.
Read-only socket: the full merged feed is pushed on connect and after every
change to any source. Mutations go through the REST endpoints.
"""

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from datetime import datetime, timezone
from uuid import uuid4
import asyncio
import json
import logging

from cirkel.core.auth import resolve_user_id
from cirkel.core.errors import AppError
from cirkel.core.logging import log_event
from cirkel.core.metrics import ws_active_connections, ws_connections_total, ws_messages_sent_total
from cirkel.features.notifications.aggregator import LiveFeed
from cirkel.features.notifications.service import parse_filter
from cirkel.features.users.service import get_or_create_user
from cirkel.models.notification import NotificationFeed

logger = logging.getLogger(__name__)

router = APIRouter()

SNAPSHOT_EVENT = "notifications.snapshot"


@router.websocket("/v1/ws/notifications")
async def notifications_socket(websocket: WebSocket):
    """
    Live notification feed.

    Auth Methods:
    1. Authorization: Bearer <JWT>
    2. X-User-Id: <user_id>

    Query:
    - filter: all | requests | updates | messages

    Events Emitted:
    - notifications.snapshot (full feed, never a delta)
    - pong (reply to {"type": "ping"})
    """
    await websocket.accept()
    request_id = websocket.headers.get("X-Request-Id") or str(uuid4())
    connection_id = str(uuid4())

    try:
        user_id = resolve_user_id(
            websocket.headers.get("Authorization"),
            websocket.headers.get("X-User-Id"),
        )
        feed_filter = parse_filter(websocket.query_params.get("filter"))
        get_or_create_user(user_id)
    except AppError as e:
        log_event(
            "info",
            "ws.rejected",
            request_id=request_id,
            event_type="ws.rejected",
            error_code=e.code,
            extra={"connection_id": connection_id},
        )
        await _reject_and_close(websocket, request_id, e.code, e.message)
        return

    loop = asyncio.get_running_loop()
    outbox: asyncio.Queue = asyncio.Queue()

    def on_change(feed: NotificationFeed) -> None:
        # Hub callbacks run on the writer's thread
        loop.call_soon_threadsafe(
            outbox.put_nowait,
            {"type": SNAPSHOT_EVENT, "request_id": request_id, "feed": feed.to_dict()},
        )

    live = LiveFeed(user_id, on_change, feed_filter=feed_filter)
    ws_connections_total.inc()
    ws_active_connections.inc()
    log_event(
        "info",
        "ws.connected",
        request_id=request_id,
        user_id=user_id,
        event_type="ws.connected",
        extra={"connection_id": connection_id},
    )

    sender = asyncio.create_task(_pump(websocket, outbox))
    try:
        while True:
            raw_message = await websocket.receive_text()
            try:
                data = json.loads(raw_message)
            except ValueError:
                continue
            if isinstance(data, dict) and data.get("type") == "ping":
                outbox.put_nowait({
                    "type": "pong",
                    "ts": datetime.now(timezone.utc).isoformat(),
                    "request_id": request_id,
                })
    except WebSocketDisconnect:
        log_event(
            "info",
            "ws.disconnected",
            request_id=request_id,
            user_id=user_id,
            event_type="ws.disconnected",
            extra={"connection_id": connection_id},
        )
    finally:
        # Cancelling the subscriptions is mandatory; the hub would keep them live
        live.close()
        sender.cancel()
        ws_active_connections.dec()


async def _pump(websocket: WebSocket, outbox: asyncio.Queue) -> None:
    """Single writer for the socket."""
    while True:
        message = await outbox.get()
        ws_messages_sent_total.inc(labels={"event_type": message.get("type", "unknown")})
        try:
            await websocket.send_json(message)
        except Exception as e:
            logger.debug(f"[WS] send failed: {e}")
            return


async def _reject_and_close(websocket: WebSocket, request_id: str, code: str, message: str):
    try:
        await websocket.send_json({
            "type": "error",
            "code": code,
            "message": message,
            "request_id": request_id,
        })
        await websocket.close(code=1008, reason=message)
    except RuntimeError as e:
        logger.debug(f"[WS] close after reject failed: {e}")
