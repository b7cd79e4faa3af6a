"""Realtime endpoints: WebSocket with subscription multiplexing, plus SSE.

A subscription is registered before the backlog is replayed from the
database, so nothing published in between is lost; the client may see an
item twice and deduplicates by id.
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import AsyncIterator
from typing import Any

import jwt
import structlog
from fastapi import APIRouter, Depends, Query, Request, WebSocket, WebSocketDisconnect
from fastapi.responses import StreamingResponse
from sqlalchemy.ext.asyncio import AsyncSession

from showcase.auth.dependencies import CurrentUser, authenticate_token, get_current_user
from showcase.config import get_settings
from showcase.database import get_session, get_session_factory
from showcase.errors import SocialError, ValidationError
from showcase.social import feed_service, notification_service
from showcase.social.activity_service import activity_to_dict
from showcase.social.realtime import FEED_ACTIVITY, NOTIFICATION
from showcase.ws.manager import RESYNC, VALID_KINDS, Subscription, registry

logger = structlog.get_logger()

router = APIRouter()

_KEEPALIVE_SECONDS = 15.0


async def replay_since(
    db: AsyncSession,
    sub: Subscription,
    since: str,
) -> tuple[list[dict[str, Any]], str | None]:
    """Backlog events newer than ``since`` for ``sub``, plus the cursor to resume from.

    Ends with a ``resync`` event when the backlog does not fit in one batch.
    """
    if sub.kind == "feed":
        page = await feed_service.changes_since(
            db, sub.user_id, since, following_only=sub.following_only, limit=get_settings().feed_max_limit,
        )
        events = [
            {"type": FEED_ACTIVITY, "subscription_id": sub.id, "kind": sub.kind, "payload": activity_to_dict(a)}
            for a in page.activities
        ]
        has_more, cursor = page.has_more, page.next_cursor
    else:
        limit = get_settings().feed_max_limit
        items, cursor = await notification_service.notifications_since(db, sub.user_id, since, limit=limit + 1)
        has_more = len(items) > limit
        items = items[:limit]
        if has_more and items:
            cursor = notification_service.notification_cursor(items[-1])
        events = [
            {
                "type": NOTIFICATION,
                "subscription_id": sub.id,
                "kind": sub.kind,
                "payload": notification_service.notification_to_dict(n),
            }
            for n in items
        ]
    if has_more:
        events.append({
            "type": RESYNC,
            "subscription_id": sub.id,
            "kind": sub.kind,
            "payload": {"reason": "backlog_truncated", "cursor": cursor},
        })
    return events, cursor


async def _pump(websocket: WebSocket, sub: Subscription) -> None:
    while True:
        event = await sub.get()
        await websocket.send_json(event)


def _pump_done(task: asyncio.Task[None]) -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.warning("ws_pump_failed", error=str(exc))


@router.websocket("/ws")
async def websocket_endpoint(
    websocket: WebSocket,
    token: str = Query(...),
) -> None:
    """Single WebSocket endpoint with token authentication and subscription multiplexing.

    Protocol:
        Client -> Server:
            {"action": "subscribe", "kind": "feed", "since": "<cursor>", "following_only": true}
            {"action": "unsubscribe", "subscription_id": "..."}
            {"action": "ping"}

        Server -> Client:
            {"type": "subscribed", "subscription_id": "...", "kind": "feed", "cursor": "..."}
            {"type": "feed_activity" | "notification*" | "resync", "subscription_id": "...", "payload": {...}}
            {"type": "unsubscribed", "subscription_id": "..."}
            {"type": "pong"}
            {"type": "error", "message": "..."}
    """
    try:
        async with get_session_factory()() as db:
            user = await authenticate_token(db, token)
    except jwt.InvalidTokenError as e:
        await websocket.close(code=4001, reason=f"Authentication failed: {e}")
        return

    await websocket.accept()
    max_subs = get_settings().ws_max_subscriptions_per_connection
    pumps: dict[str, asyncio.Task[None]] = {}
    logger.info("ws_connected", user_id=user.uid)

    try:
        while True:
            raw = await websocket.receive_text()
            try:
                msg = json.loads(raw)
            except json.JSONDecodeError:
                await websocket.send_json({"type": "error", "message": "Invalid JSON"})
                continue
            if not isinstance(msg, dict):
                await websocket.send_json({"type": "error", "message": "Expected a JSON object"})
                continue

            action = msg.get("action")

            if action == "subscribe":
                kind = msg.get("kind", "")
                if kind not in VALID_KINDS:
                    await websocket.send_json({"type": "error", "message": f"Invalid kind: {kind}"})
                    continue
                if len(pumps) >= max_subs:
                    await websocket.send_json({"type": "error", "message": "Too many subscriptions"})
                    continue

                sub = registry.register(user.uid, kind, following_only=bool(msg.get("following_only", True)))
                backlog: list[dict[str, Any]] = []
                cursor = msg.get("since")
                if cursor:
                    try:
                        async with get_session_factory()() as db:
                            backlog, cursor = await replay_since(db, sub, cursor)
                    except SocialError as e:
                        registry.unregister(sub.id)
                        await websocket.send_json({"type": "error", "message": e.detail, "code": e.code})
                        continue

                await websocket.send_json({
                    "type": "subscribed",
                    "subscription_id": sub.id,
                    "kind": kind,
                    "cursor": cursor,
                })
                for event in backlog:
                    await websocket.send_json(event)
                pump = asyncio.create_task(_pump(websocket, sub))
                pump.add_done_callback(_pump_done)
                pumps[sub.id] = pump

            elif action == "unsubscribe":
                sub_id = str(msg.get("subscription_id", ""))
                task = pumps.pop(sub_id, None)
                if task is None:
                    await websocket.send_json({"type": "error", "message": f"Unknown subscription: {sub_id}"})
                    continue
                task.cancel()
                registry.unregister(sub_id)
                await websocket.send_json({"type": "unsubscribed", "subscription_id": sub_id})

            elif action == "ping":
                await websocket.send_json({"type": "pong"})

            else:
                await websocket.send_json({"type": "error", "message": f"Unknown action: {action}"})

    except WebSocketDisconnect:
        pass
    except Exception:
        logger.exception("ws_error", user_id=user.uid)
    finally:
        for sub_id, task in pumps.items():
            task.cancel()
            registry.unregister(sub_id)
        await asyncio.gather(*pumps.values(), return_exceptions=True)
        logger.info("ws_disconnected", user_id=user.uid)


def format_sse(*, data: Any, event: str, event_id: str | None = None) -> str:  # noqa: ANN401
    """Format a Server-Sent Event message."""
    payload = json.dumps(data, separators=(",", ":"), ensure_ascii=False)
    lines: list[str] = []
    if event_id is not None:
        lines.append(f"id: {event_id}")
    lines.append(f"event: {event}")
    lines.append(f"data: {payload}")
    return "\n".join(lines) + "\n\n"


@router.get("/api/v1/stream")
async def event_stream(
    request: Request,
    kind: str = Query("feed"),
    since: str | None = Query(None),
    following_only: bool = Query(True),
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> StreamingResponse:
    """Server-Sent Events fallback for clients that cannot hold a WebSocket."""
    if kind not in VALID_KINDS:
        msg = f"Invalid kind: {kind}"
        raise ValidationError(msg)

    sub = registry.register(user.uid, kind, following_only=following_only)
    backlog: list[dict[str, Any]] = []
    if since:
        try:
            backlog, _ = await replay_since(db, sub, since)
        except SocialError:
            registry.unregister(sub.id)
            raise
    await db.close()

    async def stream() -> AsyncIterator[str]:
        try:
            yield "retry: 3000\n\n"
            for event in backlog:
                yield format_sse(data=event, event=event["type"], event_id=event["payload"].get("id"))
            while not await request.is_disconnected():
                try:
                    event = await asyncio.wait_for(sub.get(), timeout=_KEEPALIVE_SECONDS)
                except asyncio.TimeoutError:
                    yield ": keep-alive\n\n"
                    continue
                yield format_sse(data=event, event=event["type"], event_id=event["payload"].get("id"))
        finally:
            registry.unregister(sub.id)

    return StreamingResponse(
        stream(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )
