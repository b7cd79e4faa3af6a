"""Tests for the per-subscription WebSocket send loop."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from showcase.ws import router as ws_router
from showcase.ws.manager import SubscriptionRegistry


@pytest.fixture
def subs() -> SubscriptionRegistry:
    return SubscriptionRegistry(queue_size=3)


class TestPump:

    async def test_forwards_queued_events(self, subs):
        sub = subs.register("alice", "feed")
        sub.offer("feed_activity", {"id": "1"})
        websocket = AsyncMock()

        task = asyncio.create_task(ws_router._pump(websocket, sub))
        await asyncio.sleep(0.01)
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)

        [call] = websocket.send_json.await_args_list
        assert call.args[0]["payload"] == {"id": "1"}

    async def test_send_failure_is_retrieved_and_logged(self, subs, monkeypatch):
        logger = MagicMock()
        monkeypatch.setattr(ws_router, "logger", logger)
        sub = subs.register("alice", "feed")
        sub.offer("feed_activity", {"id": "1"})
        websocket = AsyncMock()
        websocket.send_json.side_effect = RuntimeError("socket closed")

        task = asyncio.create_task(ws_router._pump(websocket, sub))
        task.add_done_callback(ws_router._pump_done)
        await asyncio.gather(task, return_exceptions=True)
        await asyncio.sleep(0)

        assert isinstance(task.exception(), RuntimeError)
        logger.warning.assert_called_once_with("ws_pump_failed", error="socket closed")

    async def test_cancelled_pump_is_not_logged(self, subs, monkeypatch):
        logger = MagicMock()
        monkeypatch.setattr(ws_router, "logger", logger)
        sub = subs.register("alice", "feed")

        task = asyncio.create_task(ws_router._pump(AsyncMock(), sub))
        task.add_done_callback(ws_router._pump_done)
        await asyncio.sleep(0)
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        await asyncio.sleep(0)

        logger.warning.assert_not_called()
