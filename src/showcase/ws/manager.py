"""Realtime subscription registry.

Tracks live feed and notification subscriptions of WebSocket and SSE
clients. Every subscription owns a bounded queue; the transport pumps it
to the client. A client that falls behind is flagged and receives a single
``resync`` event instead of the dropped deltas, and is expected to catch up
through the changes endpoints.
"""

from __future__ import annotations

import asyncio
import time
import uuid
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any

import structlog

from showcase.config import get_settings

logger = structlog.get_logger()

VALID_KINDS = {"feed", "notifications"}

RESYNC = "resync"


@dataclass
class Subscription:
    """One live subscription of one client."""

    id: str
    user_id: str
    kind: str
    queue: "asyncio.Queue[dict[str, Any]]"
    following_only: bool = True
    needs_resync: bool = False
    created_at: float = field(default_factory=time.time)
    delivered: int = 0
    dropped: int = 0

    def offer(self, event_type: str, payload: dict[str, Any]) -> bool:
        """Queue an event without blocking. Returns False if it was dropped."""
        if self.needs_resync:
            self.dropped += 1
            return False
        try:
            self.queue.put_nowait(self._envelope(event_type, payload))
        except asyncio.QueueFull:
            self._overflow()
            return False
        self.delivered += 1
        return True

    async def get(self) -> dict[str, Any]:
        """Next event for the client."""
        event = await self.queue.get()
        if event["type"] == RESYNC:
            self.needs_resync = False
        return event

    def _envelope(self, event_type: str, payload: dict[str, Any]) -> dict[str, Any]:
        return {"type": event_type, "subscription_id": self.id, "kind": self.kind, "payload": payload}

    def _overflow(self) -> None:
        dropped = 0
        while not self.queue.empty():
            self.queue.get_nowait()
            dropped += 1
        self.dropped += dropped + 1
        self.needs_resync = True
        self.queue.put_nowait(self._envelope(RESYNC, {"reason": "slow_consumer", "dropped": self.dropped}))
        logger.warning("realtime_overflow", subscription_id=self.id, user_id=self.user_id, kind=self.kind)


class SubscriptionRegistry:
    """All live subscriptions of this process.

    Safe for asyncio via the single-threaded event loop.
    """

    def __init__(self, queue_size: int | None = None) -> None:
        self.queue_size = queue_size
        self._subscriptions: dict[str, Subscription] = {}
        self._user_subscriptions: dict[str, set[str]] = defaultdict(set)

    @property
    def subscription_count(self) -> int:
        return len(self._subscriptions)

    def register(self, user_id: str, kind: str, *, following_only: bool = True) -> Subscription:
        """Create a subscription. Raises ValueError for unknown kinds."""
        if kind not in VALID_KINDS:
            msg = f"Invalid subscription kind: {kind}"
            raise ValueError(msg)
        size = self.queue_size or get_settings().realtime_queue_size
        sub = Subscription(
            id=uuid.uuid4().hex,
            user_id=user_id,
            kind=kind,
            queue=asyncio.Queue(maxsize=size),
            following_only=following_only if kind == "feed" else True,
        )
        self._subscriptions[sub.id] = sub
        self._user_subscriptions[user_id].add(sub.id)
        logger.debug("realtime_subscribed", subscription_id=sub.id, user_id=user_id, kind=kind)
        return sub

    def unregister(self, subscription_id: str) -> bool:
        sub = self._subscriptions.pop(subscription_id, None)
        if sub is None:
            return False
        ids = self._user_subscriptions.get(sub.user_id)
        if ids is not None:
            ids.discard(subscription_id)
            if not ids:
                del self._user_subscriptions[sub.user_id]
        logger.debug("realtime_unsubscribed", subscription_id=subscription_id, user_id=sub.user_id)
        return True

    def get(self, subscription_id: str) -> Subscription | None:
        return self._subscriptions.get(subscription_id)

    def subscriptions_for(self, user_id: str, kind: str | None = None) -> list[Subscription]:
        subs = [self._subscriptions[sid] for sid in self._user_subscriptions.get(user_id, ())]
        return [s for s in subs if kind is None or s.kind == kind]

    def deliver_to_user(self, user_id: str, kind: str, event_type: str, payload: dict[str, Any]) -> int:
        """Queue an event on the user's subscriptions of ``kind``.

        Feed deltas on a user channel come from the follow graph, so only
        following-mode feed subscriptions receive them.
        """
        sent = 0
        for sub in self.subscriptions_for(user_id, kind):
            if kind == "feed" and not sub.following_only:
                continue
            if sub.offer(event_type, payload):
                sent += 1
        return sent

    def broadcast_public(self, event_type: str, payload: dict[str, Any]) -> int:
        """Queue a public activity on every global (non following-mode) feed subscription."""
        sent = 0
        for sub in list(self._subscriptions.values()):
            if sub.kind == "feed" and not sub.following_only and sub.offer(event_type, payload):
                sent += 1
        return sent

    def get_stats(self) -> dict[str, Any]:
        """Subscription statistics."""
        by_kind: dict[str, int] = defaultdict(int)
        for sub in self._subscriptions.values():
            by_kind[sub.kind] += 1
        return {
            "total_subscriptions": len(self._subscriptions),
            "unique_users": len(self._user_subscriptions),
            "kinds": dict(by_kind),
        }


# Global singleton
registry = SubscriptionRegistry()
