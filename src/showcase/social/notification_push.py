"""Post-commit delivery of new notifications: realtime push plus device push."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import TYPE_CHECKING, Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from showcase.db.models import Notification
from showcase.social import notification_service
from showcase.social.realtime import NOTIFICATION, publish_to_user

if TYPE_CHECKING:
    from showcase.social.push_gateway import BasePushGateway

logger = logging.getLogger(__name__)


async def push_notification_to_user(redis: object | None, notification: Notification) -> bool:
    """Publish a formatted notification dict to ws:user:{recipient_id}.

    The notification must already be flushed (have an ``id``).
    """
    return await publish_to_user(
        redis,
        notification.recipient_id,
        NOTIFICATION,
        notification_service.notification_to_dict(notification),
    )


async def _push_to_devices(
    gateway: "BasePushGateway",
    notification: Notification,
    tokens: list[str],
) -> str:
    data: dict[str, Any] = {
        "notification_id": notification.id,
        "type": notification.type,
        "action_url": notification.action_url,
    }
    statuses = []
    for token in tokens:
        try:
            receipt = await gateway.send(token, notification.title, notification.message, data)
            statuses.append(receipt.status)
        except Exception:
            logger.warning("Push gateway error for notification %s", notification.id, exc_info=True)
            statuses.append("failed")
    if "sent" in statuses:
        return "sent"
    if "failed" in statuses:
        return "failed"
    return "skipped"


async def deliver_notifications(
    db: AsyncSession,
    notification_ids: Sequence[int],
    *,
    redis: object | None,
    gateway: "BasePushGateway",
) -> dict[int, str]:
    """Deliver freshly created notifications. Call only after the fan-out committed.

    Every notification is published to the recipient's realtime channel; a
    device push is attempted when the recipient enabled ``push`` and has
    registered tokens. The push outcome is stored in ``push_status``.

    Returns:
        Mapping of notification id to push status.
    """
    if not notification_ids:
        return {}

    result = await db.execute(
        select(Notification).where(Notification.id.in_(list(notification_ids))).order_by(Notification.id)
    )
    notifications = list(result.scalars().all())
    recipients = sorted({n.recipient_id for n in notifications})
    preferences = await notification_service.get_preferences_bulk(db, recipients)
    tokens = await notification_service.get_push_tokens(db, recipients)

    outcome: dict[int, str] = {}
    for notification in notifications:
        await push_notification_to_user(redis, notification)

        user_tokens = tokens.get(notification.recipient_id, [])
        if not preferences[notification.recipient_id].get("push", True) or not user_tokens:
            status = "skipped"
        else:
            status = await _push_to_devices(gateway, notification, user_tokens)
        notification.push_status = status
        outcome[notification.id] = status

    await db.flush()
    logger.debug("Delivered %d notifications: %s", len(outcome), outcome)
    return outcome
