"""Push gateway clients for out-of-app notification delivery.

Supports:
- HTTP gateway (JSON POST with bearer key)
- Logging fallback when no gateway is configured

Retries belong to the gateway; a failed send is reported in the receipt
and never raised.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

import httpx

from showcase.config import get_settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DeliveryReceipt:
    token: str
    status: str  # sent | skipped | failed
    message_id: str | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.status == "sent"


class BasePushGateway(ABC):
    """Abstract push gateway."""

    @abstractmethod
    async def send(self, token: str, title: str, body: str, data: dict[str, Any]) -> DeliveryReceipt:
        """Send one push message to one device token."""
        ...

    async def aclose(self) -> None:  # noqa: B027
        """Release any held connections."""


class HttpPushGateway(BasePushGateway):
    """Send push messages through an HTTP gateway."""

    def __init__(
        self,
        url: str,
        api_key: str,
        timeout: float = 5.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.url = url
        self.api_key = api_key
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def send(self, token: str, title: str, body: str, data: dict[str, Any]) -> DeliveryReceipt:
        """POST the message and translate the response into a receipt."""
        try:
            response = await self._client.post(
                self.url,
                headers={
                    "Authorization": f"Bearer {self.api_key}",
                    "Content-Type": "application/json",
                },
                json={
                    "to": token,
                    "notification": {"title": title, "body": body},
                    "data": {k: str(v) for k, v in data.items() if v is not None},
                },
            )
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.warning("Push to token %s... failed: %s", token[:8], e)
            return DeliveryReceipt(token=token, status="failed", error=str(e))

        message_id = None
        try:
            message_id = response.json().get("message_id")
        except ValueError:
            pass
        return DeliveryReceipt(token=token, status="sent", message_id=message_id)

    async def aclose(self) -> None:
        await self._client.aclose()


class LoggingPushGateway(BasePushGateway):
    """Used when no gateway URL is configured: logs and skips."""

    async def send(self, token: str, title: str, body: str, data: dict[str, Any]) -> DeliveryReceipt:
        logger.info("Push gateway not configured; skipping push %r to token %s...", title, token[:8])
        return DeliveryReceipt(token=token, status="skipped")


def create_push_gateway() -> BasePushGateway:
    """Create the push gateway based on configuration."""
    settings = get_settings()
    if not settings.push_gateway_url:
        return LoggingPushGateway()
    return HttpPushGateway(
        url=settings.push_gateway_url,
        api_key=settings.push_gateway_api_key,
        timeout=settings.push_timeout_seconds,
    )
