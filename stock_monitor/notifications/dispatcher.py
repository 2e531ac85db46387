"""Text message delivery through the notification gateway."""

from __future__ import annotations

import random
from dataclasses import dataclass

import httpx
import structlog

from ..models import Item, StockStatus

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class NotificationConfig:
    api_url: str
    api_key: str
    timeout_seconds: float = 15.0


@dataclass(frozen=True)
class DeliveryResult:
    ok: bool
    status_code: int | None = None
    error: str | None = None


def build_availability_message(item: Item, status: StockStatus) -> str:
    return (
        "🎉 Stock Available! 🎉\n\n"
        f"Product: {item.url}\n"
        f"Pincode: {item.location_filter}\n\n"
        f"Stock status: {status.value}\n\n"
        "Place your order soon!"
    )


def build_confirmation_message(item: Item) -> str:
    return (
        "✅ Subscription active!\n\n"
        f"Product: {item.url}\n"
        f"Pincode: {item.location_filter}\n"
        f"Frequency: every {item.interval_minutes} minute(s)\n\n"
        "You'll receive an alert as soon as stock is available."
    )


class NotificationDispatcher:
    """Sends one text message per call. No retries; failures are returned, never raised."""

    def __init__(self, config: NotificationConfig, client: httpx.AsyncClient | None = None):
        self.config = config
        self._client = client
        self._owns_client = client is None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.config.timeout_seconds)
        return self._client

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    def _redact(self, text: str) -> str:
        if self.config.api_key:
            return text.replace(self.config.api_key, "<redacted>")
        return text

    async def send(self, phone_number: str, message: str) -> DeliveryResult:
        if not self.config.api_url:
            logger.warning("Notification gateway not configured, skipping", phone_number=phone_number)
            return DeliveryResult(ok=False, error="notification_api_url not configured")

        payload = {
            "number": phone_number,
            "text": message,
            # Gateway-side typing delay in ms.
            "delay": random.randint(100, 200),
        }
        headers = {"apikey": self.config.api_key, "Content-Type": "application/json"}

        try:
            client = await self._get_client()
            resp = await client.post(
                self.config.api_url,
                json=payload,
                headers=headers,
                timeout=self.config.timeout_seconds,
            )
        except httpx.HTTPError as e:
            error = self._redact(f"{type(e).__name__}: {e}")
            logger.error("Error sending notification", phone_number=phone_number, error=error)
            return DeliveryResult(ok=False, error=error)

        if resp.is_success:
            logger.info("Notification sent", phone_number=phone_number, status_code=resp.status_code)
            return DeliveryResult(ok=True, status_code=resp.status_code)

        body = self._redact(resp.text[:500])
        logger.error(
            "Notification gateway rejected message",
            phone_number=phone_number,
            status_code=resp.status_code,
            response=body,
        )
        return DeliveryResult(ok=False, status_code=resp.status_code, error=f"HTTP {resp.status_code}: {body}")
