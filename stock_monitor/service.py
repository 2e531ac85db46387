"""Service facade used by the HTTP layer: registration, unsubscribe, lookup, bootstrap."""

from __future__ import annotations

import asyncio
from dataclasses import asdict, dataclass
from typing import Any

import structlog

from .checks.executor import CheckExecutor
from .config import MonitoringConfig
from .errors import ValidationError
from .models import SubscriptionStatus
from .notifications.dispatcher import NotificationConfig, NotificationDispatcher, build_confirmation_message
from .rendering.renderer import PlaywrightRenderer, Renderer
from .scheduler.registry import MonitorRegistry
from .scheduler.timers import TimerService
from .store.db import SubscriptionStore

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class ItemSpec:
    url: str
    location_filter: str
    interval_minutes: int | str | None = None


@dataclass(frozen=True)
class SubscriberSpec:
    email: str
    phone_number: str


@dataclass(frozen=True)
class RegistrationResult:
    item_id: int
    subscription_id: int
    email: str
    status: str
    status_changed_at_ts: float

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class UnsubscribeResult:
    removed: bool
    status: str | None = None
    status_changed_at_ts: float | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def normalize_interval(value: Any, default: int) -> int:
    """Whole minutes from user input; anything unparsable or non-positive becomes ``default``."""
    try:
        minutes = int(str(value).strip())
    except (TypeError, ValueError):
        return default
    return minutes if minutes > 0 else default


class StockMonitorService:
    """Wires store, renderer, dispatcher, executor and registry together."""

    def __init__(
        self,
        config: MonitoringConfig,
        *,
        store: SubscriptionStore | None = None,
        renderer: Renderer | None = None,
        dispatcher: NotificationDispatcher | None = None,
        timers: TimerService | None = None,
    ):
        self.config = config
        self.store = store or SubscriptionStore(config.db_path)
        self.renderer = renderer or PlaywrightRenderer(config)
        self.dispatcher = dispatcher or NotificationDispatcher(
            NotificationConfig(
                api_url=config.notification_api_url,
                api_key=config.notification_api_key,
                timeout_seconds=config.notification_timeout_seconds,
            )
        )
        self.timers = timers or TimerService()
        self.executor = CheckExecutor(
            self.store,
            self.renderer,
            self.dispatcher,
            render_timeout_seconds=config.render_timeout_seconds,
        )
        self.registry = MonitorRegistry(
            self.timers,
            self.executor,
            max_concurrent=config.max_concurrent_checks,
            default_interval_minutes=config.default_interval_minutes,
        )
        self.started = False

    async def start(self) -> int:
        """Prepare storage, start timers and rehydrate monitors. Returns the number started."""
        if self.started:
            return len(self.registry)
        await asyncio.to_thread(self.store.ensure_schema)
        await self.timers.start()
        self.started = True
        return await self.bootstrap()

    async def stop(self) -> None:
        await self.registry.shutdown()
        await self.timers.stop()
        await self.dispatcher.aclose()
        stop_renderer = getattr(self.renderer, "stop", None)
        if stop_renderer is not None:
            await stop_renderer()
        self.started = False
        logger.info("Stock monitor stopped")

    async def bootstrap(self) -> int:
        items = await asyncio.to_thread(self.store.items_with_active_subscriptions)
        for item in items:
            self.registry.start_monitor(item)
        logger.info("Monitors restored from store", count=len(items))
        return len(items)

    async def register_subscription(self, item_spec: ItemSpec, subscriber: SubscriberSpec) -> RegistrationResult:
        url = (item_spec.url or "").strip()
        location_filter = (item_spec.location_filter or "").strip()
        email = (subscriber.email or "").strip()
        phone_number = (subscriber.phone_number or "").strip()
        if not url or not location_filter or not phone_number or not email:
            raise ValidationError("url, location_filter, phone_number, and email are required")

        interval = normalize_interval(item_spec.interval_minutes, self.config.default_interval_minutes)

        item, subscription = await asyncio.to_thread(
            self.store.register,
            url=url,
            location_filter=location_filter,
            interval_minutes=interval,
            email=email,
            phone_number=phone_number,
        )
        logger.info(
            "Subscription registered",
            item_id=item.id,
            subscription_id=subscription.id,
            email=subscription.email,
        )

        self.registry.start_monitor(item)

        if self.config.send_confirmation:
            delivery = await self.dispatcher.send(subscription.phone_number, build_confirmation_message(item))
            if delivery.ok:
                logger.info("Confirmation notification sent", subscription_id=subscription.id)
            else:
                logger.error(
                    "Failed to send confirmation notification",
                    subscription_id=subscription.id,
                    error=delivery.error,
                )

        return RegistrationResult(
            item_id=item.id,
            subscription_id=subscription.id,
            email=subscription.email,
            status=subscription.status.value,
            status_changed_at_ts=subscription.status_changed_at_ts,
        )

    async def unsubscribe(self, subscription_id: int) -> UnsubscribeResult:
        subscription = await asyncio.to_thread(self.store.get_subscription, subscription_id)
        if subscription is None:
            return UnsubscribeResult(removed=False)
        if subscription.status is SubscriptionStatus.DELETED:
            return UnsubscribeResult(
                removed=False,
                status=subscription.status.value,
                status_changed_at_ts=subscription.status_changed_at_ts,
            )

        changed = await asyncio.to_thread(
            self.store.set_subscription_status,
            subscription_id,
            SubscriptionStatus.DELETED,
            only_from=(SubscriptionStatus.ACTIVE, SubscriptionStatus.EXPIRED),
        )
        updated = await asyncio.to_thread(self.store.get_subscription, subscription_id)
        status = updated.status.value if updated else None
        status_ts = updated.status_changed_at_ts if updated else None
        if not changed:
            return UnsubscribeResult(removed=False, status=status, status_changed_at_ts=status_ts)

        rearms = self.registry.rearm_count(subscription.item_id)
        remaining = await asyncio.to_thread(self.store.active_count_for, subscription.item_id)
        if remaining == 0:
            self.registry.stop_if_unchanged(subscription.item_id, rearms)

        logger.info(
            "Subscription removed",
            subscription_id=subscription_id,
            item_id=subscription.item_id,
            remaining_active=remaining,
        )
        return UnsubscribeResult(removed=True, status=status, status_changed_at_ts=status_ts)

    async def subscriptions_for(self, email: str) -> list[dict[str, Any]]:
        if not (email or "").strip():
            raise ValidationError("email is required")
        return await asyncio.to_thread(self.store.subscriptions_for_email, email.strip())

    def status(self) -> dict[str, Any]:
        return {"started": self.started, **self.registry.status()}
