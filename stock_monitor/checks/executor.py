"""Runs one availability check for one item."""

from __future__ import annotations

import asyncio
from typing import Callable

import structlog

from ..errors import ItemMissing, NotificationDeliveryFailure, RenderError
from ..models import CheckOutcome, CheckResult, Item, Snapshot, StockStatus, Subscription, SubscriptionStatus
from ..notifications.dispatcher import NotificationDispatcher, build_availability_message
from ..rendering.renderer import Renderer
from ..store.db import SubscriptionStore
from .inference import infer_availability, looks_like_error_page

logger = structlog.get_logger(__name__)


class CheckExecutor:
    """Render, infer, and on availability notify and expire every active subscription.

    ``execute`` never raises: every failure is logged and folded into the
    returned ``CheckOutcome`` so the scheduler's bookkeeping always runs.
    """

    def __init__(
        self,
        store: SubscriptionStore,
        renderer: Renderer,
        dispatcher: NotificationDispatcher,
        *,
        render_timeout_seconds: float = 90.0,
        infer: Callable[[Snapshot], CheckResult] = infer_availability,
    ):
        self.store = store
        self.renderer = renderer
        self.dispatcher = dispatcher
        self.render_timeout_seconds = render_timeout_seconds
        self.infer = infer

    async def execute(self, item_id: int, previous_status: StockStatus | None = None) -> CheckOutcome:
        outcome = CheckOutcome(item_id=item_id, previous_status=previous_status)
        log = logger.bind(item_id=item_id)

        try:
            item = await self._load_item(item_id)
            snapshot = await self._render(item)
        except ItemMissing as e:
            log.warning("Item no longer exists", error=str(e))
            outcome.item_missing = True
            outcome.error = "item_missing"
            return outcome
        except RenderError as e:
            log.error("Render failed, will retry on next tick", error=str(e), timed_out=e.timed_out)
            outcome.error = "render_error"
            return outcome
        except Exception as e:
            log.exception("Unexpected error preparing check", error=str(e))
            outcome.error = "unexpected_error"
            return outcome

        if looks_like_error_page(snapshot):
            log.warning("Page shows error messaging, reading stock status anyway", title=snapshot.page_title)

        result = self.infer(snapshot)
        outcome.result = result

        if outcome.status_changed:
            log.info(
                "stock_status_changed",
                url=item.url,
                previous_status=previous_status.value if previous_status else None,
                status=result.status.value,
                tier=result.tier,
            )
        else:
            log.debug("Stock status unchanged", status=result.status.value)

        try:
            if result.is_available:
                await self._notify_subscribers(item, result, outcome)
            elif previous_status is StockStatus.IN_STOCK:
                log.info("Item back to unavailable", status=result.status.value)

            outcome.remaining_active = await asyncio.to_thread(self.store.active_count_for, item.id)
        except Exception as e:
            log.exception("Error processing check result", error=str(e))
            outcome.error = "unexpected_error"

        return outcome

    async def _load_item(self, item_id: int) -> Item:
        item = await asyncio.to_thread(self.store.get_item, item_id)
        if item is None:
            raise ItemMissing(item_id)
        return item

    async def _render(self, item: Item) -> Snapshot:
        try:
            return await asyncio.wait_for(
                self.renderer.render(item.url, item.location_filter),
                timeout=self.render_timeout_seconds,
            )
        except asyncio.TimeoutError as e:
            raise RenderError(
                f"render exceeded {self.render_timeout_seconds}s", url=item.url, timed_out=True
            ) from e

    async def _notify_subscribers(self, item: Item, result: CheckResult, outcome: CheckOutcome) -> None:
        log = logger.bind(item_id=item.id)
        subscriptions = await asyncio.to_thread(self.store.active_subscriptions_for, item.id)

        if not subscriptions:
            if outcome.previous_status is not StockStatus.IN_STOCK:
                log.warning("Item is in stock, but there are no active subscriptions")
            return

        message = build_availability_message(item, result.status)
        for subscription in subscriptions:
            try:
                await self._deliver(subscription, message)
            except NotificationDeliveryFailure as e:
                outcome.failed.append(subscription.id)
                log.error(
                    "Failed to notify subscriber",
                    subscription_id=subscription.id,
                    email=subscription.email,
                    error=e.detail,
                )
                continue
            except Exception as e:
                outcome.failed.append(subscription.id)
                log.exception("Unexpected error notifying subscriber", subscription_id=subscription.id, error=str(e))
                continue

            try:
                await asyncio.to_thread(
                    self.store.set_subscription_status,
                    subscription.id,
                    SubscriptionStatus.EXPIRED,
                    only_from=(SubscriptionStatus.ACTIVE,),
                )
            except Exception as e:
                # Delivered but not recorded: the next available check notifies again.
                outcome.failed.append(subscription.id)
                log.exception(
                    "Notified subscriber but could not expire subscription",
                    subscription_id=subscription.id,
                    error=str(e),
                )
                continue

            outcome.notified.append(subscription.id)
            log.info(
                "Notification dispatched, subscription expired",
                subscription_id=subscription.id,
                email=subscription.email,
                phone_number=subscription.phone_number,
            )

    async def _deliver(self, subscription: Subscription, message: str) -> None:
        delivery = await self.dispatcher.send(subscription.phone_number, message)
        if not delivery.ok:
            raise NotificationDeliveryFailure(subscription.phone_number, delivery.error or "unknown error")
