"""Registry of live monitors, one per item with active subscriptions."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any

import structlog

from ..checks.executor import CheckExecutor
from ..models import CheckOutcome, Item, StockStatus
from .bounded import BoundedScheduler
from .timers import TimerService

logger = structlog.get_logger(__name__)


@dataclass
class Monitor:
    item: Item
    job_id: str
    interval_minutes: int
    checking: bool = False
    last_status: StockStatus | None = None
    started_at_ts: float = field(default_factory=time.time)
    last_checked_at_ts: float | None = None
    # Bumped whenever a registration re-arms this monitor. A stop decided on
    # an active count read before the bump is stale and must not apply.
    rearms: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "item_id": self.item.id,
            "url": self.item.url,
            "location_filter": self.item.location_filter,
            "interval_minutes": self.interval_minutes,
            "checking": self.checking,
            "last_status": self.last_status.value if self.last_status else None,
            "started_at_ts": self.started_at_ts,
            "last_checked_at_ts": self.last_checked_at_ts,
        }


class MonitorRegistry:
    """Owns the item id -> Monitor map and is its only writer.

    All methods run on the event loop (timer ticks included), so the map and
    the ``checking`` flags are never mutated concurrently. Every check request,
    timer-driven or initial, goes through ``request_check``, which keeps at most
    one outstanding check per item.
    """

    def __init__(
        self,
        timers: TimerService,
        executor: CheckExecutor,
        *,
        max_concurrent: int = 3,
        default_interval_minutes: int = 5,
    ):
        self.timers = timers
        self.executor = executor
        self.default_interval_minutes = default_interval_minutes
        self.scheduler = BoundedScheduler(self._run_check, max_concurrent=max_concurrent)
        self._monitors: dict[int, Monitor] = {}
        # Item ids with a queued or running check. Survives stop/start of a
        # monitor so a replacement monitor cannot double up on the same item.
        self._inflight: set[int] = set()

    def __contains__(self, item_id: object) -> bool:
        return item_id in self._monitors

    def __len__(self) -> int:
        return len(self._monitors)

    def get(self, item_id: int) -> Monitor | None:
        return self._monitors.get(item_id)

    def monitors(self) -> list[Monitor]:
        return list(self._monitors.values())

    def _interval_for(self, item: Item) -> int:
        try:
            minutes = int(item.interval_minutes)
        except (TypeError, ValueError):
            minutes = 0
        return minutes if minutes > 0 else self.default_interval_minutes

    def start_monitor(self, item: Item) -> Monitor:
        existing = self._monitors.get(item.id)
        if existing is not None:
            existing.rearms += 1
            logger.debug("Monitor already running", item_id=item.id, rearms=existing.rearms)
            return existing

        interval = self._interval_for(item)
        monitor = Monitor(item=item, job_id=f"item-{item.id}", interval_minutes=interval)
        self._monitors[item.id] = monitor
        self.timers.add_interval_job(
            monitor.job_id,
            self._on_tick,
            minutes=interval,
            args=(item.id,),
            description=f"Stock check for item {item.id}",
        )
        logger.info(
            "Starting monitor",
            item_id=item.id,
            url=item.url,
            interval_minutes=interval,
        )

        self.request_check(item.id)
        return monitor

    def stop_monitor(self, item_id: int) -> bool:
        monitor = self._monitors.pop(item_id, None)
        if monitor is None:
            return False
        self.timers.remove_job(monitor.job_id)
        logger.info("Stopped monitor", item_id=item_id)
        return True

    def rearm_count(self, item_id: int) -> int | None:
        monitor = self._monitors.get(item_id)
        return monitor.rearms if monitor is not None else None

    def stop_if_unchanged(self, item_id: int, rearms: int | None) -> bool:
        """Stop the monitor unless it was re-armed after ``rearms`` was taken.

        Callers take ``rearm_count`` before reading the active count, so a
        registration that lands in between keeps the monitor alive.
        """
        monitor = self._monitors.get(item_id)
        if monitor is None:
            return False
        if monitor.rearms != rearms:
            logger.info("Subscriber added while stopping, keeping monitor", item_id=item_id)
            return False
        return self.stop_monitor(item_id)

    def request_check(self, item_id: int) -> bool:
        """Enqueue a check unless one is already queued or running for the item."""
        monitor = self._monitors.get(item_id)
        if monitor is None:
            return False
        if monitor.checking or item_id in self._inflight:
            logger.info("Skipping check, previous check still outstanding", item_id=item_id)
            return False

        monitor.checking = True
        self._inflight.add(item_id)
        self.scheduler.enqueue(item_id)
        return True

    async def _on_tick(self, item_id: int) -> None:
        self.request_check(item_id)

    async def _run_check(self, item_id: int) -> CheckOutcome | None:
        monitor = self._monitors.get(item_id)
        if monitor is None:
            # Stopped while queued.
            self._inflight.discard(item_id)
            return None

        rearms = monitor.rearms
        try:
            outcome = await self.executor.execute(item_id, monitor.last_status)
        finally:
            self._inflight.discard(item_id)
            monitor.checking = False

        current = self._monitors.get(item_id)
        if current is not monitor:
            # The monitor was stopped, possibly replaced, while this check ran.
            # A replacement's first check was held back, so issue it now.
            if current is not None:
                self.request_check(item_id)
            return outcome

        self._apply_outcome(monitor, outcome, rearms)
        return outcome

    def _apply_outcome(self, monitor: Monitor, outcome: CheckOutcome, rearms: int) -> None:
        item_id = monitor.item.id
        monitor.last_checked_at_ts = time.time()
        if outcome.result is not None:
            monitor.last_status = outcome.result.status

        if not outcome.stop_monitor:
            return
        if outcome.item_missing:
            logger.warning("Item no longer exists, stopping monitor", item_id=item_id)
            self.stop_monitor(item_id)
        elif self.stop_if_unchanged(item_id, rearms):
            logger.info(
                "All subscriptions fulfilled, monitor stopped",
                item_id=item_id,
                notified=len(outcome.notified),
            )

    def status(self) -> dict[str, Any]:
        return {
            "monitors": [m.to_dict() for m in self._monitors.values()],
            "active_checks": self.scheduler.active,
            "queued_checks": self.scheduler.queued,
            "max_concurrent": self.scheduler.max_concurrent,
        }

    async def shutdown(self) -> None:
        for item_id in list(self._monitors):
            self.stop_monitor(item_id)
        await self.scheduler.shutdown()
        self._inflight.clear()
