from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any, Callable

import pytest

from stock_monitor.config import MonitoringConfig
from stock_monitor.errors import RenderError
from stock_monitor.models import PrimaryControl, Snapshot
from stock_monitor.notifications.dispatcher import DeliveryResult
from stock_monitor.store.db import SubscriptionStore


IN_STOCK_PAGE = Snapshot(primary_control=PrimaryControl(visible=True, disabled=False, text="Add to cart"))
OUT_OF_STOCK_PAGE = Snapshot(primary_control=PrimaryControl(visible=True, disabled=True, text="Add to cart"))
BLANK_PAGE = Snapshot()


class FakeRenderer:
    """Returns a configurable snapshot per url; can block on a gate or raise."""

    def __init__(self, default: Snapshot = OUT_OF_STOCK_PAGE):
        self.default = default
        self.pages: dict[str, Snapshot] = {}
        self.errors: dict[str, Exception] = {}
        self.calls: list[tuple[str, str]] = []
        self.gate: asyncio.Event | None = None
        self.running = 0
        self.max_running = 0
        self.stopped = False

    async def render(self, url: str, location_filter: str) -> Snapshot:
        self.calls.append((url, location_filter))
        self.running += 1
        self.max_running = max(self.max_running, self.running)
        try:
            if self.gate is not None:
                await self.gate.wait()
            else:
                await asyncio.sleep(0)
            if url in self.errors:
                raise self.errors[url]
            return self.pages.get(url, self.default)
        finally:
            self.running -= 1

    async def stop(self) -> None:
        self.stopped = True


class FakeDispatcher:
    """Records sends; phone numbers in ``failing`` get a failed delivery."""

    def __init__(self) -> None:
        self.sent: list[tuple[str, str]] = []
        self.failing: set[str] = set()
        self.closed = False

    async def send(self, phone_number: str, message: str) -> DeliveryResult:
        self.sent.append((phone_number, message))
        if phone_number in self.failing:
            return DeliveryResult(ok=False, status_code=500, error="HTTP 500: gateway down")
        return DeliveryResult(ok=True, status_code=200)

    async def aclose(self) -> None:
        self.closed = True


class FakeTimers:
    """Stands in for TimerService; ticks are fired by hand with ``fire``."""

    def __init__(self) -> None:
        self.jobs: dict[str, dict[str, Any]] = {}
        self.running = False

    async def start(self) -> None:
        self.running = True

    async def stop(self) -> None:
        self.running = False
        self.jobs.clear()

    def add_interval_job(
        self,
        job_id: str,
        func: Callable,
        minutes: float,
        args: tuple | None = None,
        description: str | None = None,
    ) -> None:
        self.jobs[job_id] = {"func": func, "minutes": minutes, "args": args or ()}

    def remove_job(self, job_id: str) -> bool:
        return self.jobs.pop(job_id, None) is not None

    def has_job(self, job_id: str) -> bool:
        return job_id in self.jobs

    async def fire(self, job_id: str) -> None:
        job = self.jobs[job_id]
        await job["func"](*job["args"])


@pytest.fixture()
def store(tmp_path: Path) -> SubscriptionStore:
    s = SubscriptionStore(str(tmp_path / "stock-checker.db"))
    s.ensure_schema()
    return s


@pytest.fixture()
def renderer() -> FakeRenderer:
    return FakeRenderer()


@pytest.fixture()
def dispatcher() -> FakeDispatcher:
    return FakeDispatcher()


@pytest.fixture()
def timers() -> FakeTimers:
    return FakeTimers()


@pytest.fixture()
def config(tmp_path: Path) -> MonitoringConfig:
    return MonitoringConfig(
        db_path=str(tmp_path / "stock-checker.db"),
        notification_api_url="http://127.0.0.1:9/send",
        notification_api_key="gateway-key",
        api_key="api-token",
        render_timeout_seconds=5.0,
    )


def render_error(url: str) -> RenderError:
    return RenderError("render_error: net::ERR_CONNECTION_RESET", url=url)


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)
