from __future__ import annotations

import asyncio

import pytest

from stock_monitor.checks.executor import CheckExecutor
from stock_monitor.models import Snapshot, StockStatus, SubscriptionStatus
from stock_monitor.store.db import SubscriptionStore

from conftest import BLANK_PAGE, IN_STOCK_PAGE, OUT_OF_STOCK_PAGE, FakeDispatcher, FakeRenderer, render_error


URL = "https://shop.example.in/p/alphonso-mango"


def _executor(store, renderer, dispatcher, timeout: float = 5.0) -> CheckExecutor:
    return CheckExecutor(store, renderer, dispatcher, render_timeout_seconds=timeout)


def _subscribe(store: SubscriptionStore, email: str, phone: str):
    return store.register(url=URL, location_filter="560001", interval_minutes=5, email=email, phone_number=phone)


@pytest.mark.asyncio
async def test_available_notifies_each_active_subscription_once(
    store: SubscriptionStore, renderer: FakeRenderer, dispatcher: FakeDispatcher
) -> None:
    renderer.default = IN_STOCK_PAGE
    item, sub_a = _subscribe(store, "a@example.com", "+911000000001")
    _, sub_b = _subscribe(store, "b@example.com", "+911000000002")
    _, sub_c = _subscribe(store, "c@example.com", "+911000000003")
    store.set_subscription_status(sub_c.id, SubscriptionStatus.DELETED)

    outcome = await _executor(store, renderer, dispatcher).execute(item.id)

    assert outcome.status is StockStatus.IN_STOCK
    assert outcome.status_changed is True
    assert outcome.notified == [sub_a.id, sub_b.id]
    assert outcome.failed == []
    assert outcome.remaining_active == 0
    assert outcome.stop_monitor is True
    assert [phone for phone, _ in dispatcher.sent] == ["+911000000001", "+911000000002"]
    assert URL in dispatcher.sent[0][1]
    assert "560001" in dispatcher.sent[0][1]

    again = await _executor(store, renderer, dispatcher).execute(item.id, StockStatus.IN_STOCK)
    assert again.notified == []
    assert len(dispatcher.sent) == 2


@pytest.mark.asyncio
async def test_failed_delivery_leaves_subscription_active(
    store: SubscriptionStore, renderer: FakeRenderer, dispatcher: FakeDispatcher
) -> None:
    renderer.default = IN_STOCK_PAGE
    item, sub_a = _subscribe(store, "a@example.com", "+911000000001")
    _, sub_b = _subscribe(store, "b@example.com", "+911000000002")
    _, sub_c = _subscribe(store, "c@example.com", "+911000000003")
    dispatcher.failing.add("+911000000001")

    outcome = await _executor(store, renderer, dispatcher).execute(item.id)

    assert outcome.failed == [sub_a.id]
    assert outcome.notified == [sub_b.id, sub_c.id]
    assert outcome.remaining_active == 1
    assert outcome.stop_monitor is False
    assert store.get_subscription(sub_a.id).status is SubscriptionStatus.ACTIVE
    assert store.get_subscription(sub_b.id).status is SubscriptionStatus.EXPIRED
    assert store.get_subscription(sub_c.id).status is SubscriptionStatus.EXPIRED


@pytest.mark.asyncio
async def test_unavailable_sends_nothing(store: SubscriptionStore, renderer: FakeRenderer, dispatcher: FakeDispatcher) -> None:
    renderer.default = OUT_OF_STOCK_PAGE
    item, sub = _subscribe(store, "a@example.com", "+911000000001")

    outcome = await _executor(store, renderer, dispatcher).execute(item.id, StockStatus.IN_STOCK)

    assert outcome.status is StockStatus.OUT_OF_STOCK
    assert outcome.status_changed is True
    assert dispatcher.sent == []
    assert outcome.remaining_active == 1
    assert store.get_subscription(sub.id).status is SubscriptionStatus.ACTIVE


@pytest.mark.asyncio
async def test_unknown_status_is_not_available(store: SubscriptionStore, renderer: FakeRenderer, dispatcher: FakeDispatcher) -> None:
    renderer.default = BLANK_PAGE
    item, _ = _subscribe(store, "a@example.com", "+911000000001")

    outcome = await _executor(store, renderer, dispatcher).execute(item.id, StockStatus.UNKNOWN)

    assert outcome.status is StockStatus.UNKNOWN
    assert outcome.status_changed is False
    assert dispatcher.sent == []


@pytest.mark.asyncio
async def test_render_error_is_folded_into_outcome(store: SubscriptionStore, renderer: FakeRenderer, dispatcher: FakeDispatcher) -> None:
    item, _ = _subscribe(store, "a@example.com", "+911000000001")
    renderer.errors[URL] = render_error(URL)

    outcome = await _executor(store, renderer, dispatcher).execute(item.id, StockStatus.OUT_OF_STOCK)

    assert outcome.error == "render_error"
    assert outcome.result is None
    assert outcome.status_changed is False
    assert outcome.stop_monitor is False
    assert dispatcher.sent == []


@pytest.mark.asyncio
async def test_render_timeout_is_a_render_error(store: SubscriptionStore, renderer: FakeRenderer, dispatcher: FakeDispatcher) -> None:
    item, _ = _subscribe(store, "a@example.com", "+911000000001")
    renderer.gate = asyncio.Event()

    outcome = await _executor(store, renderer, dispatcher, timeout=0.05).execute(item.id)

    assert outcome.error == "render_error"
    assert outcome.result is None
    assert renderer.running == 0


@pytest.mark.asyncio
async def test_unexpected_renderer_exception_does_not_escape(
    store: SubscriptionStore, renderer: FakeRenderer, dispatcher: FakeDispatcher
) -> None:
    item, _ = _subscribe(store, "a@example.com", "+911000000001")
    renderer.errors[URL] = KeyError("selector")

    outcome = await _executor(store, renderer, dispatcher).execute(item.id)
    assert outcome.error == "unexpected_error"
    assert outcome.stop_monitor is False


@pytest.mark.asyncio
async def test_missing_item(store: SubscriptionStore, renderer: FakeRenderer, dispatcher: FakeDispatcher) -> None:
    outcome = await _executor(store, renderer, dispatcher).execute(987)

    assert outcome.item_missing is True
    assert outcome.error == "item_missing"
    assert outcome.stop_monitor is True
    assert renderer.calls == []


@pytest.mark.asyncio
async def test_error_page_is_still_inferred(store: SubscriptionStore, renderer: FakeRenderer, dispatcher: FakeDispatcher) -> None:
    renderer.default = Snapshot(body_text="We are sorry, this item is out of stock")
    item, _ = _subscribe(store, "a@example.com", "+911000000001")

    outcome = await _executor(store, renderer, dispatcher).execute(item.id)
    assert outcome.status is StockStatus.OUT_OF_STOCK
    assert outcome.result.tier == "body_text"
