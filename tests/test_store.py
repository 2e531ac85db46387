from __future__ import annotations

import sqlite3
from pathlib import Path

import pytest

from stock_monitor.models import SubscriptionStatus
from stock_monitor.store.db import SCHEMA_VERSION, SubscriptionStore


URL = "https://shop.example.in/p/alphonso-mango"


def _register(store: SubscriptionStore, email: str = "a@example.com", phone: str = "+911111111111", **kw):
    return store.register(
        url=kw.get("url", URL),
        location_filter=kw.get("location_filter", "560001"),
        interval_minutes=kw.get("interval_minutes", 5),
        email=email,
        phone_number=phone,
    )


def test_schema_version_recorded(tmp_path: Path) -> None:
    db = tmp_path / "nested" / "dir" / "stock.db"
    store = SubscriptionStore(str(db))
    store.ensure_schema()
    store.ensure_schema()

    conn = sqlite3.connect(str(db))
    try:
        row = conn.execute("SELECT v FROM schema_meta WHERE k='version'").fetchone()
    finally:
        conn.close()
    assert row[0] == str(SCHEMA_VERSION)


def test_same_product_location_interval_reuses_item(store: SubscriptionStore) -> None:
    item1, sub1 = _register(store, email="a@example.com")
    item2, sub2 = _register(store, email="b@example.com")
    item3, _ = _register(store, email="a@example.com", location_filter="110001")

    assert item1.id == item2.id
    assert item3.id != item1.id
    assert sub1.id != sub2.id
    assert store.active_count_for(item1.id) == 2


def test_reregistering_active_keeps_status_timestamp_and_takes_new_phone(store: SubscriptionStore) -> None:
    _, first = _register(store, phone="+911111111111")
    _, again = _register(store, phone="+922222222222")

    assert again.id == first.id
    assert again.status is SubscriptionStatus.ACTIVE
    assert again.phone_number == "+922222222222"
    assert again.status_changed_at_ts == first.status_changed_at_ts


@pytest.mark.parametrize("prior", [SubscriptionStatus.EXPIRED, SubscriptionStatus.DELETED])
def test_reregistering_inactive_reactivates(store: SubscriptionStore, prior: SubscriptionStatus) -> None:
    item, sub = _register(store)
    assert store.set_subscription_status(sub.id, prior)
    assert store.active_count_for(item.id) == 0

    _, again = _register(store, phone="+933333333333")
    assert again.id == sub.id
    assert again.status is SubscriptionStatus.ACTIVE
    assert again.phone_number == "+933333333333"
    assert again.status_changed_at_ts >= sub.status_changed_at_ts
    assert store.active_count_for(item.id) == 1


def test_only_from_makes_expiry_single_shot(store: SubscriptionStore) -> None:
    _, sub = _register(store)
    only_active = (SubscriptionStatus.ACTIVE,)

    assert store.set_subscription_status(sub.id, SubscriptionStatus.EXPIRED, only_from=only_active) is True
    assert store.set_subscription_status(sub.id, SubscriptionStatus.EXPIRED, only_from=only_active) is False
    assert store.get_subscription(sub.id).status is SubscriptionStatus.EXPIRED


def test_unknown_subscription_status_update_is_noop(store: SubscriptionStore) -> None:
    assert store.set_subscription_status(999, SubscriptionStatus.DELETED) is False
    assert store.get_subscription(999) is None


def test_items_with_active_subscriptions(store: SubscriptionStore) -> None:
    live, _ = _register(store, email="a@example.com")
    done, done_sub = _register(store, email="a@example.com", url=URL + "?v=2")
    store.set_subscription_status(done_sub.id, SubscriptionStatus.EXPIRED)

    ids = [i.id for i in store.items_with_active_subscriptions()]
    assert ids == [live.id]
    assert done.id not in ids


def test_subscriptions_for_email_case_insensitive_newest_first(store: SubscriptionStore) -> None:
    _, older = _register(store, email="Buyer@Example.com")
    _, newer = _register(store, email="buyer@example.com", url=URL + "?v=2")
    _register(store, email="other@example.com")

    rows = store.subscriptions_for_email("BUYER@example.COM")
    assert [r["id"] for r in rows] == [newer.id, older.id]
    assert rows[0]["url"] == URL + "?v=2"
    assert rows[0]["location_filter"] == "560001"
    assert rows[0]["status"] == "active"


def test_delete_item_cascades(store: SubscriptionStore) -> None:
    item, sub = _register(store)
    assert store.delete_item(item.id) is True
    assert store.get_item(item.id) is None
    assert store.get_subscription(sub.id) is None
    assert store.delete_item(item.id) is False


def test_upsert_item_is_keyed_on_url_location_and_interval(store: SubscriptionStore) -> None:
    item = store.upsert_item(url=URL, location_filter="560001", interval_minutes=5)
    same = store.upsert_item(url=URL, location_filter="560001", interval_minutes=5)
    other_interval = store.upsert_item(url=URL, location_filter="560001", interval_minutes=10)
    other_location = store.upsert_item(url=URL, location_filter="110001", interval_minutes=5)

    assert same.id == item.id
    assert len({item.id, other_interval.id, other_location.id}) == 3
    assert store.get_item(item.id) == item
    assert store.active_count_for(item.id) == 0


def test_upsert_subscription_creates_then_reactivates(store: SubscriptionStore) -> None:
    item = store.upsert_item(url=URL, location_filter="560001", interval_minutes=5)

    sub = store.upsert_subscription(item_id=item.id, email="a@example.com", phone_number="+911111111111")
    assert sub.item_id == item.id
    assert sub.status is SubscriptionStatus.ACTIVE
    assert store.active_count_for(item.id) == 1

    kept = store.upsert_subscription(item_id=item.id, email="a@example.com", phone_number="+922222222222")
    assert kept.id == sub.id
    assert kept.phone_number == "+922222222222"
    assert kept.status_changed_at_ts == sub.status_changed_at_ts

    store.set_subscription_status(sub.id, SubscriptionStatus.EXPIRED)
    revived = store.upsert_subscription(item_id=item.id, email="a@example.com", phone_number="+933333333333")
    assert revived.id == sub.id
    assert revived.status is SubscriptionStatus.ACTIVE
    assert revived.phone_number == "+933333333333"
    assert [s.id for s in store.active_subscriptions_for(item.id)] == [sub.id]
