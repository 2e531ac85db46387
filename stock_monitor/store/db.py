from __future__ import annotations

import sqlite3
import time
from pathlib import Path
from typing import Any, Iterable

from ..models import Item, Subscription, SubscriptionStatus


SCHEMA_VERSION = 1


def _utc_ts() -> float:
    return float(time.time())


def _connect(path: str) -> sqlite3.Connection:
    p = str(path or "").strip()
    if not p:
        raise ValueError("Missing db_path")
    Path(p).parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(p, timeout=30, isolation_level=None, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON;")
    conn.execute("PRAGMA busy_timeout = 5000;")
    # WAL lets the API read while a check is writing.
    try:
        conn.execute("PRAGMA journal_mode = WAL;")
    except sqlite3.DatabaseError:
        pass
    return conn


def _ensure_schema_conn(conn: sqlite3.Connection) -> None:
    conn.execute(
        "CREATE TABLE IF NOT EXISTS schema_meta (k TEXT PRIMARY KEY, v TEXT NOT NULL);"
    )
    row = conn.execute("SELECT v FROM schema_meta WHERE k='version'").fetchone()
    cur = int(row["v"]) if row and row["v"] else 0
    if cur >= SCHEMA_VERSION:
        return

    if cur == 0:
        _apply_v1(conn)
        conn.execute("INSERT OR REPLACE INTO schema_meta (k, v) VALUES ('version', ?)", (str(SCHEMA_VERSION),))
        return

    raise RuntimeError(f"Unsupported schema version upgrade path cur={cur} target={SCHEMA_VERSION}")


def _apply_v1(conn: sqlite3.Connection) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS items (
          id INTEGER PRIMARY KEY AUTOINCREMENT,
          url TEXT NOT NULL,
          location_filter TEXT NOT NULL,
          interval_minutes INTEGER NOT NULL DEFAULT 5,
          created_at_ts REAL NOT NULL,
          UNIQUE(url, location_filter, interval_minutes)
        );
        """
    )
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS subscriptions (
          id INTEGER PRIMARY KEY AUTOINCREMENT,
          item_id INTEGER NOT NULL REFERENCES items(id) ON DELETE CASCADE,
          email TEXT NOT NULL,
          phone_number TEXT NOT NULL,
          status TEXT NOT NULL DEFAULT 'active',
          created_at_ts REAL NOT NULL,
          status_changed_at_ts REAL NOT NULL,
          UNIQUE(item_id, email)
        );
        """
    )
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_subscriptions_item_status ON subscriptions(item_id, status);"
    )


def _item_from_row(row: sqlite3.Row) -> Item:
    return Item(
        id=int(row["id"]),
        url=str(row["url"]),
        location_filter=str(row["location_filter"]),
        interval_minutes=int(row["interval_minutes"]),
        created_at_ts=float(row["created_at_ts"]),
    )


def _subscription_from_row(row: sqlite3.Row) -> Subscription:
    return Subscription(
        id=int(row["id"]),
        item_id=int(row["item_id"]),
        email=str(row["email"]),
        phone_number=str(row["phone_number"]),
        status=SubscriptionStatus(str(row["status"])),
        created_at_ts=float(row["created_at_ts"]),
        status_changed_at_ts=float(row["status_changed_at_ts"]),
    )


class SubscriptionStore:
    """SQLite persistence for items and their subscriptions.

    Every method opens its own connection and is blocking; async callers go
    through ``asyncio.to_thread``. Multi-statement writes run inside a single
    ``BEGIN IMMEDIATE`` transaction.
    """

    def __init__(self, db_path: str):
        self.db_path = db_path

    def ensure_schema(self) -> None:
        conn = _connect(self.db_path)
        try:
            _ensure_schema_conn(conn)
        finally:
            conn.close()

    def _open(self) -> sqlite3.Connection:
        conn = _connect(self.db_path)
        _ensure_schema_conn(conn)
        return conn

    # --- writes -----------------------------------------------------------------

    def _upsert_item_conn(self, conn: sqlite3.Connection, url: str, location_filter: str, interval_minutes: int) -> Item:
        conn.execute(
            """
            INSERT INTO items (url, location_filter, interval_minutes, created_at_ts)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(url, location_filter, interval_minutes) DO NOTHING
            """,
            (url, location_filter, int(interval_minutes), _utc_ts()),
        )
        row = conn.execute(
            "SELECT * FROM items WHERE url=? AND location_filter=? AND interval_minutes=?",
            (url, location_filter, int(interval_minutes)),
        ).fetchone()
        if not row:
            raise RuntimeError("Failed to create or retrieve item record")
        return _item_from_row(row)

    def _upsert_subscription_conn(
        self, conn: sqlite3.Connection, item_id: int, email: str, phone_number: str
    ) -> Subscription:
        now = _utc_ts()
        # Re-registration always takes the new phone number; an inactive
        # subscription is reactivated with a fresh status timestamp.
        conn.execute(
            """
            INSERT INTO subscriptions (item_id, email, phone_number, status, created_at_ts, status_changed_at_ts)
            VALUES (?, ?, ?, 'active', ?, ?)
            ON CONFLICT(item_id, email) DO UPDATE SET
              phone_number=excluded.phone_number,
              status_changed_at_ts=CASE
                WHEN subscriptions.status='active' THEN subscriptions.status_changed_at_ts
                ELSE excluded.status_changed_at_ts
              END,
              status='active'
            """,
            (int(item_id), email, phone_number, now, now),
        )
        row = conn.execute(
            "SELECT * FROM subscriptions WHERE item_id=? AND email=?", (int(item_id), email)
        ).fetchone()
        if not row:
            raise RuntimeError("Failed to create or retrieve subscription record")
        return _subscription_from_row(row)

    def upsert_item(self, *, url: str, location_filter: str, interval_minutes: int) -> Item:
        conn = self._open()
        try:
            conn.execute("BEGIN IMMEDIATE;")
            try:
                item = self._upsert_item_conn(conn, url, location_filter, interval_minutes)
                conn.execute("COMMIT;")
            except Exception:
                conn.execute("ROLLBACK;")
                raise
            return item
        finally:
            conn.close()

    def upsert_subscription(self, *, item_id: int, email: str, phone_number: str) -> Subscription:
        conn = self._open()
        try:
            conn.execute("BEGIN IMMEDIATE;")
            try:
                sub = self._upsert_subscription_conn(conn, item_id, email, phone_number)
                conn.execute("COMMIT;")
            except Exception:
                conn.execute("ROLLBACK;")
                raise
            return sub
        finally:
            conn.close()

    def register(
        self,
        *,
        url: str,
        location_filter: str,
        interval_minutes: int,
        email: str,
        phone_number: str,
    ) -> tuple[Item, Subscription]:
        """Create-or-reuse the item and create-or-reactivate the subscription atomically."""
        conn = self._open()
        try:
            conn.execute("BEGIN IMMEDIATE;")
            try:
                item = self._upsert_item_conn(conn, url, location_filter, interval_minutes)
                sub = self._upsert_subscription_conn(conn, item.id, email, phone_number)
                conn.execute("COMMIT;")
            except Exception:
                conn.execute("ROLLBACK;")
                raise
            return item, sub
        finally:
            conn.close()

    def set_subscription_status(
        self,
        subscription_id: int,
        status: SubscriptionStatus,
        *,
        only_from: Iterable[SubscriptionStatus] | None = None,
    ) -> bool:
        """Set a subscription's status. Returns False when no row changed.

        ``only_from`` restricts the update to rows currently in one of the given
        states, which makes transitions such as active -> expired single-shot.
        """
        status = SubscriptionStatus(status)
        sql = "UPDATE subscriptions SET status=?, status_changed_at_ts=? WHERE id=?"
        params: list[Any] = [status.value, _utc_ts(), int(subscription_id)]
        if only_from is not None:
            allowed = [SubscriptionStatus(s).value for s in only_from]
            if not allowed:
                return False
            sql += f" AND status IN ({','.join('?' for _ in allowed)})"
            params.extend(allowed)

        conn = self._open()
        try:
            cur = conn.execute(sql, params)
            return int(cur.rowcount or 0) > 0
        finally:
            conn.close()

    # --- reads ------------------------------------------------------------------

    def get_item(self, item_id: int) -> Item | None:
        conn = self._open()
        try:
            row = conn.execute("SELECT * FROM items WHERE id=?", (int(item_id),)).fetchone()
            return _item_from_row(row) if row else None
        finally:
            conn.close()

    def get_subscription(self, subscription_id: int) -> Subscription | None:
        conn = self._open()
        try:
            row = conn.execute("SELECT * FROM subscriptions WHERE id=?", (int(subscription_id),)).fetchone()
            return _subscription_from_row(row) if row else None
        finally:
            conn.close()

    def active_subscriptions_for(self, item_id: int) -> list[Subscription]:
        conn = self._open()
        try:
            rows = conn.execute(
                "SELECT * FROM subscriptions WHERE item_id=? AND status='active' ORDER BY id ASC",
                (int(item_id),),
            ).fetchall()
            return [_subscription_from_row(r) for r in rows]
        finally:
            conn.close()

    def active_count_for(self, item_id: int) -> int:
        conn = self._open()
        try:
            row = conn.execute(
                "SELECT COUNT(*) AS total FROM subscriptions WHERE item_id=? AND status='active'",
                (int(item_id),),
            ).fetchone()
            return int(row["total"] or 0) if row else 0
        finally:
            conn.close()

    def items_with_active_subscriptions(self) -> list[Item]:
        conn = self._open()
        try:
            rows = conn.execute(
                """
                SELECT i.* FROM items i
                WHERE EXISTS (
                  SELECT 1 FROM subscriptions s
                  WHERE s.item_id=i.id AND s.status='active'
                )
                ORDER BY i.id ASC
                """
            ).fetchall()
            return [_item_from_row(r) for r in rows]
        finally:
            conn.close()

    def subscriptions_for_email(self, email: str) -> list[dict[str, Any]]:
        conn = self._open()
        try:
            rows = conn.execute(
                """
                SELECT
                  s.id AS id,
                  s.item_id AS item_id,
                  s.email AS email,
                  s.phone_number AS phone_number,
                  s.created_at_ts AS created_at_ts,
                  s.status AS status,
                  s.status_changed_at_ts AS status_changed_at_ts,
                  i.url AS url,
                  i.location_filter AS location_filter,
                  i.interval_minutes AS interval_minutes
                FROM subscriptions s
                JOIN items i ON i.id=s.item_id
                WHERE lower(s.email)=lower(?)
                ORDER BY s.created_at_ts DESC, s.id DESC
                """,
                (email,),
            ).fetchall()
            return [dict(r) for r in rows]
        finally:
            conn.close()

    def delete_item(self, item_id: int) -> bool:
        """Remove an item; its subscriptions go with it (store-level cleanup)."""
        conn = self._open()
        try:
            cur = conn.execute("DELETE FROM items WHERE id=?", (int(item_id),))
            return int(cur.rowcount or 0) > 0
        finally:
            conn.close()
