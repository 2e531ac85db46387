"""Domain records shared by the store, the executor and the registry."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class StockStatus(str, Enum):
    IN_STOCK = "IN_STOCK"
    OUT_OF_STOCK = "OUT_OF_STOCK"
    UNKNOWN = "UNKNOWN"


class SubscriptionStatus(str, Enum):
    ACTIVE = "active"
    EXPIRED = "expired"
    DELETED = "deleted"


@dataclass(frozen=True)
class Item:
    id: int
    url: str
    location_filter: str
    interval_minutes: int
    created_at_ts: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "url": self.url,
            "location_filter": self.location_filter,
            "interval_minutes": self.interval_minutes,
            "created_at_ts": self.created_at_ts,
        }


@dataclass(frozen=True)
class Subscription:
    id: int
    item_id: int
    email: str
    phone_number: str
    status: SubscriptionStatus
    created_at_ts: float
    status_changed_at_ts: float

    @property
    def is_active(self) -> bool:
        return self.status is SubscriptionStatus.ACTIVE

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "item_id": self.item_id,
            "email": self.email,
            "phone_number": self.phone_number,
            "status": self.status.value,
            "created_at_ts": self.created_at_ts,
            "status_changed_at_ts": self.status_changed_at_ts,
        }


@dataclass(frozen=True)
class PrimaryControl:
    """The page's main purchase control (typically "Add to cart")."""

    visible: bool
    disabled: bool
    text: str = ""


@dataclass(frozen=True)
class Snapshot:
    """What the renderer saw on a product page, reduced to what inference needs."""

    primary_control: PrimaryControl | None = None
    section_text: str = ""
    body_text: str = ""
    notify_buttons_count: int = 0
    sold_out_badges_count: int = 0
    page_title: str = ""
    final_url: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Snapshot":
        control = data.get("primary_control")
        primary = None
        if isinstance(control, dict):
            primary = PrimaryControl(
                visible=bool(control.get("visible")),
                disabled=bool(control.get("disabled")),
                text=str(control.get("text") or ""),
            )
        return cls(
            primary_control=primary,
            section_text=str(data.get("section_text") or ""),
            body_text=str(data.get("body_text") or ""),
            notify_buttons_count=int(data.get("notify_buttons_count") or 0),
            sold_out_badges_count=int(data.get("sold_out_badges_count") or 0),
            page_title=str(data.get("page_title") or ""),
            final_url=str(data.get("final_url") or ""),
        )


@dataclass(frozen=True)
class CheckResult:
    is_available: bool
    status: StockStatus
    tier: str | None = None


@dataclass
class CheckOutcome:
    """Everything the registry needs to decide a monitor's fate after one check."""

    item_id: int
    result: CheckResult | None = None
    previous_status: StockStatus | None = None
    item_missing: bool = False
    error: str | None = None
    notified: list[int] = field(default_factory=list)
    failed: list[int] = field(default_factory=list)
    remaining_active: int | None = None

    @property
    def status(self) -> StockStatus | None:
        return self.result.status if self.result else None

    @property
    def status_changed(self) -> bool:
        return self.result is not None and self.result.status != self.previous_status

    @property
    def stop_monitor(self) -> bool:
        return self.item_missing or self.remaining_active == 0
