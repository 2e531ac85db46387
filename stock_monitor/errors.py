"""Exception types raised inside the stock monitor."""

from __future__ import annotations


class StockMonitorError(Exception):
    """Base class for all stock monitor errors."""


class ConfigurationError(StockMonitorError):
    """Required configuration is missing or invalid."""


class ValidationError(StockMonitorError):
    """Caller supplied input that cannot be registered."""


class RenderError(StockMonitorError):
    """The page renderer failed or exceeded its time bound."""

    def __init__(self, message: str, *, url: str | None = None, timed_out: bool = False):
        super().__init__(message)
        self.url = url
        self.timed_out = timed_out


class ItemMissing(StockMonitorError):
    """The item row vanished between scheduling and checking."""

    def __init__(self, item_id: int):
        super().__init__(f"Item {item_id} no longer exists")
        self.item_id = item_id


class NotificationDeliveryFailure(StockMonitorError):
    """A single notification could not be delivered."""

    def __init__(self, phone_number: str, detail: str):
        super().__init__(f"Delivery to {phone_number} failed: {detail}")
        self.phone_number = phone_number
        self.detail = detail
