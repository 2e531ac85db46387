"""SQLite-backed item and subscription storage."""

from .db import SubscriptionStore

__all__ = ["SubscriptionStore"]
