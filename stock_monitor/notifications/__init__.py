"""Subscriber notifications."""

from .dispatcher import (
    DeliveryResult,
    NotificationConfig,
    NotificationDispatcher,
    build_availability_message,
    build_confirmation_message,
)

__all__ = [
    "DeliveryResult",
    "NotificationConfig",
    "NotificationDispatcher",
    "build_availability_message",
    "build_confirmation_message",
]
