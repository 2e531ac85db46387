"""Scheduler module for per-item monitors and bounded check execution."""

from .bounded import BoundedScheduler
from .registry import Monitor, MonitorRegistry
from .timers import TimerService

__all__ = ["BoundedScheduler", "Monitor", "MonitorRegistry", "TimerService"]
