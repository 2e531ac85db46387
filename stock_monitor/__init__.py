"""Restock monitoring engine: per-item schedules, bounded checks and one-shot SMS alerts."""

__version__ = "0.1.0"
