"""Check execution and availability inference."""

from .executor import CheckExecutor
from .inference import DEFAULT_TIERS, infer_availability

__all__ = ["CheckExecutor", "DEFAULT_TIERS", "infer_availability"]
