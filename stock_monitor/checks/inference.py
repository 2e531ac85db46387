"""Availability inference over a rendered page snapshot.

Inference is an ordered tuple of tiers. Each tier looks at the snapshot and
either returns a definite ``CheckResult`` or ``None`` ("no opinion"); the first
definite answer wins. Text tiers only decide when exactly one side (positive
or negative) is present, so pages that advertise both stocked and sold-out
products (related items, carousels) fall through instead of guessing.
"""

from __future__ import annotations

import re
from typing import Callable, Iterable

from ..models import CheckResult, Snapshot, StockStatus


Tier = Callable[[Snapshot], "CheckResult | None"]

SECTION_POSITIVE_TOKENS = ("in stock", "available now", "ready to ship")
BODY_POSITIVE_TOKENS = ("add to cart", "in stock")
NEGATIVE_TOKENS = ("out of stock", "sold out", "currently unavailable", "notify me")

ERROR_PAGE_TOKENS = ("we are sorry", "not a functioning page", "page not found", "404")

_WS_RE = re.compile(r"\s+")


def normalize_text(text: str | None) -> str:
    return _WS_RE.sub(" ", text or "").strip().lower()


def _contains_any(text: str, tokens: Iterable[str]) -> bool:
    return any(token in text for token in tokens)


def _available(tier: str) -> CheckResult:
    return CheckResult(is_available=True, status=StockStatus.IN_STOCK, tier=tier)


def _unavailable(tier: str) -> CheckResult:
    return CheckResult(is_available=False, status=StockStatus.OUT_OF_STOCK, tier=tier)


def _one_sided(positive: bool, negative: bool, tier: str) -> CheckResult | None:
    if positive and not negative:
        return _available(tier)
    if negative and not positive:
        return _unavailable(tier)
    return None


def primary_control_tier(snapshot: Snapshot) -> CheckResult | None:
    control = snapshot.primary_control
    if control is None or not control.visible:
        return None
    return _unavailable("primary_control") if control.disabled else _available("primary_control")


def section_text_tier(snapshot: Snapshot) -> CheckResult | None:
    section = normalize_text(snapshot.section_text)
    positive = _contains_any(section, SECTION_POSITIVE_TOKENS)
    negative = (
        _contains_any(section, NEGATIVE_TOKENS)
        or snapshot.notify_buttons_count > 0
        or snapshot.sold_out_badges_count > 0
    )
    return _one_sided(positive, negative, "section_text")


def body_text_tier(snapshot: Snapshot) -> CheckResult | None:
    body = normalize_text(snapshot.body_text)
    positive = _contains_any(body, BODY_POSITIVE_TOKENS)
    negative = _contains_any(body, NEGATIVE_TOKENS)
    return _one_sided(positive, negative, "body_text")


DEFAULT_TIERS: tuple[Tier, ...] = (primary_control_tier, section_text_tier, body_text_tier)

UNKNOWN_RESULT = CheckResult(is_available=False, status=StockStatus.UNKNOWN, tier=None)


def infer_availability(snapshot: Snapshot, tiers: Iterable[Tier] = DEFAULT_TIERS) -> CheckResult:
    """Return the first definite tier result, or UNKNOWN when every tier abstains."""
    for tier in tiers:
        result = tier(snapshot)
        if result is not None:
            return result
    return UNKNOWN_RESULT


def looks_like_error_page(snapshot: Snapshot) -> bool:
    return _contains_any(normalize_text(snapshot.body_text), ERROR_PAGE_TOKENS)
