#!/usr/bin/env python3
"""Render one product page and print the inferred availability."""

import argparse
import asyncio
import sys
from pathlib import Path

# Add parent directory to path to import stock_monitor modules
sys.path.insert(0, str(Path(__file__).parent.parent))

import structlog

from stock_monitor.checks.inference import infer_availability, looks_like_error_page
from stock_monitor.config import get_config
from stock_monitor.errors import RenderError
from stock_monitor.log import configure_logging
from stock_monitor.models import StockStatus
from stock_monitor.rendering import PlaywrightRenderer

logger = structlog.get_logger(__name__)


async def check(url: str, location_filter: str) -> StockStatus | None:
    config = get_config()
    async with PlaywrightRenderer(config) as renderer:
        try:
            snapshot = await asyncio.wait_for(
                renderer.render(url, location_filter),
                timeout=config.render_timeout_seconds,
            )
        except (RenderError, asyncio.TimeoutError) as e:
            logger.error("Render failed", url=url, error=str(e))
            return None

    result = infer_availability(snapshot)

    print("\n" + "=" * 50)
    print("STOCK CHECK")
    print("=" * 50)
    print(f"URL: {url}")
    print(f"Location: {location_filter}")
    print(f"Final URL: {snapshot.final_url}")
    print(f"Title: {snapshot.page_title}")
    if snapshot.primary_control:
        control = snapshot.primary_control
        print(f"Primary control: visible={control.visible} disabled={control.disabled} text={control.text!r}")
    print(f"Notify buttons: {snapshot.notify_buttons_count}")
    print(f"Sold-out badges: {snapshot.sold_out_badges_count}")
    if looks_like_error_page(snapshot):
        print("Warning: page looks like an error page")
    print(f"\nStatus: {result.status.value} (decided by: {result.tier or 'nothing'})")
    return result.status


def main():
    parser = argparse.ArgumentParser(description="Run a single stock check")
    parser.add_argument("url", help="Product page URL")
    parser.add_argument("pincode", help="Delivery location filter (postal code)")
    args = parser.parse_args()

    configure_logging(get_config().log_level)
    status = asyncio.run(check(args.url, args.pincode))
    return status is StockStatus.IN_STOCK


if __name__ == "__main__":
    success = main()
    sys.exit(0 if success else 1)
