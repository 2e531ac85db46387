"""Main entry point for the stock monitor."""

import asyncio
import sys

import structlog
import uvicorn

from stock_monitor.api import create_app
from stock_monitor.config import get_config
from stock_monitor.errors import ConfigurationError
from stock_monitor.log import configure_logging
from stock_monitor.service import StockMonitorService

logger = structlog.get_logger(__name__)


async def run_cli_command(command: str, *args):
    """Run one-shot commands against the configured store."""
    config = get_config()
    service = StockMonitorService(config)
    await asyncio.to_thread(service.store.ensure_schema)

    if command == "subscriptions":
        if not args:
            print("Usage: main.py subscriptions EMAIL")
            return
        rows = await service.subscriptions_for(args[0])
        print(f"Subscriptions for {args[0]}: {len(rows)}")
        for row in rows:
            print(f"  #{row['id']} [{row['status']}] {row['url']} ({row['location_filter']})")

    elif command == "unsubscribe":
        if not args:
            print("Usage: main.py unsubscribe SUBSCRIPTION_ID")
            return
        result = await service.unsubscribe(int(args[0]))
        print("Removed" if result.removed else "Subscription not found")

    elif command == "items":
        items = await asyncio.to_thread(service.store.items_with_active_subscriptions)
        print(f"Items with active subscriptions: {len(items)}")
        for item in items:
            print(f"  #{item.id} every {item.interval_minutes}m {item.url} ({item.location_filter})")

    else:
        print(f"Unknown command: {command}")
        print("Available commands: subscriptions EMAIL, unsubscribe ID, items")


def main():
    """Start the HTTP server, or run a CLI command when arguments are given."""
    config = get_config()
    configure_logging(config.log_level)

    if len(sys.argv) < 2:
        try:
            config.ensure_required()
        except ConfigurationError as e:
            logger.error("Refusing to start", error=str(e))
            sys.exit(1)

        logger.info("Starting stock monitor web server", host=config.host, port=config.port)
        uvicorn.run(create_app(config), host=config.host, port=config.port, log_level="info")
    else:
        command = sys.argv[1]
        args = sys.argv[2:]
        asyncio.run(run_cli_command(command, *args))


if __name__ == "__main__":
    main()
