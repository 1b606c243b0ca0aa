#!/usr/bin/env python3
"""
Deliver pending appointment notifications.

Usage:
    python scripts/drain_outbox.py
    python scripts/drain_outbox.py --limit 200 --loop --interval 30

Run from cron or a process supervisor to pick up events whose in-request
delivery failed or never ran.
"""

import argparse
import asyncio

import dotenv

dotenv.load_dotenv()

from clinic_booking.database import AsyncSessionLocal, engine  # noqa: E402
from clinic_booking.middleware.logging import configure_logging  # noqa: E402
from clinic_booking.services.notification_service import (  # noqa: E402
    LoggingNotifier,
    NotificationDispatcher,
)


async def main(limit: int | None, loop: bool, interval: float) -> None:
    """Drain the outbox once, or repeatedly with ``--loop``."""
    configure_logging()
    dispatcher = NotificationDispatcher(AsyncSessionLocal, LoggingNotifier())
    try:
        while True:
            result = await dispatcher.drain(limit)
            print(f"sent={result.sent} retrying={result.retrying} failed={result.failed}")
            if not loop:
                break
            await asyncio.sleep(interval)
    finally:
        await engine.dispose()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Deliver pending appointment notifications")
    parser.add_argument("--limit", type=int, default=None, help="Maximum events per pass")
    parser.add_argument("--loop", action="store_true", help="Keep draining until interrupted")
    parser.add_argument("--interval", type=float, default=30.0, help="Seconds between passes")
    args = parser.parse_args()
    asyncio.run(main(args.limit, args.loop, args.interval))
