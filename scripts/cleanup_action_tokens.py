#!/usr/bin/env python3
"""
Purge action tokens that expired more than the configured grace period ago.

Usage:
    python scripts/cleanup_action_tokens.py
    python scripts/cleanup_action_tokens.py --hours 72
"""

import argparse
import asyncio
from datetime import timedelta

import dotenv

dotenv.load_dotenv()

from clinic_booking.database import AsyncSessionLocal, engine  # noqa: E402
from clinic_booking.middleware.logging import configure_logging  # noqa: E402
from clinic_booking.services.action_token_service import ActionTokenService  # noqa: E402


async def main(hours: int | None) -> None:
    """Delete old tokens and report how many were removed."""
    configure_logging()
    older_than = timedelta(hours=hours) if hours is not None else None
    try:
        async with AsyncSessionLocal() as session:
            deleted = await ActionTokenService(session).cleanup_expired(older_than)
        print(f"✓ Deleted {deleted} expired action tokens")
    finally:
        await engine.dispose()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Purge expired action tokens")
    parser.add_argument(
        "--hours",
        type=int,
        default=None,
        help="Grace period after expiry (defaults to ACTION_TOKEN_PURGE_AFTER_HOURS)",
    )
    args = parser.parse_args()
    asyncio.run(main(args.hours))
