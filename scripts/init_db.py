"""Script to initialize the database."""

import argparse
import asyncio
from decimal import Decimal

from sqlalchemy import func, insert, select, text

from clinic_booking.database import DATABASE_URL, engine
from clinic_booking.models import metadata, services

SAMPLE_SERVICES = [
    {"name": "General Consultation", "duration": 30, "price": Decimal("500.00")},
    {"name": "Follow-up Visit", "duration": 30, "price": Decimal("300.00")},
    {"name": "Full Health Check-up", "duration": 60, "price": Decimal("1500.00")},
]


async def init_db(seed: bool) -> None:
    """Create all tables and optionally add sample services."""
    async with engine.begin() as conn:
        if DATABASE_URL.startswith("postgresql"):
            await conn.execute(text('CREATE EXTENSION IF NOT EXISTS "pgcrypto"'))

        await conn.run_sync(metadata.create_all)
        print("✓ Database initialized successfully!")

        if seed:
            count = (await conn.execute(select(func.count()).select_from(services))).scalar()
            if count:
                print(f"• {count} services already present, skipping seed")
            else:
                await conn.execute(insert(services), SAMPLE_SERVICES)
                print(f"✓ Added {len(SAMPLE_SERVICES)} sample services")

    await engine.dispose()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Create the booking tables")
    parser.add_argument("--seed", action="store_true", help="Add sample services")
    args = parser.parse_args()
    asyncio.run(init_db(args.seed))
