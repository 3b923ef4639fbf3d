#!/usr/bin/env python
"""Seed a demo warehouse (locations, bins, products, stock) and schedule a count."""

import argparse
import asyncio
import logging
import sys

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from stockcount.config import settings
from stockcount.database.crud import (
    create_location,
    create_product,
    create_sublocation,
    set_inventory_quantity,
)
from stockcount.database.models import Base
from stockcount.lifecycle import schedule_count

logging.basicConfig(level=logging.INFO, format="%(levelname)s %(message)s")
logger = logging.getLogger("seed_demo_data")

DEMO_PRODUCTS = [
    # sku, barcode, name, unit cost, ABC class, bin, on hand
    ("WID-001", "012345678905", "Widget, small", "2.50", "C", "A-01-01", 240),
    ("WID-002", "012345678912", "Widget, large", "4.75", "B", "A-01-02", 120),
    ("GAD-100", "098765432109", "Gadget pro", "39.00", "A", "B-02-01", 18),
    ("GAD-200", None, "Gadget lite", "19.90", "B", "B-02-02", 45),
    ("CAB-USB", "036000291452", "USB-C cable 1m", "1.80", "C", "C-03-01", 600),
]


async def seed(database_url: str, location_name: str, schedule: bool) -> None:
    engine = create_async_engine(database_url)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with session_factory() as session:
        location = await create_location(session, location_name)
        bins: dict[str, int] = {}
        for sku, barcode, name, cost, abc_class, bin_code, on_hand in DEMO_PRODUCTS:
            if bin_code not in bins:
                bins[bin_code] = (await create_sublocation(session, location.id, bin_code)).id
            product = await create_product(session, sku, name, cost, barcode=barcode, abc_class=abc_class)
            await set_inventory_quantity(session, product.id, location.id, on_hand, sublocation_id=bins[bin_code])
        logger.info(f"Seeded {len(DEMO_PRODUCTS)} products into {location.name}")

        if schedule:
            count = await schedule_count(session, "cycle", location_id=location.id, created_by="seed-script")
            logger.info(f"Scheduled {count.count_number} with {len(count.items)} items")

    await engine.dispose()


def main():
    parser = argparse.ArgumentParser(description="Seed demo warehouse data")
    parser.add_argument("--location", default="Main Warehouse", help="Name of the location to create")
    parser.add_argument("--no-count", action="store_true", help="Do not schedule a demo cycle count")
    parser.add_argument("--database-url", default=settings.database_url, help="SQLAlchemy async URL")
    args = parser.parse_args()

    try:
        asyncio.run(seed(args.database_url, args.location, schedule=not args.no_count))
    except Exception as e:
        print(f"ERROR: seeding failed: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
