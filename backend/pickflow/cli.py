"""Operator CLI.

Usage:
    python -m pickflow.cli create-tables   # Create all tables (dev / first deploy)
    python -m pickflow.cli stock           # Available stock per product and location
"""

import sys

from sqlalchemy import create_engine, func, select

from pickflow import models  # noqa: F401
from pickflow.config import settings
from pickflow.database import Base
from pickflow.models.batch import InventoryBatch


def create_tables():
    engine = create_engine(settings.database_url_sync)
    Base.metadata.create_all(engine)
    print(f"Created {len(Base.metadata.tables)} table(s).")


def stock():
    engine = create_engine(settings.database_url_sync)
    with engine.connect() as conn:
        rows = conn.execute(
            select(
                InventoryBatch.product_key,
                InventoryBatch.size_key,
                InventoryBatch.location_key,
                func.count(InventoryBatch.id),
                func.sum(InventoryBatch.available_quantity),
            )
            .where(InventoryBatch.status == "active")
            .group_by(
                InventoryBatch.product_key,
                InventoryBatch.size_key,
                InventoryBatch.location_key,
            )
            .order_by(InventoryBatch.product_key, InventoryBatch.location_key)
        ).all()

    for product, size, location, batches, available in rows:
        print(f"  {product:<30} {size or '-':<10} {location:<20} {available:>8}  ({batches} batch(es))")
    print(f"\n{len(rows)} product/location line(s)")


if __name__ == "__main__":
    cmd = sys.argv[1] if len(sys.argv) > 1 else ""
    if cmd == "create-tables":
        create_tables()
    elif cmd == "stock":
        stock()
    else:
        print(__doc__)
        sys.exit(1)
