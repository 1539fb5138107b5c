"""Stock receipt and batch lookup.

Receiving stock creates an InventoryBatch with its full quantity available.
Batch numbers default to B-YYYYMMDD-NNN from the shared sequence counters.
"""

import logging
from datetime import date

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from pickflow.middleware.exceptions import ResourceNotFoundError
from pickflow.models.batch import InventoryBatch
from pickflow.utils.activity import log_activity
from pickflow.utils.numbering import next_value

logger = logging.getLogger(__name__)


async def receive_stock(
    db: AsyncSession,
    actor: str,
    *,
    product_key: str,
    location_key: str,
    quantity: int,
    size_key: str | None = None,
    batch_number: str | None = None,
    received_at: date | None = None,
    expires_at: date | None = None,
    notes: str | None = None,
) -> InventoryBatch:
    received_at = received_at or date.today()
    if batch_number is None:
        date_str = received_at.strftime("%Y%m%d")
        seq = await next_value(db, f"batch:{date_str}")
        batch_number = f"B-{date_str}-{seq:03d}"

    batch = InventoryBatch(
        batch_number=batch_number,
        product_key=product_key,
        size_key=size_key,
        location_key=location_key,
        initial_quantity=quantity,
        available_quantity=quantity,
        received_at=received_at,
        expires_at=expires_at,
        notes=notes,
    )
    db.add(batch)
    await db.flush()

    await log_activity(
        db, actor,
        action="received",
        entity_type="batch",
        entity_id=batch.id,
        entity_code=batch.batch_number,
        summary=f"Received {quantity} x {product_key} into {location_key}",
    )
    logger.info("Received batch %s (%d units)", batch.batch_number, quantity)
    return batch


async def get_batch(db: AsyncSession, batch_id: str) -> InventoryBatch:
    batch = await db.get(InventoryBatch, batch_id)
    if not batch:
        raise ResourceNotFoundError("Batch", batch_id)
    return batch


async def list_batches(
    db: AsyncSession,
    *,
    product_key: str | None = None,
    location_key: str | None = None,
    in_stock_only: bool = False,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[InventoryBatch], int]:
    stmt = select(InventoryBatch)
    if product_key:
        stmt = stmt.where(InventoryBatch.product_key == product_key)
    if location_key:
        stmt = stmt.where(InventoryBatch.location_key == location_key)
    if in_stock_only:
        stmt = stmt.where(InventoryBatch.available_quantity > 0)

    total = await db.scalar(select(func.count()).select_from(stmt.subquery())) or 0
    rows = (
        await db.execute(
            stmt.order_by(InventoryBatch.received_at, InventoryBatch.batch_number)
            .limit(limit).offset(offset)
        )
    ).scalars().all()
    return list(rows), total
