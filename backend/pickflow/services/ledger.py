"""Inventory batch ledger: atomic reserve / release of batch stock.

Both operations are a single conditional UPDATE, so they are linearizable
per batch row without holding a lock across the request:

    UPDATE inventory_batches
       SET available_quantity = available_quantity - :qty
     WHERE id = :batch_id AND available_quantity >= :qty
    RETURNING available_quantity

Zero rows means another handler got there first (or the batch never had
enough).  Nothing else about the batch is touched.
"""

import logging

from sqlalchemy import inspect, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import set_committed_value

from pickflow.middleware.exceptions import InsufficientStock, ResourceNotFoundError
from pickflow.models.batch import InventoryBatch

logger = logging.getLogger(__name__)


def _sync_identity_map(db: AsyncSession, batch_id: str, available: int) -> None:
    """Make an already-loaded InventoryBatch reflect the new balance.

    The UPDATE bypasses the unit of work, so a batch held by the session
    would otherwise keep showing the old quantity.
    """
    key = inspect(InventoryBatch).identity_key_from_primary_key([batch_id])
    batch = db.sync_session.identity_map.get(key)
    if batch is not None:
        set_committed_value(batch, "available_quantity", available)


async def reserve(db: AsyncSession, batch_id: str, qty: int) -> int:
    """Take ``qty`` units from a batch; return the remaining balance.

    Raises InsufficientStock if the batch cannot cover ``qty``.
    """
    if qty <= 0:
        raise ValueError(f"Reserve quantity must be positive, got {qty}")

    stmt = (
        update(InventoryBatch)
        .where(
            InventoryBatch.id == batch_id,
            InventoryBatch.available_quantity >= qty,
        )
        .values(available_quantity=InventoryBatch.available_quantity - qty)
        .returning(InventoryBatch.available_quantity)
        .execution_options(synchronize_session=False)
    )
    remaining = (await db.execute(stmt)).scalar_one_or_none()

    if remaining is None:
        row = (
            await db.execute(
                select(InventoryBatch.batch_number, InventoryBatch.available_quantity)
                .where(InventoryBatch.id == batch_id)
            )
        ).one_or_none()
        if row is None:
            raise ResourceNotFoundError("Batch", batch_id)
        logger.warning(
            "Reservation refused on batch %s: %d available, %d requested",
            row.batch_number, row.available_quantity, qty,
            extra={"batch_id": batch_id},
        )
        raise InsufficientStock(
            f"Batch {row.batch_number} has {row.available_quantity} available, "
            f"cannot reserve {qty}",
            details={
                "batch_id": batch_id,
                "available": row.available_quantity,
                "requested": qty,
            },
        )

    _sync_identity_map(db, batch_id, remaining)
    logger.debug("Reserved %d from batch %s (%d left)", qty, batch_id, remaining)
    return remaining


async def release(db: AsyncSession, batch_id: str, qty: int) -> int:
    """Return ``qty`` units to a batch; return the new balance."""
    if qty <= 0:
        raise ValueError(f"Release quantity must be positive, got {qty}")

    stmt = (
        update(InventoryBatch)
        .where(InventoryBatch.id == batch_id)
        .values(available_quantity=InventoryBatch.available_quantity + qty)
        .returning(InventoryBatch.available_quantity)
        .execution_options(synchronize_session=False)
    )
    available = (await db.execute(stmt)).scalar_one_or_none()
    if available is None:
        raise ResourceNotFoundError("Batch", batch_id)

    _sync_identity_map(db, batch_id, available)
    logger.debug("Released %d to batch %s (%d available)", qty, batch_id, available)
    return available
