"""Batch allocator: spread a quantity over candidate batches.

Candidates are ordered by the allocation policy and consumed greedily:
take as much as possible from the first batch, move on only while
quantity remains.  A reservation that loses a race to another picker
skips that batch instead of failing the allocation; whatever cannot be
covered comes back as ``shortfall`` for the caller to judge.

Policies:
  fefo           earliest expiry first, then oldest received (default)
  fifo           oldest received first
  largest_first  most available first (fewest batch splits)
"""

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Callable

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from pickflow.config import settings
from pickflow.middleware.exceptions import InsufficientStock
from pickflow.models.batch import InventoryBatch
from pickflow.services import ledger

logger = logging.getLogger(__name__)


@dataclass
class Allocation:
    batch: InventoryBatch
    quantity: int

    @property
    def batch_id(self) -> str:
        return self.batch.id


@dataclass
class AllocationResult:
    requested: int
    allocations: list[Allocation] = field(default_factory=list)
    shortfall: int = 0
    # Batches whose reservation was refused mid-allocation
    skipped: list[str] = field(default_factory=list)

    @property
    def allocated(self) -> int:
        return sum(a.quantity for a in self.allocations)


# ── Ordering policies ───────────────────────────────────────

_FAR_FUTURE = date.max


def _fefo_key(b: InventoryBatch):
    return (b.expires_at or _FAR_FUTURE, b.received_at, b.batch_number)


def _fifo_key(b: InventoryBatch):
    return (b.received_at, b.batch_number)


def _largest_first_key(b: InventoryBatch):
    return (-b.available_quantity, b.received_at, b.batch_number)


POLICIES: dict[str, Callable[[InventoryBatch], tuple]] = {
    "fefo": _fefo_key,
    "fifo": _fifo_key,
    "largest_first": _largest_first_key,
}


def order_candidates(
    batches: list[InventoryBatch], policy: str | None = None
) -> list[InventoryBatch]:
    policy = policy or settings.allocation_policy
    try:
        key = POLICIES[policy]
    except KeyError:
        raise ValueError(f"Unknown allocation policy: {policy!r}") from None
    return sorted(batches, key=key)


async def find_candidate_batches(
    db: AsyncSession,
    product_key: str,
    size_key: str | None = None,
    location_key: str | None = None,
    policy: str | None = None,
) -> list[InventoryBatch]:
    """Active batches of a product/size with stock, in policy order.

    ``location_key=None`` searches every location.
    """
    stmt = select(InventoryBatch).where(
        InventoryBatch.product_key == product_key,
        InventoryBatch.status == "active",
        InventoryBatch.available_quantity > 0,
    )
    if size_key is not None:
        stmt = stmt.where(InventoryBatch.size_key == size_key)
    if location_key is not None:
        stmt = stmt.where(InventoryBatch.location_key == location_key)

    batches = (await db.execute(stmt)).scalars().all()
    return order_candidates(list(batches), policy)


async def allocate(
    db: AsyncSession,
    product_key: str,
    location_key: str | None,
    qty: int,
    candidates: list[InventoryBatch] | None = None,
    *,
    size_key: str | None = None,
    policy: str | None = None,
) -> AllocationResult:
    """Reserve up to ``qty`` units of a product from candidate batches.

    When ``candidates`` is given it is re-ordered by the policy and any
    batch for a different product, size or location is ignored.
    """
    if qty <= 0:
        raise ValueError(f"Allocation quantity must be positive, got {qty}")

    if candidates is None:
        candidates = await find_candidate_batches(
            db, product_key, size_key, location_key, policy
        )
    else:
        candidates = order_candidates(
            [
                b for b in candidates
                if b.product_key == product_key
                and (size_key is None or b.size_key == size_key)
                and (location_key is None or b.location_key == location_key)
            ],
            policy,
        )

    result = AllocationResult(requested=qty)
    remaining = qty

    for batch in candidates:
        if remaining == 0:
            break
        take = min(remaining, batch.available_quantity)
        if take <= 0:
            continue
        try:
            await ledger.reserve(db, batch.id, take)
        except InsufficientStock:
            result.skipped.append(batch.id)
            continue
        result.allocations.append(Allocation(batch=batch, quantity=take))
        remaining -= take

    result.shortfall = remaining
    if result.shortfall:
        logger.info(
            "Allocation of %s at %s short by %d of %d",
            product_key, location_key or "any location", result.shortfall, qty,
            extra={"skipped": result.skipped},
        )
    return result
