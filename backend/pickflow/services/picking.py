"""Pick list and pick item state machines.

Pick list:   pending → in_progress → completed
    The first read-for-work (start) or first allocation moves a list to
    in_progress.  Completion is explicit, requires every item to be picked
    or short, and is idempotent.  A completed list is read-only.

Pick item:   pending ⇄ picked | short
    ``picked_qty`` is always the sum of the item's BatchPicks and is never
    written any other way (see ``recompute_item``).  An item is picked exactly
    when picked_qty == target_qty; short is a worker's explicit call and is
    only valid while picked_qty < target_qty.

Every change to a BatchPick goes through the ledger, so batch stock and
picked quantities move together in one transaction.
"""

import logging
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from pickflow.events import queue_event
from pickflow.middleware.exceptions import (
    InsufficientStock,
    InvalidStateTransition,
    OverAllocation,
    ResourceNotFoundError,
)
from pickflow.models.batch import InventoryBatch
from pickflow.models.order import OrderStatus
from pickflow.models.pick_list import BatchPick, PickItem, PickList
from pickflow.services import allocator, ledger
from pickflow.services.orders import get_order, order_status, set_order_status
from pickflow.utils.activity import log_activity
from pickflow.utils.numbering import next_pick_list_sequence

logger = logging.getLogger(__name__)

PENDING, IN_PROGRESS, COMPLETED = "pending", "in_progress", "completed"
ITEM_PENDING, ITEM_PICKED, ITEM_SHORT = "pending", "picked", "short"


# ── Loading ─────────────────────────────────────────────────

async def get_pick_list(db: AsyncSession, pick_list_id: str, *, lock: bool = False) -> PickList:
    stmt = select(PickList).where(PickList.id == pick_list_id)
    if lock:
        stmt = stmt.with_for_update().execution_options(populate_existing=True)
    pick_list = (await db.execute(stmt)).scalar_one_or_none()
    if not pick_list:
        raise ResourceNotFoundError("Pick list", pick_list_id)
    return pick_list


async def get_pick_item(db: AsyncSession, pick_item_id: str) -> tuple[PickItem, PickList]:
    item = (
        await db.execute(select(PickItem).where(PickItem.id == pick_item_id))
    ).scalar_one_or_none()
    if not item:
        raise ResourceNotFoundError("Pick item", pick_item_id)
    pick_list = await get_pick_list(db, item.pick_list_id, lock=True)
    # populate_existing reloads the items, so take the instance from the list
    item = next(i for i in pick_list.items if i.id == pick_item_id)
    return item, pick_list


async def list_pick_lists(
    db: AsyncSession,
    *,
    status: str | None = None,
    team: str | None = None,
    include_completed: bool = False,
) -> list[PickList]:
    stmt = select(PickList)
    if status:
        stmt = stmt.where(PickList.status == status)
    elif not include_completed:
        stmt = stmt.where(PickList.status != COMPLETED)
    if team:
        stmt = stmt.where(PickList.assigned_team == team)
    stmt = stmt.order_by(PickList.sequence, PickList.created_at)
    return list((await db.execute(stmt)).scalars().all())


# ── Item bookkeeping ────────────────────────────────────────

def _ensure_editable(pick_list: PickList) -> None:
    if pick_list.status == COMPLETED:
        raise InvalidStateTransition(
            "Pick list is completed and can no longer be changed",
            details={"pick_list_id": pick_list.id},
        )


def _ensure_batch_fits(item: PickItem, batch: InventoryBatch) -> None:
    """Hand-picked batches obey the same product, size and status rules as allocation."""
    if batch.product_key != item.product_key:
        raise InvalidStateTransition(
            f"Batch {batch.batch_number} holds {batch.product_key}, not {item.product_key}",
            details={"batch_id": batch.id, "product_key": batch.product_key},
        )
    if item.size_key is not None and batch.size_key != item.size_key:
        raise InvalidStateTransition(
            f"Batch {batch.batch_number} is {batch.size_key}, item needs {item.size_key}",
            details={"batch_id": batch.id, "size_key": batch.size_key},
        )
    if batch.status != "active":
        raise InvalidStateTransition(
            f"Batch {batch.batch_number} is {batch.status} and cannot be picked from",
            details={"batch_id": batch.id, "status": batch.status},
        )


def recompute_item(item: PickItem, *, keep_short: bool = True, actor: str | None = None) -> None:
    """Derive picked_qty and status from the item's BatchPicks."""
    item.picked_qty = sum(bp.quantity for bp in item.batch_picks)
    if item.picked_qty == item.target_qty:
        item.status = ITEM_PICKED
        item.short_reason = None
    elif keep_short and item.status == ITEM_SHORT:
        pass
    else:
        item.status = ITEM_PENDING
        item.short_reason = None

    if item.picked_qty > 0:
        item.picked_at = datetime.utcnow()
        if actor:
            item.picked_by = actor
    else:
        item.picked_at = None
        item.picked_by = None


def add_batch_pick(item: PickItem, batch: InventoryBatch, qty: int, actor: str) -> None:
    """Attach ``qty`` from ``batch`` to ``item``; stock must already be reserved."""
    for bp in item.batch_picks:
        if bp.batch_id == batch.id:
            bp.quantity += qty
            return
    item.batch_picks.append(
        BatchPick(batch_id=batch.id, batch=batch, quantity=qty, picked_by=actor)
    )


async def _release_all(db: AsyncSession, item: PickItem) -> int:
    released = 0
    for bp in list(item.batch_picks):
        await ledger.release(db, bp.batch_id, bp.quantity)
        released += bp.quantity
        item.batch_picks.remove(bp)
    return released


async def touch_pick_list(db: AsyncSession, pick_list: PickList, actor: str) -> None:
    """Move a pending list to in_progress and its order to picking."""
    if pick_list.status != PENDING:
        return
    pick_list.status = IN_PROGRESS
    pick_list.started_at = datetime.utcnow()
    pick_list.started_by = actor

    order = pick_list.order
    if order_status(order) in (OrderStatus.DRAFT, OrderStatus.CONFIRMED):
        set_order_status(order, OrderStatus.PICKING)

    queue_event(db, "PickListStarted", "pick_list", pick_list.id, {
        "order_id": pick_list.order_id,
        "started_by": actor,
    })
    logger.info("Pick list %s started by %s", pick_list.id, actor)


def emit_item_updated(db: AsyncSession, item: PickItem, action: str) -> None:
    queue_event(db, "PickItemUpdated", "pick_item", item.id, {
        "pick_list_id": item.pick_list_id,
        "action": action,
        "picked_qty": item.picked_qty,
        "target_qty": item.target_qty,
        "status": item.status,
    })


# ── Pick list lifecycle ─────────────────────────────────────

async def create_pick_list_from_order(
    db: AsyncSession, order_id: str, actor: str
) -> tuple[PickList, bool]:
    """Build the pick list for an order, one item per order line.

    Returns ``(pick_list, created)``.  An order has at most one pick list;
    asking again returns the existing one.
    """
    existing = (
        await db.execute(select(PickList).where(PickList.order_id == order_id))
    ).scalar_one_or_none()
    if existing:
        return existing, False

    order = await get_order(db, order_id)
    if order_status(order) in (OrderStatus.CANCELLED, OrderStatus.DISPATCHED, OrderStatus.DELIVERED):
        raise InvalidStateTransition(
            f"Order {order.order_number} is {order.status}; no pick list can be created",
        )
    if not order.lines:
        raise InvalidStateTransition(f"Order {order.order_number} has no lines to pick")

    pick_list = PickList(
        order_id=order.id,
        order=order,
        sequence=await next_pick_list_sequence(db),
        status=PENDING,
        items=[
            PickItem(
                order_line_id=line.id,
                position=line.line_number,
                product_key=line.product_key,
                size_key=line.size_key,
                location_key=line.location_key,
                description=line.description,
                target_qty=line.quantity,
                picked_qty=0,
                status=ITEM_PENDING,
                batch_picks=[],
            )
            for line in order.lines
        ],
    )
    db.add(pick_list)
    await db.flush()

    await log_activity(
        db, actor,
        action="created",
        entity_type="pick_list",
        entity_id=pick_list.id,
        entity_code=order.order_number,
        summary=f"Created pick list #{pick_list.sequence} for {order.order_number}",
        details={"items": len(pick_list.items)},
    )
    logger.info(
        "Created pick list %s (seq %d) for order %s",
        pick_list.id, pick_list.sequence, order.order_number,
    )
    return pick_list, True


async def start_pick_list(db: AsyncSession, pick_list_id: str, actor: str) -> PickList:
    """Claim a list for work.  Starting a started or completed list is a no-op."""
    pick_list = await get_pick_list(db, pick_list_id, lock=True)
    if pick_list.status == PENDING:
        await touch_pick_list(db, pick_list, actor)
        await log_activity(
            db, actor,
            action="started",
            entity_type="pick_list",
            entity_id=pick_list.id,
            entity_code=pick_list.order.order_number,
        )
    return pick_list


async def complete_pick_list(
    db: AsyncSession,
    pick_list_id: str,
    actor: str,
    trolley_info: dict | None = None,
) -> PickList:
    """Finish a pick list and mark its order ready for dispatch.

    Re-completing an already completed list returns it unchanged, so a
    client retry after a lost response succeeds.
    """
    pick_list = await get_pick_list(db, pick_list_id, lock=True)
    if pick_list.status == COMPLETED:
        logger.info("Pick list %s already completed; nothing to do", pick_list.id)
        return pick_list

    pending = [i for i in pick_list.items if i.status == ITEM_PENDING]
    if pending:
        raise InvalidStateTransition(
            f"{len(pending)} item(s) are still pending; pick them or mark them short",
            details={"pending_item_ids": [i.id for i in pending]},
        )

    now = datetime.utcnow()
    if pick_list.started_at is None:
        pick_list.started_at = now
        pick_list.started_by = actor
    pick_list.status = COMPLETED
    pick_list.completed_at = now
    pick_list.completed_by = actor
    if trolley_info is not None:
        pick_list.trolley_info = trolley_info

    order = pick_list.order
    if order_status(order) in (OrderStatus.DRAFT, OrderStatus.CONFIRMED, OrderStatus.PICKING):
        set_order_status(order, OrderStatus.READY_FOR_DISPATCH)

    short_items = [i for i in pick_list.items if i.status == ITEM_SHORT]
    await log_activity(
        db, actor,
        action="completed",
        entity_type="pick_list",
        entity_id=pick_list.id,
        entity_code=order.order_number,
        summary=f"Completed pick list for {order.order_number}",
        details={"short_items": len(short_items), "trolley_info": trolley_info},
    )
    queue_event(db, "PickListCompleted", "pick_list", pick_list.id, {
        "order_id": order.id,
        "order_status": order.status,
        "short_items": len(short_items),
        "trolley_info": pick_list.trolley_info,
    })
    logger.info(
        "Pick list %s completed by %s (%d short)", pick_list.id, actor, len(short_items),
    )
    return pick_list


async def assign_pick_list(
    db: AsyncSession,
    pick_list_id: str,
    actor: str,
    *,
    team: str | None,
    worker: str | None,
) -> PickList:
    pick_list = await get_pick_list(db, pick_list_id)
    _ensure_editable(pick_list)
    pick_list.assigned_team = team
    pick_list.assigned_worker = worker
    await log_activity(
        db, actor,
        action="assigned",
        entity_type="pick_list",
        entity_id=pick_list.id,
        summary=f"Assigned to {worker or team or 'nobody'}",
        details={"team": team, "worker": worker},
    )
    return pick_list


async def reorder_pick_lists(db: AsyncSession, pick_list_ids: list[str], actor: str) -> list[PickList]:
    """Give the listed pick lists their existing sequence numbers in the new order.

    Lists not named keep their numbers, so relative order against them holds.
    """
    if len(set(pick_list_ids)) != len(pick_list_ids):
        raise InvalidStateTransition("Duplicate pick list ids in reorder request")

    rows = (
        await db.execute(select(PickList).where(PickList.id.in_(pick_list_ids)))
    ).scalars().all()
    by_id = {pl.id: pl for pl in rows}
    missing = [pid for pid in pick_list_ids if pid not in by_id]
    if missing:
        raise ResourceNotFoundError("Pick list", ", ".join(missing))

    sequences = sorted(pl.sequence for pl in rows)
    for seq, pid in zip(sequences, pick_list_ids):
        by_id[pid].sequence = seq

    await log_activity(
        db, actor,
        action="reordered",
        entity_type="pick_list",
        summary=f"Reordered {len(pick_list_ids)} pick list(s)",
        details={"order": pick_list_ids},
    )
    return [by_id[pid] for pid in pick_list_ids]


async def delete_pick_list(db: AsyncSession, pick_list_id: str, actor: str) -> int:
    """Delete a not-completed pick list, returning its stock to the ledger."""
    pick_list = await get_pick_list(db, pick_list_id, lock=True)
    _ensure_editable(pick_list)

    released = 0
    for item in pick_list.items:
        released += await _release_all(db, item)

    order = pick_list.order
    if order_status(order) == OrderStatus.PICKING:
        set_order_status(order, OrderStatus.CONFIRMED)

    await log_activity(
        db, actor,
        action="deleted",
        entity_type="pick_list",
        entity_id=pick_list.id,
        entity_code=order.order_number,
        summary=f"Deleted pick list for {order.order_number}",
        details={"released_qty": released},
    )
    await db.delete(pick_list)
    await db.flush()
    logger.info("Deleted pick list %s (released %d units)", pick_list_id, released)
    return released


# ── Pick item operations ────────────────────────────────────

async def allocate_pick_item(
    db: AsyncSession,
    pick_item_id: str,
    actor: str,
    *,
    quantity: int | None = None,
    any_location: bool = False,
    policy: str | None = None,
) -> tuple[PickItem, allocator.AllocationResult]:
    """Auto-allocate stock to an item through the allocator.

    Only the item's own location is searched unless ``any_location`` is
    set; picking from elsewhere is always an explicit worker decision.
    A partial allocation is kept and reported as shortfall.
    """
    item, pick_list = await get_pick_item(db, pick_item_id)
    _ensure_editable(pick_list)

    qty = item.remaining_qty if quantity is None else quantity
    if qty <= 0 or qty > item.remaining_qty:
        raise OverAllocation(
            f"Cannot allocate {qty}; item needs {item.remaining_qty} more",
            details={"requested": qty, "remaining": item.remaining_qty},
        )

    result = await allocator.allocate(
        db,
        item.product_key,
        None if any_location else item.location_key,
        qty,
        size_key=item.size_key,
        policy=policy,
    )
    if not result.allocations:
        raise InsufficientStock(
            f"No stock of {item.product_key} available"
            + ("" if any_location else f" at {item.location_key}"),
            details={"requested": qty, "skipped_batches": result.skipped},
        )

    for a in result.allocations:
        add_batch_pick(item, a.batch, a.quantity, actor)
    recompute_item(item, actor=actor)
    await db.flush()
    await touch_pick_list(db, pick_list, actor)

    await log_activity(
        db, actor,
        action="allocated",
        entity_type="pick_item",
        entity_id=item.id,
        summary=f"Allocated {result.allocated} of {qty} x {item.product_key}",
        details={
            "allocations": [
                {"batch_id": a.batch_id, "quantity": a.quantity} for a in result.allocations
            ],
            "shortfall": result.shortfall,
        },
    )
    emit_item_updated(db, item, "allocated")
    return item, result


async def replace_batch_picks(
    db: AsyncSession,
    pick_item_id: str,
    batches: list[tuple[str, int]],
    actor: str,
) -> PickItem:
    """Swap an item's whole BatchPick set for ``batches`` in one step.

    The total is validated against target_qty before any stock moves; the
    release and re-reserve run in a savepoint so a refused reservation
    leaves the old allocation intact.
    """
    item, pick_list = await get_pick_item(db, pick_item_id)
    _ensure_editable(pick_list)

    wanted: dict[str, int] = {}
    for batch_id, qty in batches:
        if qty <= 0:
            raise OverAllocation(f"Batch quantity must be positive, got {qty}")
        wanted[batch_id] = wanted.get(batch_id, 0) + qty

    total = sum(wanted.values())
    if total > item.target_qty:
        raise OverAllocation(
            f"Batches total {total}, more than the {item.target_qty} required",
            details={"total": total, "target_qty": item.target_qty},
        )

    found = (
        await db.execute(select(InventoryBatch).where(InventoryBatch.id.in_(list(wanted))))
    ).scalars().all()
    by_id = {b.id: b for b in found}
    for batch_id in wanted:
        batch = by_id.get(batch_id)
        if batch is None:
            raise ResourceNotFoundError("Batch", batch_id)
        _ensure_batch_fits(item, batch)

    async with db.begin_nested():
        await _release_all(db, item)
        for batch_id, qty in wanted.items():
            await ledger.reserve(db, batch_id, qty)
            add_batch_pick(item, by_id[batch_id], qty, actor)
        recompute_item(item, keep_short=False, actor=actor)
        await db.flush()

    await touch_pick_list(db, pick_list, actor)
    await log_activity(
        db, actor,
        action="batches_replaced",
        entity_type="pick_item",
        entity_id=item.id,
        summary=f"Set {total} of {item.target_qty} x {item.product_key} from {len(wanted)} batch(es)",
        details={"batches": [{"batch_id": k, "quantity": v} for k, v in wanted.items()]},
    )
    emit_item_updated(db, item, "batches_replaced")
    return item


async def update_pick_item(
    db: AsyncSession,
    pick_item_id: str,
    actor: str,
    *,
    picked_qty: int,
    picked_batch_id: str | None = None,
    status: str | None = None,
) -> list[PickItem]:
    """Legacy single-batch update: set an item's picked quantity outright.

    The whole quantity is taken from ``picked_batch_id``, or allocated at
    the item's location when no batch is named.  Returns the list's items.
    """
    item, pick_list = await get_pick_item(db, pick_item_id)
    _ensure_editable(pick_list)

    if picked_qty < 0 or picked_qty > item.target_qty:
        raise OverAllocation(
            f"Picked quantity {picked_qty} is outside 0..{item.target_qty}",
            details={"picked_qty": picked_qty, "target_qty": item.target_qty},
        )
    if status not in (None, ITEM_PENDING, ITEM_PICKED, ITEM_SHORT):
        raise InvalidStateTransition(f"Unknown pick item status: {status}")
    if status == ITEM_SHORT and picked_qty >= item.target_qty:
        raise InvalidStateTransition("An item can only be short while picked < target")
    if status == ITEM_PICKED and picked_qty != item.target_qty:
        raise InvalidStateTransition("An item is picked only when the full target is picked")

    batch = None
    if picked_qty > 0 and picked_batch_id:
        batch = await db.get(InventoryBatch, picked_batch_id)
        if batch is None:
            raise ResourceNotFoundError("Batch", picked_batch_id)
        _ensure_batch_fits(item, batch)

    async with db.begin_nested():
        await _release_all(db, item)
        if picked_qty > 0:
            if batch is not None:
                await ledger.reserve(db, batch.id, picked_qty)
                add_batch_pick(item, batch, picked_qty, actor)
            else:
                result = await allocator.allocate(
                    db, item.product_key, item.location_key, picked_qty,
                    size_key=item.size_key,
                )
                if result.shortfall:
                    raise InsufficientStock(
                        f"Only {result.allocated} of {picked_qty} x {item.product_key} "
                        f"available at {item.location_key}",
                        details={"requested": picked_qty, "available": result.allocated},
                    )
                for a in result.allocations:
                    add_batch_pick(item, a.batch, a.quantity, actor)
        recompute_item(item, keep_short=False, actor=actor)
        if status == ITEM_SHORT:
            item.status = ITEM_SHORT
        await db.flush()

    await touch_pick_list(db, pick_list, actor)
    await log_activity(
        db, actor,
        action="updated",
        entity_type="pick_item",
        entity_id=item.id,
        summary=f"Picked {picked_qty} of {item.target_qty} x {item.product_key}",
        details={"batch_id": picked_batch_id, "status": item.status},
    )
    emit_item_updated(db, item, "updated")
    return list(pick_list.items)


async def mark_short(
    db: AsyncSession, pick_item_id: str, actor: str, reason: str | None = None
) -> PickItem:
    """Record that no further stock is expected for this item."""
    item, pick_list = await get_pick_item(db, pick_item_id)
    _ensure_editable(pick_list)
    if item.picked_qty >= item.target_qty:
        raise InvalidStateTransition(
            "Item is fully picked and cannot be marked short",
            details={"pick_item_id": item.id},
        )

    item.status = ITEM_SHORT
    item.short_reason = reason
    await touch_pick_list(db, pick_list, actor)

    await log_activity(
        db, actor,
        action="shorted",
        entity_type="pick_item",
        entity_id=item.id,
        summary=f"Short {item.remaining_qty} of {item.target_qty} x {item.product_key}",
        details={"reason": reason, "picked_qty": item.picked_qty},
    )
    logger.warning(
        "Pick item %s marked short by %s: %d of %d picked",
        item.id, actor, item.picked_qty, item.target_qty,
        extra={"reason": reason},
    )
    emit_item_updated(db, item, "shorted")
    return item


async def reopen_pick_item(db: AsyncSession, pick_item_id: str, actor: str) -> PickItem:
    """Return an item to pending, releasing every BatchPick to the ledger."""
    item, pick_list = await get_pick_item(db, pick_item_id)
    _ensure_editable(pick_list)

    released = await _release_all(db, item)
    recompute_item(item, keep_short=False)

    await log_activity(
        db, actor,
        action="reopened",
        entity_type="pick_item",
        entity_id=item.id,
        summary=f"Reopened {item.product_key}, released {released}",
    )
    emit_item_updated(db, item, "reopened")
    return item


async def remove_batch_pick(
    db: AsyncSession, pick_item_id: str, batch_pick_id: str, actor: str
) -> PickItem:
    """Undo a single BatchPick."""
    item, pick_list = await get_pick_item(db, pick_item_id)
    _ensure_editable(pick_list)

    bp = next((b for b in item.batch_picks if b.id == batch_pick_id), None)
    if bp is None:
        raise ResourceNotFoundError("Batch pick", batch_pick_id)

    batch_id, quantity, batch_number = bp.batch_id, bp.quantity, bp.batch.batch_number
    await ledger.release(db, batch_id, quantity)
    item.batch_picks.remove(bp)
    recompute_item(item)
    await db.flush()

    await log_activity(
        db, actor,
        action="released",
        entity_type="pick_item",
        entity_id=item.id,
        summary=f"Returned {quantity} to batch {batch_number}",
        details={"batch_id": batch_id, "quantity": quantity},
    )
    emit_item_updated(db, item, "released")
    return item


async def available_batches(
    db: AsyncSession, pick_item_id: str, *, any_location: bool = False
) -> list[InventoryBatch]:
    item = (
        await db.execute(select(PickItem).where(PickItem.id == pick_item_id))
    ).scalar_one_or_none()
    if not item:
        raise ResourceNotFoundError("Pick item", pick_item_id)
    return await allocator.find_candidate_batches(
        db,
        item.product_key,
        item.size_key,
        None if any_location else item.location_key,
    )
