"""Dispatch load manager: build loads, dispatch and recall them.

A load (DeliveryRun) holds an ordered list of orders through LoadItems.
An order may sit on only one active load (planned, loading or in_transit).

Dispatch moves the load to in_transit and every order on it to dispatched
as one step.  Readiness is checked first and nothing changes when the load
is not ready, unless the dispatcher forces it (the override reason is kept
for audit).  All order updates run in a savepoint; one failure rolls back
the lot and surfaces as DispatchFailed.

Dispatching an in-transit load again is a no-op.  Two concurrent dispatches
are serialised by the row lock and by a conditional status claim, so the
loser sees AlreadyDispatching rather than a second dispatch.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime

from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from pickflow.config import settings
from pickflow.events import queue_event
from pickflow.middleware.exceptions import (
    AlreadyDispatching,
    DispatchFailed,
    InvalidStateTransition,
    LoadActive,
    LoadNotEmpty,
    NotDispatched,
    NotReady,
    OrderAlreadyLoaded,
    PickflowException,
    ResourceNotFoundError,
)
from pickflow.models.delivery_run import ACTIVE_LOAD_STATUSES, DeliveryRun, LoadItem
from pickflow.models.order import OrderStatus, canonical_order_status
from pickflow.models.pick_list import PickList
from pickflow.services.orders import get_order, order_status, set_order_status
from pickflow.utils.activity import log_activity
from pickflow.utils.numbering import generate_load_code

logger = logging.getLogger(__name__)

PLANNED, LOADING, IN_TRANSIT, COMPLETED = "planned", "loading", "in_transit", "completed"
EDITABLE_STATUSES = (PLANNED, LOADING)

UPDATABLE_FIELDS = {
    "name", "run_date", "carrier_name", "vehicle_registration",
    "vehicle_capacity", "display_order", "notes", "status",
}


@dataclass
class LoadSummary:
    trolley_total: int
    capacity: int
    fill_percentage: float
    order_count: int


@dataclass
class DispatchResult:
    load: DeliveryRun
    orders_dispatched: int
    already_dispatched: bool = False
    forced: bool = False
    not_ready: list[dict] = field(default_factory=list)


# ── Helpers ─────────────────────────────────────────────────

def summarize(load: DeliveryRun) -> LoadSummary:
    """Capacity fill: trolleys on the load as a share of vehicle capacity."""
    trolleys = sum(i.trolley_count or 0 for i in load.items)
    capacity = load.vehicle_capacity or settings.default_vehicle_capacity
    fill = round(trolleys / capacity * 100, 1) if capacity > 0 else 0.0
    return LoadSummary(
        trolley_total=trolleys,
        capacity=capacity,
        fill_percentage=fill,
        order_count=len(load.items),
    )


def is_ready(status: str) -> bool:
    return canonical_order_status(status).value in settings.ready_status_set


def readiness(load: DeliveryRun) -> list[dict]:
    """Orders on the load that are not in a ready status."""
    return [
        {
            "order_id": item.order_id,
            "order_number": item.order.order_number,
            "status": item.order.status,
        }
        for item in load.items
        if not is_ready(item.order.status)
    ]


def _ensure_editable(load: DeliveryRun) -> None:
    if load.status not in EDITABLE_STATUSES:
        raise LoadActive(f"Load {load.load_code} is {load.status} and cannot be changed")


def _resequence(load: DeliveryRun) -> None:
    for n, item in enumerate(load.items, start=1):
        item.sequence_number = n


async def get_load(db: AsyncSession, load_id: str, *, lock: bool = False) -> DeliveryRun:
    stmt = select(DeliveryRun).where(DeliveryRun.id == load_id)
    if lock:
        stmt = stmt.with_for_update().execution_options(populate_existing=True)
    load = (await db.execute(stmt)).scalar_one_or_none()
    if not load:
        raise ResourceNotFoundError("Load", load_id)
    return load


async def list_loads(
    db: AsyncSession,
    *,
    status: str | None = None,
    run_date: date | None = None,
) -> list[DeliveryRun]:
    stmt = select(DeliveryRun)
    if status:
        stmt = stmt.where(DeliveryRun.status == status)
    if run_date:
        stmt = stmt.where(DeliveryRun.run_date == run_date)
    stmt = stmt.order_by(DeliveryRun.run_date, DeliveryRun.display_order, DeliveryRun.created_at)
    return list((await db.execute(stmt)).scalars().all())


async def _active_load_for_order(db: AsyncSession, order_id: str) -> DeliveryRun | None:
    return (
        await db.execute(
            select(DeliveryRun)
            .join(LoadItem, LoadItem.delivery_run_id == DeliveryRun.id)
            .where(
                LoadItem.order_id == order_id,
                DeliveryRun.status.in_(ACTIVE_LOAD_STATUSES),
            )
            .limit(1)
        )
    ).scalar_one_or_none()


async def _trolleys_for_order(db: AsyncSession, order_id: str) -> int:
    trolley_info = await db.scalar(
        select(PickList.trolley_info).where(PickList.order_id == order_id)
    )
    if isinstance(trolley_info, dict):
        try:
            return max(int(trolley_info.get("count") or 0), 0)
        except (TypeError, ValueError):
            return 0
    return 0


# ── Load admin ──────────────────────────────────────────────

async def create_load(
    db: AsyncSession,
    actor: str,
    *,
    run_date: date,
    name: str | None = None,
    carrier_name: str | None = None,
    vehicle_registration: str | None = None,
    vehicle_capacity: int | None = None,
    notes: str | None = None,
    order_ids: list[str] | None = None,
) -> DeliveryRun:
    load = DeliveryRun(
        load_code=await generate_load_code(db, run_date),
        name=name,
        run_date=run_date,
        status=PLANNED,
        carrier_name=carrier_name,
        vehicle_registration=vehicle_registration,
        vehicle_capacity=vehicle_capacity,
        notes=notes,
        items=[],
    )
    db.add(load)
    await db.flush()

    await log_activity(
        db, actor,
        action="created",
        entity_type="load",
        entity_id=load.id,
        entity_code=load.load_code,
        summary=f"Created load {load.load_code} for {run_date.isoformat()}",
    )
    logger.info("Created load %s", load.load_code)

    for order_id in order_ids or []:
        await add_order(db, load.id, order_id, actor)
    return load


async def update_load(db: AsyncSession, load_id: str, actor: str, changes: dict) -> DeliveryRun:
    load = await get_load(db, load_id, lock=True)
    _ensure_editable(load)

    unknown = set(changes) - UPDATABLE_FIELDS
    if unknown:
        raise InvalidStateTransition(f"Fields cannot be updated: {', '.join(sorted(unknown))}")
    if "status" in changes and changes["status"] not in EDITABLE_STATUSES:
        raise InvalidStateTransition(
            f"Status can only be set to {' or '.join(EDITABLE_STATUSES)}; use dispatch/recall/complete",
        )

    for name, value in changes.items():
        setattr(load, name, value)

    await log_activity(
        db, actor,
        action="updated",
        entity_type="load",
        entity_id=load.id,
        entity_code=load.load_code,
        details={k: str(v) for k, v in changes.items()},
    )
    return load


async def delete_load(db: AsyncSession, load_id: str, actor: str) -> None:
    """Delete an empty load that has not been dispatched."""
    load = await get_load(db, load_id, lock=True)
    if load.status in (IN_TRANSIT, COMPLETED):
        raise LoadActive(f"Load {load.load_code} is {load.status} and cannot be deleted")
    if load.items:
        raise LoadNotEmpty(load.load_code, len(load.items))

    await log_activity(
        db, actor,
        action="deleted",
        entity_type="load",
        entity_id=load.id,
        entity_code=load.load_code,
    )
    await db.delete(load)
    await db.flush()
    logger.info("Deleted load %s", load.load_code)


# ── Load items ──────────────────────────────────────────────

async def add_order(
    db: AsyncSession,
    load_id: str,
    order_id: str,
    actor: str,
    *,
    trolley_count: int | None = None,
) -> LoadItem:
    """Append an order to the load with the next sequence number."""
    load = await get_load(db, load_id, lock=True)
    _ensure_editable(load)
    order = await get_order(db, order_id)

    if order_status(order) in (OrderStatus.CANCELLED, OrderStatus.DELIVERED):
        raise InvalidStateTransition(
            f"Order {order.order_number} is {order.status} and cannot be loaded",
        )
    current = await _active_load_for_order(db, order.id)
    if current is not None:
        raise OrderAlreadyLoaded(order.order_number, current.load_code)

    next_seq = (
        await db.scalar(
            select(func.coalesce(func.max(LoadItem.sequence_number), 0))
            .where(LoadItem.delivery_run_id == load.id)
        )
    ) + 1
    if trolley_count is None:
        trolley_count = await _trolleys_for_order(db, order.id)

    item = LoadItem(
        delivery_run_id=load.id,
        order_id=order.id,
        order=order,
        sequence_number=next_seq,
        trolley_count=trolley_count,
        status="pending",
    )
    load.items.append(item)
    await db.flush()

    await log_activity(
        db, actor,
        action="order_added",
        entity_type="load",
        entity_id=load.id,
        entity_code=load.load_code,
        summary=f"Added {order.order_number} as stop {next_seq}",
    )
    queue_event(db, "OrderAddedToLoad", "load", load.id, {
        "order_id": order.id,
        "sequence_number": next_seq,
        "trolley_count": trolley_count,
    })
    return item


async def remove_order(db: AsyncSession, load_id: str, order_id: str, actor: str) -> DeliveryRun:
    """Take an order off the load and close the gap in sequence numbers.

    The order's own status is left alone.
    """
    load = await get_load(db, load_id, lock=True)
    _ensure_editable(load)

    item = next((i for i in load.items if i.order_id == order_id), None)
    if item is None:
        raise ResourceNotFoundError("Order on load", order_id)

    load.items.remove(item)
    _resequence(load)
    await db.flush()

    await log_activity(
        db, actor,
        action="order_removed",
        entity_type="load",
        entity_id=load.id,
        entity_code=load.load_code,
        summary=f"Removed {item.order.order_number}",
    )
    queue_event(db, "OrderRemovedFromLoad", "load", load.id, {"order_id": order_id})
    return load


async def reorder_items(db: AsyncSession, load_id: str, item_ids: list[str], actor: str) -> DeliveryRun:
    """Set delivery order; ``item_ids`` must name every item on the load once."""
    load = await get_load(db, load_id, lock=True)
    _ensure_editable(load)

    by_id = {i.id: i for i in load.items}
    if sorted(item_ids) != sorted(by_id):
        raise InvalidStateTransition(
            "Reorder must list every item on the load exactly once",
            details={"expected": sorted(by_id), "got": item_ids},
        )

    for n, item_id in enumerate(item_ids, start=1):
        by_id[item_id].sequence_number = n
    load.items.sort(key=lambda i: i.sequence_number)

    await log_activity(
        db, actor,
        action="reordered",
        entity_type="load",
        entity_id=load.id,
        entity_code=load.load_code,
    )
    return load


async def set_trolley_count(
    db: AsyncSession, load_id: str, item_id: str, trolley_count: int, actor: str
) -> DeliveryRun:
    load = await get_load(db, load_id, lock=True)
    _ensure_editable(load)
    item = next((i for i in load.items if i.id == item_id), None)
    if item is None:
        raise ResourceNotFoundError("Load item", item_id)
    item.trolley_count = trolley_count
    await log_activity(
        db, actor,
        action="trolleys_set",
        entity_type="load",
        entity_id=load.id,
        entity_code=load.load_code,
        summary=f"{item.order.order_number}: {trolley_count} trolley(s)",
    )
    return load


# ── Dispatch / recall / complete ────────────────────────────

async def _claim(db: AsyncSession, load_id: str, from_statuses: tuple[str, ...], to_status: str) -> bool:
    """Conditionally move a load's status; False if another request moved it first."""
    result = await db.execute(
        update(DeliveryRun)
        .where(DeliveryRun.id == load_id, DeliveryRun.status.in_(from_statuses))
        .values(status=to_status)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


async def dispatch(
    db: AsyncSession,
    load_id: str,
    actor: str,
    *,
    force: bool = False,
    override_reason: str | None = None,
) -> DispatchResult:
    load = await get_load(db, load_id, lock=True)
    load_code = load.load_code

    if load.status == IN_TRANSIT:
        logger.info("Load %s already in transit; dispatch is a no-op", load_code)
        return DispatchResult(load=load, orders_dispatched=0, already_dispatched=True)
    if load.status not in EDITABLE_STATUSES:
        raise InvalidStateTransition(f"Load {load_code} is {load.status} and cannot be dispatched")
    if not load.items:
        raise InvalidStateTransition(f"Load {load_code} has no orders to dispatch")

    not_ready = readiness(load)
    if not_ready and not force:
        raise NotReady(load_code, not_ready)

    try:
        async with db.begin_nested():
            if not await _claim(db, load.id, EDITABLE_STATUSES, IN_TRANSIT):
                raise AlreadyDispatching(load_code)
            for item in load.items:
                item.previous_order_status = set_order_status(
                    item.order, OrderStatus.DISPATCHED
                ).value
                item.status = IN_TRANSIT
            load.status = IN_TRANSIT
            load.dispatched_at = datetime.utcnow()
            load.dispatched_by = actor
            load.dispatch_override_reason = override_reason if not_ready else None
            await db.flush()
    except AlreadyDispatching:
        raise
    except (PickflowException, SQLAlchemyError) as e:
        logger.error("Dispatch of load %s rolled back: %s", load_code, e)
        raise DispatchFailed(
            f"Dispatch of load {load_code} failed and was rolled back",
            details={"reason": str(e)},
        ) from e

    orders_dispatched = len(load.items)
    forced = bool(not_ready)
    if forced:
        logger.warning(
            "Load %s force-dispatched by %s with %d order(s) not ready",
            load_code, actor, len(not_ready),
            extra={"override_reason": override_reason},
        )

    await log_activity(
        db, actor,
        action="force_dispatched" if forced else "dispatched",
        entity_type="load",
        entity_id=load.id,
        entity_code=load_code,
        summary=f"Dispatched {load_code} with {orders_dispatched} order(s)",
        details={
            "override_reason": override_reason,
            "not_ready": not_ready,
        } if forced else None,
    )
    queue_event(db, "LoadDispatched", "load", load.id, {
        "load_code": load_code,
        "orders_dispatched": orders_dispatched,
        "forced": forced,
    })
    logger.info("Load %s dispatched (%d orders)", load_code, orders_dispatched)
    return DispatchResult(
        load=load,
        orders_dispatched=orders_dispatched,
        forced=forced,
        not_ready=not_ready,
    )


async def recall(db: AsyncSession, load_id: str, actor: str) -> tuple[DeliveryRun, int]:
    """Bring an in-transit load back to planned, restoring order statuses."""
    load = await get_load(db, load_id, lock=True)
    load_code = load.load_code
    if load.status != IN_TRANSIT:
        raise NotDispatched(load_code, load.status)

    try:
        async with db.begin_nested():
            if not await _claim(db, load.id, (IN_TRANSIT,), PLANNED):
                raise NotDispatched(load_code, "recalled")
            for item in load.items:
                previous = item.previous_order_status or OrderStatus.READY_FOR_DISPATCH.value
                set_order_status(item.order, canonical_order_status(previous))
                item.previous_order_status = None
                item.status = "pending"
            load.status = PLANNED
            load.dispatched_at = None
            load.dispatched_by = None
            load.dispatch_override_reason = None
            await db.flush()
    except NotDispatched:
        raise
    except (PickflowException, SQLAlchemyError) as e:
        logger.error("Recall of load %s rolled back: %s", load_code, e)
        raise DispatchFailed(
            f"Recall of load {load_code} failed and was rolled back",
            details={"reason": str(e)},
        ) from e

    orders_recalled = len(load.items)
    await log_activity(
        db, actor,
        action="recalled",
        entity_type="load",
        entity_id=load.id,
        entity_code=load_code,
        summary=f"Recalled {load_code}, {orders_recalled} order(s) restored",
    )
    queue_event(db, "LoadRecalled", "load", load.id, {
        "load_code": load_code,
        "orders_recalled": orders_recalled,
    })
    logger.info("Load %s recalled (%d orders)", load_code, orders_recalled)
    return load, orders_recalled


async def complete_load(db: AsyncSession, load_id: str, actor: str) -> DeliveryRun:
    """Mark an in-transit load delivered."""
    load = await get_load(db, load_id, lock=True)
    if load.status == COMPLETED:
        return load
    if load.status != IN_TRANSIT:
        raise NotDispatched(load.load_code, load.status)

    for item in load.items:
        set_order_status(item.order, OrderStatus.DELIVERED)
        item.status = "delivered"
    load.status = COMPLETED
    load.completed_at = datetime.utcnow()

    await log_activity(
        db, actor,
        action="completed",
        entity_type="load",
        entity_id=load.id,
        entity_code=load.load_code,
        summary=f"Delivered {len(load.items)} order(s)",
    )
    return load
