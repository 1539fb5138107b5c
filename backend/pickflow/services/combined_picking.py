"""Combined picking: one physical pick serving several pick lists.

Pending items of the selected (not completed) pick lists are grouped by
``(location_key, product_key, size_key)``.  Within a group, items are kept
in pick-list sequence order, oldest first, with creation time and item
position as tie-breakers, so repeated reads of a group list the same items
in the same order.

``confirm_pick`` allocates the confirmed quantity once, at the group's
location, and then hands it out first-fit: each item is topped up to its
full remaining need before the next item gets anything.  Under a shortfall
the later orders go short, never the earlier ones.
"""

import logging
from dataclasses import dataclass, field

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from pickflow.middleware.exceptions import (
    InsufficientStock,
    InvalidStateTransition,
    OverAllocation,
    PickflowException,
    ResourceNotFoundError,
)
from pickflow.models.order import OrderStatus
from pickflow.models.pick_list import PickItem, PickList
from pickflow.services import allocator, ledger
from pickflow.services.orders import order_status
from pickflow.services.picking import (
    COMPLETED,
    ITEM_PENDING,
    add_batch_pick,
    emit_item_updated,
    recompute_item,
    touch_pick_list,
)
from pickflow.utils.activity import log_activity

logger = logging.getLogger(__name__)

# Orders that have left the picking floor take no further stock
CLOSED_ORDER_STATUSES = (OrderStatus.CANCELLED, OrderStatus.DISPATCHED, OrderStatus.DELIVERED)


@dataclass(frozen=True)
class GroupKey:
    location_key: str
    product_key: str
    size_key: str | None = None


@dataclass
class PickGroup:
    key: GroupKey
    items: list[PickItem] = field(default_factory=list)
    pick_lists: dict[str, PickList] = field(default_factory=dict)

    @property
    def total_remaining(self) -> int:
        return sum(i.target_qty - i.picked_qty for i in self.items)

    @property
    def description(self) -> str | None:
        return next((i.description for i in self.items if i.description), None)


@dataclass
class ItemShare:
    pick_item_id: str
    pick_list_id: str
    quantity: int
    status: str


@dataclass
class ConfirmPickResult:
    key: GroupKey
    requested: int
    allocated: int
    shortfall: int
    distributions: list[ItemShare] = field(default_factory=list)
    errors: list[dict] = field(default_factory=list)


async def get_groups(
    db: AsyncSession, pick_list_ids: list[str], *, lock: bool = False
) -> list[PickGroup]:
    """Group the pending items of the given pick lists."""
    if not pick_list_ids:
        return []

    stmt = (
        select(PickItem, PickList)
        .join(PickList, PickItem.pick_list_id == PickList.id)
        .where(
            PickList.id.in_(pick_list_ids),
            PickList.status != COMPLETED,
            PickItem.status == ITEM_PENDING,
        )
        .order_by(PickList.sequence, PickList.created_at, PickItem.position, PickItem.id)
    )
    if lock:
        stmt = stmt.with_for_update()

    groups: dict[GroupKey, PickGroup] = {}
    for item, pick_list in (await db.execute(stmt)).all():
        if item.picked_qty >= item.target_qty:
            continue
        key = GroupKey(item.location_key, item.product_key, item.size_key)
        group = groups.setdefault(key, PickGroup(key=key))
        group.items.append(item)
        group.pick_lists[pick_list.id] = pick_list

    return sorted(
        groups.values(),
        key=lambda g: (g.key.location_key, g.key.product_key, g.key.size_key or ""),
    )


async def confirm_pick(
    db: AsyncSession,
    pick_list_ids: list[str],
    key: GroupKey,
    quantity: int,
    actor: str,
    *,
    policy: str | None = None,
) -> ConfirmPickResult:
    """Allocate ``quantity`` for a group and distribute it oldest-first.

    The request is checked against the group's remaining need before any
    stock is reserved.  Each item is applied independently: an item whose
    order was cancelled or has shipped since the list was built is reported
    in ``errors`` and its share goes back to the ledger, counted as
    shortfall.  The call fails only when nothing was applied.
    """
    groups = await get_groups(db, pick_list_ids, lock=True)
    group = next((g for g in groups if g.key == key), None)
    if group is None:
        raise ResourceNotFoundError(
            "Pick group", f"{key.location_key}/{key.product_key}/{key.size_key or '-'}"
        )

    if quantity <= 0 or quantity > group.total_remaining:
        raise OverAllocation(
            f"Confirmed {quantity} but the group needs {group.total_remaining}",
            details={"requested": quantity, "remaining": group.total_remaining},
        )

    result = await allocator.allocate(
        db, key.product_key, key.location_key, quantity,
        size_key=key.size_key, policy=policy,
    )
    if not result.allocations:
        raise InsufficientStock(
            f"No stock of {key.product_key} available at {key.location_key}",
            details={"requested": quantity, "skipped_batches": result.skipped},
        )

    # Reserved stock, consumed front to back
    pool = [[a.batch, a.quantity] for a in result.allocations]
    outcome = ConfirmPickResult(
        key=key,
        requested=quantity,
        allocated=0,
        shortfall=0,
    )

    for item in group.items:
        available = sum(q for _, q in pool)
        if available == 0:
            break
        pick_list = group.pick_lists[item.pick_list_id]
        share = min(item.target_qty - item.picked_qty, available)
        try:
            status = order_status(pick_list.order)
            if status in CLOSED_ORDER_STATUSES:
                raise InvalidStateTransition(
                    f"Order {pick_list.order.order_number} is {status.value}; "
                    f"pick item {item.id} no longer accepts stock",
                    details={"order_id": pick_list.order_id, "status": status.value},
                )
            given = share
            while given:
                batch, left = pool[0]
                take = min(left, given)
                add_batch_pick(item, batch, take, actor)
                pool[0][1] -= take
                given -= take
                if pool[0][1] == 0:
                    pool.pop(0)
            recompute_item(item, actor=actor)
            await touch_pick_list(db, pick_list, actor)
        except PickflowException as e:
            outcome.errors.append({
                "pick_item_id": item.id,
                "code": e.error_code,
                "message": e.message,
            })
            continue

        outcome.allocated += share
        outcome.distributions.append(
            ItemShare(item.id, item.pick_list_id, share, item.status)
        )
        emit_item_updated(db, item, "combined_pick")

    # Anything reserved but not handed out goes back
    for batch, left in pool:
        if left:
            await ledger.release(db, batch.id, left)
    outcome.shortfall = quantity - outcome.allocated

    if not outcome.distributions:
        raise InvalidStateTransition(
            "Confirmed pick could not be applied to any item",
            details={"errors": outcome.errors},
        )

    await db.flush()
    await log_activity(
        db, actor,
        action="combined_pick",
        entity_type="pick_group",
        entity_code=f"{key.location_key}/{key.product_key}",
        summary=(
            f"Picked {outcome.allocated} of {quantity} x {key.product_key} "
            f"across {len(outcome.distributions)} item(s)"
        ),
        details={
            "size_key": key.size_key,
            "shares": [
                {"pick_item_id": s.pick_item_id, "quantity": s.quantity}
                for s in outcome.distributions
            ],
            "errors": outcome.errors,
        },
    )
    logger.info(
        "Combined pick %s at %s: %d of %d distributed to %d item(s)",
        key.product_key, key.location_key, outcome.allocated, quantity,
        len(outcome.distributions),
    )
    return outcome
