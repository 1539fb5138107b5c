"""Order collaborator: the minimum of order management picking needs.

Order status moves only through ``set_order_status``, which enforces the
canonical transition table.  Picking and dispatch call it; nothing else
writes ``Order.status``.
"""

import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from pickflow.middleware.exceptions import InvalidStateTransition, ResourceNotFoundError
from pickflow.models.order import (
    Order,
    OrderLine,
    OrderStatus,
    canonical_order_status,
)

logger = logging.getLogger(__name__)

S = OrderStatus

_PRE_DISPATCH = {S.DRAFT, S.CONFIRMED, S.PICKING, S.READY_FOR_DISPATCH}

ALLOWED_TRANSITIONS: dict[OrderStatus, set[OrderStatus]] = {
    S.DRAFT: {S.CONFIRMED, S.PICKING, S.DISPATCHED, S.CANCELLED},
    S.CONFIRMED: {S.DRAFT, S.PICKING, S.READY_FOR_DISPATCH, S.DISPATCHED, S.CANCELLED},
    S.PICKING: {S.CONFIRMED, S.READY_FOR_DISPATCH, S.DISPATCHED, S.CANCELLED},
    S.READY_FOR_DISPATCH: {S.PICKING, S.DISPATCHED, S.CANCELLED},
    # Recall puts an order back to whatever it was before dispatch
    S.DISPATCHED: _PRE_DISPATCH | {S.DELIVERED},
    S.DELIVERED: set(),
    S.CANCELLED: set(),
}


async def create_order(
    db: AsyncSession,
    *,
    order_number: str,
    customer_name: str,
    lines: list[dict],
    requested_delivery_date=None,
    status: str = OrderStatus.CONFIRMED.value,
    notes: str | None = None,
) -> Order:
    order = Order(
        order_number=order_number,
        customer_name=customer_name,
        requested_delivery_date=requested_delivery_date,
        status=canonical_order_status(status).value,
        notes=notes,
        lines=[
            OrderLine(line_number=i, **line)
            for i, line in enumerate(lines, start=1)
        ],
    )
    db.add(order)
    await db.flush()
    logger.info("Created order %s with %d line(s)", order.order_number, len(order.lines))
    return order


async def get_order(db: AsyncSession, order_id: str) -> Order:
    order = (
        await db.execute(select(Order).where(Order.id == order_id))
    ).scalar_one_or_none()
    if not order:
        raise ResourceNotFoundError("Order", order_id)
    return order


def order_status(order: Order) -> OrderStatus:
    return canonical_order_status(order.status)


def set_order_status(order: Order, new_status: OrderStatus) -> OrderStatus:
    """Move ``order`` to ``new_status``; return the status it had before.

    Setting the current status again is a no-op.
    """
    current = order_status(order)
    if new_status == current:
        return current
    if new_status not in ALLOWED_TRANSITIONS[current]:
        raise InvalidStateTransition(
            f"Order {order.order_number} cannot move from {current.value} to {new_status.value}",
            details={"order_id": order.id, "from": current.value, "to": new_status.value},
        )
    order.status = new_status.value
    logger.info(
        "Order %s: %s -> %s", order.order_number, current.value, new_status.value,
        extra={"order_id": order.id},
    )
    return current
