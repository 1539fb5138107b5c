"""Order router (thin collaborator for picking and dispatch).

Endpoints:
    POST /api/orders            Create an order with lines
    GET  /api/orders/{order_id} Order detail
"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from pickflow.database import get_db
from pickflow.deps import get_actor
from pickflow.schemas.order import OrderCreate, OrderOut
from pickflow.services import orders as order_service
from pickflow.utils.activity import log_activity

router = APIRouter()


@router.post("/", response_model=OrderOut, status_code=201)
async def create_order(
    body: OrderCreate,
    db: AsyncSession = Depends(get_db),
    actor: str = Depends(get_actor),
):
    order = await order_service.create_order(
        db,
        order_number=body.order_number,
        customer_name=body.customer_name,
        requested_delivery_date=body.requested_delivery_date,
        status=body.status,
        notes=body.notes,
        lines=[line.model_dump() for line in body.lines],
    )
    await log_activity(
        db, actor,
        action="created",
        entity_type="order",
        entity_id=order.id,
        entity_code=order.order_number,
        summary=f"Order {order.order_number} for {order.customer_name}",
    )
    return OrderOut.model_validate(order)


@router.get("/{order_id}", response_model=OrderOut)
async def get_order(order_id: str, db: AsyncSession = Depends(get_db)):
    return OrderOut.model_validate(await order_service.get_order(db, order_id))
