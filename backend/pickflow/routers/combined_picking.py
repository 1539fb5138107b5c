"""Combined picking router.

Endpoints:
    GET  /api/combined-picking?ids=...           Pending items grouped by location/product/size
    POST /api/combined-picking/confirm-pick      Allocate once, distribute oldest order first
"""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from pickflow.database import get_db
from pickflow.deps import get_actor
from pickflow.schemas.combined_picking import (
    ConfirmPickRequest,
    ConfirmPickResponse,
    GroupItem,
    GroupKeyIn,
    ItemError,
    ItemShareOut,
    PickGroupOut,
)
from pickflow.schemas.pick_list import PickItemOut
from pickflow.services import combined_picking
from pickflow.services.combined_picking import GroupKey
from pickflow.utils import idempotency

router = APIRouter()


def _split_ids(ids: list[str]) -> list[str]:
    """Accept ?ids=a,b and ?ids=a&ids=b alike, keeping first-seen order."""
    seen: dict[str, None] = {}
    for chunk in ids:
        for pid in chunk.split(","):
            if pid.strip():
                seen.setdefault(pid.strip(), None)
    return list(seen)


@router.get("/", response_model=list[PickGroupOut])
async def get_groups(
    ids: list[str] = Query(..., description="Pick list ids, comma separated or repeated"),
    db: AsyncSession = Depends(get_db),
):
    groups = await combined_picking.get_groups(db, _split_ids(ids))
    return [
        PickGroupOut(
            group_key=GroupKeyIn(
                location_key=g.key.location_key,
                product_key=g.key.product_key,
                size_key=g.key.size_key,
            ),
            description=g.description,
            total_remaining=g.total_remaining,
            items=[
                GroupItem(
                    pick_list_id=item.pick_list_id,
                    pick_list_sequence=g.pick_lists[item.pick_list_id].sequence,
                    order_number=g.pick_lists[item.pick_list_id].order.order_number,
                    item=PickItemOut.from_model(item),
                    remaining_qty=item.target_qty - item.picked_qty,
                )
                for item in g.items
            ],
        )
        for g in groups
    ]


@router.post("/confirm-pick", response_model=ConfirmPickResponse)
async def confirm_pick(
    body: ConfirmPickRequest,
    db: AsyncSession = Depends(get_db),
    actor: str = Depends(get_actor),
    idem_key: str | None = Depends(idempotency.idempotency_key),
):
    scope = "confirm-pick"
    if (replayed := await idempotency.replay(scope, idem_key)) is not None:
        return replayed

    outcome = await combined_picking.confirm_pick(
        db,
        _split_ids(body.pick_list_ids),
        GroupKey(
            location_key=body.group_key.location_key,
            product_key=body.group_key.product_key,
            size_key=body.group_key.size_key,
        ),
        body.quantity,
        actor,
    )
    result = ConfirmPickResponse(
        group_key=body.group_key,
        requested=outcome.requested,
        allocated=outcome.allocated,
        shortfall=outcome.shortfall,
        distributions=[
            ItemShareOut(
                pick_item_id=s.pick_item_id,
                pick_list_id=s.pick_list_id,
                quantity=s.quantity,
                status=s.status,
            )
            for s in outcome.distributions
        ],
        errors=[ItemError(**e) for e in outcome.errors],
    )
    idempotency.remember(db, scope, idem_key, result)
    return result
