"""Pick item router.

Endpoints:
    PATCH  /api/pick-items                                 Legacy single-batch update
    PUT    /api/pick-items/{id}/batches                    Replace the item's BatchPicks
    DELETE /api/pick-items/{id}/batches/{batch_pick_id}    Undo one BatchPick
    POST   /api/pick-items/{id}/allocate                   Auto-allocate via the allocator
    POST   /api/pick-items/{id}/short                      Mark short
    POST   /api/pick-items/{id}/reopen                     Release everything, back to pending
    GET    /api/pick-items/{id}/available-batches          Candidate batches

The stock-moving endpoints honour an optional Idempotency-Key header.
"""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from pickflow.database import get_db
from pickflow.deps import get_actor
from pickflow.schemas.batch import BatchOut
from pickflow.schemas.pick_list import (
    AllocateRequest,
    AllocateResult,
    AllocationLine,
    AvailableBatches,
    PickItemOut,
    PickItemUpdate,
    ReplaceBatchesRequest,
    ShortRequest,
)
from pickflow.services import picking
from pickflow.utils import idempotency

router = APIRouter()


@router.patch("/", response_model=list[PickItemOut])
async def update_pick_item(
    body: PickItemUpdate,
    db: AsyncSession = Depends(get_db),
    actor: str = Depends(get_actor),
    idem_key: str | None = Depends(idempotency.idempotency_key),
):
    scope = f"pick-item-update:{body.pick_item_id}"
    if (replayed := await idempotency.replay(scope, idem_key)) is not None:
        return replayed

    items = await picking.update_pick_item(
        db, body.pick_item_id, actor,
        picked_qty=body.picked_qty,
        picked_batch_id=body.picked_batch_id,
        status=body.status,
    )
    result = [PickItemOut.from_model(i) for i in items]
    idempotency.remember(db, scope, idem_key, result)
    return result


@router.put("/{pick_item_id}/batches", response_model=PickItemOut)
async def replace_batches(
    pick_item_id: str,
    body: ReplaceBatchesRequest,
    db: AsyncSession = Depends(get_db),
    actor: str = Depends(get_actor),
    idem_key: str | None = Depends(idempotency.idempotency_key),
):
    scope = f"pick-item-batches:{pick_item_id}"
    if (replayed := await idempotency.replay(scope, idem_key)) is not None:
        return replayed

    item = await picking.replace_batch_picks(
        db, pick_item_id, [(b.batch_id, b.quantity) for b in body.batches], actor,
    )
    result = PickItemOut.from_model(item)
    idempotency.remember(db, scope, idem_key, result)
    return result


@router.delete("/{pick_item_id}/batches/{batch_pick_id}", response_model=PickItemOut)
async def remove_batch_pick(
    pick_item_id: str,
    batch_pick_id: str,
    db: AsyncSession = Depends(get_db),
    actor: str = Depends(get_actor),
):
    item = await picking.remove_batch_pick(db, pick_item_id, batch_pick_id, actor)
    return PickItemOut.from_model(item)


@router.post("/{pick_item_id}/allocate", response_model=AllocateResult)
async def allocate_pick_item(
    pick_item_id: str,
    body: AllocateRequest | None = None,
    db: AsyncSession = Depends(get_db),
    actor: str = Depends(get_actor),
    idem_key: str | None = Depends(idempotency.idempotency_key),
):
    body = body or AllocateRequest()
    scope = f"pick-item-allocate:{pick_item_id}"
    if (replayed := await idempotency.replay(scope, idem_key)) is not None:
        return replayed

    item, allocation = await picking.allocate_pick_item(
        db, pick_item_id, actor,
        quantity=body.quantity,
        any_location=body.any_location,
        policy=body.policy,
    )
    result = AllocateResult(
        item=PickItemOut.from_model(item),
        requested=allocation.requested,
        allocated=allocation.allocated,
        shortfall=allocation.shortfall,
        allocations=[
            AllocationLine(
                batch_id=a.batch_id,
                batch_number=a.batch.batch_number,
                quantity=a.quantity,
            )
            for a in allocation.allocations
        ],
    )
    idempotency.remember(db, scope, idem_key, result)
    return result


@router.post("/{pick_item_id}/short", response_model=PickItemOut)
async def mark_short(
    pick_item_id: str,
    body: ShortRequest | None = None,
    db: AsyncSession = Depends(get_db),
    actor: str = Depends(get_actor),
):
    reason = body.reason if body else None
    return PickItemOut.from_model(await picking.mark_short(db, pick_item_id, actor, reason))


@router.post("/{pick_item_id}/reopen", response_model=PickItemOut)
async def reopen(
    pick_item_id: str,
    db: AsyncSession = Depends(get_db),
    actor: str = Depends(get_actor),
):
    return PickItemOut.from_model(await picking.reopen_pick_item(db, pick_item_id, actor))


@router.get("/{pick_item_id}/available-batches", response_model=AvailableBatches)
async def available_batches(
    pick_item_id: str,
    any_location: bool = Query(False),
    db: AsyncSession = Depends(get_db),
):
    batches = await picking.available_batches(db, pick_item_id, any_location=any_location)
    return AvailableBatches(
        pick_item_id=pick_item_id,
        batches=[BatchOut.model_validate(b) for b in batches],
    )
