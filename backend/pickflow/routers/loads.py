"""Load (delivery run) router.

Endpoints:
    POST   /api/loads                               Create a load (optionally with orders)
    GET    /api/loads                               List loads with fill percentage
    GET    /api/loads/{id}                          Load detail
    PATCH  /api/loads/{id}                          Update date / carrier / capacity / name
    DELETE /api/loads/{id}                          Delete (empty, not dispatched)
    POST   /api/loads/{id}/orders                   Add an order
    DELETE /api/loads/{id}/orders/{order_id}        Remove an order
    POST   /api/loads/{id}/reorder                  Reorder stops
    PATCH  /api/loads/{id}/items/{item_id}          Set trolley count
    POST   /api/loads/{id}/dispatch                 Dispatch {force?, override_reason?}
    POST   /api/loads/{id}/recall                   Recall an in-transit load
    POST   /api/loads/{id}/complete                 Mark delivered
"""

from datetime import date

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from pickflow.database import get_db
from pickflow.deps import get_actor
from pickflow.models.delivery_run import DeliveryRun
from pickflow.schemas.load import (
    AddOrderRequest,
    DispatchRequest,
    DispatchResponse,
    LoadCreate,
    LoadItemOut,
    LoadOut,
    LoadUpdate,
    RecallResponse,
    ReorderItemsRequest,
    TrolleyCountUpdate,
)
from pickflow.services import dispatch as dispatch_service

router = APIRouter()


def _load_out(load: DeliveryRun) -> LoadOut:
    out = LoadOut.model_validate(load)
    summary = dispatch_service.summarize(load)
    out.trolley_total = summary.trolley_total
    out.capacity = summary.capacity
    out.fill_percentage = summary.fill_percentage
    out.order_count = summary.order_count
    out.items = [LoadItemOut.from_model(i) for i in load.items]
    return out


@router.post("/", response_model=LoadOut, status_code=201)
async def create_load(
    body: LoadCreate,
    db: AsyncSession = Depends(get_db),
    actor: str = Depends(get_actor),
):
    load = await dispatch_service.create_load(db, actor, **body.model_dump())
    return _load_out(load)


@router.get("/", response_model=list[LoadOut])
async def list_loads(
    status: str | None = Query(None),
    run_date: date | None = Query(None),
    db: AsyncSession = Depends(get_db),
):
    loads = await dispatch_service.list_loads(db, status=status, run_date=run_date)
    return [_load_out(load) for load in loads]


@router.get("/{load_id}", response_model=LoadOut)
async def get_load(load_id: str, db: AsyncSession = Depends(get_db)):
    return _load_out(await dispatch_service.get_load(db, load_id))


@router.patch("/{load_id}", response_model=LoadOut)
async def update_load(
    load_id: str,
    body: LoadUpdate,
    db: AsyncSession = Depends(get_db),
    actor: str = Depends(get_actor),
):
    changes = body.model_dump(exclude_unset=True)
    return _load_out(await dispatch_service.update_load(db, load_id, actor, changes))


@router.delete("/{load_id}")
async def delete_load(
    load_id: str,
    db: AsyncSession = Depends(get_db),
    actor: str = Depends(get_actor),
):
    await dispatch_service.delete_load(db, load_id, actor)
    return {"deleted": True, "load_id": load_id}


@router.post("/{load_id}/orders", response_model=LoadOut, status_code=201)
async def add_order(
    load_id: str,
    body: AddOrderRequest,
    db: AsyncSession = Depends(get_db),
    actor: str = Depends(get_actor),
):
    await dispatch_service.add_order(
        db, load_id, body.order_id, actor, trolley_count=body.trolley_count,
    )
    return _load_out(await dispatch_service.get_load(db, load_id))


@router.delete("/{load_id}/orders/{order_id}", response_model=LoadOut)
async def remove_order(
    load_id: str,
    order_id: str,
    db: AsyncSession = Depends(get_db),
    actor: str = Depends(get_actor),
):
    return _load_out(await dispatch_service.remove_order(db, load_id, order_id, actor))


@router.post("/{load_id}/reorder", response_model=LoadOut)
async def reorder_items(
    load_id: str,
    body: ReorderItemsRequest,
    db: AsyncSession = Depends(get_db),
    actor: str = Depends(get_actor),
):
    return _load_out(await dispatch_service.reorder_items(db, load_id, body.item_ids, actor))


@router.patch("/{load_id}/items/{item_id}", response_model=LoadOut)
async def set_trolley_count(
    load_id: str,
    item_id: str,
    body: TrolleyCountUpdate,
    db: AsyncSession = Depends(get_db),
    actor: str = Depends(get_actor),
):
    load = await dispatch_service.set_trolley_count(
        db, load_id, item_id, body.trolley_count, actor,
    )
    return _load_out(load)


@router.post("/{load_id}/dispatch", response_model=DispatchResponse)
async def dispatch_load(
    load_id: str,
    body: DispatchRequest | None = None,
    db: AsyncSession = Depends(get_db),
    actor: str = Depends(get_actor),
):
    body = body or DispatchRequest()
    result = await dispatch_service.dispatch(
        db, load_id, actor, force=body.force, override_reason=body.override_reason,
    )
    return DispatchResponse(
        load=_load_out(result.load),
        orders_dispatched=result.orders_dispatched,
        already_dispatched=result.already_dispatched,
        forced=result.forced,
        not_ready=result.not_ready,
    )


@router.post("/{load_id}/recall", response_model=RecallResponse)
async def recall_load(
    load_id: str,
    db: AsyncSession = Depends(get_db),
    actor: str = Depends(get_actor),
):
    load, recalled = await dispatch_service.recall(db, load_id, actor)
    return RecallResponse(load=_load_out(load), orders_recalled=recalled)


@router.post("/{load_id}/complete", response_model=LoadOut)
async def complete_load(
    load_id: str,
    db: AsyncSession = Depends(get_db),
    actor: str = Depends(get_actor),
):
    return _load_out(await dispatch_service.complete_load(db, load_id, actor))
