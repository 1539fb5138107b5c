"""Pick list router.

Endpoints:
    POST   /api/pick-lists/from-order/{order_id}  Create (or fetch) an order's pick list
    GET    /api/pick-lists                        Active pick lists by sequence
    POST   /api/pick-lists/reorder                Reassign sequence order
    GET    /api/pick-lists/{id}                   Pick list with items
    PATCH  /api/pick-lists/{id}                   {action: start|complete, trolley_info?}
    PATCH  /api/pick-lists/{id}/assignment        Assign team / worker
    DELETE /api/pick-lists/{id}                   Delete (not completed; stock released)
"""

from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.ext.asyncio import AsyncSession

from pickflow.database import get_db
from pickflow.deps import get_actor
from pickflow.schemas.pick_list import (
    PickListAction,
    PickListAssignment,
    PickListDetail,
    PickListReorder,
    PickListSummary,
)
from pickflow.services import picking

router = APIRouter()


@router.post("/from-order/{order_id}", response_model=PickListDetail)
async def create_from_order(
    order_id: str,
    response: Response,
    db: AsyncSession = Depends(get_db),
    actor: str = Depends(get_actor),
):
    """Create the order's pick list; 200 with the existing list if it has one."""
    pick_list, created = await picking.create_pick_list_from_order(db, order_id, actor)
    response.status_code = 201 if created else 200
    return PickListDetail.from_model(pick_list)


@router.get("/", response_model=list[PickListSummary])
async def list_pick_lists(
    status: str | None = Query(None),
    team: str | None = Query(None),
    include_completed: bool = Query(False),
    db: AsyncSession = Depends(get_db),
):
    rows = await picking.list_pick_lists(
        db, status=status, team=team, include_completed=include_completed,
    )
    return [PickListSummary.from_model(pl) for pl in rows]


@router.post("/reorder", response_model=list[PickListSummary])
async def reorder_pick_lists(
    body: PickListReorder,
    db: AsyncSession = Depends(get_db),
    actor: str = Depends(get_actor),
):
    rows = await picking.reorder_pick_lists(db, body.pick_list_ids, actor)
    return [PickListSummary.from_model(pl) for pl in rows]


@router.get("/{pick_list_id}", response_model=PickListDetail)
async def get_pick_list(pick_list_id: str, db: AsyncSession = Depends(get_db)):
    return PickListDetail.from_model(await picking.get_pick_list(db, pick_list_id))


@router.patch("/{pick_list_id}", response_model=PickListDetail)
async def pick_list_action(
    pick_list_id: str,
    body: PickListAction,
    db: AsyncSession = Depends(get_db),
    actor: str = Depends(get_actor),
):
    if body.action == "start":
        pick_list = await picking.start_pick_list(db, pick_list_id, actor)
    else:
        pick_list = await picking.complete_pick_list(
            db, pick_list_id, actor, trolley_info=body.trolley_info,
        )
    return PickListDetail.from_model(pick_list)


@router.patch("/{pick_list_id}/assignment", response_model=PickListSummary)
async def assign_pick_list(
    pick_list_id: str,
    body: PickListAssignment,
    db: AsyncSession = Depends(get_db),
    actor: str = Depends(get_actor),
):
    pick_list = await picking.assign_pick_list(
        db, pick_list_id, actor, team=body.team, worker=body.worker,
    )
    return PickListSummary.from_model(pick_list)


@router.delete("/{pick_list_id}")
async def delete_pick_list(
    pick_list_id: str,
    db: AsyncSession = Depends(get_db),
    actor: str = Depends(get_actor),
):
    released = await picking.delete_pick_list(db, pick_list_id, actor)
    return {"deleted": True, "pick_list_id": pick_list_id, "released_qty": released}
