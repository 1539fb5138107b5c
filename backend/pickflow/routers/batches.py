"""Inventory batch router.

Endpoints:
    POST /api/batches             Receive stock into a new batch
    GET  /api/batches             List batches (product / location filters)
    GET  /api/batches/{batch_id}  Batch detail
"""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from pickflow.database import get_db
from pickflow.deps import get_actor
from pickflow.schemas.batch import BatchCreate, BatchOut
from pickflow.schemas.common import PaginatedResponse
from pickflow.services import batches as batch_service

router = APIRouter()


@router.post("/", response_model=BatchOut, status_code=201)
async def receive_stock(
    body: BatchCreate,
    db: AsyncSession = Depends(get_db),
    actor: str = Depends(get_actor),
):
    batch = await batch_service.receive_stock(db, actor, **body.model_dump())
    return BatchOut.model_validate(batch)


@router.get("/", response_model=PaginatedResponse[BatchOut])
async def list_batches(
    product_key: str | None = Query(None),
    location_key: str | None = Query(None),
    in_stock: bool = Query(False),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
):
    rows, total = await batch_service.list_batches(
        db,
        product_key=product_key,
        location_key=location_key,
        in_stock_only=in_stock,
        limit=limit,
        offset=offset,
    )
    return PaginatedResponse[BatchOut](
        items=[BatchOut.model_validate(b) for b in rows],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.get("/{batch_id}", response_model=BatchOut)
async def get_batch(batch_id: str, db: AsyncSession = Depends(get_db)):
    return BatchOut.model_validate(await batch_service.get_batch(db, batch_id))
