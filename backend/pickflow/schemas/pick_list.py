"""Pydantic schemas for pick lists, pick items and batch picks."""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

from pickflow.schemas.batch import BatchOut


# ── BatchPick ────────────────────────────────────────────────

class BatchPickOut(BaseModel):
    id: str
    batch_id: str
    batch_number: str | None = None
    quantity: int
    picked_by: str | None
    created_at: datetime

    model_config = {"from_attributes": True}

    @classmethod
    def from_model(cls, bp) -> "BatchPickOut":
        out = cls.model_validate(bp)
        out.batch_number = bp.batch.batch_number if bp.batch else None
        return out


# ── PickItem ─────────────────────────────────────────────────

class PickItemOut(BaseModel):
    id: str
    pick_list_id: str
    order_line_id: str | None
    position: int
    product_key: str
    size_key: str | None
    location_key: str
    description: str | None
    target_qty: int
    picked_qty: int
    status: str
    short_reason: str | None
    picked_at: datetime | None
    picked_by: str | None
    batch_picks: list[BatchPickOut] = []

    model_config = {"from_attributes": True}

    @classmethod
    def from_model(cls, item) -> "PickItemOut":
        out = cls.model_validate(item)
        out.batch_picks = [BatchPickOut.from_model(bp) for bp in item.batch_picks]
        return out


class PickItemUpdate(BaseModel):
    """Payload for PATCH /api/pick-items (legacy single-batch path)."""
    pick_item_id: str
    picked_qty: int = Field(..., ge=0)
    picked_batch_id: str | None = None
    status: Literal["pending", "picked", "short"] | None = None


class BatchQuantity(BaseModel):
    batch_id: str
    quantity: int = Field(..., ge=1)


class ReplaceBatchesRequest(BaseModel):
    """Payload for PUT /api/pick-items/{id}/batches."""
    batches: list[BatchQuantity]


class AllocateRequest(BaseModel):
    """Payload for POST /api/pick-items/{id}/allocate."""
    quantity: int | None = Field(None, ge=1)  # None = everything still needed
    any_location: bool = False
    policy: Literal["fefo", "fifo", "largest_first"] | None = None


class AllocationLine(BaseModel):
    batch_id: str
    batch_number: str
    quantity: int


class AllocateResult(BaseModel):
    item: PickItemOut
    requested: int
    allocated: int
    shortfall: int
    allocations: list[AllocationLine]


class ShortRequest(BaseModel):
    reason: str | None = Field(None, max_length=255)


class AvailableBatches(BaseModel):
    pick_item_id: str
    batches: list[BatchOut]


# ── PickList ─────────────────────────────────────────────────

class PickListSummary(BaseModel):
    id: str
    order_id: str
    order_number: str | None = None
    customer_name: str | None = None
    sequence: int
    status: str
    assigned_team: str | None
    assigned_worker: str | None
    item_count: int = 0
    picked_count: int = 0
    created_at: datetime

    model_config = {"from_attributes": True}

    @classmethod
    def from_model(cls, pl) -> "PickListSummary":
        out = cls.model_validate(pl)
        out.order_number = pl.order.order_number if pl.order else None
        out.customer_name = pl.order.customer_name if pl.order else None
        out.item_count = len(pl.items)
        out.picked_count = sum(1 for i in pl.items if i.status != "pending")
        return out


class PickListDetail(PickListSummary):
    started_at: datetime | None
    started_by: str | None
    completed_at: datetime | None
    completed_by: str | None
    trolley_info: dict | None
    notes: str | None
    items: list[PickItemOut] = []

    @classmethod
    def from_model(cls, pl) -> "PickListDetail":
        out = super().from_model(pl)
        out.items = [PickItemOut.from_model(i) for i in pl.items]
        return out


class PickListAction(BaseModel):
    """Payload for PATCH /api/pick-lists/{id}."""
    action: Literal["start", "complete"]
    trolley_info: dict | None = None


class PickListAssignment(BaseModel):
    team: str | None = Field(None, max_length=100)
    worker: str | None = Field(None, max_length=100)


class PickListReorder(BaseModel):
    pick_list_ids: list[str] = Field(..., min_length=1)
