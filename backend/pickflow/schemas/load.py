"""Pydantic schemas for loads (delivery runs)."""

from datetime import date, datetime
from typing import Literal

from pydantic import BaseModel, Field


class LoadCreate(BaseModel):
    """Payload for POST /api/loads."""
    run_date: date
    name: str | None = Field(None, max_length=255)
    carrier_name: str | None = Field(None, max_length=255)
    vehicle_registration: str | None = Field(None, max_length=50)
    vehicle_capacity: int | None = Field(None, ge=1)
    notes: str | None = None
    order_ids: list[str] = []


class LoadUpdate(BaseModel):
    """Payload for PATCH /api/loads/{id}.  Only provided fields change."""
    run_date: date | None = None
    name: str | None = Field(None, max_length=255)
    carrier_name: str | None = Field(None, max_length=255)
    vehicle_registration: str | None = Field(None, max_length=50)
    vehicle_capacity: int | None = Field(None, ge=1)
    display_order: int | None = None
    notes: str | None = None
    status: Literal["planned", "loading"] | None = None


class AddOrderRequest(BaseModel):
    order_id: str
    trolley_count: int | None = Field(None, ge=0)


class ReorderItemsRequest(BaseModel):
    item_ids: list[str] = Field(..., min_length=1)


class TrolleyCountUpdate(BaseModel):
    trolley_count: int = Field(..., ge=0)


class DispatchRequest(BaseModel):
    force: bool = False
    override_reason: str | None = Field(None, max_length=1000)


class LoadItemOut(BaseModel):
    id: str
    order_id: str
    order_number: str | None = None
    customer_name: str | None = None
    order_status: str | None = None
    sequence_number: int
    trolley_count: int
    status: str

    model_config = {"from_attributes": True}

    @classmethod
    def from_model(cls, item) -> "LoadItemOut":
        out = cls.model_validate(item)
        if item.order is not None:
            out.order_number = item.order.order_number
            out.customer_name = item.order.customer_name
            out.order_status = item.order.status
        return out


class LoadOut(BaseModel):
    id: str
    load_code: str
    name: str | None
    run_date: date
    status: str
    carrier_name: str | None
    vehicle_registration: str | None
    vehicle_capacity: int | None
    display_order: int
    dispatched_at: datetime | None
    dispatched_by: str | None
    dispatch_override_reason: str | None
    completed_at: datetime | None
    notes: str | None
    created_at: datetime
    trolley_total: int = 0
    capacity: int = 0
    fill_percentage: float = 0.0
    order_count: int = 0
    items: list[LoadItemOut] = []

    model_config = {"from_attributes": True}


class DispatchResponse(BaseModel):
    load: LoadOut
    orders_dispatched: int
    already_dispatched: bool
    forced: bool
    not_ready: list[dict] = []


class RecallResponse(BaseModel):
    load: LoadOut
    orders_recalled: int
