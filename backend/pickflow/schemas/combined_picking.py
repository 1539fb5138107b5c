"""Pydantic schemas for combined (multi-order) picking."""

from pydantic import BaseModel, Field

from pickflow.schemas.pick_list import PickItemOut


class GroupKeyIn(BaseModel):
    location_key: str
    product_key: str
    size_key: str | None = None


class GroupItem(BaseModel):
    pick_list_id: str
    pick_list_sequence: int
    order_number: str | None
    item: PickItemOut
    remaining_qty: int


class PickGroupOut(BaseModel):
    group_key: GroupKeyIn
    description: str | None
    total_remaining: int
    items: list[GroupItem]


class ConfirmPickRequest(BaseModel):
    """Payload for POST /api/combined-picking/confirm-pick."""
    pick_list_ids: list[str] = Field(..., min_length=1)
    group_key: GroupKeyIn
    quantity: int = Field(..., ge=1)


class ItemShareOut(BaseModel):
    pick_item_id: str
    pick_list_id: str
    quantity: int
    status: str


class ItemError(BaseModel):
    pick_item_id: str
    code: str
    message: str


class ConfirmPickResponse(BaseModel):
    group_key: GroupKeyIn
    requested: int
    allocated: int
    shortfall: int
    distributions: list[ItemShareOut]
    errors: list[ItemError] = []
