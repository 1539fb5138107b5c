"""Pydantic schemas for orders."""

from datetime import date, datetime

from pydantic import BaseModel, Field, field_validator

from pickflow.models.order import canonical_order_status


class OrderLineIn(BaseModel):
    product_key: str = Field(..., min_length=1, max_length=100)
    size_key: str | None = Field(None, max_length=50)
    location_key: str = Field(..., min_length=1, max_length=100)
    description: str | None = Field(None, max_length=255)
    quantity: int = Field(..., ge=1)


class OrderCreate(BaseModel):
    """Payload for POST /api/orders."""
    order_number: str = Field(..., min_length=1, max_length=50)
    customer_name: str = Field(..., min_length=1, max_length=255)
    requested_delivery_date: date | None = None
    # Accepts canonical and legacy status names ("packed", "ready", ...)
    status: str = "confirmed"
    notes: str | None = None
    lines: list[OrderLineIn] = Field(..., min_length=1)

    @field_validator("status")
    @classmethod
    def _known_status(cls, v: str) -> str:
        return canonical_order_status(v).value


class OrderLineOut(BaseModel):
    id: str
    line_number: int
    product_key: str
    size_key: str | None
    location_key: str
    description: str | None
    quantity: int

    model_config = {"from_attributes": True}


class OrderOut(BaseModel):
    id: str
    order_number: str
    customer_name: str
    requested_delivery_date: date | None
    status: str
    notes: str | None
    created_at: datetime
    lines: list[OrderLineOut] = []

    model_config = {"from_attributes": True}
