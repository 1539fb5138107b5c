"""Pydantic schemas for inventory batches."""

from datetime import date, datetime

from pydantic import BaseModel, Field, model_validator


class BatchCreate(BaseModel):
    """Payload for POST /api/batches (stock receipt)."""
    product_key: str = Field(..., min_length=1, max_length=100)
    size_key: str | None = Field(None, max_length=50)
    location_key: str = Field(..., min_length=1, max_length=100)
    quantity: int = Field(..., ge=1)
    batch_number: str | None = Field(None, max_length=50)
    received_at: date | None = None
    expires_at: date | None = None
    notes: str | None = None

    @model_validator(mode="after")
    def _expiry_after_receipt(self):
        if self.expires_at and self.received_at and self.expires_at < self.received_at:
            raise ValueError("expires_at cannot be before received_at")
        return self


class BatchOut(BaseModel):
    id: str
    batch_number: str
    product_key: str
    size_key: str | None
    location_key: str
    initial_quantity: int
    available_quantity: int
    received_at: date
    expires_at: date | None
    status: str
    created_at: datetime

    model_config = {"from_attributes": True}
