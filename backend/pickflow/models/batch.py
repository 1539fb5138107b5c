"""InventoryBatch: a received quantity of one product/size at one location.

``available_quantity`` is the ledger balance.  It is only ever changed by
``services.ledger.reserve`` / ``release`` (single conditional UPDATE), and
the CHECK constraint backs the never-negative rule at the database level.

Lifecycle:  active → depleted → (active again on release) | archived
"""

import uuid
from datetime import date, datetime

from sqlalchemy import CheckConstraint, Date, DateTime, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from pickflow.database import Base


class InventoryBatch(Base):
    __tablename__ = "inventory_batches"
    __table_args__ = (
        CheckConstraint("available_quantity >= 0", name="ck_batch_available_non_negative"),
    )

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    batch_number: Mapped[str] = mapped_column(
        String(50), unique=True, nullable=False, index=True
    )

    # ── Stock identity ────────────────────────────────────────
    product_key: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    size_key: Mapped[str | None] = mapped_column(String(50), index=True)
    location_key: Mapped[str] = mapped_column(String(100), nullable=False, index=True)

    # ── Quantities ────────────────────────────────────────────
    initial_quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    available_quantity: Mapped[int] = mapped_column(Integer, nullable=False)

    # ── Rotation dates (allocation policy ordering) ───────────
    received_at: Mapped[date] = mapped_column(Date, default=date.today, nullable=False)
    expires_at: Mapped[date | None] = mapped_column(Date)

    # ── Status ───────────────────────────────────────────────
    # active | archived
    status: Mapped[str] = mapped_column(String(30), default="active", index=True)

    notes: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )
