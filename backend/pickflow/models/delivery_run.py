"""DeliveryRun (load) and LoadItem: a vehicle's worth of orders.

A DeliveryRun references orders through its LoadItems but never owns them;
order status is moved as a side effect of dispatch, recall and completion.
``LoadItem.previous_order_status`` remembers what the order was before
dispatch so a recall can put it back.

Lifecycle:  planned → loading → in_transit → completed
            in_transit → planned (recall)
"""

import uuid
from datetime import date, datetime

from sqlalchemy import (
    Date, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from pickflow.database import Base

# Loads in these states hold their orders; an order may sit on one at a time
ACTIVE_LOAD_STATUSES = ("planned", "loading", "in_transit")


class DeliveryRun(Base):
    __tablename__ = "delivery_runs"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    load_code: Mapped[str] = mapped_column(
        String(50), unique=True, nullable=False, index=True
    )
    name: Mapped[str | None] = mapped_column(String(255))
    run_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)

    # planned | loading | in_transit | completed
    status: Mapped[str] = mapped_column(String(30), default="planned", index=True)

    # ── Vehicle ──────────────────────────────────────────────
    carrier_name: Mapped[str | None] = mapped_column(String(255))
    vehicle_registration: Mapped[str | None] = mapped_column(String(50))
    vehicle_capacity: Mapped[int | None] = mapped_column(Integer)
    display_order: Mapped[int] = mapped_column(Integer, default=0)

    # ── Dispatch ─────────────────────────────────────────────
    dispatched_at: Mapped[datetime | None] = mapped_column(DateTime)
    dispatched_by: Mapped[str | None] = mapped_column(String(100))
    dispatch_override_reason: Mapped[str | None] = mapped_column(Text)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime)

    notes: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    # ── Relationships ────────────────────────────────────────
    items = relationship(
        "LoadItem",
        back_populates="delivery_run",
        lazy="selectin",
        order_by="LoadItem.sequence_number",
        cascade="all, delete-orphan",
    )


class LoadItem(Base):
    __tablename__ = "load_items"
    __table_args__ = (
        UniqueConstraint("delivery_run_id", "order_id", name="uq_load_item_order"),
    )

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    delivery_run_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("delivery_runs.id"), nullable=False, index=True
    )
    order_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("orders.id"), nullable=False, index=True
    )
    sequence_number: Mapped[int] = mapped_column(Integer, nullable=False)
    trolley_count: Mapped[int] = mapped_column(Integer, default=0)

    # pending | in_transit | delivered
    status: Mapped[str] = mapped_column(String(30), default="pending")
    previous_order_status: Mapped[str | None] = mapped_column(String(30))

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    # ── Relationships ────────────────────────────────────────
    delivery_run = relationship("DeliveryRun", back_populates="items")
    order = relationship("Order", lazy="selectin")
