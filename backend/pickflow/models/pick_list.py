"""PickList, PickItem, BatchPick: the fulfillment records for one order.

A PickList is built from an order (one PickItem per order line) and owns
its items; a PickItem owns its BatchPicks.  ``PickItem.picked_qty`` is a
cached sum of its BatchPick quantities and is recomputed by the picking
service after every change to the set.

PickList lifecycle:  pending → in_progress → completed
PickItem status:     pending | picked | short
"""

import uuid
from datetime import datetime

from sqlalchemy import (
    CheckConstraint, DateTime, ForeignKey, Integer, JSON, String, Text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from pickflow.database import Base


class PickList(Base):
    __tablename__ = "pick_lists"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    # One pick list per order
    order_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("orders.id"), unique=True, nullable=False, index=True
    )
    sequence: Mapped[int] = mapped_column(Integer, nullable=False, index=True)

    # pending | in_progress | completed
    status: Mapped[str] = mapped_column(String(30), default="pending", index=True)

    # ── Assignment ───────────────────────────────────────────
    assigned_team: Mapped[str | None] = mapped_column(String(100), index=True)
    assigned_worker: Mapped[str | None] = mapped_column(String(100))

    # ── Progress ─────────────────────────────────────────────
    started_at: Mapped[datetime | None] = mapped_column(DateTime)
    started_by: Mapped[str | None] = mapped_column(String(100))
    completed_at: Mapped[datetime | None] = mapped_column(DateTime)
    completed_by: Mapped[str | None] = mapped_column(String(100))

    # Trolley/loading metadata captured at completion, e.g.
    # {"count": 3, "types": [...], "shelves": 2}
    trolley_info: Mapped[dict | None] = mapped_column(JSON)

    notes: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    # ── Relationships ────────────────────────────────────────
    order = relationship("Order", lazy="selectin")
    items = relationship(
        "PickItem",
        back_populates="pick_list",
        lazy="selectin",
        order_by="PickItem.position",
        cascade="all, delete-orphan",
    )


class PickItem(Base):
    __tablename__ = "pick_items"
    __table_args__ = (
        CheckConstraint("picked_qty >= 0", name="ck_pick_item_picked_non_negative"),
        CheckConstraint("picked_qty <= target_qty", name="ck_pick_item_not_over_target"),
    )

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    pick_list_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("pick_lists.id"), nullable=False, index=True
    )
    order_line_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("order_lines.id")
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # ── What to pick ─────────────────────────────────────────
    product_key: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    size_key: Mapped[str | None] = mapped_column(String(50))
    location_key: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    description: Mapped[str | None] = mapped_column(String(255))

    target_qty: Mapped[int] = mapped_column(Integer, nullable=False)
    picked_qty: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # pending | picked | short
    status: Mapped[str] = mapped_column(String(20), default="pending", index=True)
    short_reason: Mapped[str | None] = mapped_column(String(255))

    picked_at: Mapped[datetime | None] = mapped_column(DateTime)
    picked_by: Mapped[str | None] = mapped_column(String(100))
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    # ── Relationships ────────────────────────────────────────
    pick_list = relationship("PickList", back_populates="items")
    batch_picks = relationship(
        "BatchPick",
        back_populates="pick_item",
        lazy="selectin",
        order_by="BatchPick.created_at",
        cascade="all, delete-orphan",
    )

    @property
    def remaining_qty(self) -> int:
        return self.target_qty - self.picked_qty


class BatchPick(Base):
    """One allocation of quantity from one batch to one pick item."""
    __tablename__ = "batch_picks"
    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_batch_pick_quantity_positive"),
    )

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    pick_item_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("pick_items.id"), nullable=False, index=True
    )
    batch_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("inventory_batches.id"), nullable=False, index=True
    )
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)

    picked_by: Mapped[str | None] = mapped_column(String(100))
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    # ── Relationships ────────────────────────────────────────
    pick_item = relationship("PickItem", back_populates="batch_picks")
    batch = relationship("InventoryBatch", lazy="selectin")
