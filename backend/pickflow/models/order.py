"""Order: the sales order a pick list is built from.

Orders are owned by an external order-management system; this service only
keeps what picking and dispatch need: the lines and the canonical status
that picking and dispatch move forward.
"""

import enum
import uuid
from datetime import date, datetime

from sqlalchemy import Date, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from pickflow.database import Base


class OrderStatus(str, enum.Enum):
    DRAFT = "draft"
    CONFIRMED = "confirmed"
    PICKING = "picking"
    READY_FOR_DISPATCH = "ready_for_dispatch"
    DISPATCHED = "dispatched"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


# Presentation-layer synonyms seen on older clients and imports.  Core code
# only compares against OrderStatus values.
LEGACY_ORDER_STATUS_MAP: dict[str, OrderStatus] = {
    "draft": OrderStatus.DRAFT,
    "pending": OrderStatus.CONFIRMED,
    "confirmed": OrderStatus.CONFIRMED,
    "processing": OrderStatus.PICKING,
    "picking": OrderStatus.PICKING,
    "ready": OrderStatus.READY_FOR_DISPATCH,
    "packed": OrderStatus.READY_FOR_DISPATCH,
    "ready_for_dispatch": OrderStatus.READY_FOR_DISPATCH,
    "dispatched": OrderStatus.DISPATCHED,
    "in_transit": OrderStatus.DISPATCHED,
    "delivered": OrderStatus.DELIVERED,
    "cancelled": OrderStatus.CANCELLED,
}


def canonical_order_status(value: str) -> OrderStatus:
    """Map any known status string (canonical or legacy) to OrderStatus."""
    try:
        return LEGACY_ORDER_STATUS_MAP[value.strip().lower()]
    except KeyError:
        raise ValueError(f"Unknown order status: {value!r}") from None


class Order(Base):
    __tablename__ = "orders"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    order_number: Mapped[str] = mapped_column(
        String(50), unique=True, nullable=False, index=True
    )
    customer_name: Mapped[str] = mapped_column(String(255), nullable=False)
    requested_delivery_date: Mapped[date | None] = mapped_column(Date)

    # draft | confirmed | picking | ready_for_dispatch | dispatched | delivered | cancelled
    status: Mapped[str] = mapped_column(
        String(30), default=OrderStatus.CONFIRMED.value, index=True
    )

    notes: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    # ── Relationships ────────────────────────────────────────
    lines = relationship(
        "OrderLine",
        back_populates="order",
        lazy="selectin",
        order_by="OrderLine.line_number",
        cascade="all, delete-orphan",
    )


class OrderLine(Base):
    __tablename__ = "order_lines"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    order_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("orders.id"), nullable=False, index=True
    )
    line_number: Mapped[int] = mapped_column(Integer, nullable=False)

    product_key: Mapped[str] = mapped_column(String(100), nullable=False)
    size_key: Mapped[str | None] = mapped_column(String(50))
    # Where the product is expected to be picked from
    location_key: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str | None] = mapped_column(String(255))
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)

    order = relationship("Order", back_populates="lines")
