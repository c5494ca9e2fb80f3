from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy import String, ForeignKey, Numeric, DateTime, Boolean, JSON, Integer
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional

class Base(DeclarativeBase):
    pass

class OrderStatus(str, Enum):
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"

class PaymentMethod(str, Enum):
    COD = "cod"
    CARD = "card"
    PAYPAL = "paypal"

# Allowed forward moves; delivered and cancelled are terminal
ALLOWED_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.PROCESSING: frozenset({OrderStatus.SHIPPED, OrderStatus.CANCELLED}),
    OrderStatus.SHIPPED: frozenset({OrderStatus.DELIVERED, OrderStatus.CANCELLED}),
    OrderStatus.DELIVERED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}

# Timestamp column stamped when an order enters each status
STATUS_TIMESTAMPS: dict[OrderStatus, str] = {
    OrderStatus.SHIPPED: "shipped_at",
    OrderStatus.DELIVERED: "delivered_at",
    OrderStatus.CANCELLED: "cancelled_at",
}

def can_transition(current: OrderStatus, new: OrderStatus) -> bool:
    return new in ALLOWED_TRANSITIONS[current]

def utcnow() -> datetime:
    return datetime.now(timezone.utc)

class Order(Base):
    __tablename__ = "orders"
    id: Mapped[int] = mapped_column(primary_key=True)
    order_number: Mapped[Optional[str]] = mapped_column(String(50), unique=True, index=True, nullable=True)
    # Owner lives in the auth service; stored as an opaque id
    user_id: Mapped[str] = mapped_column(String(64), index=True)
    user_email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    shipping_address: Mapped[dict] = mapped_column(JSON)
    payment_method: Mapped[str] = mapped_column(String(20))

    items_price: Mapped[Decimal] = mapped_column(Numeric(12, 2))
    shipping_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0)
    tax_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0)
    total_price: Mapped[Decimal] = mapped_column(Numeric(12, 2))

    is_paid: Mapped[bool] = mapped_column(Boolean, default=False)
    paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    # One captured payment settles at most one order
    payment_id: Mapped[Optional[str]] = mapped_column(String(100), unique=True, nullable=True)
    payment_order_ref: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    status: Mapped[str] = mapped_column(String(20), default=OrderStatus.PROCESSING.value, index=True)
    shipped_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    delivered_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    cancel_reason: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    updated_by: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, index=True)
    items: Mapped[list["OrderItem"]] = relationship(
        "OrderItem", back_populates="order", cascade="all, delete-orphan", lazy="selectin",
        order_by="OrderItem.id",
    )

    @property
    def is_delivered(self) -> bool:
        return self.status == OrderStatus.DELIVERED.value

class OrderItem(Base):
    __tablename__ = "order_items"
    id: Mapped[int] = mapped_column(primary_key=True)
    order_id: Mapped[int] = mapped_column(ForeignKey("orders.id"), index=True)
    # Catalog is a separate service; no FK
    product_id: Mapped[str] = mapped_column(String(64))
    # Snapshot taken from the catalog at checkout, never updated
    title: Mapped[str] = mapped_column(String(200))
    image: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    size: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    color: Mapped[Optional[str]] = mapped_column(String(40), nullable=True)
    quantity: Mapped[int] = mapped_column(Integer)
    unit_price: Mapped[Decimal] = mapped_column(Numeric(12, 2))
    order: Mapped[Order] = relationship("Order", back_populates="items")
