from sqlalchemy import (
    Boolean,
    String,
    Text,
    DateTime,
    CheckConstraint,
    UniqueConstraint,
    Index,
    ForeignKey,
    Float,
    Integer,
    JSON,
    Uuid,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.ext.declarative import declarative_base
from typing import Optional, List
from datetime import datetime, timezone
import uuid

Base = declarative_base()

JSONType = JSON().with_variant(JSONB(), "postgresql")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; treat them as UTC"""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class UserProfile(Base):
    """
    Local mirror of the external user provider.
    Only used for role fallback and for naming actors on archived orders.
    """
    __tablename__ = "user_profiles"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, unique=True, nullable=False)
    username: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    display_name: Mapped[Optional[str]] = mapped_column(String(200))
    email: Mapped[Optional[str]] = mapped_column(String(255))
    phone_number: Mapped[Optional[str]] = mapped_column(String(20))
    role: Mapped[str] = mapped_column(String(50), default="user", nullable=False)  # "admin", "finance manager", "supplier", "user"

    created_at: Mapped[datetime] = mapped_column(DateTime(True), default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(True), default=utcnow, onupdate=utcnow, nullable=False)


class SupplierDiscount(Base):
    """
    Quantity-tiered discount offered by a supplier on one of its products
    """
    __tablename__ = "supplier_discounts"
    __table_args__ = (
        CheckConstraint("min_quantity >= 1", name="discount_min_quantity_check"),
        CheckConstraint("discount_percent >= 0 AND discount_percent <= 100", name="discount_percent_range_check"),
        Index("ix_supplier_discounts_supplier_product", "supplier_id", "product_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    supplier_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    product_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)

    min_quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    discount_percent: Mapped[float] = mapped_column(Float, nullable=False)
    note: Mapped[Optional[str]] = mapped_column(String(400))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(True), default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(True), default=utcnow, onupdate=utcnow, nullable=False)


class AdminOrder(Base):
    """
    Procurement order placed by an admin against one or more suppliers
    """
    __tablename__ = "admin_orders"
    __table_args__ = (
        CheckConstraint("total_cost >= 0", name="admin_order_total_cost_check"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    total_cost: Mapped[float] = mapped_column(Float, nullable=False)  # net, after discounts
    discount_total: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    contact: Mapped[str] = mapped_column(String(255), nullable=False)
    payment_method: Mapped[str] = mapped_column(String(50), default="Cash Payment", nullable=False)
    slip_url: Mapped[Optional[str]] = mapped_column(String(500))
    status: Mapped[str] = mapped_column(String(20), default="Pending", nullable=False)  # "Pending", "Ordered", "Declined", "Cancelled"
    notes: Mapped[Optional[str]] = mapped_column(Text)
    created_by: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid)

    created_at: Mapped[datetime] = mapped_column(DateTime(True), default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(True), default=utcnow, onupdate=utcnow, nullable=False)

    items: Mapped[List["AdminOrderItem"]] = relationship(
        "AdminOrderItem",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="AdminOrderItem.position"
    )


class AdminOrderItem(Base):
    """
    One line of a procurement order, with the pricing snapshot taken at creation
    """
    __tablename__ = "admin_order_items"
    __table_args__ = (
        CheckConstraint("quantity > 0", name="admin_order_item_quantity_check"),
        UniqueConstraint("order_id", "position", name="unique_admin_order_item_position"),
        Index("ix_admin_order_items_order_supplier", "order_id", "supplier_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    order_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("admin_orders.id", ondelete="CASCADE"),
        nullable=False
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False)

    product_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    supplier_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    unit_price: Mapped[float] = mapped_column(Float, nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)

    # Pricing snapshot
    line_subtotal: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    discount_percent: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    discount_value: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    line_total: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    applied_discount_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid)

    supplier_status: Mapped[str] = mapped_column(String(20), default="Pending", nullable=False)  # "Pending", "Accepted", "Declined"

    order: Mapped["AdminOrder"] = relationship("AdminOrder", back_populates="items")


class AdminCancelledOrder(Base):
    """
    Archived snapshot of a procurement order removed by cancel or delete
    """
    __tablename__ = "admin_cancelled_orders"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    original_order_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid)

    supplier_label: Mapped[str] = mapped_column(String(200), default="N/A", nullable=False)
    supplier_ids: Mapped[Optional[list]] = mapped_column(JSONType)
    items: Mapped[list] = mapped_column(JSONType, nullable=False)

    total_cost: Mapped[float] = mapped_column(Float, nullable=False)
    discount_total: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    payment_method: Mapped[str] = mapped_column(String(50), default="Cash Payment", nullable=False)
    contact: Mapped[str] = mapped_column(String(255), default="N/A", nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(Text)
    status: Mapped[str] = mapped_column(String(20), default="Cancelled", nullable=False)
    reason: Mapped[str] = mapped_column(String(50), default="cancelled", nullable=False)  # "cancelled", "deleted"

    cancelled_at: Mapped[datetime] = mapped_column(DateTime(True), default=utcnow, nullable=False)
    cancelled_by: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid)
    cancelled_by_name: Mapped[Optional[str]] = mapped_column(String(200))

    created_at: Mapped[datetime] = mapped_column(DateTime(True), default=utcnow, nullable=False)


class CustomerOrder(Base):
    """
    Retail order placed by a customer
    """
    __tablename__ = "orders"
    __table_args__ = (
        CheckConstraint("total_amount >= 0", name="order_total_amount_check"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, index=True)

    contact: Mapped[str] = mapped_column(String(255), nullable=False)
    payment_method: Mapped[str] = mapped_column(String(50), nullable=False)  # "Pay Online", "Pay Later"
    items: Mapped[list] = mapped_column(JSONType, nullable=False)  # [{product_id, product_name, quantity, price}]
    total_amount: Mapped[float] = mapped_column(Float, nullable=False)

    status: Mapped[str] = mapped_column(String(20), default="Pending", nullable=False)  # "Pending", "Confirmed", "Canceled"
    cancel_reason: Mapped[Optional[str]] = mapped_column(String(500))
    stripe_session_id: Mapped[Optional[str]] = mapped_column(String(200), unique=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(True), default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(True), default=utcnow, onupdate=utcnow, nullable=False)


class Payment(Base):
    """
    One payment attempt against an order, by card (Stripe) or bank slip
    """
    __tablename__ = "payments"
    __table_args__ = (
        UniqueConstraint("order_id", "payment_ref", "method", name="unique_order_payment_method"),
        UniqueConstraint("stripe_payment_intent_id", name="unique_stripe_payment_intent"),
        Index("ix_payments_order_method", "order_id", "method"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    payment_ref: Mapped[str] = mapped_column(String(100), nullable=False)
    payment_name: Mapped[str] = mapped_column(String(255), nullable=False)

    # Either a customer order or a procurement order, so no foreign key
    order_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, index=True)
    user_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid)
    supplier_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, index=True)

    method: Mapped[str] = mapped_column(String(20), nullable=False)  # "stripe", "slip"
    payment_status: Mapped[str] = mapped_column(String(30), default="pending", nullable=False, index=True)
    amount: Mapped[Optional[float]] = mapped_column(Float)  # minor units for stripe, major units for slip
    currency: Mapped[str] = mapped_column(String(10), default="lkr", nullable=False)
    customer_email: Mapped[Optional[str]] = mapped_column(String(255))
    description: Mapped[Optional[str]] = mapped_column(String(500))

    # Stripe details
    stripe_session_id: Mapped[Optional[str]] = mapped_column(String(200))
    stripe_payment_intent_id: Mapped[Optional[str]] = mapped_column(String(200))
    card_brand: Mapped[Optional[str]] = mapped_column(String(50))
    card_last4: Mapped[Optional[str]] = mapped_column(String(4))
    receipt_url: Mapped[Optional[str]] = mapped_column(String(500))

    # Slip details
    slip_url: Mapped[Optional[str]] = mapped_column(String(500))
    slip_original_name: Mapped[Optional[str]] = mapped_column(String(255))
    slip_uploaded_at: Mapped[Optional[datetime]] = mapped_column(DateTime(True))

    payment_metadata: Mapped[Optional[dict]] = mapped_column(JSONType)

    created_at: Mapped[datetime] = mapped_column(DateTime(True), default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(True), default=utcnow, onupdate=utcnow, nullable=False)


class Notification(Base):
    """
    Role-addressed in-app notification
    """
    __tablename__ = "notifications"
    __table_args__ = (
        UniqueConstraint("recipient_role", "dedupe_key", name="unique_role_dedupe_key"),
        Index("ix_notifications_role_created", "recipient_role", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    recipient_role: Mapped[str] = mapped_column(String(50), nullable=False)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    message: Mapped[str] = mapped_column(String(1000), nullable=False)
    type: Mapped[str] = mapped_column(String(120), default="general", nullable=False)
    status: Mapped[str] = mapped_column(String(20), default="unread", nullable=False)  # "unread", "read"
    dedupe_key: Mapped[Optional[str]] = mapped_column(String(300))
    notification_metadata: Mapped[Optional[dict]] = mapped_column(JSONType)

    created_at: Mapped[datetime] = mapped_column(DateTime(True), default=utcnow, nullable=False)
