"""SQLAlchemy models for the marketplace tables the order core touches.

``businesses`` and ``products`` belong to the catalog collaborator; the
order core only reads them, except for ``products.quantity`` which it
mutates exclusively through ``inventory.InventoryLedger``. ``orders`` and
``order_items`` are owned by this service. Money is stored in integer cents.
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Uuid,
)
from sqlalchemy.orm import DeclarativeBase, mapped_column
from sqlalchemy.types import JSON


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass


class Business(Base):
    """A seller (SME) on the marketplace.

    Attributes:
        id: Public UUID primary key.
        owner_id: User id of the account that owns and operates the business.
        name: Display name, used in notification messages.
    """

    __tablename__ = "businesses"
    id = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    owner_id = mapped_column(Uuid, nullable=False, index=True)
    name = mapped_column(String(255), nullable=False)
    created_at = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)


class Product(Base):
    """Catalog product with its shared stock counter.

    Attributes:
        id: Public UUID primary key.
        business_id: Seller offering the product.
        name: Product name.
        price_cents: Current unit price in cents.
        quantity: Units available; never negative.
    """

    __tablename__ = "products"
    id = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    business_id = mapped_column(Uuid, ForeignKey("businesses.id", ondelete="CASCADE"), nullable=False, index=True)
    name = mapped_column(String(255), nullable=False)
    price_cents = mapped_column(Integer, nullable=False)
    quantity = mapped_column(Integer, nullable=False, default=0)
    created_at = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at = mapped_column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False)

    __table_args__ = (
        CheckConstraint("quantity >= 0", name="ck_products_quantity_non_negative"),
        CheckConstraint("price_cents >= 0", name="ck_products_price_non_negative"),
    )


class OrderModel(Base):
    """One order per (checkout event x seller)."""

    __tablename__ = "orders"
    id = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    consumer_id = mapped_column(Uuid, nullable=False)
    business_id = mapped_column(Uuid, ForeignKey("businesses.id"), nullable=False)
    total_cents = mapped_column(Integer, nullable=False)
    status = mapped_column(String(32), nullable=False, default="pending")
    delivery_method = mapped_column(String(20), nullable=False)
    payment_status = mapped_column(String(20), nullable=False, default="pending")
    created_at = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)

    __table_args__ = (
        CheckConstraint("delivery_method IN ('pickup', 'delivery')", name="ck_orders_delivery_method"),
        CheckConstraint("payment_status IN ('pending', 'completed', 'failed')", name="ck_orders_payment_status"),
        Index("idx_orders_consumer", "consumer_id"),
        Index("idx_orders_business", "business_id"),
        Index("idx_orders_status", "status"),
    )


class OrderItemModel(Base):
    """A product line within an order; the price is a snapshot taken at purchase."""

    __tablename__ = "order_items"
    id = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    order_id = mapped_column(Uuid, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = mapped_column(Uuid, ForeignKey("products.id"), nullable=False)
    # keeps the cart order of lines stable on reads
    position = mapped_column(Integer, nullable=False, default=0)
    quantity = mapped_column(Integer, nullable=False)
    price_cents_at_purchase = mapped_column(Integer, nullable=False)
    created_at = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_order_items_quantity_positive"),
    )


class IdempotencyKey(Base):
    """Persisted idempotency records to deduplicate cart submissions.

    Attributes:
        key: Unique idempotency key provided by the client.
        request_hash: Canonical SHA-256 hex digest of the original request.
        response_status: HTTP status stored once the request completed,
            0 while it is still in flight.
        response_body: JSON body returned for the original request.
    """

    __tablename__ = "idempotency_keys"
    key = mapped_column(String(200), primary_key=True)
    request_hash = mapped_column(String(64), nullable=False)
    response_status = mapped_column(Integer, nullable=False, default=0)
    response_body = mapped_column(JSON, nullable=False, default=dict)
    created_at = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)
