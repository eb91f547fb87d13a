"""Pydantic schemas for the orders API.

Request schemas validate the payload shape (the domain re-checks the
business rules); read schemas are the JSON projections returned to
clients.
"""

import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from .domain import DeliveryMethod, Order, OrderStatus, PaymentStatus


class CartItemIn(BaseModel):
    """Input schema for a single cart line.

    Attributes:
        product_id: UUID of the product.
        quantity: Positive integer indicating units requested.
    """

    model_config = ConfigDict(extra="forbid")

    product_id: uuid.UUID
    quantity: int = Field(ge=1)


class CreateOrderDTO(BaseModel):
    """Schema for submitting a cart.

    Attributes:
        items: At least one cart line.
        delivery_method: ``pickup`` or ``delivery``.
    """

    model_config = ConfigDict(extra="forbid")

    items: list[CartItemIn] = Field(min_length=1)
    delivery_method: DeliveryMethod


class StatusUpdateDTO(BaseModel):
    model_config = ConfigDict(extra="forbid")

    status: OrderStatus


class OrderItemReadDTO(BaseModel):
    id: uuid.UUID
    product_id: uuid.UUID
    product_name: Optional[str] = None
    quantity: int
    price_cents_at_purchase: int


class OrderReadDTO(BaseModel):
    id: uuid.UUID
    consumer_id: uuid.UUID
    business_id: uuid.UUID
    business_name: Optional[str] = None
    total_cents: int
    status: OrderStatus
    delivery_method: DeliveryMethod
    payment_status: PaymentStatus
    items: list[OrderItemReadDTO] = []
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_domain(cls, order: Order) -> "OrderReadDTO":
        return cls(
            id=order.id,
            consumer_id=order.consumer_id,
            business_id=order.business_id,
            business_name=order.business_name,
            total_cents=order.total_cents,
            status=order.status,
            delivery_method=order.delivery_method,
            payment_status=order.payment_status,
            items=[
                OrderItemReadDTO(
                    id=i.id,
                    product_id=i.product_id,
                    product_name=i.product_name,
                    quantity=i.quantity,
                    price_cents_at_purchase=i.price_cents_at_purchase,
                )
                for i in order.items
            ],
            created_at=order.created_at,
            updated_at=order.updated_at,
        )
