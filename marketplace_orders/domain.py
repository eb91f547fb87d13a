"""Domain types, ports and pure rules for the order lifecycle.

This module contains the dataclasses used as DTOs between layers, the
order status state machine, the cart validator that splits a multi-seller
cart into per-seller groups, and the protocol definitions (ports) the
service depends on: catalog reads, the inventory ledger, order storage,
the unit of work that ties them to one transaction, and the notifier.
Nothing here performs I/O.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Iterable, List, Optional, Protocol, Sequence

from . import errors


# ---- Enums ----
class OrderStatus(str, Enum):
    """Lifecycle states of a per-seller order."""

    PENDING = "pending"
    CONFIRMED = "confirmed"
    READY = "ready"
    OUT_FOR_DELIVERY = "out_for_delivery"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class DeliveryMethod(str, Enum):
    PICKUP = "pickup"
    DELIVERY = "delivery"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class Role(str, Enum):
    CONSUMER = "consumer"
    SME = "sme"


class NotificationEvent(str, Enum):
    NEW_ORDER = "NewOrder"
    STATUS_CHANGED = "StatusChanged"


class InventoryEffect(str, Enum):
    """Inventory side effect bound to a status edge."""

    NONE = "none"
    DEDUCT = "deduct"
    RESTORE = "restore"


# ---- State machine ----
ALLOWED_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.CONFIRMED, OrderStatus.CANCELLED}),
    OrderStatus.CONFIRMED: frozenset({OrderStatus.READY, OrderStatus.CANCELLED}),
    OrderStatus.READY: frozenset({OrderStatus.OUT_FOR_DELIVERY, OrderStatus.DELIVERED, OrderStatus.CANCELLED}),
    OrderStatus.OUT_FOR_DELIVERY: frozenset({OrderStatus.DELIVERED, OrderStatus.CANCELLED}),
    OrderStatus.DELIVERED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}


def check_transition(current: OrderStatus, requested: OrderStatus) -> InventoryEffect:
    """Validate a status edge and return its inventory side effect.

    Args:
        current: Status the order is in.
        requested: Status the caller asks for.

    Returns:
        InventoryEffect: ``DEDUCT`` for pending -> confirmed, ``RESTORE`` for
        confirmed -> cancelled, ``NONE`` for every other allowed edge.

    Raises:
        ConflictError: ``INVALID_STATUS_TRANSITION`` when the edge is not in
            ``ALLOWED_TRANSITIONS``.
    """
    if requested not in ALLOWED_TRANSITIONS[current]:
        raise errors.invalid_transition(current.value, requested.value)
    if current is OrderStatus.PENDING and requested is OrderStatus.CONFIRMED:
        return InventoryEffect.DEDUCT
    if current is OrderStatus.CONFIRMED and requested is OrderStatus.CANCELLED:
        return InventoryEffect.RESTORE
    return InventoryEffect.NONE


# ---- Entities / DTOs ----
@dataclass(frozen=True)
class Principal:
    """Authenticated caller as attached by the identity collaborator."""

    user_id: uuid.UUID
    role: Role


@dataclass(frozen=True)
class CartItem:
    product_id: uuid.UUID
    quantity: int


@dataclass(frozen=True)
class ProductSnapshot:
    """Catalog view of a product read at validation time.

    Attributes:
        id: Product id.
        business_id: Seller offering the product.
        name: Product name, used in error messages and read projections.
        price_cents: Unit price in cents at read time.
        quantity: Units in stock at read time.
    """

    id: uuid.UUID
    business_id: uuid.UUID
    name: str
    price_cents: int
    quantity: int

    @property
    def in_stock(self) -> bool:
        return self.quantity > 0


@dataclass(frozen=True)
class OrderLine:
    """A validated cart line with its price snapshot."""

    product_id: uuid.UUID
    product_name: str
    quantity: int
    price_cents: int

    @property
    def line_total_cents(self) -> int:
        return self.quantity * self.price_cents


@dataclass
class SellerGroup:
    """All validated lines of one cart that belong to the same seller."""

    business_id: uuid.UUID
    lines: List[OrderLine] = field(default_factory=list)

    @property
    def subtotal_cents(self) -> int:
        return sum(line.line_total_cents for line in self.lines)


@dataclass(frozen=True)
class OrderItem:
    """A persisted order line. Items are immutable once written."""

    id: uuid.UUID
    product_id: uuid.UUID
    quantity: int
    price_cents_at_purchase: int
    product_name: Optional[str] = None


@dataclass
class Order:
    """Container for order data.

    Attributes:
        id: Persistent identifier.
        consumer_id: User who placed the order.
        business_id: Seller that must fulfil it.
        total_cents: Sum of quantity x price snapshot over ``items``.
        status: Current ``OrderStatus``.
        delivery_method: ``pickup`` or ``delivery``.
        payment_status: Payment state, ``pending`` until settled elsewhere.
        items: Order lines.
        created_at: Creation timestamp.
        updated_at: Last status change timestamp.
        business_name: Display name of the seller, for read projections.
    """

    id: uuid.UUID
    consumer_id: uuid.UUID
    business_id: uuid.UUID
    total_cents: int
    status: OrderStatus
    delivery_method: DeliveryMethod
    payment_status: PaymentStatus
    items: List[OrderItem] = field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    business_name: Optional[str] = None


@dataclass(frozen=True)
class OrderUpdate:
    """Typed partial update of an order; ``None`` fields are left untouched."""

    status: Optional[OrderStatus] = None
    payment_status: Optional[PaymentStatus] = None

    def changes(self) -> dict:
        out = {}
        if self.status is not None:
            out["status"] = self.status.value
        if self.payment_status is not None:
            out["payment_status"] = self.payment_status.value
        return out


@dataclass(frozen=True)
class OrderQuery:
    """Filters for listing orders."""

    status: Optional[OrderStatus] = None
    limit: int = 50
    offset: int = 0


# ---- Cart validation ----
def merge_cart_items(items: Iterable[CartItem]) -> List[CartItem]:
    """Collapse repeated product ids into one line, keeping first-seen order."""
    totals: dict[uuid.UUID, int] = {}
    for item in items:
        totals[item.product_id] = totals.get(item.product_id, 0) + item.quantity
    return [CartItem(product_id=pid, quantity=qty) for pid, qty in totals.items()]


def validate_cart(items: Sequence[CartItem], snapshots: Iterable[ProductSnapshot]) -> List[SellerGroup]:
    """Check a cart against a catalog snapshot and split it by seller.

    The whole cart fails on the first problem found; no group is returned
    unless every line is valid. Availability is only checked against the
    snapshot, the authoritative deduction happens at confirmation.

    Args:
        items: Cart lines, already merged by product id.
        snapshots: Products read for the cart, in any order.

    Returns:
        list[SellerGroup]: One group per distinct seller, in the order the
        sellers first appear in the cart.

    Raises:
        ValidationError: Empty cart or a non-positive quantity.
        NotFoundError: ``PRODUCT_NOT_FOUND`` listing every unknown id.
        ConflictError: ``OUT_OF_STOCK`` or ``INSUFFICIENT_INVENTORY``.
    """
    if not items:
        raise errors.ValidationError("Order must contain at least one item", code="VALIDATION_ERROR")
    for item in items:
        if item.quantity < 1:
            raise errors.ValidationError(
                "Quantity must be at least 1", code="VALIDATION_ERROR", product_id=str(item.product_id)
            )

    by_id = {s.id: s for s in snapshots}
    missing = [item.product_id for item in items if item.product_id not in by_id]
    if missing:
        raise errors.product_not_found(missing)

    groups: dict[uuid.UUID, SellerGroup] = {}
    for item in items:
        product = by_id[item.product_id]
        if not product.in_stock:
            raise errors.out_of_stock(product.id, product.name)
        if item.quantity > product.quantity:
            raise errors.insufficient_inventory(product.id, available=product.quantity, requested=item.quantity)

        group = groups.setdefault(product.business_id, SellerGroup(business_id=product.business_id))
        group.lines.append(
            OrderLine(
                product_id=product.id,
                product_name=product.name,
                quantity=item.quantity,
                price_cents=product.price_cents,
            )
        )
    return list(groups.values())


# ---- Ports (DIP) ----
class CatalogPort(Protocol):
    """Read access to the product/business catalog collaborator."""

    def get_products_by_ids(self, ids: Sequence[uuid.UUID]) -> List[ProductSnapshot]:
        raise NotImplementedError()

    def get_business_owner(self, business_id: uuid.UUID) -> Optional[uuid.UUID]:
        raise NotImplementedError()


class InventoryPort(Protocol):
    """The only write path to product stock.

    Both methods run inside the caller's open transaction.
    """

    def try_deduct(self, product_id: uuid.UUID, quantity: int) -> bool:
        """Conditionally decrement stock.

        Returns:
            True if the product had at least ``quantity`` units and was
            decremented, False otherwise.
        """
        raise NotImplementedError()

    def restore(self, product_id: uuid.UUID, quantity: int) -> None:
        raise NotImplementedError()


class OrderStorePort(Protocol):
    """Persistence of orders and their items."""

    def add(self, consumer_id: uuid.UUID, group: SellerGroup, delivery_method: DeliveryMethod) -> Order:
        raise NotImplementedError()

    def get(self, order_id: uuid.UUID, for_update: bool = False) -> Optional[Order]:
        raise NotImplementedError()

    def apply(self, order_id: uuid.UUID, expected_status: OrderStatus, patch: OrderUpdate) -> Optional[Order]:
        """Write ``patch`` only if the order is still in ``expected_status``.

        Returns:
            The updated order, or None when no row matched.
        """
        raise NotImplementedError()

    def list_for_consumer(self, consumer_id: uuid.UUID, query: OrderQuery) -> List[Order]:
        raise NotImplementedError()

    def list_for_owner(self, owner_id: uuid.UUID, query: OrderQuery) -> List[Order]:
        raise NotImplementedError()


class UnitOfWork(Protocol):
    """One database transaction shared by the catalog, inventory and order ports.

    Used as a context manager: commits on a clean exit, rolls back when the
    block raises.
    """

    catalog: CatalogPort
    inventory: InventoryPort
    orders: OrderStorePort

    def __enter__(self) -> "UnitOfWork":
        raise NotImplementedError()

    def __exit__(self, exc_type, exc, tb) -> bool:
        raise NotImplementedError()


class NotifierPort(Protocol):
    """Outbound signal to the notification collaborator."""

    def notify(self, event: NotificationEvent, recipient_id: uuid.UUID, payload: dict) -> None:
        raise NotImplementedError()
