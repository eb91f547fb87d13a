"""Repository layer for orders and catalog reads, plus the unit of work.

The repositories are thin SQLAlchemy adapters for the domain ports and
return domain dataclasses, never ORM objects, so the service is not
coupled to ORM details. ``SqlUnitOfWork`` opens one session per
operation and is the only place that commits or rolls back.
"""

import uuid
from datetime import datetime, timezone
from typing import Iterable, List, Optional, Sequence

from sqlalchemy import select, update
from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.orm import Session, sessionmaker

from .domain import (
    CatalogPort,
    DeliveryMethod,
    Order,
    OrderItem,
    OrderQuery,
    OrderStatus,
    OrderStorePort,
    OrderUpdate,
    PaymentStatus,
    ProductSnapshot,
    SellerGroup,
    UnitOfWork,
)
from .errors import TransientInfrastructureError
from .inventory import InventoryLedger
from .models import Business, OrderItemModel, OrderModel, Product

_UNAVAILABLE = (OperationalError, InterfaceError)


def _to_order(row: OrderModel, items: Iterable[OrderItem], business_name: Optional[str] = None) -> Order:
    return Order(
        id=row.id,
        consumer_id=row.consumer_id,
        business_id=row.business_id,
        total_cents=row.total_cents,
        status=OrderStatus(row.status),
        delivery_method=DeliveryMethod(row.delivery_method),
        payment_status=PaymentStatus(row.payment_status),
        items=list(items),
        created_at=row.created_at,
        updated_at=row.updated_at,
        business_name=business_name,
    )


def _with_business(stmt):
    return stmt.join(Business, Business.id == OrderModel.business_id)


class CatalogRepository(CatalogPort):
    """Catalog reads against the shared ``products``/``businesses`` tables."""

    def __init__(self, session: Session):
        self.session = session

    def get_products_by_ids(self, ids: Sequence[uuid.UUID]) -> List[ProductSnapshot]:
        """Read every requested product in a single statement.

        Unknown ids are simply absent from the result.
        """
        if not ids:
            return []
        rows = self.session.execute(
            select(Product.id, Product.business_id, Product.name, Product.price_cents, Product.quantity)
            .where(Product.id.in_(list(ids)))
        ).all()
        return [
            ProductSnapshot(id=r.id, business_id=r.business_id, name=r.name, price_cents=r.price_cents, quantity=r.quantity)
            for r in rows
        ]

    def get_business_owner(self, business_id: uuid.UUID) -> Optional[uuid.UUID]:
        return self.session.scalar(select(Business.owner_id).where(Business.id == business_id))


class OrderRepository(OrderStorePort):
    """Persists orders and their items using SQLAlchemy."""

    def __init__(self, session: Session):
        self.session = session

    def add(self, consumer_id: uuid.UUID, group: SellerGroup, delivery_method: DeliveryMethod) -> Order:
        """Insert one pending order and its items for a seller group.

        The rows are flushed, not committed; the unit of work decides.

        Args:
            consumer_id: User placing the order.
            group: Validated lines of one seller.
            delivery_method: Pickup or delivery.

        Returns:
            Order: The new order with its items.
        """
        now = datetime.now(timezone.utc)
        row = OrderModel(
            id=uuid.uuid4(),
            consumer_id=consumer_id,
            business_id=group.business_id,
            total_cents=group.subtotal_cents,
            status=OrderStatus.PENDING.value,
            delivery_method=delivery_method.value,
            payment_status=PaymentStatus.PENDING.value,
            created_at=now,
            updated_at=now,
        )
        self.session.add(row)
        # order row first: items reference it
        self.session.flush()

        items = []
        for position, line in enumerate(group.lines):
            item = OrderItemModel(
                id=uuid.uuid4(),
                order_id=row.id,
                product_id=line.product_id,
                position=position,
                quantity=line.quantity,
                price_cents_at_purchase=line.price_cents,
                created_at=now,
            )
            self.session.add(item)
            items.append(
                OrderItem(
                    id=item.id,
                    product_id=line.product_id,
                    quantity=line.quantity,
                    price_cents_at_purchase=line.price_cents,
                    product_name=line.product_name,
                )
            )
        self.session.flush()
        name = self.session.scalar(select(Business.name).where(Business.id == group.business_id))
        return _to_order(row, items, name)

    def get(self, order_id: uuid.UUID, for_update: bool = False) -> Optional[Order]:
        """Load an order with its items.

        Args:
            order_id: Order to load.
            for_update: Lock the order row (``SELECT ... FOR UPDATE``) for the
                rest of the transaction. Ignored by SQLite.
        """
        stmt = (
            _with_business(select(OrderModel, Business.name))
            .where(OrderModel.id == order_id)
            .execution_options(populate_existing=True)
        )
        if for_update:
            stmt = stmt.with_for_update(of=OrderModel)
        found = self.session.execute(stmt).first()
        if found is None:
            return None
        row, name = found
        return _to_order(row, self._items_for([row.id]).get(row.id, []), name)

    def apply(self, order_id: uuid.UUID, expected_status: OrderStatus, patch: OrderUpdate) -> Optional[Order]:
        """Apply a typed partial update guarded by the expected status.

        The update is a single parameterized statement; only the fields set
        on ``patch`` are written.

        Returns:
            Order | None: The refreshed order, or None when the order is
            missing or no longer in ``expected_status``.
        """
        values = patch.changes()
        values["updated_at"] = datetime.now(timezone.utc)
        stmt = (
            update(OrderModel)
            .where(OrderModel.id == order_id, OrderModel.status == expected_status.value)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if self.session.execute(stmt).rowcount != 1:
            return None
        return self.get(order_id)

    def list_for_consumer(self, consumer_id: uuid.UUID, query: OrderQuery) -> List[Order]:
        stmt = _with_business(select(OrderModel, Business.name)).where(OrderModel.consumer_id == consumer_id)
        return self._list(stmt, query)

    def list_for_owner(self, owner_id: uuid.UUID, query: OrderQuery) -> List[Order]:
        stmt = _with_business(select(OrderModel, Business.name)).where(Business.owner_id == owner_id)
        return self._list(stmt, query)

    def _list(self, stmt, query: OrderQuery) -> List[Order]:
        if query.status is not None:
            stmt = stmt.where(OrderModel.status == query.status.value)
        stmt = stmt.order_by(OrderModel.created_at.desc(), OrderModel.id).limit(query.limit).offset(query.offset)
        rows = self.session.execute(stmt).all()
        items = self._items_for([r.id for r, _ in rows])
        return [_to_order(r, items.get(r.id, []), name) for r, name in rows]

    def _items_for(self, order_ids: List[uuid.UUID]) -> dict[uuid.UUID, List[OrderItem]]:
        if not order_ids:
            return {}
        rows = self.session.execute(
            select(OrderItemModel, Product.name)
            .join(Product, Product.id == OrderItemModel.product_id)
            .where(OrderItemModel.order_id.in_(order_ids))
            .order_by(OrderItemModel.order_id, OrderItemModel.position)
        ).all()
        out: dict[uuid.UUID, List[OrderItem]] = {}
        for item, name in rows:
            out.setdefault(item.order_id, []).append(
                OrderItem(
                    id=item.id,
                    product_id=item.product_id,
                    quantity=item.quantity,
                    price_cents_at_purchase=item.price_cents_at_purchase,
                    product_name=name,
                )
            )
        return out


class SqlUnitOfWork(UnitOfWork):
    """Scoped transaction over one session.

    Usage::

        with SqlUnitOfWork(session_factory) as uow:
            uow.inventory.try_deduct(...)
            uow.orders.apply(...)

    Leaving the block normally commits. Any exception rolls back every
    statement issued in the block and is re-raised; connection-level
    failures are re-raised as ``TransientInfrastructureError``.
    """

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory
        self.session: Optional[Session] = None

    def __enter__(self) -> "SqlUnitOfWork":
        self.session = self.session_factory()
        self.catalog = CatalogRepository(self.session)
        self.inventory = InventoryLedger(self.session)
        self.orders = OrderRepository(self.session)
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        try:
            if exc_type is None:
                try:
                    self.session.commit()
                except _UNAVAILABLE as e:
                    self.session.rollback()
                    raise TransientInfrastructureError(
                        "Database unavailable", code="DATABASE_UNAVAILABLE"
                    ) from e
            else:
                self.session.rollback()
        finally:
            self.session.close()

        if exc_type is not None and issubclass(exc_type, _UNAVAILABLE):
            raise TransientInfrastructureError("Database unavailable", code="DATABASE_UNAVAILABLE") from exc
        return False
