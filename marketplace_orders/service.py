"""Order lifecycle service.

``OrderService`` is the single entry point of the order core:

- ``create_orders`` validates a multi-seller cart against one catalog read
  and writes one pending order per seller, all in a single transaction.
- ``update_status`` drives the status state machine and applies the
  inventory side effect bound to the edge (deduct on confirmation, restore
  on cancelling a confirmed order) in the same transaction as the status
  write.
- ``get_order`` / ``list_orders`` are read projections with access checks.

The service owns no connection: it receives a factory of units of work and
a notification dispatcher. Notifications are prepared inside the
transaction and sent only after it commits.
"""

import logging
import uuid
from typing import Callable, List, Sequence

from . import errors
from .domain import (
    CartItem,
    DeliveryMethod,
    InventoryEffect,
    Order,
    OrderQuery,
    OrderStatus,
    OrderUpdate,
    Principal,
    Role,
    UnitOfWork,
    check_transition,
    merge_cart_items,
    validate_cart,
)
from .notifications import (
    NotificationDispatcher,
    new_order_notification,
    status_changed_notification,
)

logger = logging.getLogger("marketplace_orders.service")


class OrderService:
    """Domain service for the order lifecycle.

    Args:
        uow_factory: Callable returning a fresh ``UnitOfWork`` per operation.
        dispatcher: Post-commit notification dispatcher.
    """

    def __init__(self, uow_factory: Callable[[], UnitOfWork], dispatcher: NotificationDispatcher):
        self.uow_factory = uow_factory
        self.dispatcher = dispatcher

    # ---- Order Writer ----
    def create_orders(
        self,
        consumer_id: uuid.UUID,
        items: Sequence[CartItem],
        delivery_method: DeliveryMethod,
    ) -> List[Order]:
        """Split a cart by seller and persist one pending order per seller.

        All sibling orders commit together or not at all. Stock is only
        checked here, never deducted.

        Args:
            consumer_id: Authenticated consumer placing the cart.
            items: Cart lines; repeated product ids are merged.
            delivery_method: Pickup or delivery, shared by every order.

        Returns:
            list[Order]: Created orders, one per seller, in the order the
            sellers first appear in the cart.

        Raises:
            ValidationError: Empty cart or invalid quantity.
            NotFoundError: ``PRODUCT_NOT_FOUND``.
            ConflictError: ``OUT_OF_STOCK`` or ``INSUFFICIENT_INVENTORY``.
            TransientInfrastructureError: Database unavailable.
        """
        merged = merge_cart_items(items)
        pending = []
        with self.uow_factory() as uow:
            snapshots = uow.catalog.get_products_by_ids([i.product_id for i in merged])
            groups = validate_cart(merged, snapshots)
            created = [uow.orders.add(consumer_id, group, delivery_method) for group in groups]
            for order in created:
                owner_id = uow.catalog.get_business_owner(order.business_id)
                if owner_id is not None:
                    pending.append(new_order_notification(order, owner_id))

        logger.info(
            "orders created",
            extra={
                "consumer_id": str(consumer_id),
                "order_ids": [str(o.id) for o in created],
                "sellers": len(created),
            },
        )
        self.dispatcher.dispatch_all(pending)
        return created

    # ---- Status Transition Engine ----
    def update_status(self, principal: Principal, order_id: uuid.UUID, requested: OrderStatus) -> Order:
        """Move an order along one edge of the status state machine.

        Args:
            principal: Caller; must own the business the order belongs to.
            order_id: Order to transition.
            requested: Target status.

        Returns:
            Order: The order after the transition.

        Raises:
            NotFoundError: ``ORDER_NOT_FOUND``.
            AuthorizationError: ``FORBIDDEN`` when the caller does not own
                the order's business.
            ConflictError: ``INVALID_STATUS_TRANSITION``,
                ``INSUFFICIENT_INVENTORY`` (confirmation only; nothing is
                deducted) or ``CONCURRENT_MODIFICATION``.
        """
        with self.uow_factory() as uow:
            order = uow.orders.get(order_id, for_update=True)
            if order is None:
                raise errors.order_not_found(order_id)
            if uow.catalog.get_business_owner(order.business_id) != principal.user_id:
                raise errors.forbidden("You do not have permission to update this order")

            current = order.status
            try:
                effect = check_transition(current, requested)
            except errors.ConflictError:
                logger.info(
                    "status transition rejected",
                    extra={"order_id": str(order_id), "from": current.value, "to": requested.value},
                )
                raise

            # product rows are locked in id order
            by_product = sorted(order.items, key=lambda i: i.product_id)
            if effect is InventoryEffect.DEDUCT:
                for item in by_product:
                    if not uow.inventory.try_deduct(item.product_id, item.quantity):
                        raise errors.insufficient_inventory(item.product_id, requested=item.quantity)
            elif effect is InventoryEffect.RESTORE:
                for item in by_product:
                    uow.inventory.restore(item.product_id, item.quantity)

            updated = uow.orders.apply(order_id, current, OrderUpdate(status=requested))
            if updated is None:
                raise errors.concurrent_modification(order_id)
            notification = status_changed_notification(updated, current)

        logger.info(
            "order status changed",
            extra={
                "order_id": str(order_id),
                "from": current.value,
                "to": requested.value,
                "inventory_effect": effect.value,
            },
        )
        self.dispatcher.dispatch(notification)
        return updated

    # ---- Read projections ----
    def get_order(self, principal: Principal, order_id: uuid.UUID) -> Order:
        """Return an order visible to the consumer who placed it or the seller's owner.

        Raises:
            NotFoundError: ``ORDER_NOT_FOUND``.
            AuthorizationError: ``FORBIDDEN``.
        """
        with self.uow_factory() as uow:
            order = uow.orders.get(order_id)
            if order is None:
                raise errors.order_not_found(order_id)
            if order.consumer_id != principal.user_id:
                if uow.catalog.get_business_owner(order.business_id) != principal.user_id:
                    raise errors.forbidden()
        return order

    def list_orders(self, principal: Principal, query: OrderQuery) -> List[Order]:
        """Orders placed by a consumer, or received by the businesses an SME owns."""
        with self.uow_factory() as uow:
            if principal.role is Role.CONSUMER:
                return uow.orders.list_for_consumer(principal.user_id, query)
            return uow.orders.list_for_owner(principal.user_id, query)
