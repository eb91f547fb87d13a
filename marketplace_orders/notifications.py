"""Best-effort notification dispatch for committed order operations.

The service calls the dispatcher strictly after its transaction commits.
Delivery is at-most-once: a failing notifier is logged and swallowed, the
committed operation is still reported as a success.
"""

import logging
import uuid
from dataclasses import dataclass

from .domain import NotificationEvent, NotifierPort, Order, OrderStatus

logger = logging.getLogger("marketplace_orders.notifications")

STATUS_MESSAGES = {
    OrderStatus.CONFIRMED: ("Order Confirmed", "Your order from {business} has been confirmed and is being prepared.", "high"),
    OrderStatus.READY: ("Order Ready", "Your order from {business} is ready for pickup or delivery.", "high"),
    OrderStatus.OUT_FOR_DELIVERY: ("Order Out for Delivery", "Your order from {business} is on its way!", "high"),
    OrderStatus.DELIVERED: ("Order Delivered", "Your order from {business} has been delivered. Enjoy!", "medium"),
    OrderStatus.CANCELLED: ("Order Cancelled", "Your order from {business} has been cancelled.", "high"),
}


def format_cents(cents: int) -> str:
    return f"${cents // 100}.{cents % 100:02d}"


@dataclass(frozen=True)
class Notification:
    """A notification prepared inside the transaction, sent after commit."""

    event: NotificationEvent
    recipient_id: uuid.UUID
    payload: dict


def new_order_notification(order: Order, owner_id: uuid.UUID) -> Notification:
    return Notification(
        event=NotificationEvent.NEW_ORDER,
        recipient_id=owner_id,
        payload={
            "order_id": str(order.id),
            "business_id": str(order.business_id),
            "consumer_id": str(order.consumer_id),
            "total_cents": order.total_cents,
            "title": "New Order Received",
            "message": f"You have received a new order for {format_cents(order.total_cents)}.",
            "priority": "high",
        },
    )


def status_changed_notification(order: Order, previous: OrderStatus) -> Notification:
    title, template, priority = STATUS_MESSAGES[order.status]
    return Notification(
        event=NotificationEvent.STATUS_CHANGED,
        recipient_id=order.consumer_id,
        payload={
            "order_id": str(order.id),
            "business_id": str(order.business_id),
            "previous_status": previous.value,
            "status": order.status.value,
            "title": title,
            "message": template.format(business=order.business_name or "Business"),
            "priority": priority,
        },
    )


class NotificationDispatcher:
    """Sends prepared notifications through a ``NotifierPort``, never raising."""

    def __init__(self, notifier: NotifierPort):
        self.notifier = notifier

    def dispatch(self, notification: Notification) -> bool:
        """Deliver one notification.

        Returns:
            bool: True when the notifier accepted it, False when it failed
            (the failure is logged).
        """
        try:
            self.notifier.notify(notification.event, notification.recipient_id, notification.payload)
            return True
        except Exception:
            logger.warning(
                "notification dispatch failed",
                exc_info=True,
                extra={
                    "event": notification.event.value,
                    "recipient_id": str(notification.recipient_id),
                    "order_id": notification.payload.get("order_id"),
                },
            )
            return False

    def dispatch_all(self, notifications) -> int:
        return sum(1 for n in notifications if self.dispatch(n))
