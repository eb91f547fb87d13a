"""In-process adapter for the notifier port.

``LogNotifier`` implements ``NotifierPort`` without any network calls. It
is the default outside production and in tests, where deterministic
behavior is useful and the notification service is not available.
"""

import logging
import uuid

from .domain import NotificationEvent, NotifierPort

logger = logging.getLogger("marketplace_orders.notifier")


class LogNotifier(NotifierPort):
    """Notifier that only writes the event to the service log."""

    def notify(self, event: NotificationEvent, recipient_id: uuid.UUID, payload: dict) -> None:
        """Log the notification.

        Args:
            event: NewOrder or StatusChanged.
            recipient_id: User the notification is addressed to.
            payload: Event body (order id, title, message...).
        """
        logger.info(
            "notification",
            extra={"event": event.value, "recipient_id": str(recipient_id), "order_id": payload.get("order_id")},
        )
