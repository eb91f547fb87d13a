"""Service provider helpers for wiring OrderService with its ports.

``build_order_service`` returns an ``OrderService`` bound to a session
factory. The notifier is the HTTP client when
``Settings.use_http_adapters`` is set, and the in-process ``LogNotifier``
otherwise (tests and local development).
"""

from functools import partial

from sqlalchemy.orm import sessionmaker

from .adapters import LogNotifier
from .config import Settings
from .domain import NotifierPort
from .http_adapters import CircuitBreaker, HttpNotificationClient
from .notifications import NotificationDispatcher
from .repository import SqlUnitOfWork
from .service import OrderService


def build_notifier(settings: Settings) -> NotifierPort:
    """Return the notifier selected by ``settings``."""
    if settings.use_http_adapters:
        return HttpNotificationClient(
            base_url=settings.notifications_base_url,
            timeout=settings.http_timeout_secs,
            retry_max=settings.http_retry_max,
            backoff_base=settings.http_retry_backoff_base,
            max_sleep=settings.http_retry_max_sleep,
            breaker=CircuitBreaker(
                "notifications",
                settings.http_circuit_fail_threshold,
                settings.http_circuit_reset_timeout,
            ),
        )
    return LogNotifier()


def build_order_service(settings: Settings, session_factory: sessionmaker, notifier: NotifierPort | None = None) -> OrderService:
    """Return a configured OrderService.

    Args:
        settings: Service settings.
        session_factory: Session factory bound to the service engine.
        notifier: Optional notifier overriding the one chosen by settings.

    Returns:
        OrderService: A service instance with appropriate ports.
    """
    return OrderService(
        uow_factory=partial(SqlUnitOfWork, session_factory),
        dispatcher=NotificationDispatcher(notifier or build_notifier(settings)),
    )
