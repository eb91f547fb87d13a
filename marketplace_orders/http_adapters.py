"""HTTP notifier client with a circuit breaker and request-id propagation.

This module implements the notifier port over ``httpx``. It adds:

- Request correlation: propagates ``X-Request-ID`` from the ContextVar set
    by the request-id middleware.
- A circuit breaker so a dead notification service is not hammered after
    every committed order, with HALF_OPEN probing after a timeout.
- Retries with exponential backoff limited to connection failures, where
    the request never reached the server. 5xx answers and read timeouts are
    not retried so a notification is delivered at most once.
"""

import logging
import threading
import time
import uuid
from enum import Enum
from typing import Optional

import httpx

from .domain import NotificationEvent, NotifierPort
from .errors import TransientInfrastructureError
from .middleware import REQUEST_ID_CTX

logger = logging.getLogger("marketplace_orders.http")


# ---------------- Circuit Breaker ---------------- #

class BreakerState(str, Enum):
    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"


class CircuitBreaker:
    """Stops calling a failing downstream until it has had time to recover.

    ``fail_threshold`` consecutive failures open the breaker. After
    ``reset_timeout`` seconds one trial call is let through (HALF_OPEN): its
    success closes the breaker, its failure opens it again for another
    ``reset_timeout``. Safe to share between threads.
    """

    def __init__(self, name: str, fail_threshold: int, reset_timeout: float):
        self.name = name
        self.fail_threshold = fail_threshold
        self.reset_timeout = reset_timeout
        self._lock = threading.RLock()
        self._failures = 0
        self._state = BreakerState.CLOSED
        self._opened_at = 0.0
        self._trial_taken = False

    @property
    def state(self) -> BreakerState:
        with self._lock:
            cooled = time.monotonic() - self._opened_at >= self.reset_timeout
            if self._state is BreakerState.OPEN and cooled:
                self._state = BreakerState.HALF_OPEN
                self._trial_taken = False
            return self._state

    def _trip(self) -> None:
        self._state = BreakerState.OPEN
        self._opened_at = time.monotonic()
        self._trial_taken = False
        logger.warning("circuit opened", extra={"breaker": self.name, "failures": self._failures})

    def before_call(self) -> BreakerState:
        """Admit or refuse a call.

        Returns:
            BreakerState: The state the call is admitted under.

        Raises:
            TransientInfrastructureError: ``CIRCUIT_OPEN`` while open, or
                ``CIRCUIT_HALF_OPEN_BUSY`` when the single trial call is taken.
        """
        with self._lock:
            st = self.state
            if st is BreakerState.OPEN:
                raise TransientInfrastructureError(f"{self.name} circuit open", code="CIRCUIT_OPEN")
            if st is BreakerState.HALF_OPEN:
                if self._trial_taken:
                    raise TransientInfrastructureError(f"{self.name} circuit half-open", code="CIRCUIT_HALF_OPEN_BUSY")
                self._trial_taken = True
            return st

    def on_success(self):
        with self._lock:
            self._failures = 0
            self._state = BreakerState.CLOSED
            self._trial_taken = False

    def on_failure(self):
        with self._lock:
            self._failures += 1
            if self._state is BreakerState.HALF_OPEN:
                self._trip()
            elif self._state is BreakerState.CLOSED and self._failures >= self.fail_threshold:
                self._trip()

    def on_finish(self):
        """Free the trial slot if the call ended without a verdict."""
        with self._lock:
            if self._state is BreakerState.HALF_OPEN:
                self._trial_taken = False


_notifications_cb = CircuitBreaker("notifications", fail_threshold=5, reset_timeout=30.0)


# ---------------- Helpers ---------------- #

def _request_headers(extra: Optional[dict] = None) -> dict:
    """Build base headers including X-Request-ID and any extras."""
    headers: dict[str, str] = {}
    rid = REQUEST_ID_CTX.get()
    if rid and rid != "-":
        headers["X-Request-ID"] = rid
    if extra:
        headers.update(extra)
    return headers


# ---------------- Notifications Adapter ---------------- #

class HttpNotificationClient(NotifierPort):
    """HTTP client for the notification service.

    Args:
        base_url: Notification service root, e.g. ``http://notifications:9002``.
        timeout: Per-request timeout in seconds.
        retry_max: Total attempts for connection failures.
        backoff_base: Base of the exponential backoff in seconds.
        max_sleep: Cap for a single backoff sleep.
        breaker: Circuit breaker shared by all clients of the same service.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 2.0,
        retry_max: int = 3,
        backoff_base: float = 0.15,
        max_sleep: float = 0.5,
        breaker: CircuitBreaker | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.retry_max = max(1, retry_max)
        self.backoff_base = backoff_base
        self.max_sleep = max_sleep
        self.breaker = breaker or _notifications_cb

    def notify(self, event: NotificationEvent, recipient_id: uuid.UUID, payload: dict) -> None:
        """POST one notification to ``{base_url}/notify``.

        Business mappings:
        - 2xx → delivered
        - 4xx → rejected by the service; logged, not a circuit failure

        Raises:
            TransientInfrastructureError: Circuit open, connection failures
                after retries, timeouts, or 5xx answers.
        """
        body = {"event": event.value, "recipient_id": str(recipient_id), "payload": payload}
        state = self.breaker.before_call()
        headers = _request_headers({"X-Circuit-State": state.value, "X-Retry-Count": "0"})
        tries = 0

        try:
            with httpx.Client(timeout=self.timeout) as client:
                while True:
                    try:
                        resp = client.post(f"{self.base_url}/notify", json=body, headers=headers)
                    except httpx.ConnectError as e:
                        tries += 1
                        headers["X-Retry-Count"] = str(tries)
                        if tries >= self.retry_max:
                            self.breaker.on_failure()
                            raise TransientInfrastructureError(
                                "Notification service unreachable", code="NOTIFICATIONS_UNAVAILABLE"
                            ) from e
                        time.sleep(min(self.backoff_base * (2 ** (tries - 1)), self.max_sleep))
                        continue
                    except httpx.TransportError as e:
                        self.breaker.on_failure()
                        raise TransientInfrastructureError(
                            "Notification service transport error", code="NOTIFICATIONS_UNAVAILABLE"
                        ) from e

                    if resp.status_code >= 500:
                        self.breaker.on_failure()
                        raise TransientInfrastructureError(
                            "Notification service error",
                            code="NOTIFICATIONS_UNAVAILABLE",
                            upstream_status=resp.status_code,
                        )
                    self.breaker.on_success()
                    if resp.status_code >= 400:
                        logger.warning(
                            "notification rejected",
                            extra={"event": event.value, "upstream_status": resp.status_code},
                        )
                    return
        finally:
            self.breaker.on_finish()
