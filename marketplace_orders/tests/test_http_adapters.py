"""Unit tests for the HTTP notification client and its circuit breaker.

``httpx.Client.post`` is monkeypatched so no network is involved; the
breaker is either a fresh instance per test or the module-level one reset
with ``on_success()`` so state does not leak between tests.
"""

import uuid

import httpx
import pytest

from marketplace_orders.adapters import LogNotifier
from marketplace_orders.config import Settings
from marketplace_orders.domain import NotificationEvent
from marketplace_orders.errors import TransientInfrastructureError
from marketplace_orders.http_adapters import CircuitBreaker, HttpNotificationClient, _notifications_cb
from marketplace_orders.middleware import REQUEST_ID_CTX
from marketplace_orders.providers import build_notifier


class DummyResp:
    """Minimal httpx-like response stub."""

    def __init__(self, status_code=200):
        self.status_code = status_code


@pytest.fixture
def calls(monkeypatch):
    """Record every POST; the answer comes from ``calls["answer"]``."""
    box = {"n": 0, "last": None, "answer": lambda: DummyResp(202)}

    def fake_post(self, url, json=None, headers=None, **kw):
        box["n"] += 1
        box["last"] = {"url": url, "json": json, "headers": dict(headers or {})}
        return box["answer"]()

    monkeypatch.setattr(httpx.Client, "post", fake_post, raising=True)
    monkeypatch.setattr("time.sleep", lambda *a, **k: None, raising=True)
    return box


def _client(breaker=None, retry_max=3):
    return HttpNotificationClient(
        base_url="http://notifications:9002/",
        retry_max=retry_max,
        breaker=breaker or CircuitBreaker("test", fail_threshold=2, reset_timeout=60.0),
    )


def test_notify_posts_event_body(calls):
    recipient = uuid.uuid4()
    _client().notify(NotificationEvent.NEW_ORDER, recipient, {"order_id": "o-1"})

    assert calls["n"] == 1
    assert calls["last"]["url"] == "http://notifications:9002/notify"
    assert calls["last"]["json"] == {"event": "NewOrder", "recipient_id": str(recipient), "payload": {"order_id": "o-1"}}
    assert calls["last"]["headers"]["X-Circuit-State"] == "CLOSED"


def test_5xx_is_not_retried_and_raises(calls):
    calls["answer"] = lambda: DummyResp(503)
    with pytest.raises(TransientInfrastructureError) as e:
        _client().notify(NotificationEvent.STATUS_CHANGED, uuid.uuid4(), {})
    assert calls["n"] == 1
    assert e.value.code == "NOTIFICATIONS_UNAVAILABLE"
    assert e.value.context == {"upstream_status": 503}


def test_4xx_is_logged_not_raised(calls):
    breaker = CircuitBreaker("test", fail_threshold=1, reset_timeout=60.0)
    calls["answer"] = lambda: DummyResp(422)
    _client(breaker).notify(NotificationEvent.NEW_ORDER, uuid.uuid4(), {})
    assert breaker.state == "CLOSED"


def test_connect_errors_are_retried_then_raise(calls):
    def refuse():
        raise httpx.ConnectError("refused")

    calls["answer"] = refuse
    with pytest.raises(TransientInfrastructureError) as e:
        _client(retry_max=3).notify(NotificationEvent.NEW_ORDER, uuid.uuid4(), {})
    assert calls["n"] == 3
    assert calls["last"]["headers"]["X-Retry-Count"] == "2"
    assert e.value.code == "NOTIFICATIONS_UNAVAILABLE"


def test_connect_error_then_success(calls):
    answers = iter([httpx.ConnectError("refused"), DummyResp(200)])

    def flaky():
        a = next(answers)
        if isinstance(a, Exception):
            raise a
        return a

    calls["answer"] = flaky
    _client().notify(NotificationEvent.NEW_ORDER, uuid.uuid4(), {})
    assert calls["n"] == 2


def test_read_timeout_is_not_retried(calls):
    def slow():
        raise httpx.ReadTimeout("slow")

    calls["answer"] = slow
    with pytest.raises(TransientInfrastructureError):
        _client().notify(NotificationEvent.NEW_ORDER, uuid.uuid4(), {})
    assert calls["n"] == 1


def test_circuit_opens_after_threshold(calls):
    breaker = CircuitBreaker("test", fail_threshold=2, reset_timeout=60.0)
    calls["answer"] = lambda: DummyResp(500)
    client = _client(breaker)

    for _ in range(2):
        with pytest.raises(TransientInfrastructureError):
            client.notify(NotificationEvent.NEW_ORDER, uuid.uuid4(), {})
    assert breaker.state == "OPEN"

    with pytest.raises(TransientInfrastructureError) as e:
        client.notify(NotificationEvent.NEW_ORDER, uuid.uuid4(), {})
    assert e.value.code == "CIRCUIT_OPEN"
    assert calls["n"] == 2


def test_half_open_success_closes_the_breaker(calls):
    breaker = CircuitBreaker("test", fail_threshold=1, reset_timeout=0.0)
    calls["answer"] = lambda: DummyResp(500)
    client = _client(breaker)
    with pytest.raises(TransientInfrastructureError):
        client.notify(NotificationEvent.NEW_ORDER, uuid.uuid4(), {})

    calls["answer"] = lambda: DummyResp(200)
    client.notify(NotificationEvent.NEW_ORDER, uuid.uuid4(), {})

    assert calls["last"]["headers"]["X-Circuit-State"] == "HALF_OPEN"
    assert breaker.state == "CLOSED"


def test_request_id_is_propagated(calls):
    _notifications_cb.on_success()
    token = REQUEST_ID_CTX.set("rid-42")
    try:
        HttpNotificationClient(base_url="http://x").notify(NotificationEvent.NEW_ORDER, uuid.uuid4(), {})
    finally:
        REQUEST_ID_CTX.reset(token)
    assert calls["last"]["headers"]["X-Request-ID"] == "rid-42"


def test_no_request_id_outside_a_request(calls):
    _client().notify(NotificationEvent.NEW_ORDER, uuid.uuid4(), {})
    assert "X-Request-ID" not in calls["last"]["headers"]


def test_build_notifier_follows_settings():
    assert isinstance(build_notifier(Settings(use_http_adapters=False)), LogNotifier)
    http = build_notifier(Settings(use_http_adapters=True, notifications_base_url="http://n:1", http_retry_max=5))
    assert isinstance(http, HttpNotificationClient)
    assert http.base_url == "http://n:1"
    assert http.retry_max == 5


def test_settings_from_env(monkeypatch):
    monkeypatch.setenv("USE_HTTP_ADAPTERS", "yes")
    monkeypatch.setenv("DATABASE_URL", "sqlite:///x.db")
    monkeypatch.setenv("LOG_LEVEL", "debug")
    s = Settings.from_env()
    assert s.use_http_adapters is True
    assert s.database_url == "sqlite:///x.db"
    assert s.log_level == "DEBUG"


def test_half_open_failure_reopens_and_admits_one_call(monkeypatch):
    breaker = CircuitBreaker("test", fail_threshold=1, reset_timeout=30.0)
    clock = {"now": 100.0}
    monkeypatch.setattr("marketplace_orders.http_adapters.time.monotonic", lambda: clock["now"])
    breaker.on_failure()
    assert breaker.state == "OPEN"

    clock["now"] += 30.0
    assert breaker.before_call() == "HALF_OPEN"
    with pytest.raises(TransientInfrastructureError) as busy:
        breaker.before_call()
    assert busy.value.code == "CIRCUIT_HALF_OPEN_BUSY"

    breaker.on_failure()
    assert breaker.state == "OPEN"
    clock["now"] += 29.0
    assert breaker.state == "OPEN"
