"""Shared pytest fixtures.

Each test gets its own file-backed SQLite database under ``tmp_path`` so
threaded tests can share it through the connection pool. Catalog rows are
seeded directly with the ORM; the order core only ever reads them.
"""

import uuid

import pytest
from fastapi.testclient import TestClient

from marketplace_orders.config import Settings
from marketplace_orders.db import init_db, make_engine, make_session_factory
from marketplace_orders.main import create_app
from marketplace_orders.models import Business, Product
from marketplace_orders.providers import build_order_service


class RecordingNotifier:
    """Notifier stub that keeps every notification it receives."""

    def __init__(self):
        self.sent = []

    def notify(self, event, recipient_id, payload):
        self.sent.append((event, recipient_id, payload))


class Catalog:
    """Seeds and inspects catalog rows."""

    def __init__(self, session_factory):
        self.session_factory = session_factory

    def business(self, owner_id=None, name="Corner Shop"):
        b = Business(id=uuid.uuid4(), owner_id=owner_id or uuid.uuid4(), name=name)
        with self.session_factory() as s:
            s.add(b)
            s.commit()
        return b

    def product(self, business, price_cents=1000, quantity=10, name="Widget"):
        p = Product(
            id=uuid.uuid4(),
            business_id=business.id,
            name=name,
            price_cents=price_cents,
            quantity=quantity,
        )
        with self.session_factory() as s:
            s.add(p)
            s.commit()
        return p

    def stock(self, product_id):
        with self.session_factory() as s:
            return s.get(Product, product_id).quantity

    def set_price(self, product_id, price_cents):
        with self.session_factory() as s:
            s.get(Product, product_id).price_cents = price_cents
            s.commit()


@pytest.fixture(autouse=True)
def use_stubs_for_tests(monkeypatch):
    monkeypatch.setenv("USE_HTTP_ADAPTERS", "false")


@pytest.fixture
def settings(tmp_path):
    return Settings(database_url=f"sqlite:///{tmp_path / 'orders.db'}", db_wait_secs=0)


@pytest.fixture
def engine(settings):
    eng = make_engine(settings.database_url)
    init_db(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return make_session_factory(engine)


@pytest.fixture
def catalog(session_factory):
    return Catalog(session_factory)


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def service(settings, session_factory, notifier):
    return build_order_service(settings, session_factory, notifier)


@pytest.fixture
def app(settings, engine, notifier):
    application = create_app(settings, notifier=notifier)
    yield application
    application.state.engine.dispose()


@pytest.fixture
def client(app):
    return TestClient(app)


@pytest.fixture
def as_user():
    """Gateway identity headers for a user id and role."""
    def _headers(user_id, role):
        return {"X-User-Id": str(user_id), "X-User-Role": role}
    return _headers
