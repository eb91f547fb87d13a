"""Engine and session plumbing.

There is no module-level engine: the application factory calls
``make_engine`` once and hands the resulting ``sessionmaker`` to the units
of work, so tests and workers can each own their database.
"""

import time

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from .models import Base


def make_engine(database_url: str) -> Engine:
    """Create the SQLAlchemy engine for ``database_url``.

    SQLite is accepted for tests and local runs; its connections are allowed
    to cross threads because the pool hands them to whichever worker thread
    asks next.

    Args:
        database_url: SQLAlchemy database URL.

    Returns:
        Engine: Engine; pre-ping is enabled for server databases.
    """
    if database_url.startswith("sqlite"):
        return create_engine(
            database_url,
            connect_args={"check_same_thread": False, "timeout": 30},
        )
    return create_engine(database_url, pool_pre_ping=True)


def make_session_factory(engine: Engine) -> sessionmaker:
    # expire_on_commit=False: domain objects are built from rows after commit
    return sessionmaker(bind=engine, expire_on_commit=False)


def init_db(engine: Engine) -> None:
    """Create any missing tables."""
    Base.metadata.create_all(engine)


def ping(engine: Engine) -> bool:
    """Return True when the database answers ``select 1``."""
    try:
        with engine.connect() as conn:
            conn.execute(text("select 1"))
        return True
    except Exception:
        return False


def wait_for_db(engine: Engine, timeout_secs: float) -> None:
    """Block until the database accepts connections.

    Args:
        engine: Engine to ping.
        timeout_secs: Give up after this many seconds.

    Raises:
        sqlalchemy.exc.OperationalError: When the deadline passes and the
            database is still unreachable.
    """
    deadline = time.time() + timeout_secs
    while True:
        try:
            with engine.connect() as conn:
                conn.execute(text("select 1"))
            return
        except Exception:
            if time.time() > deadline:
                raise
            time.sleep(1)
