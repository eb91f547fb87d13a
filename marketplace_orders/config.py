"""Runtime configuration for the orders service.

Every knob is read from the environment so the same image can run in
docker-compose, CI and local development. ``Settings.from_env()`` is
called once by the application factory; tests build ``Settings`` directly.
"""

import os
from dataclasses import dataclass


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


DB_HOST = os.getenv("DB_HOST", "orders-db")
DB_PORT = os.getenv("DB_PORT", "5432")
DB_NAME = os.getenv("DB_NAME", "orders")
DB_USER = os.getenv("DB_USER", "orders_user")
DB_PASSWORD = os.getenv("DB_PASSWORD", "orders-pass")

DEFAULT_DATABASE_URL = f"postgresql+psycopg://{DB_USER}:{DB_PASSWORD}@{DB_HOST}:{DB_PORT}/{DB_NAME}"


@dataclass(frozen=True)
class Settings:
    """Typed view over the service environment.

    Attributes:
        database_url: SQLAlchemy URL of the shared marketplace database.
        db_wait_secs: How long startup waits for the database to accept
            connections before giving up.
        use_http_adapters: When True, notifications are delivered through
            the HTTP notification client instead of the in-process logger.
        notifications_base_url: Base URL of the notification service.
        http_timeout_secs: Per-request timeout for outgoing HTTP calls.
        http_retry_max: Attempts made when the connection cannot be opened.
        http_retry_backoff_base: Base of the exponential backoff, seconds.
        http_retry_max_sleep: Upper bound for a single backoff sleep.
        http_circuit_fail_threshold: Consecutive failures that open the breaker.
        http_circuit_reset_timeout: Seconds before an open breaker admits a trial call.
        api_max_bytes: Largest accepted request body under ``/api/``.
        log_level: Level name for the service logger.
    """

    database_url: str = DEFAULT_DATABASE_URL
    db_wait_secs: float = 30.0
    use_http_adapters: bool = False
    notifications_base_url: str = "http://notifications:9002"
    http_timeout_secs: float = 2.0
    http_retry_max: int = 3
    http_retry_backoff_base: float = 0.15
    http_retry_max_sleep: float = 0.5
    http_circuit_fail_threshold: int = 5
    http_circuit_reset_timeout: float = 30.0
    api_max_bytes: int = 1 * 1024 * 1024
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            database_url=os.getenv("DATABASE_URL", DEFAULT_DATABASE_URL),
            db_wait_secs=float(os.getenv("DB_WAIT_SECS", "30")),
            use_http_adapters=_env_bool("USE_HTTP_ADAPTERS", False),
            notifications_base_url=os.getenv("NOTIFICATIONS_BASE_URL", "http://notifications:9002"),
            http_timeout_secs=float(os.getenv("HTTP_TIMEOUT_SECS", "2.0")),
            http_retry_max=int(os.getenv("HTTP_RETRY_MAX", "3")),
            http_retry_backoff_base=float(os.getenv("HTTP_RETRY_BACKOFF_BASE", "0.15")),
            http_retry_max_sleep=float(os.getenv("HTTP_RETRY_MAX_SLEEP", "0.5")),
            http_circuit_fail_threshold=int(os.getenv("HTTP_CIRCUIT_FAIL_THRESHOLD", "5")),
            http_circuit_reset_timeout=float(os.getenv("HTTP_CIRCUIT_RESET_TIMEOUT", "30.0")),
            api_max_bytes=int(os.getenv("API_MAX_BYTES", str(1 * 1024 * 1024))),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        )
