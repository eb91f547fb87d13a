"""Logging setup: JSON output enriched with the current request id.

``RequestIdFilter`` injects the id set by ``RequestIdMiddleware`` into every
record so ``%(request_id)s`` always resolves, and ``configure_logging``
attaches a single JSON handler to the service logger.
"""

import logging
from logging import Filter, LogRecord

from pythonjsonlogger import jsonlogger

from .middleware import REQUEST_ID_CTX

LOGGER_NAME = "marketplace_orders"
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s %(request_id)s"


class RequestIdFilter(Filter):
    """Attach a ``request_id`` attribute to log records.

    If no request is in flight the placeholder ``"-"`` is used.
    """

    def filter(self, record: LogRecord) -> bool:
        record.request_id = REQUEST_ID_CTX.get()
        return True


def configure_logging(level: str = "INFO") -> logging.Logger:
    """Install the JSON handler on the service logger once.

    Args:
        level: Level name, e.g. ``"INFO"``.

    Returns:
        logging.Logger: The configured ``marketplace_orders`` logger.
    """
    logger = logging.getLogger(LOGGER_NAME)
    if not logger.handlers:
        h = logging.StreamHandler()
        h.setFormatter(jsonlogger.JsonFormatter(LOG_FORMAT))
        h.addFilter(RequestIdFilter())
        logger.addHandler(h)
    logger.setLevel(level)
    return logger
