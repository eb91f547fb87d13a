"""Structured logging: JSON records carry the request id."""

import io
import json
import logging

from pythonjsonlogger import jsonlogger

from marketplace_orders.logging_filters import LOG_FORMAT, RequestIdFilter, configure_logging
from marketplace_orders.middleware import REQUEST_ID_CTX


def _capture(logger):
    buf = io.StringIO()
    h = logging.StreamHandler(buf)
    h.setFormatter(jsonlogger.JsonFormatter(LOG_FORMAT))
    h.addFilter(RequestIdFilter())
    logger.addHandler(h)
    return buf, h


def test_records_carry_request_id_and_extras():
    logger = configure_logging("INFO")
    buf, h = _capture(logger)
    token = REQUEST_ID_CTX.set("rid-7")
    try:
        logging.getLogger("marketplace_orders.service").info("orders created", extra={"sellers": 2})
    finally:
        REQUEST_ID_CTX.reset(token)
        logger.removeHandler(h)

    record = json.loads(buf.getvalue().splitlines()[-1])
    assert record["message"] == "orders created"
    assert record["request_id"] == "rid-7"
    assert record["sellers"] == 2
    assert record["name"] == "marketplace_orders.service"


def test_placeholder_outside_requests():
    logger = configure_logging("INFO")
    buf, h = _capture(logger)
    try:
        logging.getLogger("marketplace_orders").warning("startup")
    finally:
        logger.removeHandler(h)
    assert json.loads(buf.getvalue())["request_id"] == "-"


def test_configure_logging_is_idempotent():
    logger = configure_logging("DEBUG")
    n = len(logger.handlers)
    assert configure_logging("WARNING").handlers == logger.handlers
    assert len(logger.handlers) == n
    assert logger.level == logging.WARNING
    configure_logging("INFO")
