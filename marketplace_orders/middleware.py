"""Middleware that assigns and propagates a request identifier.

Every incoming HTTP request receives a request identifier. The identifier
is read from the incoming ``X-Request-ID`` header when provided by the
gateway or client, or generated server-side (UUIDv4) otherwise. It is
stored on ``request.state`` and in a context variable so code running
downstream (log filters, the HTTP notifier) can read it without passing it
explicitly, and it is echoed on the response.
"""

import contextvars
import logging
import uuid

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse

REQUEST_ID_CTX = contextvars.ContextVar("request_id", default="-")

logger = logging.getLogger("marketplace_orders.requests")


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Sets ``request.state.request_id`` and the ``X-Request-ID`` response header."""

    HEADER = "X-Request-ID"

    async def dispatch(self, request: Request, call_next):
        rid = request.headers.get(self.HEADER) or str(uuid.uuid4())
        request.state.request_id = rid
        token = REQUEST_ID_CTX.set(rid)
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
        finally:
            logger.info(
                "request handled",
                extra={"path": request.url.path, "method": request.method, "status": status_code},
            )
            REQUEST_ID_CTX.reset(token)
        response.headers[self.HEADER] = rid
        return response


class ApiSizeLimitMiddleware(BaseHTTPMiddleware):
    """Rejects ``/api/`` requests whose declared body exceeds ``max_bytes``."""

    def __init__(self, app, max_bytes: int):
        super().__init__(app)
        self.max_bytes = max_bytes

    async def dispatch(self, request: Request, call_next):
        if request.url.path.startswith("/api/"):
            clen = request.headers.get("content-length")
            if clen and clen.isdigit() and int(clen) > self.max_bytes:
                return JSONResponse({"detail": "PAYLOAD_TOO_LARGE"}, status_code=413)
        return await call_next(request)
