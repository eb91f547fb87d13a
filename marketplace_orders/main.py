"""Orders service API built with FastAPI.

This module exposes the HTTP surface of the order core. Endpoints are kept
intentionally small: they validate requests (via Pydantic), map them to
domain DTOs, delegate to ``OrderService`` and render the result. Every
``OrderError`` is turned into ``{"detail": CODE, "message": ..., "context":
...}`` with the error's HTTP status by a single exception handler.

The caller identity is attached by the upstream gateway as ``X-User-Id`` and
``X-User-Role`` headers; this service only compares ids and roles.

Idempotency: when an ``Idempotency-Key`` header is provided on cart
submission, the first request is processed and its response stored;
retries with the same key and payload get the stored response back with
``Idempotent-Replay: true``; the same key with a different payload gets
HTTP 409.

Run with ``uvicorn marketplace_orders.main:create_app --factory``.
"""

import logging
import uuid
from typing import Annotated, Optional

from fastapi import Depends, FastAPI, Header, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from . import idempotency
from .config import Settings
from .db import init_db, make_engine, make_session_factory, ping, wait_for_db
from .domain import CartItem, NotifierPort, OrderQuery, OrderStatus, Principal, Role
from .errors import AuthorizationError, OrderError, TransientInfrastructureError
from .logging_filters import configure_logging
from .middleware import ApiSizeLimitMiddleware, RequestIdMiddleware
from .providers import build_order_service
from .schemas import CreateOrderDTO, OrderReadDTO, StatusUpdateDTO
from .service import OrderService

logger = logging.getLogger("marketplace_orders.api")


# ---- Identity ----
def get_principal(
    x_user_id: Annotated[Optional[str], Header(alias="X-User-Id")] = None,
    x_user_role: Annotated[Optional[str], Header(alias="X-User-Role")] = None,
) -> Principal:
    """Build the caller identity from the gateway headers.

    Raises:
        AuthorizationError: 401 ``AUTHENTICATION_REQUIRED`` when the headers
            are missing or malformed.
    """
    try:
        return Principal(user_id=uuid.UUID(x_user_id or ""), role=Role(x_user_role))
    except ValueError:
        raise AuthorizationError(
            "You must be authenticated to access this resource",
            code="AUTHENTICATION_REQUIRED",
            status_code=401,
        )


def require_role(role: Role):
    def dependency(principal: Annotated[Principal, Depends(get_principal)]) -> Principal:
        if principal.role is not role:
            raise AuthorizationError(
                f"Access denied. Required role: {role.value}",
                code="INSUFFICIENT_PERMISSIONS",
            )
        return principal

    return dependency


def get_service(request: Request) -> OrderService:
    return request.app.state.service


# ---- Error rendering ----
async def order_error_handler(request: Request, exc: OrderError):
    if exc.status_code >= 500:
        logger.error("request failed", extra={"code": exc.code, "path": request.url.path})
    return JSONResponse(jsonable_encoder(exc.to_dict()), status_code=exc.status_code)


async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = [{"loc": [str(p) for p in e.get("loc", ())], "msg": e.get("msg", "")} for e in exc.errors()]
    return JSONResponse(
        {"detail": "VALIDATION_ERROR", "message": "Invalid request data", "context": {"errors": errors}},
        status_code=400,
    )


def _store_response(session_factory, key: str, status_code: int, body: dict) -> None:
    """Record the response for ``key``; on failure forget the key instead.

    Runs after the orders are committed; failures are logged, never raised.
    """
    try:
        idempotency.finalize(session_factory, key, status_code, body)
    except Exception:
        logger.exception("idempotency finalize failed", extra={"idempotency_key": key})
        try:
            idempotency.release(session_factory, key)
        except Exception:
            logger.exception("idempotency release failed", extra={"idempotency_key": key})


# ---- Application factory ----
def create_app(settings: Settings | None = None, notifier: NotifierPort | None = None) -> FastAPI:
    """Build the FastAPI application and its dependencies.

    Args:
        settings: Service settings; read from the environment when omitted.
        notifier: Optional notifier overriding the one chosen by settings.

    Returns:
        FastAPI: The configured application. Its ``state`` carries the
        ``settings``, ``engine``, ``session_factory`` and ``service``.
    """
    settings = settings or Settings.from_env()
    configure_logging(settings.log_level)

    engine = make_engine(settings.database_url)
    session_factory = make_session_factory(engine)

    app = FastAPI(title="Marketplace Orders Service")
    app.state.settings = settings
    app.state.engine = engine
    app.state.session_factory = session_factory
    app.state.service = build_order_service(settings, session_factory, notifier)

    app.add_middleware(ApiSizeLimitMiddleware, max_bytes=settings.api_max_bytes)
    app.add_middleware(RequestIdMiddleware)
    app.add_exception_handler(OrderError, order_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)

    @app.on_event("startup")
    def _startup_db():
        wait_for_db(engine, settings.db_wait_secs)
        init_db(engine)

    @app.on_event("shutdown")
    def _dispose_engine():
        engine.dispose()

    @app.get("/health")
    def health():
        """Liveness/health endpoint with a database check."""
        db_ok = ping(engine)
        return JSONResponse(
            {"ok": db_ok, "components": {"db": {"ok": db_ok}}},
            status_code=200 if db_ok else 503,
        )

    @app.post("/api/v1/orders/", status_code=201)
    def create_orders(
        dto: CreateOrderDTO,
        principal: Annotated[Principal, Depends(require_role(Role.CONSUMER))],
        service: Annotated[OrderService, Depends(get_service)],
        idempotency_key: Annotated[Optional[str], Header(alias="Idempotency-Key")] = None,
    ):
        """Submit a cart; one order is created per seller.

        Returns:
            201 with ``{"orders": [...], "count": n}``; a stored response on
            idempotent replay; 400/404/409 with ``{"detail": CODE}`` on
            failure.
        """
        if idempotency_key:
            payload = {"consumer_id": str(principal.user_id), "body": dto.model_dump(mode="json")}
            stored = idempotency.get_or_create_idempotent(session_factory, idempotency_key, payload)
            if stored is not None:
                return JSONResponse(stored.body, status_code=stored.status_code, headers={"Idempotent-Replay": "true"})

        items = [CartItem(product_id=i.product_id, quantity=i.quantity) for i in dto.items]
        try:
            orders = service.create_orders(principal.user_id, items, dto.delivery_method)
        except OrderError as e:
            if idempotency_key:
                if isinstance(e, TransientInfrastructureError):
                    idempotency.release(session_factory, idempotency_key)
                else:
                    _store_response(session_factory, idempotency_key, e.status_code, jsonable_encoder(e.to_dict()))
            raise
        except Exception:
            if idempotency_key:
                idempotency.release(session_factory, idempotency_key)
            raise

        body = jsonable_encoder(
            {"orders": [OrderReadDTO.from_domain(o) for o in orders], "count": len(orders)}
        )
        if idempotency_key:
            _store_response(session_factory, idempotency_key, 201, body)
        return JSONResponse(body, status_code=201)

    @app.get("/api/v1/orders/")
    def list_orders(
        principal: Annotated[Principal, Depends(get_principal)],
        service: Annotated[OrderService, Depends(get_service)],
        status: Optional[OrderStatus] = None,
        limit: Annotated[int, Query(ge=1, le=100)] = 50,
        offset: Annotated[int, Query(ge=0)] = 0,
    ):
        query = OrderQuery(status=status, limit=limit, offset=offset)
        orders = service.list_orders(principal, query)
        return {
            "orders": [OrderReadDTO.from_domain(o) for o in orders],
            "count": len(orders),
            "filters": {"status": status.value if status else None, "limit": limit, "offset": offset},
        }

    @app.get("/api/v1/orders/{order_id}")
    def retrieve_order(
        order_id: uuid.UUID,
        principal: Annotated[Principal, Depends(get_principal)],
        service: Annotated[OrderService, Depends(get_service)],
    ):
        order = service.get_order(principal, order_id)
        return {"order": OrderReadDTO.from_domain(order)}

    @app.patch("/api/v1/orders/{order_id}/status")
    def update_order_status(
        order_id: uuid.UUID,
        dto: StatusUpdateDTO,
        principal: Annotated[Principal, Depends(require_role(Role.SME))],
        service: Annotated[OrderService, Depends(get_service)],
    ):
        """Move an order along the status state machine (seller only)."""
        order = service.update_status(principal, order_id, dto.status)
        return {"order": OrderReadDTO.from_domain(order)}

    return app
