"""Error taxonomy for the order core.

Every failure the core reports is an ``OrderError`` subclass carrying a
stable machine-readable ``code``, the HTTP ``status_code`` the API maps it
to, a human ``message`` and a ``context`` dict with structured detail
(product ids, available quantities, the attempted transition...). The API
layer renders them with a single exception handler; the domain never deals
with HTTP responses directly.
"""

from typing import Any


class OrderError(Exception):
    """Base class for all errors raised by the order core."""

    default_code = "INTERNAL_ERROR"
    default_status = 500

    def __init__(
        self,
        message: str,
        code: str | None = None,
        status_code: int | None = None,
        **context: Any,
    ):
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.status_code = status_code or self.default_status
        self.context = context

    def to_dict(self) -> dict:
        body = {"detail": self.code, "message": self.message}
        if self.context:
            body["context"] = self.context
        return body

    def __str__(self) -> str:
        return self.code


class ValidationError(OrderError):
    """Malformed or missing input."""

    default_code = "VALIDATION_ERROR"
    default_status = 400


class NotFoundError(OrderError):
    """Unknown order or product id."""

    default_code = "NOT_FOUND"
    default_status = 404


class ConflictError(OrderError):
    """Stock or state conflict: out of stock, insufficient inventory,
    invalid transition, concurrent modification."""

    default_code = "CONFLICT"
    default_status = 400


class AuthorizationError(OrderError):
    """The caller may not perform the operation on this resource."""

    default_code = "FORBIDDEN"
    default_status = 403


class TransientInfrastructureError(OrderError):
    """Database or downstream channel unavailable; safe to retry."""

    default_code = "UPSTREAM_UNAVAILABLE"
    default_status = 503


# ---- Factories for the codes the core raises ----

def product_not_found(missing_ids) -> NotFoundError:
    ids = sorted(str(i) for i in missing_ids)
    return NotFoundError("One or more products not found", code="PRODUCT_NOT_FOUND", product_ids=ids)


def order_not_found(order_id) -> NotFoundError:
    return NotFoundError("Order not found", code="ORDER_NOT_FOUND", order_id=str(order_id))


def out_of_stock(product_id, name: str) -> ConflictError:
    return ConflictError(
        f'Product "{name}" is out of stock',
        code="OUT_OF_STOCK",
        product_id=str(product_id),
    )


def insufficient_inventory(product_id, available: int | None = None, requested: int | None = None) -> ConflictError:
    context: dict[str, Any] = {"product_id": str(product_id)}
    if available is not None:
        context["available"] = available
    if requested is not None:
        context["requested"] = requested
    return ConflictError("Insufficient inventory", code="INSUFFICIENT_INVENTORY", **context)


def invalid_transition(current: str, requested: str) -> ConflictError:
    return ConflictError(
        f"Cannot transition from {current} to {requested}",
        code="INVALID_STATUS_TRANSITION",
        current_status=current,
        requested_status=requested,
    )


def concurrent_modification(order_id) -> ConflictError:
    return ConflictError(
        "Order was modified by another request",
        code="CONCURRENT_MODIFICATION",
        status_code=409,
        order_id=str(order_id),
    )


def forbidden(message: str = "You do not have permission to access this order") -> AuthorizationError:
    return AuthorizationError(message, code="FORBIDDEN")
