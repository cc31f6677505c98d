# Overview: Exception taxonomy shared by the stock, cart, order and adjustment services.

"""
Primary-path errors abort the operation and roll back the session; routes turn
them into JSON bodies of the form {"error": message, "details": {...}} using
status_code.

SideEffectFailure is the odd one out: it is never raised to a caller. Services
build one when a best-effort step fails (customer totals, a fail-open payment
check), log it and move on.
"""

from __future__ import annotations


class StockCoreError(Exception):
    """Base class for errors surfaced to callers."""

    status_code = 400

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {"error": self.message, "details": self.details}


class ValidationError(StockCoreError, ValueError):
    """Malformed input: non-positive quantity, empty reason, bad discount."""

    status_code = 400


class NotFoundError(StockCoreError):
    """Entity missing, in another tenant, soft-deleted or already reversed."""

    status_code = 404


class ProductNotFoundError(NotFoundError):
    def __init__(self, product_id, details: dict | None = None):
        super().__init__(
            f"Product not found: {product_id}",
            details={"product_id": product_id, **(details or {})},
        )
        self.product_id = product_id


class InsufficientStockError(StockCoreError):
    """A decrease would take on-hand below zero."""

    status_code = 409

    def __init__(
        self,
        message: str | None = None,
        *,
        product_id=None,
        current: int,
        requested: int,
        available: int | None = None,
        details: dict | None = None,
    ):
        if available is None:
            available = current
        available = max(0, available)
        if message is None:
            message = f"Insufficient stock. Available: {available}, Requested: {requested}"
        super().__init__(
            message,
            details={
                "product_id": product_id,
                "current": current,
                "requested": requested,
                "available": available,
                **(details or {}),
            },
        )
        self.product_id = product_id
        self.current = current
        self.requested = requested
        self.available = available


class AlreadyVoidedError(StockCoreError):
    status_code = 409


class OrderVoidedError(StockCoreError):
    """Edit attempted on a voided (immutable) order."""

    status_code = 409


class HasActivePaymentsError(StockCoreError):
    status_code = 409


class PaymentCheckUnavailableError(StockCoreError):
    status_code = 503


class SideEffectFailure(Exception):
    """Non-critical collaborator failure. Logged, never propagated."""

    def __init__(self, operation: str, cause: BaseException | None = None, **context):
        message = f"{operation} failed"
        if cause is not None:
            message = f"{message}: {cause}"
        super().__init__(message)
        self.operation = operation
        self.cause = cause
        self.context = context
