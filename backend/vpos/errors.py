"""
Domain error taxonomy for the checkout core.

Every error carries a stable `code` (what API clients switch on), an HTTP
status for the route layer, and an optional `details` dict that is
returned verbatim to the caller.
"""

from __future__ import annotations


class PosError(Exception):
    """Base class for errors surfaced to the caller."""
    code = "POS_ERROR"
    http_status = 400
    transient = False

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {"error": self.message, "code": self.code, "details": self.details}


class ValidationError(PosError, ValueError):
    """400-level input problem."""
    code = "VALIDATION_ERROR"


class EmptyCart(ValidationError):
    code = "EMPTY_CART"


class InvalidQuantity(ValidationError):
    code = "INVALID_QUANTITY"


class InsufficientCash(ValidationError):
    code = "INSUFFICIENT_CASH"


class ProductNotFound(PosError):
    code = "PRODUCT_NOT_FOUND"
    http_status = 404


class ProductInactive(PosError):
    code = "PRODUCT_INACTIVE"
    http_status = 409


class InsufficientStock(PosError):
    code = "INSUFFICIENT_STOCK"
    http_status = 409


class ConcurrentStockConflict(PosError):
    """A conditional stock decrement matched no row. Safe to retry."""
    code = "CONCURRENT_STOCK_CONFLICT"
    http_status = 409
    transient = True


class AgeVerificationRequired(PosError):
    code = "AGE_VERIFICATION_REQUIRED"
    http_status = 403


class AgeVerificationFailed(PosError):
    code = "AGE_VERIFICATION_FAILED"
    http_status = 403


class VerificationNotFound(PosError):
    code = "VERIFICATION_NOT_FOUND"
    http_status = 404


class OverrideNotPermitted(PosError):
    code = "OVERRIDE_NOT_PERMITTED"
    http_status = 409


class PaymentDeclined(PosError):
    code = "PAYMENT_DECLINED"
    http_status = 402


class InsufficientPoints(PosError):
    code = "INSUFFICIENT_POINTS"
    http_status = 409


class CustomerNotFound(PosError):
    code = "CUSTOMER_NOT_FOUND"
    http_status = 404


class StoreNotFound(PosError):
    code = "STORE_NOT_FOUND"
    http_status = 404


class TransactionNotFound(PosError):
    code = "TRANSACTION_NOT_FOUND"
    http_status = 404


class PersistenceFailure(PosError):
    """The atomic commit failed and was rolled back."""
    code = "PERSISTENCE_FAILURE"
    http_status = 503

    def __init__(self, message: str, details: dict | None = None, *, transient: bool = False):
        super().__init__(message, details)
        self.transient = transient
