from __future__ import annotations

import uuid
from typing import Any


class DomainError(ValueError):
    """
    Base class for every rule violation a service can report.

    Subclasses stay `ValueError`s so callers that only care about "the request was refused"
    can keep catching `ValueError`. Endpoints use `status_code` and `code` to build the
    HTTP error payload.
    """

    status_code: int = 409
    code: str = "DOMAIN_ERROR"

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.message = message
        self.context = context

    def to_detail(self) -> dict[str, Any]:
        detail: dict[str, Any] = {"code": self.code, "message": self.message}
        for key, value in self.context.items():
            detail[key] = str(value) if isinstance(value, uuid.UUID) else value
        return detail


# --- Status engine ---


class InvalidStatus(DomainError):
    status_code = 400
    code = "INVALID_STATUS"


class TerminalStateViolation(DomainError):
    code = "TERMINAL_STATE"


class FulfillmentMismatch(DomainError):
    code = "FULFILLMENT_MISMATCH"


class InvalidTransition(DomainError):
    code = "INVALID_TRANSITION"


class OrderNotEditable(DomainError):
    code = "ORDER_NOT_EDITABLE"


class OrderNotFound(DomainError):
    status_code = 404
    code = "ORDER_NOT_FOUND"


# --- Inventory transactions ---


class Forbidden(DomainError):
    status_code = 403
    code = "FORBIDDEN"


class NoValidItems(DomainError):
    status_code = 400
    code = "NO_VALID_ITEMS"


class MissingField(DomainError):
    status_code = 400
    code = "MISSING_FIELD"


class InvalidReference(DomainError):
    status_code = 400
    code = "INVALID_REFERENCE"


class ReturnQuantityExceeded(DomainError):
    code = "RETURN_QUANTITY_EXCEEDED"

    def __init__(
        self,
        *,
        variant_id: uuid.UUID,
        purchased: int,
        already_returned: int,
        requested: int,
    ) -> None:
        super().__init__(
            f"Return quantity exceeds purchased quantity for variant {variant_id}: "
            f"purchased={purchased} already_returned={already_returned} requested={requested}",
            variant_id=variant_id,
            purchased=purchased,
            already_returned=already_returned,
            requested=requested,
        )
        self.variant_id = variant_id
        self.purchased = purchased
        self.already_returned = already_returned
        self.requested = requested


class DuplicateInvoice(DomainError):
    code = "DUPLICATE_INVOICE"


class TransactionNotFound(DomainError):
    status_code = 404
    code = "TRANSACTION_NOT_FOUND"


class NotPending(DomainError):
    code = "NOT_PENDING"


class AlreadyVoided(DomainError):
    code = "ALREADY_VOIDED"


class PurchaseHasReturns(DomainError):
    """Void the returns first; the purchase is what they are counted against."""

    code = "PURCHASE_HAS_RETURNS"


class InsufficientStock(DomainError):
    code = "INSUFFICIENT_STOCK"


# --- Vendors ---


class VendorNotFound(DomainError):
    status_code = 404
    code = "VENDOR_NOT_FOUND"


class VendorBalanceUpdateFailed(DomainError):
    code = "VENDOR_BALANCE_UPDATE_FAILED"


# --- Idempotency ---


class RequestInProgress(DomainError):
    code = "REQUEST_IN_PROGRESS"


class InvalidIdempotencyKey(DomainError):
    status_code = 400
    code = "INVALID_IDEMPOTENCY_KEY"


class IdempotencyKeyRequired(DomainError):
    status_code = 400
    code = "IDEMPOTENCY_KEY_REQUIRED"


class InvalidAmount(DomainError):
    status_code = 400
    code = "INVALID_AMOUNT"
