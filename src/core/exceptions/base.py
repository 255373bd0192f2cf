from decimal import Decimal
from typing import Any


class AppException(Exception):
    """Base application exception."""

    def __init__(
        self,
        message: str,
        status_code: int = 400,
        details: dict[str, Any] | None = None,
    ):
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)


class NotFoundError(AppException):
    """Resource not found."""

    def __init__(self, resource: str, identifier: Any = None):
        message = f"{resource} not found"
        if identifier:
            message = f"{resource} with id={identifier} not found"
        super().__init__(message=message, status_code=404)


class ValidationError(AppException):
    """Validation error."""

    def __init__(self, message: str, field: str | None = None):
        details = {"field": field} if field else {}
        super().__init__(message=message, status_code=422, details=details)


class DuplicateError(AppException):
    """Duplicate resource."""

    def __init__(self, resource: str, field: str, value: Any):
        message = f"{resource} with {field}={value} already exists"
        super().__init__(message=message, status_code=409, details={"field": field, "value": value})


def _amount(value: Decimal | None) -> str | None:
    return None if value is None else str(value)


# --- Ledger errors ---


class LedgerError(AppException):
    """Base for fee ledger rule violations."""


class InvalidAllocation(LedgerError):
    """Payment or waiver amount is not positive or exceeds the item balance."""

    def __init__(self, invoice_item_id: int | None, amount: Decimal, balance: Decimal):
        if amount <= 0:
            message = f"Amount must be positive, got {amount}"
        else:
            message = f"Amount {amount} exceeds balance {balance} of invoice item {invoice_item_id}"
        super().__init__(
            message=message,
            status_code=422,
            details={
                "field": "amount",
                "invoice_item_id": invoice_item_id,
                "amount": _amount(amount),
                "balance": _amount(balance),
            },
        )


class InvalidReversal(LedgerError):
    """Reversal would drive paid or waived amount below zero."""

    def __init__(
        self, invoice_item_id: int | None, amount: Decimal, available: Decimal, kind: str = "paid"
    ):
        if amount <= 0:
            message = f"Reversal amount must be positive, got {amount}"
        else:
            message = (
                f"Reversal amount {amount} exceeds {kind} amount {available} "
                f"of invoice item {invoice_item_id}"
            )
        super().__init__(
            message=message,
            status_code=422,
            details={
                "field": "amount",
                "invoice_item_id": invoice_item_id,
                "amount": _amount(amount),
                kind: _amount(available),
            },
        )


class AllocationMismatch(LedgerError):
    """Sum of allocation targets does not equal the payment amount."""

    def __init__(self, payment_id: int, payment_amount: Decimal, allocated: Decimal):
        super().__init__(
            message=(
                f"Allocations total {allocated} does not match "
                f"payment amount {payment_amount}"
            ),
            status_code=422,
            details={
                "field": "targets",
                "payment_id": payment_id,
                "payment_amount": _amount(payment_amount),
                "allocated": _amount(allocated),
            },
        )


class OverAllocation(LedgerError):
    """A single allocation target exceeds the item's current balance."""

    def __init__(self, invoice_item_id: int, sequence: int, amount: Decimal, balance: Decimal):
        super().__init__(
            message=(
                f"Allocation #{sequence} of {amount} exceeds current balance "
                f"{balance} of invoice item {invoice_item_id}"
            ),
            status_code=422,
            details={
                "field": "targets",
                "invoice_item_id": invoice_item_id,
                "sequence": sequence,
                "amount": _amount(amount),
                "balance": _amount(balance),
            },
        )


class RefundExceedsPayment(LedgerError):
    """Refund is not positive or larger than the allocated amount."""

    def __init__(self, payment_item_id: int, amount: Decimal, allocated: Decimal):
        super().__init__(
            message=(
                f"Refund amount {amount} must be positive and not exceed "
                f"allocated amount {allocated}"
            ),
            status_code=422,
            details={
                "field": "amount",
                "payment_item_id": payment_item_id,
                "amount": _amount(amount),
                "allocated": _amount(allocated),
            },
        )


class InvoiceCancelled(LedgerError):
    """Mutation attempted on a cancelled invoice."""

    def __init__(self, invoice_id: int, invoice_number: str | None = None):
        label = invoice_number or f"id={invoice_id}"
        super().__init__(
            message=f"Invoice {label} is cancelled",
            status_code=409,
            details={"invoice_id": invoice_id},
        )


class HasActivePayments(LedgerError):
    """Invoice cancel attempted while completed allocations still exist."""

    def __init__(self, invoice_id: int, active_count: int):
        super().__init__(
            message=(
                f"Invoice id={invoice_id} has {active_count} active payment allocation(s); "
                "cancel or refund them first"
            ),
            status_code=409,
            details={"invoice_id": invoice_id, "active_count": active_count},
        )


class ReversalAborted(LedgerError):
    """Cancel/refund rolled back because a downstream step failed."""

    def __init__(self, payment_item_id: int, cause: AppException):
        self.cause = cause
        super().__init__(
            message=f"Reversal of payment item {payment_item_id} aborted: {cause.message}",
            status_code=409,
            details={
                "payment_item_id": payment_item_id,
                "cause": type(cause).__name__,
                **{k: v for k, v in cause.details.items() if k != "field"},
            },
        )


class PersistenceFailure(AppException):
    """Store unavailable or transaction conflict; the unit of work was rolled back."""

    def __init__(self, message: str = "Database operation failed"):
        super().__init__(message=message, status_code=503)
