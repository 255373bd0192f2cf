from src.core.exceptions.base import (
    AppException,
    NotFoundError,
    ValidationError,
    DuplicateError,
    LedgerError,
    InvalidAllocation,
    InvalidReversal,
    AllocationMismatch,
    OverAllocation,
    RefundExceedsPayment,
    InvoiceCancelled,
    HasActivePayments,
    ReversalAborted,
    PersistenceFailure,
)

__all__ = [
    "AppException",
    "NotFoundError",
    "ValidationError",
    "DuplicateError",
    "LedgerError",
    "InvalidAllocation",
    "InvalidReversal",
    "AllocationMismatch",
    "OverAllocation",
    "RefundExceedsPayment",
    "InvoiceCancelled",
    "HasActivePayments",
    "ReversalAborted",
    "PersistenceFailure",
]
