"""Payment / payment item statuses and the parent cascade rule."""

from collections.abc import Iterable
from enum import StrEnum


class PaymentMode(StrEnum):
    """How the money was received."""

    CASH = "CASH"
    CHEQUE = "CHEQUE"
    BANK_TRANSFER = "BANK_TRANSFER"
    CARD = "CARD"
    MOBILE_MONEY = "MOBILE_MONEY"
    OTHER = "OTHER"


class PaymentStatus(StrEnum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"
    REFUNDED = "REFUNDED"


class PaymentItemStatus(StrEnum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    REFUNDED = "REFUNDED"


def derive_payment_status(current: str, item_statuses: Iterable[str]) -> str:
    """
    Payment status as a function of its allocations.

    A completed payment becomes CANCELLED once every allocation is cancelled
    and REFUNDED once every allocation is refunded; any other mix keeps the
    current status.
    """
    statuses = list(item_statuses)
    if current != PaymentStatus.COMPLETED.value or not statuses:
        return current
    if all(s == PaymentItemStatus.CANCELLED.value for s in statuses):
        return PaymentStatus.CANCELLED.value
    if all(s == PaymentItemStatus.REFUNDED.value for s in statuses):
        return PaymentStatus.REFUNDED.value
    return current
