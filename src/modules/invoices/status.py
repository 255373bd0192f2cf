"""
Status rules for invoice items and invoices.

Statuses are always derived from amounts, due date and the current date;
callers never assign them. Every function here is pure and idempotent.
"""

from datetime import date
from decimal import Decimal
from enum import StrEnum

from src.shared.utils.money import ZERO


class InvoiceItemStatus(StrEnum):
    """Payment status of a single fee line."""

    UNPAID = "UNPAID"
    PARTIALLY_PAID = "PARTIALLY_PAID"
    PAID = "PAID"
    OVERDUE = "OVERDUE"


class InvoiceStatus(StrEnum):
    """Invoice status."""

    UNPAID = "UNPAID"
    PARTIALLY_PAID = "PARTIALLY_PAID"
    PAID = "PAID"
    OVERDUE = "OVERDUE"
    CANCELLED = "CANCELLED"


OPEN_INVOICE_STATUSES = (
    InvoiceStatus.UNPAID.value,
    InvoiceStatus.PARTIALLY_PAID.value,
    InvoiceStatus.OVERDUE.value,
)


def ledger_invariant_holds(
    amount: Decimal, paid: Decimal, waiver: Decimal, balance: Decimal
) -> bool:
    """amount == paid + waiver + balance with every part non-negative."""
    if min(amount, paid, waiver, balance) < ZERO:
        return False
    return amount == paid + waiver + balance


def derive_item_status(
    paid: Decimal,
    waiver: Decimal,
    balance: Decimal,
    due_date: date | None,
    today: date,
) -> InvoiceItemStatus:
    """
    Status of a fee line.

    Overdue wins over partial/unpaid but never over PAID.
    """
    if balance <= ZERO:
        return InvoiceItemStatus.PAID
    if due_date is not None and due_date < today:
        return InvoiceItemStatus.OVERDUE
    if paid + waiver > ZERO:
        return InvoiceItemStatus.PARTIALLY_PAID
    return InvoiceItemStatus.UNPAID


def derive_invoice_status(
    total: Decimal,
    paid: Decimal,
    waived: Decimal,
    due_date: date | None,
    today: date,
    cancelled: bool = False,
) -> InvoiceStatus:
    """
    Status of a whole invoice.

    Waived amounts count toward settlement, so a fully waived or
    paid-plus-waived invoice is PAID. A partial payment wins over overdue.
    """
    if cancelled:
        return InvoiceStatus.CANCELLED
    settled = paid + waived
    if settled >= total:
        return InvoiceStatus.PAID
    if paid > ZERO:
        return InvoiceStatus.PARTIALLY_PAID
    if due_date is not None and due_date < today:
        return InvoiceStatus.OVERDUE
    return InvoiceStatus.UNPAID
