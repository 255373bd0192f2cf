"""Schemas for Invoices module."""

from datetime import date, datetime
from decimal import Decimal

from pydantic import Field, field_validator

from src.modules.fee_structures.models import Term
from src.modules.fee_structures.schemas import validate_academic_year
from src.modules.invoices.status import InvoiceStatus
from src.shared.schemas import BaseSchema


# --- Invoice Item Schemas ---


class InvoiceItemResponse(BaseSchema):
    """Schema for invoice item response."""

    id: int
    invoice_id: int
    fee_structure_item_id: int | None
    item_name: str
    description: str | None
    category: str
    amount: Decimal
    paid_amount: Decimal
    waiver_amount: Decimal
    balance_amount: Decimal
    payment_status: str
    due_date: date
    is_mandatory: bool
    is_carried_forward: bool
    carried_forward_from_id: int | None
    waiver_reason: str | None
    waiver_approved_by_id: int | None
    display_order: int


class WaiverCreate(BaseSchema):
    """Schema for waiving part of an item's balance."""

    amount: Decimal = Field(gt=0)
    reason: str = Field(min_length=1)
    approved_by_id: int


class WaiverRevoke(BaseSchema):
    """Schema for revoking a previously approved waiver."""

    amount: Decimal = Field(gt=0)
    revoked_by_id: int
    reason: str | None = None


# --- Invoice Schemas ---


class InvoiceCreate(BaseSchema):
    """Schema for issuing an invoice from a fee structure."""

    student_id: int
    fee_structure_id: int
    generated_by_id: int
    due_date: date | None = None
    remarks: str | None = None


class InvoiceCancel(BaseSchema):
    cancelled_by_id: int
    reason: str | None = None


class DueDateUpdate(BaseSchema):
    due_date: date
    updated_by_id: int


class InvoiceResponse(BaseSchema):
    """Schema for invoice response."""

    id: int
    invoice_number: str
    student_id: int
    fee_structure_id: int | None
    class_name: str
    academic_year: str
    term: str
    status: str
    due_date: date
    total_amount: Decimal
    paid_amount: Decimal
    waiver_amount: Decimal
    balance_amount: Decimal
    remarks: str | None
    generated_by_id: int
    cancelled_by_id: int | None
    cancellation_date: datetime | None
    cancellation_reason: str | None
    created_at: datetime
    updated_at: datetime


class InvoiceDetailResponse(InvoiceResponse):
    """Invoice with its items."""

    items: list[InvoiceItemResponse] = []


class InvoiceFilters(BaseSchema):
    """Filters for listing invoices."""

    student_id: int | None = None
    academic_year: str | None = None
    term: Term | None = None
    status: InvoiceStatus | None = None
    page: int = Field(1, ge=1)
    limit: int = Field(50, ge=1, le=100)

    @field_validator("academic_year")
    @classmethod
    def check_academic_year(cls, v: str | None) -> str | None:
        return v if v is None else validate_academic_year(v)


class InvoiceStatusSummary(BaseSchema):
    """Aggregated invoice amounts for one status."""

    status: str
    total_invoices: int
    total_amount: Decimal
    total_paid: Decimal
    total_waived: Decimal
    total_balance: Decimal


class StatusRefreshResult(BaseSchema):
    invoices_checked: int
    invoices_changed: int
    items_changed: int
