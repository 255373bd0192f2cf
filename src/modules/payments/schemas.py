"""Pydantic schemas for Payments module."""

from datetime import date, datetime
from decimal import Decimal

from pydantic import Field, model_validator

from src.modules.payments.status import PaymentMode, PaymentStatus
from src.shared.schemas.base import BaseSchema


# --- Payment Schemas ---


class PaymentCreate(BaseSchema):
    """Schema for recording a payment. Non-cash modes require a reference."""

    student_id: int
    amount: Decimal = Field(gt=0, description="Payment amount (must be positive)")
    payment_mode: PaymentMode
    payment_date: date
    transaction_reference: str | None = Field(None, max_length=100)
    remarks: str | None = None
    collected_by_id: int

    @model_validator(mode="after")
    def require_reference_for_non_cash(self):
        if self.payment_mode != PaymentMode.CASH and not self.transaction_reference:
            raise ValueError("transaction_reference is required for non-cash payments")
        return self


class AllocationTarget(BaseSchema):
    """One (invoice item, amount) pair of an allocation request."""

    invoice_item_id: int
    amount: Decimal


class AllocationRequest(BaseSchema):
    """Ordered allocation targets; order defines payment sequence numbers."""

    targets: list[AllocationTarget] = Field(..., min_length=1)
    allocated_by_id: int


class PaymentVerify(BaseSchema):
    verified_by_id: int


class PaymentFail(BaseSchema):
    reason: str = Field(min_length=1)
    failed_by_id: int


class PaymentCancel(BaseSchema):
    cancelled_by_id: int
    reason: str | None = None


class PaymentItemResponse(BaseSchema):
    """Schema for payment item (allocation) response."""

    id: int
    payment_id: int
    invoice_item_id: int
    amount: Decimal
    original_invoice_item_amount: Decimal
    payment_sequence: int
    status: str
    refund_amount: Decimal | None
    refund_date: datetime | None
    refund_reference: str | None
    reversed_by_id: int | None
    cancellation_date: datetime | None
    remarks: str | None
    created_at: datetime


class PaymentResponse(BaseSchema):
    """Schema for payment response."""

    id: int
    payment_number: str
    receipt_number: str | None
    student_id: int
    amount: Decimal
    payment_mode: str
    payment_date: date
    transaction_reference: str | None
    status: str
    remarks: str | None
    collected_by_id: int
    verified_by_id: int | None
    verified_at: datetime | None
    completed_at: datetime | None
    cancelled_by_id: int | None
    cancellation_date: datetime | None
    cancellation_reason: str | None
    failure_reason: str | None
    refund_amount: Decimal
    refund_date: datetime | None
    created_at: datetime
    updated_at: datetime


class PaymentDetailResponse(PaymentResponse):
    """Payment with its allocations."""

    items: list[PaymentItemResponse] = []


class PaymentFilters(BaseSchema):
    """Filters for listing payments."""

    student_id: int | None = None
    status: PaymentStatus | None = None
    payment_mode: PaymentMode | None = None
    date_from: date | None = None
    date_to: date | None = None
    page: int = Field(1, ge=1)
    limit: int = Field(50, ge=1, le=100)


class PaymentModeSummary(BaseSchema):
    """Payment count and amount for one (mode, status) pair."""

    payment_mode: str
    status: str
    total_payments: int
    total_amount: Decimal


# --- Reversal Schemas ---


class PaymentItemCancel(BaseSchema):
    cancelled_by_id: int
    reason: str | None = None


class RefundCreate(BaseSchema):
    """Schema for refunding (part of) one allocation."""

    amount: Decimal
    refunded_by_id: int
    refund_reference: str | None = Field(None, max_length=100)
    reason: str | None = None
