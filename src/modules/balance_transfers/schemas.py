"""Schemas for balance carry-forward transfers."""

from datetime import date, datetime
from decimal import Decimal

from pydantic import Field, field_validator

from src.modules.fee_structures.models import Term
from src.modules.fee_structures.schemas import validate_academic_year
from src.shared.schemas import BaseSchema


class FeeScope(BaseSchema):
    """A (class, term, academic year) an invoice belongs to."""

    class_name: str = Field(min_length=1, max_length=20)
    term: Term
    academic_year: str

    @field_validator("academic_year")
    @classmethod
    def check_academic_year(cls, v: str) -> str:
        return validate_academic_year(v)

    @field_validator("class_name")
    @classmethod
    def normalize_class_name(cls, v: str) -> str:
        return v.strip().lower()

    def __str__(self) -> str:
        return f"{self.class_name} {self.term.value} {self.academic_year}"


class CarryForwardRequest(BaseSchema):
    student_id: int
    from_scope: FeeScope
    to_scope: FeeScope
    transferred_by_id: int
    due_date: date | None = None


class FeeBalanceDetailResponse(BaseSchema):
    id: int
    fee_item_name: str
    original_amount: Decimal
    balance_amount: Decimal
    term: str
    academic_year: str
    source_invoice_item_id: int
    carried_invoice_item_id: int | None
    carried_forward_date: datetime


class FeeBalanceTransferResponse(BaseSchema):
    """Transfer with its per-item details."""

    id: int
    transfer_number: str
    student_id: int
    from_class: str
    from_term: str
    from_academic_year: str
    to_class: str
    to_term: str
    to_academic_year: str
    destination_invoice_id: int | None
    promotion_id: int | None
    transfer_date: datetime
    total_balance_transferred: Decimal
    status: str
    failure_reason: str | None
    transferred_by_id: int
    details: list[FeeBalanceDetailResponse] = []
