"""Schemas for student promotions."""

from datetime import date, datetime
from decimal import Decimal

from pydantic import Field, field_validator

from src.modules.balance_transfers.schemas import FeeBalanceTransferResponse
from src.modules.fee_structures.models import Term
from src.modules.fee_structures.schemas import validate_academic_year
from src.shared.schemas import BaseSchema


class PromotionCreate(BaseSchema):
    """Schema for promoting a student."""

    student_id: int
    to_class: str = Field(min_length=1, max_length=20)
    to_academic_year: str
    to_term: Term = Term.TERM_1
    promoted_by_id: int
    remarks: str | None = None
    due_date: date | None = None

    @field_validator("to_academic_year")
    @classmethod
    def check_academic_year(cls, v: str) -> str:
        return validate_academic_year(v)

    @field_validator("to_class")
    @classmethod
    def normalize_class_name(cls, v: str) -> str:
        return v.strip().lower()


class StudentPromotionResponse(BaseSchema):
    id: int
    student_id: int
    from_class: str
    to_class: str
    from_academic_year: str
    to_academic_year: str
    to_term: str
    promotion_date: datetime
    total_balance_transferred: Decimal
    remarks: str | None
    promoted_by_id: int
    transfers: list[FeeBalanceTransferResponse] = []
