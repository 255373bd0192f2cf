import re
from datetime import datetime
from decimal import Decimal

from pydantic import Field, field_validator

from src.modules.fee_structures.models import FeeStructureStatus, Term
from src.shared.schemas import BaseSchema

ACADEMIC_YEAR_RE = re.compile(r"^(\d{4})-(\d{4})$")


def validate_academic_year(v: str) -> str:
    match = ACADEMIC_YEAR_RE.match(v)
    if not match or int(match.group(2)) != int(match.group(1)) + 1:
        raise ValueError("Academic year must look like 2025-2026")
    return v


class FeeStructureItemCreate(BaseSchema):
    """Schema for one fee line when creating a fee structure."""

    item_name: str = Field(min_length=1, max_length=200)
    category: str = Field(min_length=1, max_length=100)
    amount: Decimal = Field(ge=0)
    description: str | None = None
    is_mandatory: bool = True
    display_order: int = 0


class FeeStructureCreate(BaseSchema):
    """Schema for creating a fee structure."""

    class_name: str = Field(min_length=1, max_length=20)
    academic_year: str
    term: Term
    items: list[FeeStructureItemCreate] = Field(min_length=1)
    created_by_id: int

    @field_validator("academic_year")
    @classmethod
    def check_academic_year(cls, v: str) -> str:
        return validate_academic_year(v)

    @field_validator("class_name")
    @classmethod
    def normalize_class_name(cls, v: str) -> str:
        return v.strip().lower()


class FeeStructureCopy(BaseSchema):
    """Schema for copying a fee structure into another term, year or class."""

    academic_year: str
    term: Term
    class_name: str | None = Field(None, min_length=1, max_length=20)
    created_by_id: int

    @field_validator("academic_year")
    @classmethod
    def check_academic_year(cls, v: str) -> str:
        return validate_academic_year(v)

    @field_validator("class_name")
    @classmethod
    def normalize_class_name(cls, v: str | None) -> str | None:
        return v.strip().lower() if v else v


class FeeStructureItemUpdate(BaseSchema):
    """Schema for changing the price of a fee line."""

    amount: Decimal = Field(ge=0)
    updated_by_id: int


class FeeStructureItemResponse(BaseSchema):
    id: int
    item_name: str
    category: str
    description: str | None
    amount: Decimal
    is_mandatory: bool
    display_order: int
    status: str


class FeeStructureResponse(BaseSchema):
    id: int
    class_name: str
    academic_year: str
    term: str
    status: str
    total_amount: Decimal
    created_at: datetime
    updated_at: datetime
    items: list[FeeStructureItemResponse] = []


class FeeStructureFilters(BaseSchema):
    class_name: str | None = None
    academic_year: str | None = None
    term: Term | None = None
    status: FeeStructureStatus | None = None
