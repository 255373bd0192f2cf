"""Fee structure models: the per-class, per-term price list invoices are copied from."""

from decimal import Decimal
from enum import StrEnum

from sqlalchemy import BigInteger, Boolean, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from src.core.database.base import BaseModel, MoneyType


class Term(StrEnum):
    """School term within an academic year."""

    TERM_1 = "TERM_1"
    TERM_2 = "TERM_2"
    TERM_3 = "TERM_3"


class FeeStructureStatus(StrEnum):
    """Fee structure / fee item status."""

    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"


class FeeStructure(BaseModel):
    """
    Fee price list for one (class, academic year, term).

    Invoices copy the active items at creation time; editing a fee
    structure afterwards never changes an issued invoice.
    """

    __tablename__ = "fee_structures"

    class_name: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    academic_year: Mapped[str] = mapped_column(String(9), nullable=False)  # "2025-2026"
    term: Mapped[str] = mapped_column(String(10), nullable=False)

    status: Mapped[str] = mapped_column(
        String(10), nullable=False, default=FeeStructureStatus.ACTIVE.value
    )
    total_amount: Mapped[Decimal] = mapped_column(
        MoneyType, nullable=False, default=Decimal("0.00")
    )

    created_by_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    updated_by_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)

    # Relationships
    items: Mapped[list["FeeStructureItem"]] = relationship(
        "FeeStructureItem",
        back_populates="fee_structure",
        cascade="all, delete-orphan",
        order_by="FeeStructureItem.display_order",
    )

    __table_args__ = (
        UniqueConstraint(
            "class_name", "academic_year", "term", name="uq_fee_structure_class_year_term"
        ),
    )

    @property
    def is_active(self) -> bool:
        return self.status == FeeStructureStatus.ACTIVE.value

    @property
    def active_items(self) -> list["FeeStructureItem"]:
        return [item for item in self.items if item.is_active]


class FeeStructureItem(BaseModel):
    """One fee category line of a fee structure (e.g. Tuition, Transport)."""

    __tablename__ = "fee_structure_items"

    fee_structure_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("fee_structures.id", ondelete="CASCADE"), nullable=False, index=True
    )
    item_name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    category: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    amount: Mapped[Decimal] = mapped_column(MoneyType, nullable=False)
    is_mandatory: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    display_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    status: Mapped[str] = mapped_column(
        String(10), nullable=False, default=FeeStructureStatus.ACTIVE.value
    )

    fee_structure: Mapped["FeeStructure"] = relationship("FeeStructure", back_populates="items")

    @property
    def is_active(self) -> bool:
        return self.status == FeeStructureStatus.ACTIVE.value
