"""Fee balance carry-forward models."""

from datetime import datetime
from decimal import Decimal
from enum import StrEnum

from sqlalchemy import BigInteger, DateTime, ForeignKey, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from src.core.database.base import Base, BigIntPK, MoneyType


class TransferStatus(StrEnum):
    PENDING = "PENDING"
    TRANSFERRED = "TRANSFERRED"
    FAILED = "FAILED"


class FeeBalanceTransfer(Base):
    """
    Move of a student's unpaid balances from one (class, term, year) to another.

    Groups one FeeBalanceDetail per fee line carried over.
    """

    __tablename__ = "fee_balance_transfers"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    transfer_number: Mapped[str] = mapped_column(
        String(50), nullable=False, unique=True, index=True
    )
    student_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("students.id"), nullable=False, index=True
    )

    # Source scope
    from_class: Mapped[str] = mapped_column(String(20), nullable=False)
    from_term: Mapped[str] = mapped_column(String(10), nullable=False)
    from_academic_year: Mapped[str] = mapped_column(String(9), nullable=False)

    # Destination scope
    to_class: Mapped[str] = mapped_column(String(20), nullable=False)
    to_term: Mapped[str] = mapped_column(String(10), nullable=False)
    to_academic_year: Mapped[str] = mapped_column(String(9), nullable=False)
    destination_invoice_id: Mapped[int | None] = mapped_column(
        BigInteger, ForeignKey("invoices.id", ondelete="SET NULL"), nullable=True
    )
    # Set when the transfer was made as part of a class promotion
    promotion_id: Mapped[int | None] = mapped_column(
        BigInteger, ForeignKey("student_promotions.id"), nullable=True, index=True
    )

    transfer_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    total_balance_transferred: Mapped[Decimal] = mapped_column(
        MoneyType, nullable=False, default=Decimal("0.00")
    )
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=TransferStatus.PENDING.value, index=True
    )
    failure_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    transferred_by_id: Mapped[int] = mapped_column(BigInteger, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    details: Mapped[list["FeeBalanceDetail"]] = relationship(
        "FeeBalanceDetail",
        back_populates="transfer",
        cascade="all, delete-orphan",
        order_by="FeeBalanceDetail.id",
    )


class FeeBalanceDetail(Base):
    """Snapshot of one fee line's balance at the time it was carried forward."""

    __tablename__ = "fee_balance_details"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    balance_transfer_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("fee_balance_transfers.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    fee_item_name: Mapped[str] = mapped_column(String(200), nullable=False)
    original_amount: Mapped[Decimal] = mapped_column(MoneyType, nullable=False)
    balance_amount: Mapped[Decimal] = mapped_column(MoneyType, nullable=False)
    term: Mapped[str] = mapped_column(String(10), nullable=False)
    academic_year: Mapped[str] = mapped_column(String(9), nullable=False)

    # Back-references, never owned
    source_invoice_item_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("invoice_items.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    carried_invoice_item_id: Mapped[int | None] = mapped_column(
        BigInteger, ForeignKey("invoice_items.id", ondelete="RESTRICT"), nullable=True
    )

    carried_forward_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    transfer: Mapped["FeeBalanceTransfer"] = relationship(
        "FeeBalanceTransfer", back_populates="details"
    )


# Import for type hints
from src.modules.promotions.models import StudentPromotion
