"""Payment and PaymentItem models."""

from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import (
    BigInteger,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from src.core.database.base import Base, BigIntPK, MoneyType
from src.modules.payments.status import PaymentItemStatus, PaymentMode, PaymentStatus


class Payment(Base):
    """
    One payment event from a student.

    The payment is spread over invoice items by its PaymentItems, whose
    amounts sum to the payment amount once the payment is COMPLETED.
    """

    __tablename__ = "payments"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)

    payment_number: Mapped[str] = mapped_column(
        String(50), nullable=False, unique=True, index=True
    )
    receipt_number: Mapped[str | None] = mapped_column(
        String(50), nullable=True, unique=True, index=True
    )  # assigned on completion

    student_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("students.id"), nullable=False, index=True
    )

    amount: Mapped[Decimal] = mapped_column(MoneyType, nullable=False)
    payment_mode: Mapped[str] = mapped_column(String(20), nullable=False)
    payment_date: Mapped[date] = mapped_column(Date, nullable=False)
    transaction_reference: Mapped[str | None] = mapped_column(
        String(100), nullable=True
    )  # cheque / bank / mobile money reference

    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=PaymentStatus.PENDING.value, index=True
    )
    remarks: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Opaque actor references
    collected_by_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    # Non-cash receipts are confirmed against the bank/mobile money statement
    verified_by_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    verified_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    cancelled_by_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    cancellation_date: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    cancellation_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    failure_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Total refunded across items
    refund_amount: Mapped[Decimal] = mapped_column(
        MoneyType, nullable=False, default=Decimal("0.00")
    )
    refund_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    # Relationships
    student: Mapped["Student"] = relationship("Student")
    items: Mapped[list["PaymentItem"]] = relationship(
        "PaymentItem",
        back_populates="payment",
        cascade="all, delete-orphan",
        order_by="PaymentItem.payment_sequence",
    )

    @property
    def is_pending(self) -> bool:
        return self.status == PaymentStatus.PENDING.value

    @property
    def requires_verification(self) -> bool:
        return self.payment_mode != PaymentMode.CASH.value

    @property
    def is_verified(self) -> bool:
        return self.verified_at is not None

    @property
    def is_completed(self) -> bool:
        return self.status == PaymentStatus.COMPLETED.value

    @property
    def is_cancelled(self) -> bool:
        return self.status == PaymentStatus.CANCELLED.value


class PaymentItem(Base):
    """
    Allocation of part of a payment to one invoice item.

    The invoice item is referenced, not owned: many allocations over time
    may point at the same fee line.
    """

    __tablename__ = "payment_items"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)

    payment_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("payments.id", ondelete="CASCADE"), nullable=False, index=True
    )
    invoice_item_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("invoice_items.id", ondelete="RESTRICT"), nullable=False, index=True
    )

    amount: Mapped[Decimal] = mapped_column(MoneyType, nullable=False)
    # Invoice item amount at allocation time (audit)
    original_invoice_item_amount: Mapped[Decimal] = mapped_column(MoneyType, nullable=False)
    payment_sequence: Mapped[int] = mapped_column(Integer, nullable=False)

    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=PaymentItemStatus.PENDING.value, index=True
    )

    refund_amount: Mapped[Decimal | None] = mapped_column(MoneyType, nullable=True)
    refund_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    refund_reference: Mapped[str | None] = mapped_column(String(100), nullable=True)
    reversed_by_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    cancellation_date: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    remarks: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    # Relationships
    payment: Mapped["Payment"] = relationship("Payment", back_populates="items")
    invoice_item: Mapped["InvoiceItem"] = relationship("InvoiceItem")

    __table_args__ = (
        UniqueConstraint("payment_id", "payment_sequence", name="uq_payment_item_sequence"),
    )

    @property
    def is_completed(self) -> bool:
        return self.status == PaymentItemStatus.COMPLETED.value


# Import for type hints
from src.modules.students.models import Student
from src.modules.invoices.models import InvoiceItem
