"""Invoice and InvoiceItem models."""

from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import (
    BigInteger,
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from src.core.database.base import Base, BigIntPK, MoneyType
from src.core.exceptions import InvalidAllocation, InvalidReversal, InvoiceCancelled
from src.modules.invoices.status import (
    InvoiceItemStatus,
    InvoiceStatus,
    derive_invoice_status,
    derive_item_status,
    ledger_invariant_holds,
)
from src.shared.utils.money import ZERO, round_money, sum_money


class Invoice(Base):
    """
    One student's fee obligation for a (class, academic year, term).

    Totals and status are derived from the items and recalculated after
    every item mutation within the same unit of work.
    """

    __tablename__ = "invoices"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    invoice_number: Mapped[str] = mapped_column(
        String(50), nullable=False, unique=True, index=True
    )

    # Relations
    student_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("students.id"), nullable=False, index=True
    )
    fee_structure_id: Mapped[int | None] = mapped_column(
        BigInteger, ForeignKey("fee_structures.id"), nullable=True, index=True
    )  # None for invoices opened by a balance carry-forward

    # Scope
    class_name: Mapped[str] = mapped_column(String(20), nullable=False)
    academic_year: Mapped[str] = mapped_column(String(9), nullable=False, index=True)
    term: Mapped[str] = mapped_column(String(10), nullable=False)

    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=InvoiceStatus.UNPAID.value, index=True
    )
    due_date: Mapped[date] = mapped_column(Date, nullable=False)

    # Amounts (derived from items)
    total_amount: Mapped[Decimal] = mapped_column(
        MoneyType, nullable=False, default=Decimal("0.00")
    )
    paid_amount: Mapped[Decimal] = mapped_column(
        MoneyType, nullable=False, default=Decimal("0.00")
    )
    waiver_amount: Mapped[Decimal] = mapped_column(
        MoneyType, nullable=False, default=Decimal("0.00")
    )
    balance_amount: Mapped[Decimal] = mapped_column(
        MoneyType, nullable=False, default=Decimal("0.00")
    )

    # Metadata
    remarks: Mapped[str | None] = mapped_column(Text, nullable=True)
    generated_by_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    cancelled_by_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    cancellation_date: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    cancellation_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    # Relationships
    student: Mapped["Student"] = relationship("Student")
    items: Mapped[list["InvoiceItem"]] = relationship(
        "InvoiceItem",
        back_populates="invoice",
        cascade="all, delete-orphan",
        order_by="[InvoiceItem.display_order, InvoiceItem.id]",
    )

    @property
    def is_cancelled(self) -> bool:
        return self.status == InvoiceStatus.CANCELLED.value

    @property
    def is_settled(self) -> bool:
        return self.status == InvoiceStatus.PAID.value

    def ensure_mutable(self) -> None:
        """Cancelled invoices are terminal: no item may change."""
        if self.is_cancelled:
            raise InvoiceCancelled(self.id, self.invoice_number)

    def recalculate(self, today: date) -> None:
        """Recalculate totals and status from items (items must be loaded)."""
        self.total_amount = sum_money(item.amount for item in self.items)
        self.paid_amount = sum_money(item.paid_amount for item in self.items)
        self.waiver_amount = sum_money(item.waiver_amount for item in self.items)
        self.balance_amount = sum_money(item.balance_amount for item in self.items)
        self.status = derive_invoice_status(
            total=self.total_amount,
            paid=self.paid_amount,
            waived=self.waiver_amount,
            due_date=self.due_date,
            today=today,
            cancelled=self.is_cancelled,
        ).value

    def cancel(self, cancelled_by_id: int, reason: str | None, at: datetime) -> None:
        self.status = InvoiceStatus.CANCELLED.value
        self.cancelled_by_id = cancelled_by_id
        self.cancellation_date = at
        self.cancellation_reason = reason


class InvoiceItem(Base):
    """
    One fee line of an invoice.

    Keeps amount == paid_amount + waiver_amount + balance_amount at all times.
    Mutated only through apply_payment / apply_waiver / reverse_payment /
    reverse_waiver; callers lock the row before calling them.
    """

    __tablename__ = "invoice_items"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    invoice_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("invoices.id", ondelete="CASCADE"), nullable=False, index=True
    )
    fee_structure_item_id: Mapped[int | None] = mapped_column(
        BigInteger, ForeignKey("fee_structure_items.id"), nullable=True, index=True
    )

    # Line details (copied from the fee structure at invoice creation)
    item_name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    category: Mapped[str] = mapped_column(String(100), nullable=False)
    is_mandatory: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    display_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    due_date: Mapped[date] = mapped_column(Date, nullable=False)

    # Ledger
    amount: Mapped[Decimal] = mapped_column(MoneyType, nullable=False)
    paid_amount: Mapped[Decimal] = mapped_column(
        MoneyType, nullable=False, default=Decimal("0.00")
    )
    waiver_amount: Mapped[Decimal] = mapped_column(
        MoneyType, nullable=False, default=Decimal("0.00")
    )
    balance_amount: Mapped[Decimal] = mapped_column(MoneyType, nullable=False)
    payment_status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=InvoiceItemStatus.UNPAID.value, index=True
    )

    # Waiver approval
    waiver_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    waiver_approved_by_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    waiver_approved_date: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # Carry-forward back-reference (history, never owned)
    is_carried_forward: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    carried_forward_from_id: Mapped[int | None] = mapped_column(
        BigInteger,
        ForeignKey("invoice_items.id", ondelete="RESTRICT"),
        nullable=True,
        index=True,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    # Relationships
    invoice: Mapped["Invoice"] = relationship("Invoice", back_populates="items")

    @classmethod
    def open(
        cls,
        *,
        item_name: str,
        category: str,
        amount: Decimal,
        due_date: date,
        today: date,
        **fields,
    ) -> "InvoiceItem":
        """New fee line with nothing paid or waived yet."""
        amount = round_money(amount)
        item = cls(
            item_name=item_name,
            category=category,
            amount=amount,
            paid_amount=ZERO,
            waiver_amount=ZERO,
            balance_amount=amount,
            due_date=due_date,
            **fields,
        )
        item.recompute_status(today)
        return item

    @property
    def is_balanced(self) -> bool:
        return ledger_invariant_holds(
            self.amount, self.paid_amount, self.waiver_amount, self.balance_amount
        )

    @property
    def is_fully_paid(self) -> bool:
        return self.balance_amount == ZERO

    def recompute_status(self, today: date) -> str:
        self.payment_status = derive_item_status(
            paid=self.paid_amount,
            waiver=self.waiver_amount,
            balance=self.balance_amount,
            due_date=self.due_date,
            today=today,
        ).value
        return self.payment_status

    def apply_payment(self, amount: Decimal, today: date) -> Decimal:
        """Move amount from balance to paid. Callers clamp; nothing is clamped here."""
        amount = round_money(amount)
        if amount <= ZERO or amount > self.balance_amount:
            raise InvalidAllocation(self.id, amount, self.balance_amount)
        self.paid_amount = round_money(self.paid_amount + amount)
        self.balance_amount = round_money(self.balance_amount - amount)
        self.recompute_status(today)
        return amount

    def reverse_payment(self, amount: Decimal, today: date) -> Decimal:
        """Move amount from paid back to balance."""
        amount = round_money(amount)
        if amount <= ZERO or amount > self.paid_amount:
            raise InvalidReversal(self.id, amount, self.paid_amount, kind="paid")
        self.paid_amount = round_money(self.paid_amount - amount)
        self.balance_amount = round_money(self.balance_amount + amount)
        self.recompute_status(today)
        return amount

    def apply_waiver(
        self,
        amount: Decimal,
        reason: str,
        approved_by_id: int,
        approved_at: datetime,
        today: date,
    ) -> Decimal:
        """Move amount from balance to waived and record who approved it."""
        amount = round_money(amount)
        if amount <= ZERO or amount > self.balance_amount:
            raise InvalidAllocation(self.id, amount, self.balance_amount)
        self.waiver_amount = round_money(self.waiver_amount + amount)
        self.balance_amount = round_money(self.balance_amount - amount)
        self.waiver_reason = reason
        self.waiver_approved_by_id = approved_by_id
        self.waiver_approved_date = approved_at
        self.recompute_status(today)
        return amount

    def reverse_waiver(self, amount: Decimal, today: date) -> Decimal:
        """Move amount from waived back to balance."""
        amount = round_money(amount)
        if amount <= ZERO or amount > self.waiver_amount:
            raise InvalidReversal(self.id, amount, self.waiver_amount, kind="waiver")
        self.waiver_amount = round_money(self.waiver_amount - amount)
        self.balance_amount = round_money(self.balance_amount + amount)
        if self.waiver_amount == ZERO:
            self.waiver_reason = None
            self.waiver_approved_by_id = None
            self.waiver_approved_date = None
        self.recompute_status(today)
        return amount


# Import at the end to avoid circular imports
from src.modules.students.models import Student
