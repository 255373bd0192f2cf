"""Service for Invoices module."""

import logging
from collections.abc import Iterable
from datetime import date, timedelta
from decimal import Decimal
from typing import Any

from sqlalchemy import and_, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from src.core.audit import AuditAction, AuditService
from src.core.clock import Clock, system_clock
from src.core.config import settings
from src.core.database import atomic
from src.core.documents.number_generator import DocumentNumberGenerator, NumberSupplier
from src.core.exceptions import (
    DuplicateError,
    HasActivePayments,
    InvoiceCancelled,
    NotFoundError,
    ValidationError,
)
from src.modules.fee_structures.models import FeeStructure
from src.modules.invoices.models import Invoice, InvoiceItem
from src.modules.invoices.schemas import (
    InvoiceCreate,
    InvoiceFilters,
    InvoiceStatusSummary,
    StatusRefreshResult,
    WaiverCreate,
    WaiverRevoke,
)
from src.modules.invoices.status import OPEN_INVOICE_STATUSES, InvoiceStatus
from src.modules.payments.models import PaymentItem
from src.modules.payments.status import PaymentItemStatus
from src.modules.students.models import Student
from src.shared.utils.money import round_money

logger = logging.getLogger(__name__)


class InvoiceService:
    """Service for invoices and the item-level ledger operations on them."""

    def __init__(
        self,
        db: AsyncSession,
        clock: Clock | None = None,
        numbers: NumberSupplier | None = None,
    ):
        self.db = db
        self.clock = clock or system_clock
        self.numbers = numbers or DocumentNumberGenerator(db, clock=self.clock)
        self.audit = AuditService(db)

    # --- Invoice creation ---

    async def create_invoice(self, data: InvoiceCreate) -> Invoice:
        """
        Issue an invoice for a student from a fee structure.

        Active fee lines are copied with their current amounts; later edits
        to the fee structure do not affect the issued invoice.
        """
        student = await self._get_student(data.student_id)

        result = await self.db.execute(
            select(FeeStructure)
            .where(FeeStructure.id == data.fee_structure_id)
            .options(selectinload(FeeStructure.items))
        )
        fee_structure = result.scalar_one_or_none()
        if not fee_structure:
            raise NotFoundError("Fee structure", data.fee_structure_id)
        if not fee_structure.is_active:
            raise ValidationError("Fee structure is not active", field="fee_structure_id")
        fee_items = fee_structure.active_items
        if not fee_items:
            raise ValidationError("Fee structure has no active items", field="fee_structure_id")

        existing = await self.find_open_invoice(
            student.id,
            fee_structure.academic_year,
            fee_structure.term,
            class_name=fee_structure.class_name,
        )
        if existing is not None:
            raise DuplicateError(
                "Invoice",
                "student/academic_year/term/class_name",
                f"{student.id}/{fee_structure.academic_year}/"
                f"{fee_structure.term}/{fee_structure.class_name}",
            )

        today = self.clock.today()
        due_date = data.due_date or today + timedelta(days=settings.invoice_due_days)

        async with atomic(self.db):
            invoice_number = await self.numbers.generate(settings.invoice_prefix)
            invoice = Invoice(
                invoice_number=invoice_number,
                student_id=student.id,
                fee_structure_id=fee_structure.id,
                class_name=fee_structure.class_name,
                academic_year=fee_structure.academic_year,
                term=fee_structure.term,
                due_date=due_date,
                remarks=data.remarks,
                generated_by_id=data.generated_by_id,
                status=InvoiceStatus.UNPAID.value,
                items=[
                    InvoiceItem.open(
                        item_name=fee_item.item_name,
                        category=fee_item.category,
                        amount=fee_item.amount,
                        due_date=due_date,
                        today=today,
                        description=fee_item.description,
                        fee_structure_item_id=fee_item.id,
                        is_mandatory=fee_item.is_mandatory,
                        display_order=fee_item.display_order,
                        is_carried_forward=False,
                    )
                    for fee_item in fee_items
                ],
            )
            invoice.recalculate(today)
            self.db.add(invoice)
            await self.db.flush()

            await self.audit.log(
                action=AuditAction.CREATE_INVOICE,
                entity_type="Invoice",
                entity_id=invoice.id,
                entity_identifier=invoice_number,
                user_id=data.generated_by_id,
                new_values={
                    "student_id": student.id,
                    "fee_structure_id": fee_structure.id,
                    "total_amount": str(invoice.total_amount),
                    "items": len(fee_items),
                },
            )

        logger.info(
            "Invoice %s generated for student %s: total=%s",
            invoice.invoice_number,
            student.id,
            invoice.total_amount,
        )
        return await self.get_invoice_by_id(invoice.id)

    # --- Locking helpers (used by payment and transfer services too) ---

    async def lock_invoice(self, invoice_id: int) -> Invoice:
        """
        Load an invoice with fresh items, row-locking the invoice and its items.

        Every ledger writer takes the invoice lock first, so read-validate-write
        of item balances never interleaves for the same invoice.
        """
        # populate_existing would discard unflushed changes
        await self.db.flush()
        result = await self.db.execute(
            select(Invoice)
            .where(Invoice.id == invoice_id)
            .with_for_update()
            .options(selectinload(Invoice.items))
            .execution_options(populate_existing=True)
        )
        invoice = result.scalar_one_or_none()
        if not invoice:
            raise NotFoundError("Invoice", invoice_id)
        await self.db.execute(
            select(InvoiceItem.id).where(InvoiceItem.invoice_id == invoice_id).with_for_update()
        )
        return invoice

    async def lock_item(self, invoice_item_id: int) -> tuple[Invoice, InvoiceItem]:
        """Lock the item's invoice (and items) and return both."""
        invoice_id = await self._get_item_invoice_id(invoice_item_id)
        invoice = await self.lock_invoice(invoice_id)
        item = next(i for i in invoice.items if i.id == invoice_item_id)
        return invoice, item

    async def carried_forward_item_ids(self, invoice_item_ids: Iterable[int]) -> set[int]:
        """Items among the given ones that have a carried-forward copy on a live invoice."""
        item_ids = list(invoice_item_ids)
        if not item_ids:
            return set()
        result = await self.db.execute(
            select(InvoiceItem.carried_forward_from_id)
            .join(Invoice, InvoiceItem.invoice_id == Invoice.id)
            .where(
                InvoiceItem.carried_forward_from_id.in_(item_ids),
                Invoice.status != InvoiceStatus.CANCELLED.value,
            )
        )
        return set(result.scalars().all())

    async def ensure_not_carried_forward(
        self, invoice_item_ids: Iterable[int], field: str
    ) -> None:
        """
        Reject items whose balance now lives on a later invoice.

        Settling the source line as well would collect the same balance twice.
        """
        carried = await self.carried_forward_item_ids(invoice_item_ids)
        if carried:
            raise ValidationError(
                f"Invoice item {min(carried)} was carried forward; "
                "settle the carried-forward line instead",
                field=field,
            )

    # --- Waivers ---

    async def apply_waiver(self, invoice_item_id: int, data: WaiverCreate) -> InvoiceItem:
        """Waive part of an item's balance."""
        async with atomic(self.db):
            invoice, item = await self.lock_item(invoice_item_id)
            invoice.ensure_mutable()
            await self.ensure_not_carried_forward([item.id], field="invoice_item_id")

            old_values = self._item_amounts(item)
            item.apply_waiver(
                data.amount,
                reason=data.reason,
                approved_by_id=data.approved_by_id,
                approved_at=self.clock.now(),
                today=self.clock.today(),
            )
            invoice.recalculate(self.clock.today())

            await self.audit.log(
                action=AuditAction.APPLY_WAIVER,
                entity_type="InvoiceItem",
                entity_id=item.id,
                entity_identifier=invoice.invoice_number,
                user_id=data.approved_by_id,
                old_values=old_values,
                new_values=self._item_amounts(item),
                comment=data.reason,
            )

        logger.info(
            "Waiver of %s applied to invoice item %s (invoice %s)",
            round_money(data.amount),
            item.id,
            invoice.invoice_number,
        )
        return item

    async def revoke_waiver(self, invoice_item_id: int, data: WaiverRevoke) -> InvoiceItem:
        """Put a previously waived amount back on the item's balance."""
        async with atomic(self.db):
            invoice, item = await self.lock_item(invoice_item_id)
            invoice.ensure_mutable()

            old_values = self._item_amounts(item)
            item.reverse_waiver(data.amount, today=self.clock.today())
            invoice.recalculate(self.clock.today())

            await self.audit.log(
                action=AuditAction.REVOKE_WAIVER,
                entity_type="InvoiceItem",
                entity_id=item.id,
                entity_identifier=invoice.invoice_number,
                user_id=data.revoked_by_id,
                old_values=old_values,
                new_values=self._item_amounts(item),
                comment=data.reason,
            )

        logger.info(
            "Waiver of %s revoked on invoice item %s", round_money(data.amount), item.id
        )
        return item

    # --- Invoice lifecycle ---

    async def cancel_invoice(
        self, invoice_id: int, cancelled_by_id: int, reason: str | None = None
    ) -> Invoice:
        """
        Cancel an invoice. Terminal.

        Not allowed while any completed allocation still points at its items;
        those payments must be cancelled or refunded first.
        """
        async with atomic(self.db):
            invoice = await self.lock_invoice(invoice_id)
            if invoice.is_cancelled:
                raise InvoiceCancelled(invoice.id, invoice.invoice_number)

            active = await self.count_active_allocations(invoice.id)
            if active:
                raise HasActivePayments(invoice.id, active)

            old_status = invoice.status
            invoice.cancel(cancelled_by_id, reason, at=self.clock.now())

            await self.audit.log(
                action=AuditAction.CANCEL_INVOICE,
                entity_type="Invoice",
                entity_id=invoice.id,
                entity_identifier=invoice.invoice_number,
                user_id=cancelled_by_id,
                old_values={"status": old_status},
                new_values={"status": invoice.status},
                comment=reason,
            )

        logger.info("Invoice %s cancelled by %s", invoice.invoice_number, cancelled_by_id)
        return await self.get_invoice_by_id(invoice_id)

    async def update_due_date(
        self, invoice_id: int, due_date: date, updated_by_id: int
    ) -> Invoice:
        """Move the due date of an invoice and of its unsettled items."""
        async with atomic(self.db):
            invoice = await self.lock_invoice(invoice_id)
            invoice.ensure_mutable()
            today = self.clock.today()

            old_due_date = invoice.due_date
            invoice.due_date = due_date
            for item in invoice.items:
                if not item.is_fully_paid:
                    item.due_date = due_date
                item.recompute_status(today)
            invoice.recalculate(today)

            await self.audit.log(
                action=AuditAction.UPDATE_DUE_DATE,
                entity_type="Invoice",
                entity_id=invoice.id,
                entity_identifier=invoice.invoice_number,
                user_id=updated_by_id,
                old_values={"due_date": old_due_date},
                new_values={"due_date": due_date},
            )

        return await self.get_invoice_by_id(invoice_id)

    async def refresh_statuses(self, student_id: int | None = None) -> StatusRefreshResult:
        """
        Re-derive item and invoice statuses for open invoices as of today.

        Statuses depend on the date (OVERDUE), so callers run this sweep
        when they need stored statuses to reflect the current day.
        """
        today = self.clock.today()
        query = (
            select(Invoice)
            .where(Invoice.status.in_(OPEN_INVOICE_STATUSES))
            .with_for_update()
            .options(selectinload(Invoice.items))
            .execution_options(populate_existing=True)
            .order_by(Invoice.id)
        )
        if student_id is not None:
            query = query.where(Invoice.student_id == student_id)

        invoices_changed = 0
        items_changed = 0
        async with atomic(self.db):
            result = await self.db.execute(query)
            invoices = list(result.scalars().all())
            for invoice in invoices:
                for item in invoice.items:
                    before = item.payment_status
                    if item.recompute_status(today) != before:
                        items_changed += 1
                before = invoice.status
                invoice.recalculate(today)
                if invoice.status != before:
                    invoices_changed += 1

        logger.info(
            "Status sweep as of %s: %d invoice(s) checked, %d changed",
            today,
            len(invoices),
            invoices_changed,
        )
        return StatusRefreshResult(
            invoices_checked=len(invoices),
            invoices_changed=invoices_changed,
            items_changed=items_changed,
        )

    # --- Queries ---

    async def get_invoice_by_id(self, invoice_id: int) -> Invoice:
        """Get invoice by ID with items."""
        result = await self.db.execute(
            select(Invoice)
            .where(Invoice.id == invoice_id)
            .options(selectinload(Invoice.items))
            .execution_options(populate_existing=True)
        )
        invoice = result.scalar_one_or_none()
        if not invoice:
            raise NotFoundError("Invoice", invoice_id)
        return invoice

    async def get_invoice_item(self, invoice_item_id: int) -> InvoiceItem:
        result = await self.db.execute(
            select(InvoiceItem).where(InvoiceItem.id == invoice_item_id)
        )
        item = result.scalar_one_or_none()
        if not item:
            raise NotFoundError("Invoice item", invoice_item_id)
        return item

    async def find_open_invoice(
        self, student_id: int, academic_year: str, term: str, class_name: str | None = None
    ) -> Invoice | None:
        """The student's non-cancelled invoice for a term, if any."""
        query = (
            select(Invoice)
            .where(
                Invoice.student_id == student_id,
                Invoice.academic_year == academic_year,
                Invoice.term == term,
                Invoice.status != InvoiceStatus.CANCELLED.value,
            )
            .options(selectinload(Invoice.items))
        )
        if class_name is not None:
            query = query.where(Invoice.class_name == class_name)
        result = await self.db.execute(query.order_by(Invoice.id).limit(1))
        return result.scalar_one_or_none()

    async def list_invoices(self, filters: InvoiceFilters) -> tuple[list[Invoice], int]:
        """List invoices with filters."""
        query = select(Invoice)

        if filters.student_id:
            query = query.where(Invoice.student_id == filters.student_id)
        if filters.academic_year:
            query = query.where(Invoice.academic_year == filters.academic_year)
        if filters.term:
            query = query.where(Invoice.term == filters.term.value)
        if filters.status:
            query = query.where(Invoice.status == filters.status.value)

        count_query = select(func.count()).select_from(query.subquery())
        total = (await self.db.execute(count_query)).scalar() or 0

        query = query.order_by(Invoice.created_at.desc(), Invoice.id.desc())
        query = query.offset((filters.page - 1) * filters.limit).limit(filters.limit)

        result = await self.db.execute(query)
        return list(result.scalars().all()), total

    async def list_outstanding(
        self, student_id: int | None = None, academic_year: str | None = None
    ) -> list[Invoice]:
        """Unpaid, partially paid and overdue invoices, earliest due first."""
        query = (
            select(Invoice)
            .where(Invoice.status.in_(OPEN_INVOICE_STATUSES))
            .options(selectinload(Invoice.items))
        )
        if student_id:
            query = query.where(Invoice.student_id == student_id)
        if academic_year:
            query = query.where(Invoice.academic_year == academic_year)
        result = await self.db.execute(query.order_by(Invoice.due_date, Invoice.id))
        return list(result.scalars().all())

    async def get_statistics(
        self, academic_year: str | None = None
    ) -> list[InvoiceStatusSummary]:
        """Invoice counts and amounts grouped by status."""
        query = select(
            Invoice.status,
            func.count(Invoice.id),
            func.coalesce(func.sum(Invoice.total_amount), 0),
            func.coalesce(func.sum(Invoice.paid_amount), 0),
            func.coalesce(func.sum(Invoice.waiver_amount), 0),
            func.coalesce(func.sum(Invoice.balance_amount), 0),
        ).group_by(Invoice.status)
        if academic_year:
            query = query.where(Invoice.academic_year == academic_year)

        result = await self.db.execute(query.order_by(Invoice.status))
        return [
            InvoiceStatusSummary(
                status=row[0],
                total_invoices=row[1],
                total_amount=round_money(Decimal(str(row[2]))),
                total_paid=round_money(Decimal(str(row[3]))),
                total_waived=round_money(Decimal(str(row[4]))),
                total_balance=round_money(Decimal(str(row[5]))),
            )
            for row in result.all()
        ]

    async def count_active_allocations(self, invoice_id: int) -> int:
        """
        Allocations still holding money on the invoice's items.

        Completed allocations count, and so do partially refunded ones: the
        unrefunded part stays paid on the invoice item.
        """
        await self.db.flush()
        result = await self.db.execute(
            select(func.count(PaymentItem.id))
            .join(InvoiceItem, PaymentItem.invoice_item_id == InvoiceItem.id)
            .where(
                InvoiceItem.invoice_id == invoice_id,
                or_(
                    PaymentItem.status == PaymentItemStatus.COMPLETED.value,
                    and_(
                        PaymentItem.status == PaymentItemStatus.REFUNDED.value,
                        func.coalesce(PaymentItem.refund_amount, 0) < PaymentItem.amount,
                    ),
                ),
            )
        )
        return result.scalar_one()

    # --- Helper Methods ---

    async def _get_student(self, student_id: int) -> Student:
        result = await self.db.execute(select(Student).where(Student.id == student_id))
        student = result.scalar_one_or_none()
        if not student:
            raise NotFoundError("Student", student_id)
        return student

    async def _get_item_invoice_id(self, invoice_item_id: int) -> int:
        result = await self.db.execute(
            select(InvoiceItem.invoice_id).where(InvoiceItem.id == invoice_item_id)
        )
        invoice_id = result.scalar_one_or_none()
        if invoice_id is None:
            raise NotFoundError("Invoice item", invoice_item_id)
        return invoice_id

    @staticmethod
    def _item_amounts(item: InvoiceItem) -> dict[str, Any]:
        return {
            "paid_amount": item.paid_amount,
            "waiver_amount": item.waiver_amount,
            "balance_amount": item.balance_amount,
            "payment_status": item.payment_status,
        }
