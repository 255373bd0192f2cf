"""Service for carrying unpaid fee balances forward to a later term."""

import logging
from datetime import date, timedelta

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from src.core.audit import AuditAction, AuditService
from src.core.clock import Clock, system_clock
from src.core.config import settings
from src.core.database import atomic
from src.core.documents.number_generator import DocumentNumberGenerator, NumberSupplier
from src.core.exceptions import AppException, InvoiceCancelled, NotFoundError, ValidationError
from src.modules.balance_transfers.models import (
    FeeBalanceDetail,
    FeeBalanceTransfer,
    TransferStatus,
)
from src.modules.balance_transfers.schemas import FeeScope
from src.modules.invoices.models import Invoice, InvoiceItem
from src.modules.invoices.service import InvoiceService
from src.modules.invoices.status import InvoiceStatus
from src.modules.students.models import Student
from src.shared.utils.money import ZERO, sum_money

logger = logging.getLogger(__name__)


class BalanceTransferService:
    """Carry-forward of outstanding invoice item balances between scopes."""

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
        self.invoices = InvoiceService(db, clock=self.clock, numbers=self.numbers)

    async def carry_forward_balances(
        self,
        student_id: int,
        from_scope: FeeScope,
        to_scope: FeeScope,
        transferred_by_id: int,
        due_date: date | None = None,
    ) -> FeeBalanceTransfer:
        """
        Copy every unpaid item balance of the source scope onto the destination invoice.

        Each outstanding source item becomes a new destination item whose full
        amount is the old balance, linked back to its source. Source items are
        left untouched; an item already carried forward onto a live invoice is
        not carried again. All or nothing: on failure a FAILED transfer is
        recorded and the error re-raised.
        """
        if from_scope == to_scope:
            raise ValidationError("Source and destination scope must differ", field="to_scope")
        student = await self._get_student(student_id)

        try:
            async with atomic(self.db):
                transfer = await self.transfer_in_unit(
                    student, from_scope, to_scope, transferred_by_id, due_date
                )
        except AppException as exc:
            await self._record_failure(student_id, from_scope, to_scope, transferred_by_id, exc)
            raise

        logger.info(
            "Transfer %s: %d balance(s) totalling %s carried from %s to %s for student %s",
            transfer.transfer_number,
            len(transfer.details),
            transfer.total_balance_transferred,
            from_scope,
            to_scope,
            student.id,
        )
        return await self.get_transfer(transfer.id)

    async def get_transfer(self, transfer_id: int) -> FeeBalanceTransfer:
        result = await self.db.execute(
            select(FeeBalanceTransfer)
            .where(FeeBalanceTransfer.id == transfer_id)
            .options(selectinload(FeeBalanceTransfer.details))
            .execution_options(populate_existing=True)
        )
        transfer = result.scalar_one_or_none()
        if not transfer:
            raise NotFoundError("Balance transfer", transfer_id)
        return transfer

    async def list_transfers(self, student_id: int | None = None) -> list[FeeBalanceTransfer]:
        """Transfers, newest first."""
        query = select(FeeBalanceTransfer).options(selectinload(FeeBalanceTransfer.details))
        if student_id:
            query = query.where(FeeBalanceTransfer.student_id == student_id)
        result = await self.db.execute(
            query.order_by(FeeBalanceTransfer.transfer_date.desc(), FeeBalanceTransfer.id.desc())
        )
        return list(result.scalars().all())

    async def transfer_in_unit(
        self,
        student: Student,
        from_scope: FeeScope,
        to_scope: FeeScope,
        transferred_by_id: int,
        due_date: date | None,
        promotion_id: int | None = None,
    ) -> FeeBalanceTransfer:
        """Carry the outstanding items of one scope forward inside the caller's transaction."""
        today = self.clock.today()
        now = self.clock.now()

        sources = await self.outstanding_items(student.id, from_scope)

        transfer = FeeBalanceTransfer(
            transfer_number=await self.numbers.generate(settings.transfer_prefix),
            student_id=student.id,
            from_class=from_scope.class_name,
            from_term=from_scope.term.value,
            from_academic_year=from_scope.academic_year,
            to_class=to_scope.class_name,
            to_term=to_scope.term.value,
            to_academic_year=to_scope.academic_year,
            transfer_date=now,
            total_balance_transferred=ZERO,
            status=TransferStatus.PENDING.value,
            transferred_by_id=transferred_by_id,
            promotion_id=promotion_id,
            details=[],
        )
        self.db.add(transfer)

        carried: list[tuple[FeeBalanceDetail, InvoiceItem]] = []
        if sources:
            due_date = due_date or today + timedelta(days=settings.carry_forward_due_days)
            invoice = await self._destination_invoice(
                student, to_scope, transferred_by_id, due_date
            )
            next_order = max((i.display_order for i in invoice.items), default=-1) + 1
            for position, source in enumerate(sources):
                new_item = InvoiceItem.open(
                    item_name=source.item_name,
                    category=source.category,
                    amount=source.balance_amount,
                    due_date=invoice.due_date,
                    today=today,
                    description=f"Balance brought forward from {from_scope}",
                    is_mandatory=source.is_mandatory,
                    display_order=next_order + position,
                    is_carried_forward=True,
                    carried_forward_from_id=source.id,
                )
                invoice.items.append(new_item)
                detail = FeeBalanceDetail(
                    fee_item_name=source.item_name,
                    original_amount=source.amount,
                    balance_amount=source.balance_amount,
                    term=from_scope.term.value,
                    academic_year=from_scope.academic_year,
                    source_invoice_item_id=source.id,
                    carried_forward_date=now,
                )
                transfer.details.append(detail)
                carried.append((detail, new_item))

            invoice.recalculate(today)
            await self.db.flush()
            for detail, new_item in carried:
                detail.carried_invoice_item_id = new_item.id
            transfer.destination_invoice_id = invoice.id

        transfer.total_balance_transferred = sum_money(d.balance_amount for d, _ in carried)
        transfer.status = TransferStatus.TRANSFERRED.value
        await self.db.flush()

        await self.audit.log(
            action=AuditAction.CARRY_FORWARD,
            entity_type="FeeBalanceTransfer",
            entity_id=transfer.id,
            entity_identifier=transfer.transfer_number,
            user_id=transferred_by_id,
            new_values={
                "student_id": student.id,
                "from": str(from_scope),
                "to": str(to_scope),
                "total_balance_transferred": str(transfer.total_balance_transferred),
                "items": len(carried),
                "promotion_id": promotion_id,
            },
        )
        return transfer

    async def outstanding_items(self, student_id: int, scope: FeeScope) -> list[InvoiceItem]:
        """Source items with a balance that have not been carried forward already."""
        result = await self.db.execute(
            select(Invoice.id)
            .where(
                Invoice.student_id == student_id,
                Invoice.class_name == scope.class_name,
                Invoice.term == scope.term.value,
                Invoice.academic_year == scope.academic_year,
                Invoice.status != InvoiceStatus.CANCELLED.value,
            )
            .order_by(Invoice.id)
        )
        items: list[InvoiceItem] = []
        for invoice_id in result.scalars().all():
            invoice = await self.invoices.lock_invoice(invoice_id)
            items.extend(item for item in invoice.items if item.balance_amount > ZERO)
        if not items:
            return items

        already_carried = await self.invoices.carried_forward_item_ids(item.id for item in items)
        return [item for item in items if item.id not in already_carried]

    # --- Helper Methods ---

    async def _get_student(self, student_id: int) -> Student:
        result = await self.db.execute(select(Student).where(Student.id == student_id))
        student = result.scalar_one_or_none()
        if not student:
            raise NotFoundError("Student", student_id)
        return student

    async def _destination_invoice(
        self, student: Student, scope: FeeScope, generated_by_id: int, due_date: date
    ) -> Invoice:
        """The live invoice of the destination scope, opened if the scope has none."""
        result = await self.db.execute(
            select(Invoice.id, Invoice.invoice_number, Invoice.status)
            .where(
                Invoice.student_id == student.id,
                Invoice.class_name == scope.class_name,
                Invoice.term == scope.term.value,
                Invoice.academic_year == scope.academic_year,
            )
            .order_by(Invoice.id.desc())
        )
        rows = result.all()
        live = [row for row in rows if row.status != InvoiceStatus.CANCELLED.value]
        if live:
            invoice = await self.invoices.lock_invoice(live[0].id)
            invoice.ensure_mutable()
            return invoice
        if rows:
            raise InvoiceCancelled(rows[0].id, rows[0].invoice_number)

        invoice = Invoice(
            invoice_number=await self.numbers.generate(settings.invoice_prefix),
            student_id=student.id,
            fee_structure_id=None,
            class_name=scope.class_name,
            academic_year=scope.academic_year,
            term=scope.term.value,
            due_date=due_date,
            status=InvoiceStatus.UNPAID.value,
            total_amount=ZERO,
            paid_amount=ZERO,
            waiver_amount=ZERO,
            balance_amount=ZERO,
            generated_by_id=generated_by_id,
            remarks="Opened for balances brought forward",
            items=[],
        )
        self.db.add(invoice)
        logger.info("Opened invoice %s for student %s in %s", invoice.invoice_number, student.id, scope)
        return invoice

    async def _record_failure(
        self,
        student_id: int,
        from_scope: FeeScope,
        to_scope: FeeScope,
        transferred_by_id: int,
        exc: AppException,
    ) -> None:
        """Persist a FAILED transfer (no details) in its own transaction."""
        try:
            async with atomic(self.db):
                transfer = FeeBalanceTransfer(
                    transfer_number=await self.numbers.generate(settings.transfer_prefix),
                    student_id=student_id,
                    from_class=from_scope.class_name,
                    from_term=from_scope.term.value,
                    from_academic_year=from_scope.academic_year,
                    to_class=to_scope.class_name,
                    to_term=to_scope.term.value,
                    to_academic_year=to_scope.academic_year,
                    transfer_date=self.clock.now(),
                    total_balance_transferred=ZERO,
                    status=TransferStatus.FAILED.value,
                    failure_reason=f"{type(exc).__name__}: {exc.message}",
                    transferred_by_id=transferred_by_id,
                )
                self.db.add(transfer)
        except AppException:
            logger.exception("Could not record failed transfer for student %s", student_id)
            return
        logger.warning(
            "Transfer %s for student %s failed: %s",
            transfer.transfer_number,
            student_id,
            exc.message,
        )
