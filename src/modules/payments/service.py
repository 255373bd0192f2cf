"""Service for Payments module: allocation and reversal of payments."""

import logging
from collections.abc import Iterable
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from src.core.audit import AuditAction, AuditService
from src.core.clock import Clock, system_clock
from src.core.config import settings
from src.core.database import atomic
from src.core.documents.number_generator import DocumentNumberGenerator, NumberSupplier
from src.core.exceptions import (
    AllocationMismatch,
    AppException,
    InvalidAllocation,
    NotFoundError,
    OverAllocation,
    RefundExceedsPayment,
    ReversalAborted,
    ValidationError,
)
from src.modules.invoices.models import Invoice, InvoiceItem
from src.modules.invoices.service import InvoiceService
from src.modules.payments.models import Payment, PaymentItem
from src.modules.payments.schemas import (
    AllocationTarget,
    PaymentCreate,
    PaymentFilters,
    PaymentModeSummary,
)
from src.modules.payments.status import (
    PaymentItemStatus,
    PaymentStatus,
    derive_payment_status,
)
from src.modules.students.models import Student
from src.shared.utils.money import ZERO, round_money, sum_money

logger = logging.getLogger(__name__)


class PaymentService:
    """Service for recording payments, allocating them to invoice items and reversing them."""

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

    # --- Payment Methods ---

    async def create_payment(self, data: PaymentCreate) -> Payment:
        """Record a received payment. It stays PENDING until allocated."""
        student = await self._get_student(data.student_id)

        async with atomic(self.db):
            payment_number = await self.numbers.generate(settings.payment_prefix)
            payment = Payment(
                payment_number=payment_number,
                student_id=student.id,
                amount=round_money(data.amount),
                payment_mode=data.payment_mode.value,
                payment_date=data.payment_date,
                transaction_reference=data.transaction_reference,
                status=PaymentStatus.PENDING.value,
                remarks=data.remarks,
                collected_by_id=data.collected_by_id,
                refund_amount=ZERO,
            )
            self.db.add(payment)
            await self.db.flush()

            await self.audit.log(
                action=AuditAction.CREATE_PAYMENT,
                entity_type="Payment",
                entity_id=payment.id,
                entity_identifier=payment_number,
                user_id=data.collected_by_id,
                new_values={
                    "student_id": student.id,
                    "amount": str(payment.amount),
                    "payment_mode": data.payment_mode.value,
                },
            )

        logger.info(
            "Payment %s recorded for student %s: %s via %s",
            payment_number,
            student.id,
            payment.amount,
            payment.payment_mode,
        )
        return await self.get_payment_by_id(payment.id)

    async def verify_payment(self, payment_id: int, verified_by_id: int) -> Payment:
        """Confirm a pending non-cash payment against the bank or mobile money statement."""
        async with atomic(self.db):
            payment = await self._lock_payment(payment_id)
            if not payment.is_pending:
                raise ValidationError(
                    f"Can only verify pending payments (payment is {payment.status})",
                    field="payment_id",
                )
            if payment.is_verified:
                raise ValidationError(
                    f"Payment {payment.payment_number} is already verified", field="payment_id"
                )

            payment.verified_by_id = verified_by_id
            payment.verified_at = self.clock.now()

            await self.audit.log(
                action=AuditAction.VERIFY_PAYMENT,
                entity_type="Payment",
                entity_id=payment.id,
                entity_identifier=payment.payment_number,
                user_id=verified_by_id,
                new_values={"verified_at": payment.verified_at.isoformat()},
            )

        logger.info("Payment %s verified by %s", payment.payment_number, verified_by_id)
        return await self.get_payment_by_id(payment_id)

    async def allocate_payment(
        self,
        payment_id: int,
        targets: list[AllocationTarget],
        allocated_by_id: int,
    ) -> Payment:
        """
        Spread a pending payment over invoice items, all or nothing.

        Targets are applied in order and their position is the allocation
        sequence number. Each target is checked against the item balance as
        left by the earlier targets of the same call. The payment is marked
        COMPLETED (and receives a receipt number) only after every target
        has been applied; on any error nothing of this call is persisted.
        """
        async with atomic(self.db):
            payment = await self._lock_payment(payment_id)
            if not payment.is_pending:
                raise ValidationError(
                    f"Can only allocate pending payments (payment is {payment.status})",
                    field="payment_id",
                )
            if payment.requires_verification and not payment.is_verified:
                raise ValidationError(
                    f"Payment {payment.payment_number} must be verified before allocation",
                    field="payment_id",
                )
            if not targets:
                raise ValidationError("At least one allocation target is required", field="targets")

            requested = sum_money(round_money(t.amount) for t in targets)
            if requested != payment.amount:
                raise AllocationMismatch(payment.id, payment.amount, requested)

            payment.status = PaymentStatus.PROCESSING.value
            locked = await self._lock_invoice_items(t.invoice_item_id for t in targets)
            for invoice in self._invoices_of(locked):
                if invoice.student_id != payment.student_id:
                    raise ValidationError(
                        f"Invoice {invoice.invoice_number} does not belong to the payment's student",
                        field="targets",
                    )
                invoice.ensure_mutable()
            await self.invoices.ensure_not_carried_forward(locked, field="targets")

            today = self.clock.today()
            for sequence, target in enumerate(targets, start=1):
                invoice, item = locked[target.invoice_item_id]
                amount = round_money(target.amount)
                if amount <= ZERO:
                    raise InvalidAllocation(item.id, amount, item.balance_amount)
                if amount > item.balance_amount:
                    raise OverAllocation(item.id, sequence, amount, item.balance_amount)

                payment.items.append(
                    PaymentItem(
                        invoice_item_id=item.id,
                        amount=amount,
                        original_invoice_item_amount=item.amount,
                        payment_sequence=sequence,
                        status=PaymentItemStatus.PENDING.value,
                    )
                )
                item.apply_payment(amount, today)

            for invoice in self._invoices_of(locked):
                invoice.recalculate(today)

            for payment_item in payment.items:
                payment_item.status = PaymentItemStatus.COMPLETED.value
            payment.receipt_number = await self.numbers.generate(settings.receipt_prefix)
            payment.status = PaymentStatus.COMPLETED.value
            payment.completed_at = self.clock.now()
            await self.db.flush()

            await self.audit.log(
                action=AuditAction.ALLOCATE_PAYMENT,
                entity_type="Payment",
                entity_id=payment.id,
                entity_identifier=payment.payment_number,
                user_id=allocated_by_id,
                old_values={"status": PaymentStatus.PENDING.value},
                new_values={
                    "status": payment.status,
                    "receipt_number": payment.receipt_number,
                    "allocations": [
                        {"invoice_item_id": t.invoice_item_id, "amount": str(round_money(t.amount))}
                        for t in targets
                    ],
                },
            )

        logger.info(
            "Payment %s allocated across %d item(s), receipt %s",
            payment.payment_number,
            len(targets),
            payment.receipt_number,
        )
        return await self.get_payment_by_id(payment_id)

    async def fail_payment(self, payment_id: int, reason: str, failed_by_id: int) -> Payment:
        """Mark a pending payment as FAILED (bounced cheque, rejected transfer)."""
        async with atomic(self.db):
            payment = await self._lock_payment(payment_id)
            if not payment.is_pending:
                raise ValidationError("Can only fail pending payments", field="payment_id")

            payment.status = PaymentStatus.FAILED.value
            payment.failure_reason = reason

            await self.audit.log(
                action=AuditAction.FAIL_PAYMENT,
                entity_type="Payment",
                entity_id=payment.id,
                entity_identifier=payment.payment_number,
                user_id=failed_by_id,
                old_values={"status": PaymentStatus.PENDING.value},
                new_values={"status": payment.status},
                comment=reason,
            )

        logger.info("Payment %s marked failed: %s", payment.payment_number, reason)
        return await self.get_payment_by_id(payment_id)

    # --- Reversal Methods ---

    async def cancel_payment_item(
        self, payment_item_id: int, cancelled_by_id: int, reason: str | None = None
    ) -> PaymentItem:
        """
        Cancel one allocation and put its full amount back on the invoice item.

        The parent payment becomes CANCELLED once all its allocations are cancelled.
        """
        async with atomic(self.db):
            payment, payment_item = await self._lock_payment_item(payment_item_id)
            self._check_reversible(payment, payment_item)

            try:
                await self._reverse_allocations([(payment_item, payment_item.amount)])
                self._mark_cancelled(payment_item, cancelled_by_id, reason)
                old_status = self._cascade(payment, cancelled_by_id, reason)

                await self.audit.log(
                    action=AuditAction.CANCEL_PAYMENT_ITEM,
                    entity_type="PaymentItem",
                    entity_id=payment_item.id,
                    entity_identifier=payment.payment_number,
                    user_id=cancelled_by_id,
                    old_values={"status": PaymentItemStatus.COMPLETED.value, "payment_status": old_status},
                    new_values={"status": payment_item.status, "payment_status": payment.status},
                    comment=reason,
                )
            except AppException as exc:
                raise ReversalAborted(payment_item.id, exc) from exc

        logger.info(
            "Payment item %s of %s cancelled (%s reversed), payment now %s",
            payment_item.id,
            payment.payment_number,
            payment_item.amount,
            payment.status,
        )
        return payment_item

    async def refund_payment_item(
        self,
        payment_item_id: int,
        amount: Decimal,
        refunded_by_id: int,
        refund_reference: str | None = None,
        reason: str | None = None,
    ) -> PaymentItem:
        """
        Refund all or part of one allocation.

        The refunded amount goes back on the invoice item's balance. The parent
        payment becomes REFUNDED once all its allocations are refunded.
        """
        async with atomic(self.db):
            payment, payment_item = await self._lock_payment_item(payment_item_id)
            self._check_reversible(payment, payment_item)

            amount = round_money(amount)
            if amount <= ZERO or amount > payment_item.amount:
                raise RefundExceedsPayment(payment_item.id, amount, payment_item.amount)

            try:
                await self._reverse_allocations([(payment_item, amount)])

                now = self.clock.now()
                payment_item.status = PaymentItemStatus.REFUNDED.value
                payment_item.refund_amount = amount
                payment_item.refund_date = now
                payment_item.refund_reference = refund_reference
                payment_item.reversed_by_id = refunded_by_id
                payment_item.remarks = reason
                payment.refund_amount = round_money(payment.refund_amount + amount)
                payment.refund_date = now
                old_status = self._cascade(payment, refunded_by_id, reason)

                await self.audit.log(
                    action=AuditAction.REFUND_PAYMENT_ITEM,
                    entity_type="PaymentItem",
                    entity_id=payment_item.id,
                    entity_identifier=payment.payment_number,
                    user_id=refunded_by_id,
                    old_values={"status": PaymentItemStatus.COMPLETED.value, "payment_status": old_status},
                    new_values={
                        "status": payment_item.status,
                        "refund_amount": str(amount),
                        "payment_status": payment.status,
                    },
                    comment=reason,
                )
            except AppException as exc:
                raise ReversalAborted(payment_item.id, exc) from exc

        logger.info(
            "Payment item %s of %s refunded %s, payment now %s",
            payment_item.id,
            payment.payment_number,
            amount,
            payment.status,
        )
        return payment_item

    async def cancel_payment(
        self, payment_id: int, cancelled_by_id: int, reason: str | None = None
    ) -> Payment:
        """
        Cancel a whole payment.

        A pending payment is simply cancelled. For a completed payment every
        completed allocation is reversed first; the payment status is then
        derived once from the final state of all its allocations.
        """
        async with atomic(self.db):
            payment = await self._lock_payment(payment_id)
            old_status = payment.status

            if payment.is_pending:
                self._mark_payment_cancelled(payment, cancelled_by_id, reason)
            elif payment.is_completed:
                active = [pi for pi in payment.items if pi.is_completed]
                if not active:
                    raise ValidationError("Payment has no completed allocations to cancel")
                try:
                    await self._reverse_allocations((pi, pi.amount) for pi in active)
                except AppException as exc:
                    raise ReversalAborted(active[0].id, exc) from exc
                for payment_item in active:
                    self._mark_cancelled(payment_item, cancelled_by_id, reason)
                self._cascade(payment, cancelled_by_id, reason)
            else:
                raise ValidationError(
                    f"Cannot cancel a payment in status {payment.status}", field="payment_id"
                )

            await self.audit.log(
                action=AuditAction.CANCEL_PAYMENT,
                entity_type="Payment",
                entity_id=payment.id,
                entity_identifier=payment.payment_number,
                user_id=cancelled_by_id,
                old_values={"status": old_status},
                new_values={"status": payment.status},
                comment=reason,
            )

        logger.info("Payment %s cancelled: %s -> %s", payment.payment_number, old_status, payment.status)
        return await self.get_payment_by_id(payment_id)

    # --- Queries ---

    async def get_payment_by_id(self, payment_id: int) -> Payment:
        """Get payment by ID with its allocations."""
        result = await self.db.execute(
            select(Payment)
            .where(Payment.id == payment_id)
            .options(selectinload(Payment.items))
            .execution_options(populate_existing=True)
        )
        payment = result.scalar_one_or_none()
        if not payment:
            raise NotFoundError("Payment", payment_id)
        return payment

    async def get_payment_item(self, payment_item_id: int) -> PaymentItem:
        result = await self.db.execute(
            select(PaymentItem).where(PaymentItem.id == payment_item_id)
        )
        payment_item = result.scalar_one_or_none()
        if not payment_item:
            raise NotFoundError("Payment item", payment_item_id)
        return payment_item

    async def list_payments(self, filters: PaymentFilters) -> tuple[list[Payment], int]:
        """List payments with filters."""
        query = select(Payment)

        if filters.student_id:
            query = query.where(Payment.student_id == filters.student_id)
        if filters.status:
            query = query.where(Payment.status == filters.status.value)
        if filters.payment_mode:
            query = query.where(Payment.payment_mode == filters.payment_mode.value)
        if filters.date_from:
            query = query.where(Payment.payment_date >= filters.date_from)
        if filters.date_to:
            query = query.where(Payment.payment_date <= filters.date_to)

        count_query = select(func.count()).select_from(query.subquery())
        total = (await self.db.execute(count_query)).scalar() or 0

        query = query.order_by(Payment.created_at.desc(), Payment.id.desc())
        query = query.offset((filters.page - 1) * filters.limit).limit(filters.limit)

        result = await self.db.execute(query)
        return list(result.scalars().all()), total

    async def get_statistics(self) -> list[PaymentModeSummary]:
        """Payment count and amount grouped by mode and status."""
        result = await self.db.execute(
            select(
                Payment.payment_mode,
                Payment.status,
                func.count(Payment.id),
                func.coalesce(func.sum(Payment.amount), 0),
            )
            .group_by(Payment.payment_mode, Payment.status)
            .order_by(Payment.payment_mode, Payment.status)
        )
        return [
            PaymentModeSummary(
                payment_mode=row[0],
                status=row[1],
                total_payments=row[2],
                total_amount=round_money(Decimal(str(row[3]))),
            )
            for row in result.all()
        ]

    # --- Helper Methods ---

    async def _get_student(self, student_id: int) -> Student:
        result = await self.db.execute(select(Student).where(Student.id == student_id))
        student = result.scalar_one_or_none()
        if not student:
            raise NotFoundError("Student", student_id)
        return student

    async def _lock_payment(self, payment_id: int) -> Payment:
        result = await self.db.execute(
            select(Payment)
            .where(Payment.id == payment_id)
            .with_for_update()
            .options(selectinload(Payment.items))
            .execution_options(populate_existing=True)
        )
        payment = result.scalar_one_or_none()
        if not payment:
            raise NotFoundError("Payment", payment_id)
        return payment

    async def _lock_payment_item(self, payment_item_id: int) -> tuple[Payment, PaymentItem]:
        """Lock the parent payment (and all sibling allocations) of a payment item."""
        result = await self.db.execute(
            select(PaymentItem.payment_id).where(PaymentItem.id == payment_item_id)
        )
        payment_id = result.scalar_one_or_none()
        if payment_id is None:
            raise NotFoundError("Payment item", payment_item_id)
        payment = await self._lock_payment(payment_id)
        payment_item = next(pi for pi in payment.items if pi.id == payment_item_id)
        return payment, payment_item

    async def _lock_invoice_items(
        self, invoice_item_ids: Iterable[int]
    ) -> dict[int, tuple[Invoice, InvoiceItem]]:
        """
        Lock the invoices owning the given items, in invoice id order.

        Returns invoice item id -> (invoice, item). Every invoice is locked
        before any item is mutated.
        """
        item_ids = set(invoice_item_ids)
        result = await self.db.execute(
            select(InvoiceItem.id, InvoiceItem.invoice_id).where(InvoiceItem.id.in_(item_ids))
        )
        owners = dict(result.all())
        missing = item_ids - owners.keys()
        if missing:
            raise NotFoundError("Invoice item", min(missing))

        locked: dict[int, tuple[Invoice, InvoiceItem]] = {}
        for invoice_id in sorted(set(owners.values())):
            invoice = await self.invoices.lock_invoice(invoice_id)
            for item in invoice.items:
                if item.id in item_ids:
                    locked[item.id] = (invoice, item)
        return locked

    async def _reverse_allocations(
        self, reversals: Iterable[tuple[PaymentItem, Decimal]]
    ) -> None:
        """Give the amounts back to the allocated invoice items and re-derive their invoices."""
        reversals = list(reversals)
        locked = await self._lock_invoice_items(pi.invoice_item_id for pi, _ in reversals)
        today = self.clock.today()
        for payment_item, amount in reversals:
            invoice, item = locked[payment_item.invoice_item_id]
            invoice.ensure_mutable()
            item.reverse_payment(amount, today)
        for invoice in self._invoices_of(locked):
            invoice.recalculate(today)

    @staticmethod
    def _invoices_of(locked: dict[int, tuple[Invoice, InvoiceItem]]) -> list[Invoice]:
        invoices: dict[int, Invoice] = {}
        for invoice, _ in locked.values():
            invoices.setdefault(invoice.id, invoice)
        return list(invoices.values())

    @staticmethod
    def _check_reversible(payment: Payment, payment_item: PaymentItem) -> None:
        if not payment_item.is_completed:
            raise ValidationError(
                f"Payment item {payment_item.id} is {payment_item.status}, only completed "
                "allocations can be cancelled or refunded",
                field="payment_item_id",
            )
        if not payment.is_completed:
            raise ValidationError(
                f"Payment {payment.payment_number} is {payment.status}, not completed",
                field="payment_item_id",
            )

    def _mark_cancelled(
        self, payment_item: PaymentItem, cancelled_by_id: int, reason: str | None
    ) -> None:
        payment_item.status = PaymentItemStatus.CANCELLED.value
        payment_item.reversed_by_id = cancelled_by_id
        payment_item.cancellation_date = self.clock.now()
        payment_item.remarks = reason

    def _mark_payment_cancelled(
        self, payment: Payment, cancelled_by_id: int, reason: str | None
    ) -> None:
        payment.status = PaymentStatus.CANCELLED.value
        payment.cancelled_by_id = cancelled_by_id
        payment.cancellation_date = self.clock.now()
        payment.cancellation_reason = reason

    def _cascade(self, payment: Payment, actor_id: int, reason: str | None) -> str:
        """Re-derive the payment status from its allocations. Returns the previous status."""
        old_status = payment.status
        new_status = derive_payment_status(old_status, (pi.status for pi in payment.items))
        if new_status == PaymentStatus.CANCELLED.value and old_status != new_status:
            self._mark_payment_cancelled(payment, actor_id, reason)
        else:
            payment.status = new_status
        return old_status
