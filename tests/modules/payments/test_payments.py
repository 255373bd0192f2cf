"""Tests for Payments module: allocation engine."""

from datetime import date
from decimal import Decimal

import pytest
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.exceptions import (
    AllocationMismatch,
    InvalidAllocation,
    InvoiceCancelled,
    OverAllocation,
    ValidationError,
)
from src.modules.fee_structures.models import Term
from src.modules.invoices.service import InvoiceService
from src.modules.invoices.status import InvoiceItemStatus, InvoiceStatus
from src.modules.payments.models import PaymentItem
from src.modules.payments.schemas import AllocationTarget, PaymentCreate, PaymentFilters
from src.modules.payments.service import PaymentService
from src.modules.payments.status import PaymentItemStatus, PaymentMode, PaymentStatus

ACTOR_ID = 7


def targets(*pairs: tuple[int, str]) -> list[AllocationTarget]:
    return [AllocationTarget(invoice_item_id=i, amount=Decimal(a)) for i, a in pairs]


class TestCreatePayment:
    async def test_new_payment_is_pending(self, payment_factory):
        payment = await payment_factory("1500.00")

        assert payment.payment_number.startswith("PAY-")
        assert payment.status == PaymentStatus.PENDING.value
        assert payment.receipt_number is None
        assert payment.amount == Decimal("1500.00")
        assert payment.items == []

    def test_non_cash_requires_reference(self):
        with pytest.raises(PydanticValidationError):
            PaymentCreate(
                student_id=1,
                amount=Decimal("100"),
                payment_mode=PaymentMode.MOBILE_MONEY,
                payment_date=date(2026, 2, 2),
                collected_by_id=ACTOR_ID,
            )

    def test_amount_must_be_positive(self):
        with pytest.raises(PydanticValidationError):
            PaymentCreate(
                student_id=1,
                amount=Decimal("0"),
                payment_mode=PaymentMode.CASH,
                payment_date=date(2026, 2, 2),
                collected_by_id=ACTOR_ID,
            )


class TestAllocatePayment:
    async def test_split_across_two_items(
        self, db_session: AsyncSession, invoice_factory, payment_factory, clock
    ):
        invoice = await invoice_factory(["300.00", "300.00"])
        first, second = (item.id for item in invoice.items)

        payment = await payment_factory("500.00", [(first, "300.00"), (second, "200.00")])

        assert payment.status == PaymentStatus.COMPLETED.value
        assert payment.receipt_number.startswith("RCP-")
        assert payment.completed_at is not None
        assert [(pi.payment_sequence, pi.amount, pi.status) for pi in payment.items] == [
            (1, Decimal("300.00"), PaymentItemStatus.COMPLETED.value),
            (2, Decimal("200.00"), PaymentItemStatus.COMPLETED.value),
        ]
        assert all(pi.original_invoice_item_amount == Decimal("300.00") for pi in payment.items)

        invoice = await InvoiceService(db_session, clock=clock).get_invoice_by_id(invoice.id)
        item1, item2 = invoice.items
        assert item1.balance_amount == Decimal("0.00")
        assert item1.payment_status == InvoiceItemStatus.PAID.value
        assert item2.balance_amount == Decimal("100.00")
        assert item2.payment_status == InvoiceItemStatus.PARTIALLY_PAID.value
        assert invoice.paid_amount == Decimal("500.00")
        assert invoice.balance_amount == Decimal("100.00")
        assert invoice.status == InvoiceStatus.PARTIALLY_PAID.value

    async def test_spans_several_invoices(
        self, db_session: AsyncSession, invoice_factory, payment_factory, clock
    ):
        term1 = await invoice_factory(["100.00"], term=Term.TERM_1)
        term2 = await invoice_factory(["150.00"], term=Term.TERM_2)

        payment = await payment_factory(
            "250.00", [(term2.items[0].id, "150.00"), (term1.items[0].id, "100.00")]
        )

        assert payment.status == PaymentStatus.COMPLETED.value
        service = InvoiceService(db_session, clock=clock)
        assert (await service.get_invoice_by_id(term1.id)).status == InvoiceStatus.PAID.value
        assert (await service.get_invoice_by_id(term2.id)).status == InvoiceStatus.PAID.value

    async def test_failure_on_third_of_four_targets_changes_nothing(
        self, db_session: AsyncSession, invoice_factory, payment_factory, clock
    ):
        invoice = await invoice_factory(["100.00", "100.00", "100.00", "100.00"])
        invoice_id = invoice.id
        i1, i2, i3, i4 = (item.id for item in invoice.items)
        payment = await payment_factory("400.00")
        payment_id = payment.id
        service = PaymentService(db_session, clock=clock)

        with pytest.raises(InvalidAllocation):
            await service.allocate_payment(
                payment_id,
                targets((i1, "100.00"), (i2, "100.00"), (i3, "0.00"), (i4, "200.00")),
                ACTOR_ID,
            )

        payment = await service.get_payment_by_id(payment_id)
        assert payment.status == PaymentStatus.PENDING.value
        assert payment.receipt_number is None
        assert payment.items == []

        invoice = await InvoiceService(db_session, clock=clock).get_invoice_by_id(invoice_id)
        assert [item.balance_amount for item in invoice.items] == [Decimal("100.00")] * 4
        assert [item.paid_amount for item in invoice.items] == [Decimal("0.00")] * 4
        assert invoice.status == InvoiceStatus.UNPAID.value

        result = await db_session.execute(select(PaymentItem))
        assert result.scalars().all() == []

    async def test_target_checked_against_balance_left_by_earlier_targets(
        self, db_session: AsyncSession, invoice_factory, payment_factory, clock
    ):
        invoice = await invoice_factory(["100.00", "100.00", "100.00"])
        invoice_id = invoice.id
        i1, i2, i3 = (item.id for item in invoice.items)
        payment = await payment_factory("300.00")
        payment_id = payment.id
        service = PaymentService(db_session, clock=clock)

        with pytest.raises(OverAllocation) as exc_info:
            await service.allocate_payment(
                payment_id,
                targets((i1, "60.00"), (i2, "100.00"), (i1, "60.00"), (i3, "80.00")),
                ACTOR_ID,
            )

        assert exc_info.value.details["sequence"] == 3
        assert exc_info.value.details["balance"] == "40.00"
        invoice = await InvoiceService(db_session, clock=clock).get_invoice_by_id(invoice_id)
        assert invoice.paid_amount == Decimal("0.00")

        # The same payment can still be allocated correctly afterwards
        payment = await service.allocate_payment(
            payment_id,
            targets((i1, "60.00"), (i2, "100.00"), (i1, "40.00"), (i3, "100.00")),
            ACTOR_ID,
        )
        assert payment.status == PaymentStatus.COMPLETED.value
        assert [pi.payment_sequence for pi in payment.items] == [1, 2, 3, 4]

    async def test_sum_must_match_payment(
        self, db_session: AsyncSession, invoice_factory, payment_factory, clock
    ):
        invoice = await invoice_factory(["500.00"])
        item_id = invoice.items[0].id
        payment = await payment_factory("300.00")
        payment_id = payment.id
        service = PaymentService(db_session, clock=clock)

        with pytest.raises(AllocationMismatch) as exc_info:
            await service.allocate_payment(payment_id, targets((item_id, "250.00")), ACTOR_ID)

        assert exc_info.value.details["allocated"] == "250.00"
        payment = await service.get_payment_by_id(payment_id)
        assert payment.status == PaymentStatus.PENDING.value

    async def test_only_pending_payments(
        self, db_session: AsyncSession, invoice_factory, payment_factory, clock
    ):
        invoice = await invoice_factory(["500.00"])
        item_id = invoice.items[0].id
        payment = await payment_factory("100.00", [(item_id, "100.00")])
        service = PaymentService(db_session, clock=clock)

        with pytest.raises(ValidationError):
            await service.allocate_payment(payment.id, targets((item_id, "100.00")), ACTOR_ID)

    async def test_invoice_of_another_student(
        self,
        db_session: AsyncSession,
        invoice_factory,
        payment_factory,
        student_factory,
        clock,
    ):
        other = await student_factory("ADM-0002")
        foreign = await invoice_factory(["500.00"], term=Term.TERM_3, student_id=other.id)
        payment = await payment_factory("100.00")
        service = PaymentService(db_session, clock=clock)

        with pytest.raises(ValidationError):
            await service.allocate_payment(
                payment.id, targets((foreign.items[0].id, "100.00")), ACTOR_ID
            )

    async def test_cancelled_invoice(
        self, db_session: AsyncSession, invoice_factory, payment_factory, clock
    ):
        invoice = await invoice_factory(["500.00"])
        item_id = invoice.items[0].id
        await InvoiceService(db_session, clock=clock).cancel_invoice(invoice.id, ACTOR_ID)
        payment = await payment_factory("100.00")
        service = PaymentService(db_session, clock=clock)

        with pytest.raises(InvoiceCancelled):
            await service.allocate_payment(payment.id, targets((item_id, "100.00")), ACTOR_ID)


class TestVerifyPayment:
    async def _mobile_payment(self, service: PaymentService, student_id: int, amount: str):
        return await service.create_payment(
            PaymentCreate(
                student_id=student_id,
                amount=Decimal(amount),
                payment_mode=PaymentMode.MOBILE_MONEY,
                payment_date=date(2026, 2, 2),
                transaction_reference="QX12AB34",
                collected_by_id=ACTOR_ID,
            )
        )

    async def test_non_cash_must_be_verified_before_allocation(
        self, db_session: AsyncSession, student, invoice_factory, clock
    ):
        invoice = await invoice_factory(["500.00"])
        item_id = invoice.items[0].id
        service = PaymentService(db_session, clock=clock)
        payment = await self._mobile_payment(service, student.id, "200.00")
        payment_id = payment.id
        assert payment.requires_verification
        assert payment.verified_at is None

        with pytest.raises(ValidationError) as exc_info:
            await service.allocate_payment(payment_id, targets((item_id, "200.00")), ACTOR_ID)
        assert exc_info.value.details["field"] == "payment_id"
        assert (await service.get_payment_by_id(payment_id)).status == PaymentStatus.PENDING.value

        payment = await service.verify_payment(payment_id, verified_by_id=9)
        assert payment.verified_by_id == 9
        assert payment.verified_at is not None
        assert payment.status == PaymentStatus.PENDING.value

        payment = await service.allocate_payment(payment_id, targets((item_id, "200.00")), ACTOR_ID)
        assert payment.status == PaymentStatus.COMPLETED.value

    async def test_cash_needs_no_verification(self, payment_factory):
        payment = await payment_factory("100.00")
        assert not payment.requires_verification

    async def test_verify_only_once_and_only_pending(
        self, db_session: AsyncSession, student, clock
    ):
        student_id = student.id
        service = PaymentService(db_session, clock=clock)
        payment = await self._mobile_payment(service, student_id, "80.00")
        payment_id = payment.id
        await service.verify_payment(payment_id, verified_by_id=ACTOR_ID)

        with pytest.raises(ValidationError):
            await service.verify_payment(payment_id, verified_by_id=ACTOR_ID)

        failed = await self._mobile_payment(service, student_id, "40.00")
        failed_id = failed.id
        await service.fail_payment(failed_id, "reversed by provider", ACTOR_ID)
        with pytest.raises(ValidationError):
            await service.verify_payment(failed_id, verified_by_id=ACTOR_ID)


class TestFailPayment:
    async def test_pending_payment_fails(self, db_session: AsyncSession, payment_factory, clock):
        payment = await payment_factory("100.00")
        service = PaymentService(db_session, clock=clock)

        payment = await service.fail_payment(payment.id, "cheque bounced", ACTOR_ID)

        assert payment.status == PaymentStatus.FAILED.value
        assert payment.failure_reason == "cheque bounced"

        with pytest.raises(ValidationError):
            await service.allocate_payment(payment.id, targets((1, "100.00")), ACTOR_ID)


class TestPaymentQueries:
    async def test_list_and_statistics(
        self, db_session: AsyncSession, invoice_factory, payment_factory, clock
    ):
        invoice = await invoice_factory(["500.00"])
        await payment_factory("200.00", [(invoice.items[0].id, "200.00")])
        await payment_factory("50.00")
        service = PaymentService(db_session, clock=clock)

        payments, total = await service.list_payments(
            PaymentFilters(status=PaymentStatus.COMPLETED)
        )
        assert total == 1
        assert payments[0].amount == Decimal("200.00")

        stats = {(row.payment_mode, row.status): row for row in await service.get_statistics()}
        assert stats[("CASH", "COMPLETED")].total_amount == Decimal("200.00")
        assert stats[("CASH", "PENDING")].total_payments == 1
