"""Tests for student promotions."""

from decimal import Decimal

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.exceptions import InvoiceCancelled, ValidationError
from src.modules.balance_transfers.models import FeeBalanceTransfer
from src.modules.fee_structures.models import Term
from src.modules.invoices.service import InvoiceService
from src.modules.promotions.models import StudentPromotion
from src.modules.promotions.schemas import PromotionCreate
from src.modules.promotions.service import PromotionService, validate_class_progression

ACTOR_ID = 7


def promotion_data(student_id: int, **overrides) -> PromotionCreate:
    data = {
        "student_id": student_id,
        "to_class": "grade5",
        "to_academic_year": "2026-2027",
        "promoted_by_id": ACTOR_ID,
    }
    data.update(overrides)
    return PromotionCreate(**data)


async def count_rows(db_session: AsyncSession, model) -> int:
    return (await db_session.execute(select(func.count()).select_from(model))).scalar()


class TestClassProgression:
    @pytest.mark.parametrize(
        "from_class, to_class",
        [("pg", "pp1"), ("grade4", "grade5"), ("pp2", "grade3"), ("grade6", "grade7"),
         ("grade7", "grade9"), ("Grade4", "GRADE6")],
    )
    def test_allowed(self, from_class, to_class):
        assert validate_class_progression(from_class, to_class)

    @pytest.mark.parametrize(
        "from_class, to_class",
        [("grade4", "grade4"), ("grade5", "grade4"), ("grade5", "grade7"),
         ("grade8", "grade6"), ("grade9", "grade9"), ("form1", "form2")],
    )
    def test_rejected(self, from_class, to_class):
        assert not validate_class_progression(from_class, to_class)


class TestPromoteStudent:
    async def test_carries_every_unpaid_term_into_new_class(
        self, db_session: AsyncSession, invoice_factory, payment_factory, student, clock
    ):
        term1 = await invoice_factory(["200.00"], term=Term.TERM_1)
        term2 = await invoice_factory(["300.00", "100.00"], term=Term.TERM_2)
        await payment_factory("100.00", [(term2.items[0].id, "100.00")])
        term1_item_id = term1.items[0].id
        service = PromotionService(db_session, clock=clock)

        promotion = await service.promote_student(
            promotion_data(student.id, remarks="end of year")
        )

        assert (promotion.from_class, promotion.to_class) == ("grade4", "grade5")
        assert (promotion.from_academic_year, promotion.to_academic_year) == (
            "2025-2026",
            "2026-2027",
        )
        assert promotion.to_term == "TERM_1"
        assert promotion.total_balance_transferred == Decimal("500.00")
        assert [t.from_term for t in promotion.transfers] == ["TERM_1", "TERM_2"]
        assert all(t.promotion_id == promotion.id for t in promotion.transfers)
        assert {t.destination_invoice_id for t in promotion.transfers} == {
            promotion.transfers[0].destination_invoice_id
        }

        assert student.current_class == "grade5"
        assert student.academic_year == "2026-2027"

        invoices = InvoiceService(db_session, clock=clock)
        destination = await invoices.get_invoice_by_id(promotion.transfers[0].destination_invoice_id)
        assert (destination.class_name, destination.term, destination.academic_year) == (
            "grade5",
            "TERM_1",
            "2026-2027",
        )
        assert [item.amount for item in destination.items] == [
            Decimal("200.00"),
            Decimal("200.00"),
            Decimal("100.00"),
        ]
        assert destination.items[0].carried_forward_from_id == term1_item_id
        assert destination.balance_amount == Decimal("500.00")

    async def test_without_balances_only_moves_the_student(
        self, db_session: AsyncSession, invoice_factory, payment_factory, student, clock
    ):
        invoice = await invoice_factory(["150.00"], term=Term.TERM_3)
        await payment_factory("150.00", [(invoice.items[0].id, "150.00")])
        service = PromotionService(db_session, clock=clock)

        promotion = await service.promote_student(promotion_data(student.id))

        assert promotion.transfers == []
        assert promotion.total_balance_transferred == Decimal("0.00")
        assert student.current_class == "grade5"
        assert await count_rows(db_session, FeeBalanceTransfer) == 0

    async def test_invalid_progression_changes_nothing(
        self, db_session: AsyncSession, invoice_factory, student, clock
    ):
        await invoice_factory(["200.00"], term=Term.TERM_1)
        student_id = student.id
        service = PromotionService(db_session, clock=clock)

        with pytest.raises(ValidationError) as exc_info:
            await service.promote_student(promotion_data(student_id, to_class="grade3"))

        assert exc_info.value.details["field"] == "to_class"
        await db_session.refresh(student)
        assert student.current_class == "grade4"
        assert await count_rows(db_session, StudentPromotion) == 0
        assert await count_rows(db_session, FeeBalanceTransfer) == 0

    async def test_earlier_academic_year_is_rejected(
        self, db_session: AsyncSession, student, clock
    ):
        service = PromotionService(db_session, clock=clock)

        with pytest.raises(ValidationError) as exc_info:
            await service.promote_student(
                promotion_data(student.id, to_academic_year="2024-2025")
            )

        assert exc_info.value.details["field"] == "to_academic_year"

    async def test_failed_carry_forward_rolls_back_promotion(
        self, db_session: AsyncSession, invoice_factory, student, clock
    ):
        source = await invoice_factory(["200.00"], term=Term.TERM_1)
        source_id = source.id
        blocked = await invoice_factory(
            ["50.00"], term=Term.TERM_1, class_name="grade5", academic_year="2026-2027"
        )
        invoices = InvoiceService(db_session, clock=clock)
        await invoices.cancel_invoice(blocked.id, ACTOR_ID, reason="issued in error")
        student_id = student.id
        service = PromotionService(db_session, clock=clock)

        with pytest.raises(InvoiceCancelled):
            await service.promote_student(promotion_data(student_id))

        await db_session.refresh(student)
        assert (student.current_class, student.academic_year) == ("grade4", "2025-2026")
        assert await count_rows(db_session, StudentPromotion) == 0
        assert await count_rows(db_session, FeeBalanceTransfer) == 0
        source = await invoices.get_invoice_by_id(source_id)
        assert source.balance_amount == Decimal("200.00")

    async def test_history_newest_first(self, db_session: AsyncSession, student, clock):
        service = PromotionService(db_session, clock=clock)
        first = await service.promote_student(promotion_data(student.id))
        second = await service.promote_student(
            promotion_data(student.id, to_class="grade6", to_academic_year="2027-2028")
        )

        history = await service.get_promotion_history(student.id)

        assert [p.id for p in history] == [second.id, first.id]
        assert history[0].from_class == "grade5"
        assert student.current_class == "grade6"
