"""Tests for fee structures."""

from decimal import Decimal

import pytest
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.exceptions import DuplicateError, NotFoundError, ValidationError
from src.modules.fee_structures.models import FeeStructureStatus, Term
from src.modules.fee_structures.schemas import (
    FeeStructureCopy,
    FeeStructureCreate,
    FeeStructureFilters,
    FeeStructureItemCreate,
)
from src.modules.fee_structures.service import FeeStructureService
from src.modules.invoices.service import InvoiceService

ACTOR_ID = 7


def fee_structure_data(**overrides) -> FeeStructureCreate:
    data = {
        "class_name": " Grade4 ",
        "academic_year": "2025-2026",
        "term": Term.TERM_1,
        "created_by_id": ACTOR_ID,
        "items": [
            FeeStructureItemCreate(item_name="Tuition", category="tuition", amount=Decimal("1000")),
            FeeStructureItemCreate(
                item_name="Transport",
                category="transport",
                amount=Decimal("350.50"),
                is_mandatory=False,
                display_order=1,
            ),
        ],
    }
    data.update(overrides)
    return FeeStructureCreate(**data)


class TestFeeStructureService:
    async def test_create(self, db_session: AsyncSession):
        service = FeeStructureService(db_session)

        fee_structure = await service.create_fee_structure(fee_structure_data())

        assert fee_structure.class_name == "grade4"
        assert fee_structure.total_amount == Decimal("1350.50")
        assert [item.item_name for item in fee_structure.items] == ["Tuition", "Transport"]

    async def test_one_per_class_year_term(self, db_session: AsyncSession):
        service = FeeStructureService(db_session)
        first = await service.create_fee_structure(fee_structure_data())

        with pytest.raises(DuplicateError):
            await service.create_fee_structure(fee_structure_data(class_name="grade4"))

        other_term = await service.create_fee_structure(fee_structure_data(term=Term.TERM_2))
        listed = await service.list_fee_structures(FeeStructureFilters(class_name="grade4"))
        assert {fs.id for fs in listed} == {first.id, other_term.id}

    def test_academic_year_format(self):
        with pytest.raises(PydanticValidationError):
            fee_structure_data(academic_year="2025-2027")
        with pytest.raises(PydanticValidationError):
            fee_structure_data(academic_year="2025")

    async def test_price_change_does_not_touch_issued_invoice(
        self, db_session: AsyncSession, invoice_factory, clock
    ):
        invoice = await invoice_factory(["1000.00"])
        fee_structure_item_id = invoice.items[0].fee_structure_item_id
        service = FeeStructureService(db_session)

        fee_structure = await service.update_item_amount(
            fee_structure_item_id, Decimal("1200.00"), ACTOR_ID
        )

        assert fee_structure.total_amount == Decimal("1200.00")
        assert fee_structure.updated_by_id == ACTOR_ID
        invoice = await InvoiceService(db_session, clock=clock).get_invoice_by_id(invoice.id)
        assert invoice.items[0].amount == Decimal("1000.00")
        assert invoice.total_amount == Decimal("1000.00")


class TestCopyAndDelete:
    async def test_copy_takes_active_items_only(self, db_session: AsyncSession):
        service = FeeStructureService(db_session)
        source = await service.create_fee_structure(fee_structure_data())
        source.items[1].status = FeeStructureStatus.INACTIVE.value
        await db_session.commit()

        copy = await service.copy_fee_structure(
            source.id,
            FeeStructureCopy(academic_year="2026-2027", term=Term.TERM_1, created_by_id=ACTOR_ID),
        )

        assert copy.id != source.id
        assert copy.class_name == "grade4"
        assert copy.academic_year == "2026-2027"
        assert [item.item_name for item in copy.items] == ["Tuition"]
        assert copy.total_amount == Decimal("1000.00")

    async def test_copy_to_taken_scope_is_rejected(self, db_session: AsyncSession):
        service = FeeStructureService(db_session)
        source = await service.create_fee_structure(fee_structure_data())
        await service.create_fee_structure(fee_structure_data(class_name="grade5"))

        with pytest.raises(DuplicateError):
            await service.copy_fee_structure(
                source.id,
                FeeStructureCopy(
                    academic_year="2025-2026",
                    term=Term.TERM_1,
                    class_name="Grade5",
                    created_by_id=ACTOR_ID,
                ),
            )

    async def test_delete_unused(self, db_session: AsyncSession):
        service = FeeStructureService(db_session)
        fee_structure = await service.create_fee_structure(fee_structure_data())
        fee_structure_id = fee_structure.id

        await service.delete_fee_structure(fee_structure_id, ACTOR_ID)

        with pytest.raises(NotFoundError):
            await service.get_fee_structure(fee_structure_id)

    async def test_delete_with_invoices_is_rejected(
        self, db_session: AsyncSession, invoice_factory
    ):
        invoice = await invoice_factory(["500.00"])
        fee_structure_id = invoice.fee_structure_id
        service = FeeStructureService(db_session)

        with pytest.raises(ValidationError) as exc_info:
            await service.delete_fee_structure(fee_structure_id, ACTOR_ID)

        assert exc_info.value.details["field"] == "fee_structure_id"
        assert (await service.get_fee_structure(fee_structure_id)).id == fee_structure_id


class TestGetByClass:
    async def test_returns_active_structure(self, db_session: AsyncSession):
        service = FeeStructureService(db_session)
        created = await service.create_fee_structure(fee_structure_data())

        found = await service.get_fee_structure_by_class("GRADE4", "2025-2026", Term.TERM_1)

        assert found.id == created.id
        with pytest.raises(NotFoundError):
            await service.get_fee_structure_by_class("grade4", "2025-2026", Term.TERM_3)

    async def test_inactive_structure_is_not_returned(self, db_session: AsyncSession):
        service = FeeStructureService(db_session)
        created = await service.create_fee_structure(fee_structure_data())
        created.status = FeeStructureStatus.INACTIVE.value
        await db_session.commit()

        with pytest.raises(NotFoundError):
            await service.get_fee_structure_by_class("grade4", "2025-2026", Term.TERM_1)
