import logging
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from src.core.audit import AuditAction, AuditService
from src.core.database import atomic
from src.core.exceptions import DuplicateError, NotFoundError, ValidationError
from src.modules.fee_structures.models import (
    FeeStructure,
    FeeStructureItem,
    FeeStructureStatus,
    Term,
)
from src.modules.fee_structures.schemas import (
    FeeStructureCopy,
    FeeStructureCreate,
    FeeStructureFilters,
)
from src.modules.invoices.models import Invoice
from src.shared.utils.money import round_money, sum_money

logger = logging.getLogger(__name__)


class FeeStructureService:
    """Service for fee structures (price lists invoices are generated from)."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.audit = AuditService(db)

    async def create_fee_structure(self, data: FeeStructureCreate) -> FeeStructure:
        """Create a fee structure with its items."""
        created_by_id = data.created_by_id
        await self._ensure_unique(data.class_name, data.academic_year, data.term)

        async with atomic(self.db):
            fee_structure = FeeStructure(
                class_name=data.class_name,
                academic_year=data.academic_year,
                term=data.term.value,
                status=FeeStructureStatus.ACTIVE.value,
                created_by_id=created_by_id,
                items=[
                    FeeStructureItem(
                        item_name=item.item_name,
                        category=item.category,
                        description=item.description,
                        amount=round_money(item.amount),
                        is_mandatory=item.is_mandatory,
                        display_order=item.display_order,
                        status=FeeStructureStatus.ACTIVE.value,
                    )
                    for item in data.items
                ],
            )
            self._recalculate_total(fee_structure)
            self.db.add(fee_structure)
            await self.db.flush()

            await self.audit.log(
                action=AuditAction.CREATE,
                entity_type="FeeStructure",
                entity_id=fee_structure.id,
                user_id=created_by_id,
                entity_identifier=f"{data.class_name} {data.academic_year} {data.term.value}",
                new_values={
                    "items": len(data.items),
                    "total_amount": fee_structure.total_amount,
                },
            )

        logger.info(
            "Fee structure %s created for %s %s %s",
            fee_structure.id,
            data.class_name,
            data.academic_year,
            data.term.value,
        )
        return await self.get_fee_structure(fee_structure.id)

    async def get_fee_structure(self, fee_structure_id: int) -> FeeStructure:
        """Get fee structure with its items."""
        result = await self.db.execute(
            select(FeeStructure)
            .where(FeeStructure.id == fee_structure_id)
            .options(selectinload(FeeStructure.items))
            .execution_options(populate_existing=True)
        )
        fee_structure = result.scalar_one_or_none()
        if not fee_structure:
            raise NotFoundError("Fee structure", fee_structure_id)
        return fee_structure

    async def list_fee_structures(self, filters: FeeStructureFilters) -> list[FeeStructure]:
        query = select(FeeStructure).options(selectinload(FeeStructure.items))
        if filters.class_name:
            query = query.where(FeeStructure.class_name == filters.class_name)
        if filters.academic_year:
            query = query.where(FeeStructure.academic_year == filters.academic_year)
        if filters.term:
            query = query.where(FeeStructure.term == filters.term.value)
        if filters.status:
            query = query.where(FeeStructure.status == filters.status.value)
        query = query.order_by(
            FeeStructure.academic_year.desc(), FeeStructure.term, FeeStructure.class_name
        )
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def update_item_amount(
        self, fee_structure_item_id: int, amount: Decimal, updated_by_id: int
    ) -> FeeStructure:
        """
        Change the price of a fee line.

        Already issued invoices keep the amounts they were created with.
        """
        result = await self.db.execute(
            select(FeeStructureItem).where(FeeStructureItem.id == fee_structure_item_id)
        )
        item = result.scalar_one_or_none()
        if not item:
            raise NotFoundError("Fee structure item", fee_structure_item_id)
        fee_structure = await self.get_fee_structure(item.fee_structure_id)

        async with atomic(self.db):
            old_amount = item.amount
            item.amount = round_money(amount)
            fee_structure.updated_by_id = updated_by_id
            self._recalculate_total(fee_structure)

            await self.audit.log(
                action=AuditAction.UPDATE,
                entity_type="FeeStructureItem",
                entity_id=item.id,
                user_id=updated_by_id,
                entity_identifier=item.item_name,
                old_values={"amount": old_amount},
                new_values={"amount": item.amount},
            )

        return await self.get_fee_structure(fee_structure.id)

    async def copy_fee_structure(
        self, fee_structure_id: int, data: FeeStructureCopy
    ) -> FeeStructure:
        """
        Start a new term's price list from an existing one.

        Only the active items are copied. The target class defaults to the
        source class.
        """
        source = await self.get_fee_structure(fee_structure_id)
        class_name = data.class_name or source.class_name
        await self._ensure_unique(class_name, data.academic_year, data.term)

        async with atomic(self.db):
            fee_structure = FeeStructure(
                class_name=class_name,
                academic_year=data.academic_year,
                term=data.term.value,
                status=FeeStructureStatus.ACTIVE.value,
                created_by_id=data.created_by_id,
                items=[
                    FeeStructureItem(
                        item_name=item.item_name,
                        category=item.category,
                        description=item.description,
                        amount=item.amount,
                        is_mandatory=item.is_mandatory,
                        display_order=item.display_order,
                        status=FeeStructureStatus.ACTIVE.value,
                    )
                    for item in source.active_items
                ],
            )
            self._recalculate_total(fee_structure)
            self.db.add(fee_structure)
            await self.db.flush()

            await self.audit.log(
                action=AuditAction.CREATE,
                entity_type="FeeStructure",
                entity_id=fee_structure.id,
                user_id=data.created_by_id,
                entity_identifier=f"{class_name} {data.academic_year} {data.term.value}",
                new_values={
                    "copied_from": source.id,
                    "items": len(fee_structure.items),
                    "total_amount": fee_structure.total_amount,
                },
            )

        logger.info("Fee structure %s copied to %s", source.id, fee_structure.id)
        return await self.get_fee_structure(fee_structure.id)

    async def delete_fee_structure(self, fee_structure_id: int, deleted_by_id: int) -> None:
        """Delete a fee structure no invoice has been generated from."""
        fee_structure = await self.get_fee_structure(fee_structure_id)
        result = await self.db.execute(
            select(func.count(Invoice.id)).where(Invoice.fee_structure_id == fee_structure.id)
        )
        invoice_count = result.scalar() or 0
        if invoice_count:
            raise ValidationError(
                f"Fee structure {fee_structure.id} has {invoice_count} invoice(s) "
                "and cannot be deleted",
                field="fee_structure_id",
            )

        identifier = f"{fee_structure.class_name} {fee_structure.academic_year} {fee_structure.term}"
        total_amount = fee_structure.total_amount
        async with atomic(self.db):
            await self.db.delete(fee_structure)
            await self.audit.log(
                action=AuditAction.DELETE,
                entity_type="FeeStructure",
                entity_id=fee_structure_id,
                user_id=deleted_by_id,
                entity_identifier=identifier,
                old_values={"total_amount": total_amount},
            )

        logger.info("Fee structure %s (%s) deleted", fee_structure_id, identifier)

    async def get_fee_structure_by_class(
        self, class_name: str, academic_year: str, term: Term
    ) -> FeeStructure:
        """Get the active fee structure of a class for one term."""
        class_name = class_name.strip().lower()
        result = await self.db.execute(
            select(FeeStructure)
            .where(
                FeeStructure.class_name == class_name,
                FeeStructure.academic_year == academic_year,
                FeeStructure.term == term.value,
                FeeStructure.status == FeeStructureStatus.ACTIVE.value,
            )
            .options(selectinload(FeeStructure.items))
        )
        fee_structure = result.scalar_one_or_none()
        if not fee_structure:
            raise NotFoundError("Fee structure", f"{class_name}/{academic_year}/{term.value}")
        return fee_structure

    async def _ensure_unique(self, class_name: str, academic_year: str, term: Term) -> None:
        result = await self.db.execute(
            select(FeeStructure.id).where(
                FeeStructure.class_name == class_name,
                FeeStructure.academic_year == academic_year,
                FeeStructure.term == term.value,
            )
        )
        if result.scalar_one_or_none() is not None:
            raise DuplicateError(
                "FeeStructure",
                "class/year/term",
                f"{class_name}/{academic_year}/{term.value}",
            )

    @staticmethod
    def _recalculate_total(fee_structure: FeeStructure) -> None:
        fee_structure.total_amount = sum_money(
            item.amount for item in fee_structure.items if item.is_active
        )
