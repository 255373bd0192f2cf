"""Service for promoting students and carrying their balances into the new class."""

import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from src.core.audit import AuditAction, AuditService
from src.core.clock import Clock, system_clock
from src.core.database import atomic
from src.core.documents.number_generator import DocumentNumberGenerator, NumberSupplier
from src.core.exceptions import AppException, NotFoundError, ValidationError
from src.modules.balance_transfers.models import FeeBalanceTransfer
from src.modules.balance_transfers.schemas import FeeScope
from src.modules.balance_transfers.service import BalanceTransferService
from src.modules.fee_structures.models import Term
from src.modules.promotions.models import StudentPromotion
from src.modules.promotions.schemas import PromotionCreate
from src.modules.students.models import Student
from src.shared.utils.money import ZERO, sum_money

logger = logging.getLogger(__name__)

PRIMARY_CLASSES = (
    "pg", "pp1", "pp2", "grade1", "grade2", "grade3", "grade4", "grade5", "grade6",
)
JUNIOR_CLASSES = ("grade7", "grade8", "grade9", "grade10")


def validate_class_progression(from_class: str, to_class: str) -> bool:
    """
    True when moving from from_class to to_class is a promotion.

    Within primary or within junior school the target must be a later class.
    The only move from primary into junior school is grade6 to grade7.
    """
    from_class, to_class = from_class.lower(), to_class.lower()
    if from_class in PRIMARY_CLASSES:
        if to_class in PRIMARY_CLASSES:
            return PRIMARY_CLASSES.index(to_class) > PRIMARY_CLASSES.index(from_class)
        return from_class == "grade6" and to_class == "grade7"
    if from_class in JUNIOR_CLASSES and to_class in JUNIOR_CLASSES:
        return JUNIOR_CLASSES.index(to_class) > JUNIOR_CLASSES.index(from_class)
    return False


class PromotionService:
    """Class promotions with balance carry-forward in one unit of work."""

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
        self.transfers = BalanceTransferService(db, clock=self.clock, numbers=self.numbers)

    async def promote_student(self, data: PromotionCreate) -> StudentPromotion:
        """
        Promote a student to a higher class.

        Every term of the class being left that still has unpaid items is
        carried into (to_class, to_term, to_academic_year), one transfer per
        term. The promotion record, the transfers and the student's new
        placement are committed together or not at all.
        """
        try:
            async with atomic(self.db):
                student = await self._lock_student(data.student_id)
                from_class = student.current_class
                from_year = student.academic_year
                self._check_promotion(from_class, from_year, data)

                promotion = StudentPromotion(
                    student_id=student.id,
                    from_class=from_class,
                    to_class=data.to_class,
                    from_academic_year=from_year,
                    to_academic_year=data.to_academic_year,
                    to_term=data.to_term.value,
                    promotion_date=self.clock.now(),
                    total_balance_transferred=ZERO,
                    remarks=data.remarks,
                    promoted_by_id=data.promoted_by_id,
                )
                self.db.add(promotion)
                await self.db.flush()

                to_scope = FeeScope(
                    class_name=data.to_class,
                    term=data.to_term,
                    academic_year=data.to_academic_year,
                )
                transfers: list[FeeBalanceTransfer] = []
                for term in Term:
                    from_scope = FeeScope(class_name=from_class, term=term, academic_year=from_year)
                    if not await self.transfers.outstanding_items(student.id, from_scope):
                        continue
                    transfers.append(
                        await self.transfers.transfer_in_unit(
                            student,
                            from_scope,
                            to_scope,
                            data.promoted_by_id,
                            data.due_date,
                            promotion_id=promotion.id,
                        )
                    )

                promotion.total_balance_transferred = sum_money(
                    t.total_balance_transferred for t in transfers
                )
                student.current_class = data.to_class
                student.academic_year = data.to_academic_year
                await self.db.flush()

                await self.audit.log(
                    action=AuditAction.PROMOTE_STUDENT,
                    entity_type="Student",
                    entity_id=student.id,
                    entity_identifier=student.admission_number,
                    user_id=data.promoted_by_id,
                    old_values={"current_class": from_class, "academic_year": from_year},
                    new_values={
                        "current_class": data.to_class,
                        "academic_year": data.to_academic_year,
                        "promotion_id": promotion.id,
                        "total_balance_transferred": str(promotion.total_balance_transferred),
                    },
                    comment=data.remarks,
                )
        except AppException as exc:
            logger.warning("Promotion of student %s failed: %s", data.student_id, exc.message)
            raise

        logger.info(
            "Student %s promoted %s -> %s, %s carried in %d transfer(s)",
            data.student_id,
            from_class,
            data.to_class,
            promotion.total_balance_transferred,
            len(transfers),
        )
        return await self.get_promotion(promotion.id)

    async def get_promotion(self, promotion_id: int) -> StudentPromotion:
        result = await self.db.execute(
            select(StudentPromotion)
            .where(StudentPromotion.id == promotion_id)
            .options(
                selectinload(StudentPromotion.transfers).selectinload(FeeBalanceTransfer.details)
            )
            .execution_options(populate_existing=True)
        )
        promotion = result.scalar_one_or_none()
        if not promotion:
            raise NotFoundError("Promotion", promotion_id)
        return promotion

    async def get_promotion_history(self, student_id: int) -> list[StudentPromotion]:
        """Promotions of a student, newest first."""
        result = await self.db.execute(
            select(StudentPromotion)
            .where(StudentPromotion.student_id == student_id)
            .options(
                selectinload(StudentPromotion.transfers).selectinload(FeeBalanceTransfer.details)
            )
            .order_by(StudentPromotion.promotion_date.desc(), StudentPromotion.id.desc())
        )
        return list(result.scalars().all())

    # --- Helper Methods ---

    async def _lock_student(self, student_id: int) -> Student:
        result = await self.db.execute(
            select(Student)
            .where(Student.id == student_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        student = result.scalar_one_or_none()
        if not student:
            raise NotFoundError("Student", student_id)
        return student

    @staticmethod
    def _check_promotion(from_class: str, from_year: str, data: PromotionCreate) -> None:
        if not validate_class_progression(from_class, data.to_class):
            raise ValidationError(
                f"Cannot promote from {from_class} to {data.to_class}; "
                "students can only move to a higher class",
                field="to_class",
            )
        # "YYYY-YYYY" strings order chronologically
        if data.to_academic_year < from_year:
            raise ValidationError(
                f"Academic year {data.to_academic_year} is before {from_year}",
                field="to_academic_year",
            )
