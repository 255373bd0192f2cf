"""Student promotion model."""

from datetime import datetime
from decimal import Decimal

from sqlalchemy import BigInteger, DateTime, ForeignKey, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from src.core.database.base import Base, BigIntPK, MoneyType


class StudentPromotion(Base):
    """
    Move of a student to a higher class, usually at the start of a new academic year.

    Outstanding balances of the class being left are carried into the new
    class in the same unit of work; the resulting transfers point back here.
    """

    __tablename__ = "student_promotions"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    student_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("students.id"), nullable=False, index=True
    )

    from_class: Mapped[str] = mapped_column(String(20), nullable=False)
    to_class: Mapped[str] = mapped_column(String(20), nullable=False)
    from_academic_year: Mapped[str] = mapped_column(String(9), nullable=False)
    to_academic_year: Mapped[str] = mapped_column(String(9), nullable=False)
    # Term the carried balances land in
    to_term: Mapped[str] = mapped_column(String(10), nullable=False)

    promotion_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    total_balance_transferred: Mapped[Decimal] = mapped_column(
        MoneyType, nullable=False, default=Decimal("0.00")
    )
    remarks: Mapped[str | None] = mapped_column(Text, nullable=True)
    promoted_by_id: Mapped[int] = mapped_column(BigInteger, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    transfers: Mapped[list["FeeBalanceTransfer"]] = relationship(
        "FeeBalanceTransfer",
        order_by="FeeBalanceTransfer.id",
    )


# Import for type hints
from src.modules.balance_transfers.models import FeeBalanceTransfer
