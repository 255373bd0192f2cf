"""002 - Student promotions and payment verification

Revision ID: 002_promotions
Revises: 001_initial
Create Date: 2026-10-19
"""
from alembic import op
import sqlalchemy as sa


revision = "002_promotions"
down_revision = "001_initial"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "student_promotions",
        sa.Column("id", sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column("student_id", sa.BigInteger(), nullable=False),
        sa.Column("from_class", sa.String(20), nullable=False),
        sa.Column("to_class", sa.String(20), nullable=False),
        sa.Column("from_academic_year", sa.String(9), nullable=False),
        sa.Column("to_academic_year", sa.String(9), nullable=False),
        sa.Column("to_term", sa.String(10), nullable=False),
        sa.Column("promotion_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column(
            "total_balance_transferred",
            sa.Numeric(15, 2),
            nullable=False,
            server_default="0.00",
        ),
        sa.Column("remarks", sa.Text(), nullable=True),
        sa.Column("promoted_by_id", sa.BigInteger(), nullable=False),
        sa.Column(
            "created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False
        ),
        sa.Column(
            "updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["student_id"], ["students.id"]),
    )
    op.create_index("ix_student_promotions_student_id", "student_promotions", ["student_id"])

    # Transfers made by a promotion point back to it
    op.add_column(
        "fee_balance_transfers",
        sa.Column("promotion_id", sa.BigInteger(), nullable=True),
    )
    op.create_foreign_key(
        "fk_fee_balance_transfers_promotion_id",
        "fee_balance_transfers",
        "student_promotions",
        ["promotion_id"],
        ["id"],
    )
    op.create_index(
        "ix_fee_balance_transfers_promotion_id", "fee_balance_transfers", ["promotion_id"]
    )

    # Non-cash payments are verified before allocation
    op.add_column("payments", sa.Column("verified_by_id", sa.BigInteger(), nullable=True))
    op.add_column(
        "payments", sa.Column("verified_at", sa.DateTime(timezone=True), nullable=True)
    )


def downgrade() -> None:
    op.drop_column("payments", "verified_at")
    op.drop_column("payments", "verified_by_id")
    op.drop_index("ix_fee_balance_transfers_promotion_id", table_name="fee_balance_transfers")
    op.drop_constraint(
        "fk_fee_balance_transfers_promotion_id", "fee_balance_transfers", type_="foreignkey"
    )
    op.drop_column("fee_balance_transfers", "promotion_id")
    op.drop_index("ix_student_promotions_student_id", table_name="student_promotions")
    op.drop_table("student_promotions")
