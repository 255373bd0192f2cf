"""Fee ledger tables

Revision ID: 001_initial
Revises:
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps(with_updated: bool = True) -> list[sa.Column]:
    columns = [
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        )
    ]
    if with_updated:
        columns.append(
            sa.Column(
                "updated_at",
                sa.DateTime(timezone=True),
                server_default=sa.func.now(),
                nullable=False,
            )
        )
    return columns


def _money(name: str, nullable: bool = False, default: bool = True) -> sa.Column:
    return sa.Column(
        name,
        sa.Numeric(15, 2),
        nullable=nullable,
        server_default="0.00" if default else None,
    )


def upgrade() -> None:
    # Document sequences
    op.create_table(
        "document_sequences",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("prefix", sa.String(20), nullable=False),
        sa.Column("year", sa.Integer(), nullable=False),
        sa.Column("last_number", sa.Integer(), nullable=False, server_default="0"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("prefix", "year", name="uq_document_sequence_prefix_year"),
    )

    # Audit log
    op.create_table(
        "audit_logs",
        sa.Column("id", sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column("user_id", sa.BigInteger(), nullable=True),
        sa.Column("action", sa.String(100), nullable=False),
        sa.Column("entity_type", sa.String(100), nullable=False),
        sa.Column("entity_id", sa.BigInteger(), nullable=False),
        sa.Column("entity_identifier", sa.String(200), nullable=True),
        sa.Column("old_values", sa.JSON(), nullable=True),
        sa.Column("new_values", sa.JSON(), nullable=True),
        sa.Column("comment", sa.Text(), nullable=True),
        *_timestamps(with_updated=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_audit_logs_user_id", "audit_logs", ["user_id"])
    op.create_index("ix_audit_logs_action", "audit_logs", ["action"])
    op.create_index("ix_audit_logs_entity", "audit_logs", ["entity_type", "entity_id"])
    op.create_index("ix_audit_logs_created_at", "audit_logs", ["created_at"])

    # Students
    op.create_table(
        "students",
        sa.Column("id", sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column("admission_number", sa.String(50), nullable=False),
        sa.Column("first_name", sa.String(100), nullable=False),
        sa.Column("last_name", sa.String(100), nullable=False),
        sa.Column("current_class", sa.String(20), nullable=False),
        sa.Column("academic_year", sa.String(9), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="active"),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_students_admission_number", "students", ["admission_number"], unique=True)
    op.create_index("ix_students_status", "students", ["status"])

    # Fee structures
    op.create_table(
        "fee_structures",
        sa.Column("id", sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column("class_name", sa.String(20), nullable=False),
        sa.Column("academic_year", sa.String(9), nullable=False),
        sa.Column("term", sa.String(10), nullable=False),
        sa.Column("status", sa.String(10), nullable=False, server_default="ACTIVE"),
        _money("total_amount"),
        sa.Column("created_by_id", sa.BigInteger(), nullable=False),
        sa.Column("updated_by_id", sa.BigInteger(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "class_name", "academic_year", "term", name="uq_fee_structure_class_year_term"
        ),
    )
    op.create_index("ix_fee_structures_class_name", "fee_structures", ["class_name"])

    op.create_table(
        "fee_structure_items",
        sa.Column("id", sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column("fee_structure_id", sa.BigInteger(), nullable=False),
        sa.Column("item_name", sa.String(200), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("category", sa.String(100), nullable=False),
        _money("amount", default=False),
        sa.Column("is_mandatory", sa.Boolean(), nullable=False, server_default="true"),
        sa.Column("display_order", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("status", sa.String(10), nullable=False, server_default="ACTIVE"),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["fee_structure_id"], ["fee_structures.id"], ondelete="CASCADE"),
    )
    op.create_index(
        "ix_fee_structure_items_fee_structure_id", "fee_structure_items", ["fee_structure_id"]
    )
    op.create_index("ix_fee_structure_items_category", "fee_structure_items", ["category"])

    # Invoices
    op.create_table(
        "invoices",
        sa.Column("id", sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column("invoice_number", sa.String(50), nullable=False),
        sa.Column("student_id", sa.BigInteger(), nullable=False),
        sa.Column("fee_structure_id", sa.BigInteger(), nullable=True),
        sa.Column("class_name", sa.String(20), nullable=False),
        sa.Column("academic_year", sa.String(9), nullable=False),
        sa.Column("term", sa.String(10), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="UNPAID"),
        sa.Column("due_date", sa.Date(), nullable=False),
        _money("total_amount"),
        _money("paid_amount"),
        _money("waiver_amount"),
        _money("balance_amount"),
        sa.Column("remarks", sa.Text(), nullable=True),
        sa.Column("generated_by_id", sa.BigInteger(), nullable=False),
        sa.Column("cancelled_by_id", sa.BigInteger(), nullable=True),
        sa.Column("cancellation_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancellation_reason", sa.Text(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["student_id"], ["students.id"]),
        sa.ForeignKeyConstraint(["fee_structure_id"], ["fee_structures.id"]),
    )
    op.create_index("ix_invoices_invoice_number", "invoices", ["invoice_number"], unique=True)
    op.create_index("ix_invoices_student_id", "invoices", ["student_id"])
    op.create_index("ix_invoices_fee_structure_id", "invoices", ["fee_structure_id"])
    op.create_index("ix_invoices_academic_year", "invoices", ["academic_year"])
    op.create_index("ix_invoices_status", "invoices", ["status"])

    op.create_table(
        "invoice_items",
        sa.Column("id", sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column("invoice_id", sa.BigInteger(), nullable=False),
        sa.Column("fee_structure_item_id", sa.BigInteger(), nullable=True),
        sa.Column("item_name", sa.String(200), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("category", sa.String(100), nullable=False),
        sa.Column("is_mandatory", sa.Boolean(), nullable=False, server_default="true"),
        sa.Column("display_order", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("due_date", sa.Date(), nullable=False),
        _money("amount", default=False),
        _money("paid_amount"),
        _money("waiver_amount"),
        _money("balance_amount", default=False),
        sa.Column("payment_status", sa.String(20), nullable=False, server_default="UNPAID"),
        sa.Column("waiver_reason", sa.Text(), nullable=True),
        sa.Column("waiver_approved_by_id", sa.BigInteger(), nullable=True),
        sa.Column("waiver_approved_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_carried_forward", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("carried_forward_from_id", sa.BigInteger(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["invoice_id"], ["invoices.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["fee_structure_item_id"], ["fee_structure_items.id"]),
        sa.ForeignKeyConstraint(
            ["carried_forward_from_id"], ["invoice_items.id"], ondelete="RESTRICT"
        ),
    )
    op.create_index("ix_invoice_items_invoice_id", "invoice_items", ["invoice_id"])
    op.create_index(
        "ix_invoice_items_fee_structure_item_id", "invoice_items", ["fee_structure_item_id"]
    )
    op.create_index("ix_invoice_items_payment_status", "invoice_items", ["payment_status"])
    op.create_index(
        "ix_invoice_items_carried_forward_from_id", "invoice_items", ["carried_forward_from_id"]
    )

    # Payments
    op.create_table(
        "payments",
        sa.Column("id", sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column("payment_number", sa.String(50), nullable=False),
        sa.Column("receipt_number", sa.String(50), nullable=True),
        sa.Column("student_id", sa.BigInteger(), nullable=False),
        _money("amount", default=False),
        sa.Column("payment_mode", sa.String(20), nullable=False),
        sa.Column("payment_date", sa.Date(), nullable=False),
        sa.Column("transaction_reference", sa.String(100), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="PENDING"),
        sa.Column("remarks", sa.Text(), nullable=True),
        sa.Column("collected_by_id", sa.BigInteger(), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_by_id", sa.BigInteger(), nullable=True),
        sa.Column("cancellation_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancellation_reason", sa.Text(), nullable=True),
        sa.Column("failure_reason", sa.Text(), nullable=True),
        _money("refund_amount"),
        sa.Column("refund_date", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["student_id"], ["students.id"]),
    )
    op.create_index("ix_payments_payment_number", "payments", ["payment_number"], unique=True)
    op.create_index("ix_payments_receipt_number", "payments", ["receipt_number"], unique=True)
    op.create_index("ix_payments_student_id", "payments", ["student_id"])
    op.create_index("ix_payments_status", "payments", ["status"])

    op.create_table(
        "payment_items",
        sa.Column("id", sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column("payment_id", sa.BigInteger(), nullable=False),
        sa.Column("invoice_item_id", sa.BigInteger(), nullable=False),
        _money("amount", default=False),
        _money("original_invoice_item_amount", default=False),
        sa.Column("payment_sequence", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="PENDING"),
        _money("refund_amount", nullable=True, default=False),
        sa.Column("refund_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("refund_reference", sa.String(100), nullable=True),
        sa.Column("reversed_by_id", sa.BigInteger(), nullable=True),
        sa.Column("cancellation_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("remarks", sa.Text(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["payment_id"], ["payments.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["invoice_item_id"], ["invoice_items.id"], ondelete="RESTRICT"),
        sa.UniqueConstraint("payment_id", "payment_sequence", name="uq_payment_item_sequence"),
    )
    op.create_index("ix_payment_items_payment_id", "payment_items", ["payment_id"])
    op.create_index("ix_payment_items_invoice_item_id", "payment_items", ["invoice_item_id"])
    op.create_index("ix_payment_items_status", "payment_items", ["status"])

    # Balance carry-forward
    op.create_table(
        "fee_balance_transfers",
        sa.Column("id", sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column("transfer_number", sa.String(50), nullable=False),
        sa.Column("student_id", sa.BigInteger(), nullable=False),
        sa.Column("from_class", sa.String(20), nullable=False),
        sa.Column("from_term", sa.String(10), nullable=False),
        sa.Column("from_academic_year", sa.String(9), nullable=False),
        sa.Column("to_class", sa.String(20), nullable=False),
        sa.Column("to_term", sa.String(10), nullable=False),
        sa.Column("to_academic_year", sa.String(9), nullable=False),
        sa.Column("destination_invoice_id", sa.BigInteger(), nullable=True),
        sa.Column("transfer_date", sa.DateTime(timezone=True), nullable=False),
        _money("total_balance_transferred"),
        sa.Column("status", sa.String(20), nullable=False, server_default="PENDING"),
        sa.Column("failure_reason", sa.Text(), nullable=True),
        sa.Column("transferred_by_id", sa.BigInteger(), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["student_id"], ["students.id"]),
        sa.ForeignKeyConstraint(["destination_invoice_id"], ["invoices.id"], ondelete="SET NULL"),
    )
    op.create_index(
        "ix_fee_balance_transfers_transfer_number",
        "fee_balance_transfers",
        ["transfer_number"],
        unique=True,
    )
    op.create_index("ix_fee_balance_transfers_student_id", "fee_balance_transfers", ["student_id"])
    op.create_index("ix_fee_balance_transfers_status", "fee_balance_transfers", ["status"])

    op.create_table(
        "fee_balance_details",
        sa.Column("id", sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column("balance_transfer_id", sa.BigInteger(), nullable=False),
        sa.Column("fee_item_name", sa.String(200), nullable=False),
        _money("original_amount", default=False),
        _money("balance_amount", default=False),
        sa.Column("term", sa.String(10), nullable=False),
        sa.Column("academic_year", sa.String(9), nullable=False),
        sa.Column("source_invoice_item_id", sa.BigInteger(), nullable=False),
        sa.Column("carried_invoice_item_id", sa.BigInteger(), nullable=True),
        sa.Column("carried_forward_date", sa.DateTime(timezone=True), nullable=False),
        *_timestamps(with_updated=False),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(
            ["balance_transfer_id"], ["fee_balance_transfers.id"], ondelete="CASCADE"
        ),
        sa.ForeignKeyConstraint(
            ["source_invoice_item_id"], ["invoice_items.id"], ondelete="RESTRICT"
        ),
        sa.ForeignKeyConstraint(
            ["carried_invoice_item_id"], ["invoice_items.id"], ondelete="RESTRICT"
        ),
    )
    op.create_index(
        "ix_fee_balance_details_balance_transfer_id",
        "fee_balance_details",
        ["balance_transfer_id"],
    )
    op.create_index(
        "ix_fee_balance_details_source_invoice_item_id",
        "fee_balance_details",
        ["source_invoice_item_id"],
    )


def downgrade() -> None:
    op.drop_table("fee_balance_details")
    op.drop_table("fee_balance_transfers")
    op.drop_table("payment_items")
    op.drop_table("payments")
    op.drop_table("invoice_items")
    op.drop_table("invoices")
    op.drop_table("fee_structure_items")
    op.drop_table("fee_structures")
    op.drop_table("students")
    op.drop_table("audit_logs")
    op.drop_table("document_sequences")
