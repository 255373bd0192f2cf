from datetime import date
from decimal import Decimal
from enum import Enum, StrEnum
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from src.core.audit.models import AuditLog


class AuditAction(StrEnum):
    """Standard audit actions."""

    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"

    # Ledger actions
    CREATE_INVOICE = "invoice.create"
    CANCEL_INVOICE = "invoice.cancel"
    UPDATE_DUE_DATE = "invoice.due_date"
    APPLY_WAIVER = "invoice_item.waiver"
    REVOKE_WAIVER = "invoice_item.waiver_revoke"
    CREATE_PAYMENT = "payment.create"
    ALLOCATE_PAYMENT = "payment.allocate"
    VERIFY_PAYMENT = "payment.verify"
    FAIL_PAYMENT = "payment.fail"
    CANCEL_PAYMENT = "payment.cancel"
    CANCEL_PAYMENT_ITEM = "payment_item.cancel"
    REFUND_PAYMENT_ITEM = "payment_item.refund"
    CARRY_FORWARD = "balance.carry_forward"
    PROMOTE_STUDENT = "student.promote"


def _snapshot(values: dict[str, Any] | None) -> dict[str, Any] | None:
    """Make amounts, dates and enums JSON-safe; amounts keep their two decimals."""
    if values is None:
        return None

    def convert(value: Any) -> Any:
        if isinstance(value, Enum):
            return value.value
        if isinstance(value, (Decimal, date)):
            return str(value)
        if isinstance(value, dict):
            return {k: convert(v) for k, v in value.items()}
        if isinstance(value, (list, tuple)):
            return [convert(v) for v in value]
        return value

    return convert(values)


class AuditService:
    """Writes audit entries alongside ledger changes."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def log(
        self,
        action: str | AuditAction,
        entity_type: str,
        entity_id: int,
        user_id: int | None = None,
        entity_identifier: str | None = None,
        old_values: dict[str, Any] | None = None,
        new_values: dict[str, Any] | None = None,
        comment: str | None = None,
    ) -> AuditLog:
        """Create an audit log entry in the current unit of work."""
        audit_log = AuditLog(
            user_id=user_id,
            action=str(action),
            entity_type=entity_type,
            entity_id=entity_id,
            entity_identifier=entity_identifier,
            old_values=_snapshot(old_values),
            new_values=_snapshot(new_values),
            comment=comment,
        )
        self.db.add(audit_log)
        await self.db.flush()
        return audit_log
