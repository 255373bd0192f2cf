from typing import Protocol

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.clock import Clock, system_clock
from src.core.documents.models import DocumentSequence


class NumberSupplier(Protocol):
    """Supplies unique document numbers; the ledger never parses them."""

    async def generate(self, prefix: str) -> str: ...


class DocumentNumberGenerator:
    """
    Generates sequential document numbers in format: PREFIX-YYYY-NNNNNN

    Examples:
        INV-2026-000001
        PAY-2026-000042
        BFT-2026-000003

    The year comes from the injected clock, so numbering restarts each
    calendar year per prefix.
    """

    def __init__(self, session: AsyncSession, clock: Clock | None = None):
        self.session = session
        self.clock = clock or system_clock

    async def _locked_sequence(self, prefix: str, year: int) -> DocumentSequence:
        stmt = (
            select(DocumentSequence)
            .where(DocumentSequence.prefix == prefix, DocumentSequence.year == year)
            .with_for_update()
        )
        sequence = (await self.session.execute(stmt)).scalar_one_or_none()
        if sequence is not None:
            return sequence

        self.session.add(DocumentSequence(prefix=prefix, year=year, last_number=0))
        await self.session.flush()
        return (await self.session.execute(stmt)).scalar_one()

    async def generate(self, prefix: str, year: int | None = None) -> str:
        """
        Issue the next number for a prefix.

        The sequence row is locked and joins the caller's transaction, so a
        rolled back operation does not consume a number.
        """
        if year is None:
            year = self.clock.today().year

        sequence = await self._locked_sequence(prefix, year)
        number = sequence.issue()
        await self.session.flush()
        return number
