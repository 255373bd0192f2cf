from sqlalchemy.ext.asyncio import AsyncSession

from src.core.documents.number_generator import DocumentNumberGenerator


class TestDocumentNumberGenerator:
    """Tests for the default document number supplier."""

    async def test_sequential_numbers_per_prefix(self, db_session: AsyncSession):
        numbers = DocumentNumberGenerator(db_session)

        assert await numbers.generate("INV", year=2026) == "INV-2026-000001"
        assert await numbers.generate("INV", year=2026) == "INV-2026-000002"
        assert await numbers.generate("RCP", year=2026) == "RCP-2026-000001"
        assert await numbers.generate("INV", year=2026) == "INV-2026-000003"

    async def test_years_have_independent_sequences(self, db_session: AsyncSession):
        numbers = DocumentNumberGenerator(db_session)

        assert await numbers.generate("PAY", year=2026) == "PAY-2026-000001"
        assert await numbers.generate("PAY", year=2027) == "PAY-2027-000001"
        assert await numbers.generate("PAY", year=2026) == "PAY-2026-000002"

    async def test_rolled_back_number_is_reused(self, db_session: AsyncSession):
        """The sequence row joins the caller's transaction."""
        numbers = DocumentNumberGenerator(db_session)
        assert await numbers.generate("BFT", year=2026) == "BFT-2026-000001"
        await db_session.commit()

        assert await numbers.generate("BFT", year=2026) == "BFT-2026-000002"
        await db_session.rollback()

        assert await numbers.generate("BFT", year=2026) == "BFT-2026-000002"

    async def test_year_comes_from_clock(self, db_session: AsyncSession, clock):
        numbers = DocumentNumberGenerator(db_session, clock=clock)

        assert await numbers.generate("INV") == "INV-2026-000001"
