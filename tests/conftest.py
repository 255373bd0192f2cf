import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

from collections.abc import AsyncGenerator
from datetime import date
from decimal import Decimal

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from src.core.clock import FixedClock
from src.core.database import get_db
from src.core.database.base import Base
from src.main import app
from src.modules.fee_structures.models import Term
from src.modules.fee_structures.schemas import FeeStructureCreate, FeeStructureItemCreate
from src.modules.fee_structures.service import FeeStructureService
from src.modules.invoices.schemas import InvoiceCreate
from src.modules.invoices.service import InvoiceService
from src.modules.payments.schemas import AllocationTarget, PaymentCreate
from src.modules.payments.service import PaymentService
from src.modules.payments.status import PaymentMode
from src.modules.students.models import Student, StudentStatus

# Test database URL (in-memory SQLite, one connection per test)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

# Opaque actor id used by the tests
ACTOR_ID = 7

TODAY = date(2026, 2, 2)


@pytest.fixture
async def engine():
    """Fresh in-memory database with all tables for each test."""
    engine = create_async_engine(TEST_DATABASE_URL, echo=False, poolclass=StaticPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def db_session(engine) -> AsyncGenerator[AsyncSession, None]:
    """Get test database session."""
    session_factory = async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )
    async with session_factory() as session:
        yield session


@pytest.fixture
async def client(db_session: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """Get test HTTP client with overridden database dependency."""

    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as client:
        yield client

    app.dependency_overrides.clear()


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(TODAY)


@pytest.fixture
def student_factory(db_session: AsyncSession):
    """Create and commit a student."""

    async def create(admission_number: str = "ADM-0001") -> Student:
        student = Student(
            admission_number=admission_number,
            first_name="Amina",
            last_name="Wanjiru",
            current_class="grade4",
            academic_year="2025-2026",
            status=StudentStatus.ACTIVE.value,
        )
        db_session.add(student)
        await db_session.commit()
        return student

    return create


@pytest.fixture
async def student(student_factory) -> Student:
    return await student_factory()


@pytest.fixture
def invoice_factory(db_session: AsyncSession, student: Student, clock: FixedClock):
    """Create a fee structure with one item per amount and invoice it to a student."""

    async def create(
        amounts: list[str],
        term: Term = Term.TERM_2,
        class_name: str = "grade4",
        academic_year: str = "2025-2026",
        due_date: date | None = None,
        student_id: int | None = None,
    ):
        fee_structure = await FeeStructureService(db_session).create_fee_structure(
            FeeStructureCreate(
                class_name=class_name,
                academic_year=academic_year,
                term=term,
                created_by_id=ACTOR_ID,
                items=[
                    FeeStructureItemCreate(
                        item_name=f"Fee {position}",
                        category="tuition",
                        amount=Decimal(amount),
                        display_order=position,
                    )
                    for position, amount in enumerate(amounts, start=1)
                ],
            )
        )
        return await InvoiceService(db_session, clock=clock).create_invoice(
            InvoiceCreate(
                student_id=student_id or student.id,
                fee_structure_id=fee_structure.id,
                generated_by_id=ACTOR_ID,
                due_date=due_date,
            )
        )

    return create


@pytest.fixture
def payment_factory(db_session: AsyncSession, student: Student, clock: FixedClock):
    """Record a cash payment and, when targets are given, allocate it."""

    async def create(
        amount: str,
        targets: list[tuple[int, str]] | None = None,
        student_id: int | None = None,
    ):
        service = PaymentService(db_session, clock=clock)
        payment = await service.create_payment(
            PaymentCreate(
                student_id=student_id or student.id,
                amount=Decimal(amount),
                payment_mode=PaymentMode.CASH,
                payment_date=TODAY,
                collected_by_id=ACTOR_ID,
            )
        )
        if targets is None:
            return payment
        return await service.allocate_payment(
            payment.id,
            [
                AllocationTarget(invoice_item_id=item_id, amount=Decimal(value))
                for item_id, value in targets
            ],
            allocated_by_id=ACTOR_ID,
        )

    return create
