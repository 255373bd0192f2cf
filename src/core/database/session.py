import logging
from collections.abc import AsyncGenerator, AsyncIterator
from contextlib import asynccontextmanager

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from src.core.config import settings
from src.core.exceptions import AppException, PersistenceFailure

logger = logging.getLogger(__name__)

if not settings.database_url:
    raise ValueError("DATABASE_URL environment variable is not set")

# Hide password in logs
_url_for_log = (
    settings.database_url.split("@")[1]
    if "@" in settings.database_url
    else settings.database_url[:30]
)
logger.info("Connecting to database: ...@%s", _url_for_log)

engine = create_async_engine(
    settings.database_url,
    echo=settings.debug,
    future=True,
)

async_session = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False,
)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Dependency for getting async database session."""
    async with async_session() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


@asynccontextmanager
async def atomic(session: AsyncSession) -> AsyncIterator[AsyncSession]:
    """
    Run a block as one unit of work: commit on success, full rollback on error.

    Domain errors are re-raised unchanged after the rollback; driver and ORM
    errors surface as PersistenceFailure.
    """
    try:
        yield session
        await session.commit()
    except AppException as exc:
        await session.rollback()
        logger.warning("Rolled back unit of work: %s (%s)", type(exc).__name__, exc.message)
        raise
    except SQLAlchemyError as exc:
        await session.rollback()
        logger.warning("Rolled back unit of work after database error: %s", exc)
        raise PersistenceFailure(str(getattr(exc, "orig", exc))) from exc
    except BaseException:
        await session.rollback()
        raise
