"""Database connection and session management.

Transaction Guarantees:
- Each request gets its own session (one unit of work)
- All operations within a request are atomic
- On any exception, the entire transaction is rolled back
- Change notifications are published only after a successful commit
"""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from .changes import ChangeFeed, change_feed, pop_staged_changes
from .config import get_settings

logger = logging.getLogger(__name__)
settings = get_settings()

_engine_kwargs: dict = {"echo": settings.database_echo, "pool_pre_ping": True}
if not settings.is_sqlite:
    _engine_kwargs.update(
        pool_size=settings.database_pool_size,
        max_overflow=settings.database_max_overflow,
        pool_recycle=300,
        pool_timeout=30,
    )

engine = create_async_engine(settings.database_url_async, **_engine_kwargs)

# Session factory - creates new sessions for each request
async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,  # Don't expire objects after commit
    autoflush=False,         # Manual flush for better control
)


@asynccontextmanager
async def unit_of_work(
    session_factory: async_sessionmaker[AsyncSession] | None = None,
    feed: ChangeFeed | None = None,
) -> AsyncGenerator[AsyncSession, None]:
    """
    Run a block of work in one transaction.

    - Success: COMMIT, then publish staged change events to the feed
    - Any exception: ROLLBACK, staged events are discarded
    """
    factory = session_factory or async_session_factory
    feed = feed or change_feed

    async with factory() as session:
        try:
            yield session
            await session.commit()
            logger.debug("Transaction committed successfully")
        except SQLAlchemyError as e:
            await session.rollback()
            pop_staged_changes(session)
            logger.error(f"Database error, transaction rolled back: {e}")
            raise
        except Exception:
            await session.rollback()
            pop_staged_changes(session)
            raise

        events = pop_staged_changes(session)

    if events:
        await feed.publish(events)


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Dependency for routes that open their own short units of work."""
    return async_session_factory


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Dependency that provides a transactional database session.

    Usage in FastAPI:
        @router.post("/items")
        async def create_item(session: SessionDep):
            # All operations here are in one transaction
            ...
            # Commit happens automatically after the endpoint returns
    """
    async with unit_of_work() as session:
        yield session


def dialect_insert(session: AsyncSession, table):
    """Return an ``INSERT`` construct supporting ``ON CONFLICT`` for the bound dialect."""
    dialect = session.bind.dialect.name if session.bind is not None else "postgresql"
    if dialect == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
    elif dialect == "sqlite":
        from sqlalchemy.dialects.sqlite import insert
    else:
        raise NotImplementedError(f"Upserts are not supported on {dialect}")
    return insert(table)


async def init_db() -> None:
    """Initialize database (create tables if needed)."""
    from ..models import Base

    async with engine.begin() as conn:
        # In production, use Alembic migrations instead
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    """Close database connections."""
    await engine.dispose()
