"""
Database session configuration.

The ledger store is reached through async SQLAlchemy sessions. Every group
mutation runs in exactly one session/transaction, so a failed commit never
leaves partial writes behind.
"""

from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import declarative_base
from backend.app.core.config import settings

# Create async engine
engine = create_async_engine(
    settings.database_url,
    echo=settings.db_echo,
    pool_size=settings.db_pool_size,
    max_overflow=settings.db_max_overflow,
    future=True,
)


def create_session_factory(bind: AsyncEngine) -> async_sessionmaker:
    """Session factory used by the ledger runtime (tests bind their own engine)."""
    return async_sessionmaker(
        bind,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


AsyncSessionLocal = create_session_factory(engine)

# Create declarative base for models
Base = declarative_base()


async def create_tables(bind: AsyncEngine) -> None:
    """Create all ledger tables (models must already be imported)."""
    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
