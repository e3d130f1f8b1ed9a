"""
Database configuration.

Async SQLAlchemy engine and session factory. Engines use NullPool, so no
connection outlives the event loop that opened it (the long-running
process, a dramatiq actor's asyncio.run() and alembic all share this).
"""

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool


def create_engine(database_url: str, echo: bool = False) -> AsyncEngine:
    """
    Create async engine.

    Args:
        database_url: SQLAlchemy async URL
        echo: Log SQL statements

    Returns:
        AsyncEngine instance
    """
    return create_async_engine(
        database_url,
        echo=echo,
        poolclass=NullPool,
    )


def create_session_maker(engine: AsyncEngine | None = None) -> async_sessionmaker[AsyncSession]:
    """
    Create session maker.

    Args:
        engine: Async engine, a new one for settings.database_url if None

    Returns:
        Session factory
    """
    if engine is None:
        from custody.config.settings import settings

        engine = create_engine(settings.database_url)
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )
