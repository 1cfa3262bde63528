"""Database configuration and session management for the local backend."""

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from .models.base import Base


def create_engine(database_url: str, echo: bool = False) -> AsyncEngine:
    """Create an async engine for the given URL.

    SQLite URLs skip the connection pool sizing that only applies to server
    databases; in-memory SQLite shares one connection so every session sees
    the same tables.

    Args:
        database_url: SQLAlchemy async URL
        echo: Log emitted SQL

    Returns:
        AsyncEngine instance
    """
    if database_url.startswith("sqlite"):
        if ":memory:" in database_url:
            return create_async_engine(
                database_url,
                echo=echo,
                poolclass=StaticPool,
                connect_args={"check_same_thread": False},
            )
        return create_async_engine(database_url, echo=echo)

    return create_async_engine(
        database_url,
        echo=echo,
        pool_size=5,
        max_overflow=10,
        pool_pre_ping=True,
    )


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create the session factory bound to ``engine``."""
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
        autocommit=False,
    )


async def init_db(engine: AsyncEngine) -> None:
    """Create the jobs and profiles tables when missing.

    Runs once when the local context is built.
    """
    async with engine.begin() as conn:
        # Registers the rows on Base.metadata
        from .models import JobRow, ProfileRow  # noqa: F401

        await conn.run_sync(Base.metadata.create_all)


async def close_db(engine: AsyncEngine) -> None:
    """Dispose the engine when the local context closes."""
    await engine.dispose()
