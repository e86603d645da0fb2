# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Directory database connection management using SQLAlchemy async.

The directory database holds the live roster and the progression
workflows. Uses the SQLAlchemy 2.0 async API with the asyncpg driver in
deployments and aiosqlite for local development and tests.

Example:
    from src.infrastructure.database.connection import (
        init_database,
        get_session,
    )

    # Initialize at application startup
    await init_database(settings)

    # Use in request handlers or scripts
    async with get_session() as session:
        result = await session.execute(select(Student))
        students = result.scalars().all()
"""

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any, AsyncIterator, Optional

from sqlalchemy import event, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from src.infrastructure.database.models import Base

if TYPE_CHECKING:
    from src.core.config.settings import Settings

# Module-level state for the directory database connection
_engine: Optional[AsyncEngine] = None
_sessionmaker: Optional[async_sessionmaker[AsyncSession]] = None


class DatabaseError(Exception):
    """Base exception for database operations.

    Attributes:
        message: Human-readable error description.
        original_error: The underlying SQLAlchemy or database error.
    """

    def __init__(self, message: str, original_error: Optional[Exception] = None) -> None:
        """Initialize the database error.

        Args:
            message: Human-readable error description.
            original_error: The underlying exception that caused this error.
        """
        super().__init__(message)
        self.message = message
        self.original_error = original_error

    def __str__(self) -> str:
        """Return string representation of the error."""
        if self.original_error:
            return f"{self.message}: {self.original_error}"
        return self.message


def create_engine_for_url(url: str, echo: bool = False, **pool_options: Any) -> AsyncEngine:
    """Create an async engine, configuring SQLite specifics when needed.

    In-memory SQLite databases share a single connection so every session
    sees the same data, and foreign keys are switched on for every SQLite
    connection.

    Args:
        url: Async database URL.
        echo: Echo SQL statements.
        **pool_options: Pool options for server databases.

    Returns:
        Configured AsyncEngine.
    """
    if not url.startswith("sqlite"):
        return create_async_engine(
            url,
            pool_pre_ping=True,
            pool_recycle=1800,
            echo=echo,
            **pool_options,
        )

    options: dict[str, Any] = {"echo": echo}
    if ":memory:" in url or url.rstrip("/").endswith("sqlite+aiosqlite:"):
        options["poolclass"] = StaticPool
        options["connect_args"] = {"check_same_thread": False}

    engine = create_async_engine(url, **options)

    @event.listens_for(engine.sync_engine, "connect")
    def _enable_foreign_keys(dbapi_connection, connection_record):  # noqa: ARG001
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    return engine


def create_sessionmaker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Build the sessionmaker used by services, scripts and tests."""
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


async def init_database(settings: "Settings") -> None:
    """Initialize the directory database connection pool.

    This should be called once at application startup.

    Args:
        settings: Application settings containing database configuration.

    Raises:
        DatabaseError: If connection pool creation fails.
    """
    global _engine, _sessionmaker

    pool_options: dict[str, Any] = {}
    if not settings.database.is_sqlite:
        pool_options = {
            "pool_size": settings.database.pool_size,
            "max_overflow": settings.database.max_overflow,
        }

    try:
        _engine = create_engine_for_url(
            settings.database.url,
            echo=settings.debug and settings.log_level == "DEBUG",
            **pool_options,
        )
        _sessionmaker = create_sessionmaker(_engine)
    except SQLAlchemyError as e:
        raise DatabaseError("Failed to initialize directory database connection", e) from e


async def close_database() -> None:
    """Close the directory database connection pool."""
    global _engine, _sessionmaker

    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _sessionmaker = None


def get_engine() -> AsyncEngine:
    """Get the directory database async engine.

    Raises:
        DatabaseError: If the database has not been initialized.
    """
    if _engine is None:
        raise DatabaseError("Database not initialized. Call init_database() first.")
    return _engine


def get_sessionmaker() -> async_sessionmaker[AsyncSession]:
    """Get the directory database sessionmaker.

    Raises:
        DatabaseError: If the database has not been initialized.
    """
    if _sessionmaker is None:
        raise DatabaseError("Database not initialized. Call init_database() first.")
    return _sessionmaker


@asynccontextmanager
async def get_session() -> AsyncIterator[AsyncSession]:
    """Get an async session for the directory database.

    Services commit explicitly (the progression apply commits chunk by
    chunk), so this context only rolls back on failure and closes the
    session.

    Yields:
        AsyncSession for database operations.

    Raises:
        DatabaseError: If the database has not been initialized or
            if a database operation fails.
    """
    sessionmaker = get_sessionmaker()

    async with sessionmaker() as session:
        try:
            yield session
        except SQLAlchemyError as e:
            await session.rollback()
            raise DatabaseError("Database operation failed", e) from e
        except Exception:
            await session.rollback()
            raise


async def create_schema(engine: AsyncEngine | None = None) -> None:
    """Create all tables that do not exist yet.

    Used for development databases and tests; deployments run the
    alembic migrations instead.
    """
    engine = engine or get_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def check_database_connection() -> bool:
    """Check if the directory database is reachable.

    Returns:
        True if the database is reachable, False otherwise.
    """
    if _engine is None:
        return False

    try:
        async with _engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return True
    except SQLAlchemyError:
        return False
