"""Database configuration and session management."""

import logging
from pathlib import Path
from typing import AsyncIterator

from fastapi import Request
from sqlalchemy import event, text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import declarative_base
from sqlalchemy.pool import StaticPool

logger = logging.getLogger(__name__)

# Base class for models
Base = declarative_base()


def _enable_sqlite_foreign_keys(engine: AsyncEngine) -> None:
    """SQLite enforces ON DELETE CASCADE only when asked, per connection."""

    @event.listens_for(engine.sync_engine, "connect")
    def _set_sqlite_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


def create_engine(database_url: str, timeout_seconds: float = 10.0) -> AsyncEngine:
    """Create an async engine for the given URL.

    SQLite gets a busy timeout (so concurrent writers queue instead of failing)
    and, for in-memory databases, a single shared connection. Other backends
    get a bounded pool with a checkout timeout.
    """
    if database_url.startswith("sqlite"):
        if ":memory:" in database_url:
            engine = create_async_engine(
                database_url,
                echo=False,
                connect_args={"check_same_thread": False},
                poolclass=StaticPool,
            )
            _enable_sqlite_foreign_keys(engine)
            return engine

        db_path = database_url.split(":///", 1)[-1]
        if db_path:
            Path(db_path).resolve().parent.mkdir(parents=True, exist_ok=True)
        engine = create_async_engine(
            database_url,
            echo=False,
            connect_args={"check_same_thread": False, "timeout": timeout_seconds},
        )
        _enable_sqlite_foreign_keys(engine)
        return engine

    return create_async_engine(
        database_url,
        echo=False,
        pool_size=10,
        max_overflow=20,
        pool_timeout=timeout_seconds,
        pool_recycle=3600,
        pool_pre_ping=True,
    )


def create_sessionmaker(engine: AsyncEngine) -> async_sessionmaker:
    """Session factory used by request handlers and background tasks."""
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


async def init_db(engine: AsyncEngine) -> None:
    """Create tables and apply SQLite pragmas."""
    # Register all models on Base.metadata
    import onesaas.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

        if engine.dialect.name == "sqlite":
            # WAL mode allows concurrent reads/writes
            await conn.execute(text("PRAGMA journal_mode=WAL"))
            await conn.execute(text("PRAGMA synchronous=NORMAL"))
            await conn.execute(text("PRAGMA busy_timeout=5000"))
            await conn.execute(text("PRAGMA foreign_keys=ON"))
            logger.info("SQLite optimizations applied: WAL mode, 5s busy timeout")


async def get_db(request: Request) -> AsyncIterator[AsyncSession]:
    """Dependency for getting database sessions."""
    session_factory = request.app.state.ctx.session_factory
    async with session_factory() as session:
        yield session
