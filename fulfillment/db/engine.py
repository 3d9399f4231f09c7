"""Async SQLAlchemy engine and session management."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

from sqlalchemy import event
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from fulfillment.config import settings

# Seconds a SQLite connection waits for another writer before failing
SQLITE_BUSY_TIMEOUT = 30


def _is_memory_database(url: str) -> bool:
    return make_url(url).database in (None, "", ":memory:")


def _begin_immediate(engine: AsyncEngine) -> None:
    """Start every SQLite transaction with the write lock held.

    Each session gets its own connection, so concurrent requests queue on
    the database lock and each sees the others' committed state only.
    """

    @event.listens_for(engine.sync_engine, "connect")
    def _disable_pysqlite_begin(dbapi_connection: Any, connection_record: Any) -> None:
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _emit_begin(conn: Any) -> None:
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def create_engine_instance(database_url: str | None = None) -> AsyncEngine:
    """Create async SQLAlchemy engine.

    An in-memory SQLite database lives on a single connection, so it uses
    StaticPool. File databases get one connection per session.
    """
    url = database_url or settings.database_url

    if not url.startswith("sqlite"):
        return create_async_engine(url, echo=settings.database_echo)

    if _is_memory_database(url):
        return create_async_engine(
            url,
            echo=settings.database_echo,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )

    engine = create_async_engine(
        url,
        echo=settings.database_echo,
        connect_args={"check_same_thread": False, "timeout": SQLITE_BUSY_TIMEOUT},
    )
    _begin_immediate(engine)
    return engine


def create_session_factory(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


engine = create_engine_instance()

async_session_factory = create_session_factory(engine)


@asynccontextmanager
async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """Provide a transactional scope for database operations."""
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
