"""Database engine and session management."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from sqlalchemy import event
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from booru.exceptions import InternalServerError

if TYPE_CHECKING:
    from collections.abc import Callable

    from booru.config import Settings


def _install_sqlite_pragmas(engine: AsyncEngine, busy_timeout_ms: int) -> None:
    """Enable FK cascades, WAL and a busy timeout on every SQLite connection."""

    @event.listens_for(engine.sync_engine, "connect")
    def _set_pragmas(dbapi_connection: Any, _connection_record: Any) -> None:
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute(f"PRAGMA busy_timeout={int(busy_timeout_ms)}")
        cursor.close()


def create_engine(
    settings: Settings,
) -> tuple[
    AsyncEngine,
    async_sessionmaker[AsyncSession],
]:
    """Create async engine and session factory.

    Returns (engine, session_factory) tuple.
    """
    engine = create_async_engine(
        settings.database_url,
        echo=settings.debug,
    )
    if engine.dialect.name == "sqlite":
        _install_sqlite_pragmas(engine, settings.sqlite_busy_timeout_ms)
    session_factory = async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )
    return engine, session_factory


def dialect_insert(session: AsyncSession) -> Callable[..., Any]:
    """Return the ``insert`` construct of the session's dialect.

    Only the dialect-specific constructs offer ``on_conflict_do_nothing`` /
    ``on_conflict_do_update``, which the sync relies on for race-free inserts.
    """
    dialect = session.get_bind().dialect.name
    if dialect == "sqlite":
        return sqlite.insert
    if dialect == "postgresql":
        return postgresql.insert
    msg = f"Unsupported database dialect for upserts: {dialect}"
    raise InternalServerError(msg)


async def ensure_tables(engine: AsyncEngine) -> None:
    """Create all tables if they don't exist."""
    from booru.models.base import Base

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
