"""Async engine and session factory wiring."""

from __future__ import annotations

from typing import AsyncIterator

from sqlalchemy import event
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from loyalty_ledger.core.settings import settings


def _is_sqlite(url: str) -> bool:
    return make_url(url).get_backend_name() == "sqlite"


def install_sqlite_write_lock(engine: AsyncEngine) -> None:
    """Open every SQLite transaction with ``BEGIN IMMEDIATE``.

    SQLite ignores ``SELECT ... FOR UPDATE``; taking the reserved lock at the start of
    the transaction gives the same per-row exclusivity by serialising writers.
    """

    @event.listens_for(engine.sync_engine, "connect")
    def _disable_driver_transactions(dbapi_connection, connection_record) -> None:  # noqa: ANN001
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _begin_immediate(connection) -> None:  # noqa: ANN001
        connection.exec_driver_sql("BEGIN IMMEDIATE")


def build_engine(
    database_url: str | None = None,
    *,
    echo: bool | None = None,
    lock_timeout_seconds: float | None = None,
) -> AsyncEngine:
    """Create the async engine for the configured database."""

    url = database_url or settings.database_url
    timeout = (
        lock_timeout_seconds
        if lock_timeout_seconds is not None
        else settings.database_lock_timeout_seconds
    )
    connect_args: dict[str, object] = {}
    if _is_sqlite(url):
        connect_args["timeout"] = timeout
    elif make_url(url).drivername == "postgresql+asyncpg":
        connect_args["server_settings"] = {"lock_timeout": str(int(timeout * 1000))}

    engine = create_async_engine(
        url,
        echo=settings.database_echo if echo is None else echo,
        future=True,
        connect_args=connect_args,
    )
    if _is_sqlite(url):
        install_sqlite_write_lock(engine)
    return engine


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)


engine = build_engine()
async_session = build_session_factory(engine)


async def get_session() -> AsyncIterator[AsyncSession]:
    async with async_session() as session:
        yield session


__all__ = [
    "async_session",
    "build_engine",
    "build_session_factory",
    "engine",
    "get_session",
    "install_sqlite_write_lock",
]
