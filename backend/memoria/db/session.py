"""Database engine and session utilities.

Functions:
    sqlite_url(path): Build an aiosqlite URL for a database file, creating its parent directory.
    create_sqlite_engine(path, ...): Pooled async engine for a SQLite file.
    create_postgres_engine(url, ...): Pooled async engine for PostgreSQL via asyncpg.
    make_session_factory(engine): Factory for yielding AsyncSession objects.
    apply_sqlite_pragmas(conn): Switch SQLite to WAL with relaxed fsync.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Optional

from sqlalchemy.engine import URL
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, async_sessionmaker, create_async_engine
from sqlmodel.ext.asyncio.session import AsyncSession

_LOGGER = logging.getLogger(__name__)

_MEMORY = ":memory:"


def sqlite_url(path: str | Path) -> str:
    if str(path) == _MEMORY:
        return f"sqlite+aiosqlite:///{_MEMORY}"
    db_path = Path(path).resolve()
    if db_path.parent.name:
        db_path.parent.mkdir(parents=True, exist_ok=True)
    return f"sqlite+aiosqlite:///{db_path}"


def create_sqlite_engine(path: str | Path, *, pool_size: int = 10, timeout: float = 30.0) -> AsyncEngine:
    kwargs: dict[str, Any] = {}
    # in-memory databases live on a single connection; sizing the pool would split them
    if str(path) != _MEMORY:
        kwargs["pool_size"] = pool_size
        kwargs["pool_timeout"] = timeout
    return create_async_engine(
        sqlite_url(path),
        echo=False,
        future=True,
        connect_args={"check_same_thread": False, "timeout": timeout},
        **kwargs,
    )


def create_postgres_engine(
    url: str | URL,
    *,
    pool_size: int = 10,
    timeout: float = 30.0,
    ssl: bool = False,
    ssl_mode: Optional[str] = None,
) -> AsyncEngine:
    connect_args: dict[str, Any] = {"timeout": timeout}
    if ssl:
        connect_args["ssl"] = ssl_mode or "require"
    return create_async_engine(
        url,
        echo=False,
        future=True,
        pool_size=pool_size,
        pool_timeout=timeout,
        pool_pre_ping=True,
        connect_args=connect_args,
    )


def postgres_url(
    *,
    host: str,
    port: int,
    database: str,
    user: str,
    password: Optional[str] = None,
) -> URL:
    return URL.create(
        "postgresql+asyncpg",
        username=user,
        password=password,
        host=host,
        port=port,
        database=database,
    )


def make_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def apply_sqlite_pragmas(conn: AsyncConnection) -> None:
    """Enable WAL journaling; harmless to repeat on every start."""

    try:
        await conn.exec_driver_sql("PRAGMA journal_mode=WAL")
        await conn.exec_driver_sql("PRAGMA synchronous=NORMAL")
    except SQLAlchemyError as exc:
        _LOGGER.debug("SQLite pragmas not applied: %s", exc)
