# app/db.py
# Async SQLAlchemy engine for the "db" sync link backend.
from __future__ import annotations

import os
import pathlib
import logging
from typing import Optional

from sqlalchemy.engine import make_url
from sqlalchemy.exc import ArgumentError
from sqlalchemy.ext.asyncio import (
    create_async_engine,
    AsyncEngine,
    async_sessionmaker,
    AsyncSession,
)
from sqlalchemy.orm import DeclarativeBase

from app.config import settings

logger = logging.getLogger("uvicorn.error")

_engine: Optional[AsyncEngine] = None
_sessionmaker: Optional[async_sessionmaker[AsyncSession]] = None


class Base(DeclarativeBase):
    pass


def database_url() -> str:
    """DATABASE_URL from settings or env; otherwise sync.db under DATA_DIR."""
    return (
        getattr(settings, "DATABASE_URL", None)
        or os.getenv("DATABASE_URL")
        or f"sqlite+aiosqlite:///{settings.DATA_DIR.rstrip('/')}/sync.db"
    )


def _ensure_sqlite_dir(dsn: str) -> None:
    try:
        url = make_url(dsn)
    except ArgumentError as e:
        logger.warning("[DB] unparseable DATABASE_URL: %s", e)
        return
    if not url.drivername.startswith("sqlite") or not url.database or url.database == ":memory:":
        return
    folder = pathlib.Path(url.database).resolve().parent
    try:
        folder.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        logger.warning("[DB] could not create %s: %s", folder, e)


def get_engine() -> AsyncEngine:
    global _engine, _sessionmaker
    if _engine is None:
        dsn = database_url()
        _ensure_sqlite_dir(dsn)
        _engine = create_async_engine(dsn, echo=False, pool_pre_ping=True)
        _sessionmaker = async_sessionmaker(_engine, expire_on_commit=False)
        logger.info("[DB] engine ready (%s)", make_url(dsn).render_as_string(hide_password=True))
    return _engine


def get_sessionmaker() -> async_sessionmaker[AsyncSession]:
    if _sessionmaker is None:
        get_engine()
    return _sessionmaker  # type: ignore[return-value]


async def init_db(engine: Optional[AsyncEngine] = None) -> None:
    """Create the sync_links table when missing."""
    from app.models import sync_link_table  # noqa: F401  (registers the table on Base)

    eng = engine or get_engine()
    try:
        async with eng.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
    except Exception as e:
        logger.error("[DB] table setup failed: %s", e)
        raise
    logger.info("[DB] tables ready: %s", ", ".join(sorted(Base.metadata.tables)))


async def dispose_engine() -> None:
    global _engine, _sessionmaker
    if _engine is not None:
        await _engine.dispose()
        logger.info("[DB] engine disposed")
    _engine = None
    _sessionmaker = None
