# app/database.py
from __future__ import annotations

import os
from pathlib import Path
from typing import Mapping, Optional

from dotenv import load_dotenv
from sqlalchemy import event
from sqlalchemy.engine import URL
from sqlalchemy.engine.url import make_url
from sqlalchemy.exc import ArgumentError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine
from sqlalchemy.orm import declarative_base, sessionmaker

load_dotenv()

# libpq sslmode -> asyncpg ``ssl``; "prefer"/"allow" keep the driver default
SSL_FLAGS = {"require": "true", "verify-ca": "true", "verify-full": "true", "disable": "false"}


def _async_driver(drivername: str) -> str:
    name = drivername.lower()
    if name == "sqlite":
        return "sqlite+aiosqlite"
    if name in {"postgres", "postgresql"} or name.startswith("postgresql+"):
        return "postgresql+asyncpg"
    return drivername


def normalize_database_url(raw_url: Optional[str], *, sslmode: Optional[str] = None) -> Optional[str]:
    """Point ``raw_url`` at the async drivers.

    A ``sslmode`` query parameter becomes asyncpg's ``ssl`` flag. The
    ``sslmode`` argument is only a fallback for URLs that carry neither.
    """
    if not raw_url:
        return raw_url
    try:
        url = make_url(raw_url)
    except ArgumentError:
        return raw_url

    url = url.set(drivername=_async_driver(url.drivername))
    if url.drivername == "postgresql+asyncpg":
        query = dict(url.query)
        mode = query.pop("sslmode", None)
        if mode is None and "ssl" not in query:
            mode = sslmode
        flag = SSL_FLAGS.get(mode.strip().lower()) if mode else None
        if flag is not None:
            query["ssl"] = flag
        url = url.set(query=query)
    return url.render_as_string(hide_password=False)


def database_url_from_env(env: Mapping[str, str]) -> Optional[str]:
    """DATABASE_URL, then POSTGRES_URL, then PGHOST/PGDATABASE/PGUSER; PGSSLMODE applies to all."""
    sslmode = env.get("PGSSLMODE")
    raw = env.get("DATABASE_URL") or env.get("POSTGRES_URL")
    if raw:
        return normalize_database_url(raw, sslmode=sslmode)

    host, database, user = env.get("PGHOST"), env.get("PGDATABASE"), env.get("PGUSER")
    if not (host and database and user):
        return None
    port = env.get("PGPORT", "")
    url = URL.create(
        drivername="postgresql",
        username=user,
        password=env.get("PGPASSWORD") or None,
        host=host,
        port=int(port) if port.isdigit() else None,
        database=database,
    )
    return normalize_database_url(url.render_as_string(hide_password=False), sslmode=sslmode)


DEFAULT_SQLITE_URL = f"sqlite+aiosqlite:///{(Path(__file__).resolve().parents[1] / 'kp.db').as_posix()}"
DATABASE_URL: str = database_url_from_env(os.environ) or DEFAULT_SQLITE_URL

ECHO = os.getenv("SQLALCHEMY_ECHO", "0").lower() in {"1", "true", "yes"}


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record) -> None:  # noqa: ARG001
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def build_engine(database_url: str) -> AsyncEngine:
    bind = create_async_engine(database_url, echo=ECHO, pool_pre_ping=True)
    if bind.dialect.name == "sqlite":
        # cascades on team and submission deletes rely on it
        event.listen(bind.sync_engine, "connect", _enable_sqlite_foreign_keys)
    return bind


def build_session_factory(bind_engine: AsyncEngine) -> sessionmaker:
    return sessionmaker(bind=bind_engine, class_=AsyncSession, autoflush=False, expire_on_commit=False)


Base = declarative_base()

engine: AsyncEngine
SessionLocal: sessionmaker
CURRENT_DATABASE_URL: str


def configure_engine(database_url: str) -> None:
    """Swap the global engine, e.g. to the SQLite fallback at startup."""

    global engine, SessionLocal, CURRENT_DATABASE_URL

    engine = build_engine(database_url)
    SessionLocal = build_session_factory(engine)
    CURRENT_DATABASE_URL = database_url


configure_engine(DATABASE_URL)


async def get_db():
    async with SessionLocal() as session:
        yield session


async def create_schema(bind_engine: AsyncEngine) -> None:
    import app.models  # noqa: F401  registers every table
    from app.schema_upgrades import apply_schema_upgrades

    async with bind_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
        await apply_schema_upgrades(conn)


async def init_models() -> None:
    await create_schema(engine)
