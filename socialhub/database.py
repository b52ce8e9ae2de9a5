"""
Async SQLAlchemy engine + session factory.

Production runs against a MySQL-protocol store through aiomysql; tests and
local runs may point DATABASE_URL at sqlite+aiosqlite instead. The engine is
created once at import time and reused across all requests.
"""
import logging

from fastapi import Request
from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from socialhub.config import settings

logger = logging.getLogger(__name__)


def build_engine(url: str) -> AsyncEngine:
    if url.startswith("sqlite"):
        engine = create_async_engine(url, echo=False)
        _enable_sqlite_savepoints(engine)
        return engine
    return create_async_engine(
        url,
        pool_pre_ping=True,
        pool_size=20,
        max_overflow=10,
        echo=False,
    )


def _enable_sqlite_savepoints(engine: AsyncEngine) -> None:
    # The sqlite driver manages BEGIN itself and breaks SAVEPOINT; hand
    # transaction control back to SQLAlchemy. WAL lets readers run alongside
    # the single writer.
    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")


def build_sessionmaker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


engine = build_engine(settings.sqlalchemy_url)

AsyncSessionLocal = build_sessionmaker(engine)


class Base(DeclarativeBase):
    pass


async def init_db(bind: AsyncEngine = engine) -> None:
    """Create all tables if they don't exist (idempotent)."""
    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables initialised")


async def get_db(request: Request):
    """FastAPI dependency that yields an async DB session."""
    async with request.app.state.sessions() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
