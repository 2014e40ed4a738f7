"""
Database engine and session factory for the identity store.

Every repository call must be bounded in time. SQLite connections get a
busy_timeout so a writer never waits forever on the database lock;
PostgreSQL connections get a per-statement command_timeout and a bounded
pool checkout.
"""

from typing import Any, Optional

from sqlalchemy import event, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from edupulse.config import get_settings
from edupulse.logging_config import get_logger

logger = get_logger(__name__)


def build_engine(
    database_url: str,
    *,
    echo: bool = False,
    command_timeout_seconds: float = 10.0,
    pool_timeout_seconds: float = 10.0,
    **engine_kwargs: Any,
) -> AsyncEngine:
    """
    Create the async engine for a SQLite or PostgreSQL URL.

    Extra keyword arguments go straight to create_async_engine (tests pass
    poolclass=StaticPool to share one in-memory database).
    """
    if database_url.startswith("sqlite"):
        engine_kwargs.setdefault("poolclass", NullPool)
        engine = create_async_engine(
            database_url,
            echo=echo,
            connect_args={"check_same_thread": False},
            **engine_kwargs,
        )
        busy_timeout_ms = int(command_timeout_seconds * 1000)

        @event.listens_for(engine.sync_engine, "connect")
        def _set_sqlite_pragma(dbapi_conn, connection_record):
            cursor = dbapi_conn.cursor()
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.execute(f"PRAGMA busy_timeout={busy_timeout_ms}")
            cursor.close()

        return engine

    return create_async_engine(
        database_url,
        echo=echo,
        pool_pre_ping=True,
        pool_size=5,
        max_overflow=10,
        pool_timeout=pool_timeout_seconds,
        connect_args={"command_timeout": command_timeout_seconds},
        **engine_kwargs,
    )


def build_session_maker(bind: AsyncEngine) -> async_sessionmaker:
    """Sessions keep loaded users usable after commit; nothing flushes implicitly."""
    return async_sessionmaker(
        bind,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


settings = get_settings()

engine = build_engine(
    settings.database_url,
    echo=settings.debug,
    command_timeout_seconds=settings.db_command_timeout_seconds,
    pool_timeout_seconds=settings.db_pool_timeout_seconds,
)
async_session_maker = build_session_maker(engine)


async def init_db() -> None:
    """Create the users and refresh_tokens tables if missing."""
    # Importing the package registers every model on Base.metadata
    from edupulse.kernel.models import Base

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def check_connection(bind: Optional[AsyncEngine] = None) -> bool:
    """Round-trip SELECT 1; False when the database cannot be reached."""
    try:
        async with (bind or engine).connect() as conn:
            await conn.execute(text("SELECT 1"))
    except SQLAlchemyError:
        logger.warning("Database connectivity check failed", exc_info=True)
        return False
    return True


async def close_db() -> None:
    """Close database connections."""
    await engine.dispose()
