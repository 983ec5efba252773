"""
Database connection and session management.

SQLite Notes:
-------------
The default deployment uses SQLite with:

1. WAL Mode (Write-Ahead Logging):
   - Worker slots read the queue while others write to it
   - Checkpointed after each retention cleanup

2. NullPool:
   - New connection for each operation (required for async SQLite)

3. Busy Timeout (5 seconds):
   - Concurrent slots claiming jobs wait for the write lock instead of
     failing with "database is locked"

Any async SQLAlchemy URL works; the queue relies only on conditional
UPDATE row counts and a unique index, not on SQLite specifics.
"""
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from sqlalchemy import event, text, DateTime
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import create_async_engine, AsyncEngine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import declarative_base
from sqlalchemy.pool import NullPool
from sqlalchemy.types import TypeDecorator
from loguru import logger

from reminder_engine.config import settings
from reminder_engine.constants import SQLITE_BUSY_TIMEOUT_MS

# Base class for models
Base = declarative_base()


class UTCDateTime(TypeDecorator):
    """
    Timezone-aware datetime column.

    Values are stored as naive UTC (SQLite has no zone support) and come
    back as aware UTC datetimes. Naive input is assumed to already be UTC.
    """

    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value: Optional[datetime], dialect):
        if value is None:
            return None
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc).replace(tzinfo=None)
        return value

    def process_result_value(self, value: Optional[datetime], dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


def _set_sqlite_pragma(dbapi_conn, connection_record):
    """
    Enable SQLite-specific settings on each new connection.
    - PRAGMA foreign_keys=ON: Enable foreign key constraints (disabled by default in SQLite)
    - PRAGMA journal_mode=WAL: Use Write-Ahead Logging for better concurrency
    - PRAGMA busy_timeout: Wait for locks to release instead of failing
    - PRAGMA synchronous=NORMAL: Balance between safety and performance for WAL mode
    """
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute(f"PRAGMA busy_timeout={SQLITE_BUSY_TIMEOUT_MS}")
    cursor.execute("PRAGMA synchronous=NORMAL")
    cursor.close()


def create_engine_for(database_url: str, echo: bool = False) -> AsyncEngine:
    """
    Create an async engine, applying SQLite pragmas when the URL is SQLite.

    Args:
        database_url: SQLAlchemy async URL
        echo: Log SQL statements

    Returns:
        AsyncEngine
    """
    url = make_url(database_url)
    is_sqlite = url.get_backend_name() == "sqlite"

    if is_sqlite and url.database and url.database != ":memory:":
        Path(url.database).parent.mkdir(parents=True, exist_ok=True)

    new_engine = create_async_engine(
        database_url,
        echo=echo,
        poolclass=NullPool if is_sqlite else None,
        future=True
    )

    if is_sqlite:
        event.listen(new_engine.sync_engine, "connect", _set_sqlite_pragma)

    return new_engine


def create_session_factory(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create a session factory bound to an engine."""
    return async_sessionmaker(
        bind,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


# Application engine and session factory
engine = create_engine_for(settings.database_url, echo=settings.debug)
AsyncSessionLocal = create_session_factory(engine)


async def init_db(bind: Optional[AsyncEngine] = None):
    """Create all tables."""
    # Import models so they register with Base.metadata
    import reminder_engine.models  # noqa: F401

    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def ping(session_factory: async_sessionmaker[AsyncSession]) -> bool:
    """Return True if the database answers a trivial query."""
    try:
        async with session_factory() as session:
            await session.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.warning(f"Database ping failed: {e}")
        return False


async def checkpoint_wal(bind: Optional[AsyncEngine] = None):
    """
    Run a WAL checkpoint to consolidate the write-ahead log.
    Called after retention cleanup to prevent WAL file growth.
    """
    target = bind or engine
    if target.dialect.name != "sqlite":
        return
    try:
        async with target.begin() as conn:
            await conn.execute(text("PRAGMA wal_checkpoint(TRUNCATE)"))
            logger.debug("WAL checkpoint completed")
    except Exception as e:
        logger.warning(f"WAL checkpoint failed: {e}")


async def close_db(bind: Optional[AsyncEngine] = None):
    """Close database connections."""
    target = bind or engine
    await checkpoint_wal(target)
    await target.dispose()
