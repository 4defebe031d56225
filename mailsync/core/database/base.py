"""Async SQLAlchemy engine factory for the SQLite mail store."""

from pathlib import Path
from typing import Optional

from sqlalchemy import MetaData, event
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.pool import AsyncAdaptedQueuePool

from mailsync.core.database.config import DatabaseConfig, get_config
from mailsync.utils.logging import get_logger

logger = get_logger(__name__)

metadata = MetaData(
    naming_convention={
        "ix": "ix_%(column_0_label)s",
        "uq": "uq_%(table_name)s_%(column_0_name)s",
        "ck": "ck_%(table_name)s_%(constraint_name)s",
        "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
        "pk": "pk_%(table_name)s",
    }
)

# Applied to every new DBAPI connection; foreign keys are off by default in SQLite
SQLITE_PRAGMAS = (
    "foreign_keys=ON",
    "journal_mode=WAL",
    "synchronous=NORMAL",
    "temp_store=MEMORY",
)


def sqlite_url(db_path: Path) -> str:
    return f"sqlite+aiosqlite:///{db_path}"


def _apply_pragmas(dbapi_conn, _connection_record) -> None:
    cursor = dbapi_conn.cursor()
    try:
        for pragma in SQLITE_PRAGMAS:
            cursor.execute(f"PRAGMA {pragma}")
    finally:
        cursor.close()


def create_engine(db_path: Path, config: Optional[DatabaseConfig] = None) -> AsyncEngine:
    """Build the pooled aiosqlite engine for ``db_path``.

    The parent directory is created if needed.
    """
    config = config or get_config()
    db_path.parent.mkdir(parents=True, exist_ok=True)

    engine = create_async_engine(
        sqlite_url(db_path),
        echo=config.echo,
        poolclass=AsyncAdaptedQueuePool,
        pool_size=config.pool_size,
        max_overflow=config.max_overflow,
        pool_timeout=config.pool_timeout,
        pool_pre_ping=True,
        connect_args={"timeout": config.busy_timeout, "check_same_thread": False},
    )
    event.listen(engine.sync_engine, "connect", _apply_pragmas)

    logger.debug(f"Created engine for {db_path} (pool_size={config.pool_size})")
    return engine


async def dispose_engine(engine: AsyncEngine) -> None:
    await engine.dispose()
    logger.debug("Engine disposed")
