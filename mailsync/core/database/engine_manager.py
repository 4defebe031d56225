"""Lazily created, shared engine for one database file."""

import asyncio
from pathlib import Path
from typing import Optional

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine

from mailsync.core.database.base import create_engine, dispose_engine
from mailsync.core.database.config import DatabaseConfig, get_config
from mailsync.utils.errors import DatabaseConnectionError
from mailsync.utils.logging import get_logger

logger = get_logger(__name__)


class EngineManager:
    """Owns the async engine of a store; repositories borrow it.

    The engine is built on first use and rebuilt after ``close()``, so a
    closed store can simply be used again.
    """

    def __init__(self, db_path: Path, config: Optional[DatabaseConfig] = None) -> None:
        self.db_path = Path(db_path)
        self.config = config or get_config()
        self._engine: Optional[AsyncEngine] = None
        self._lock = asyncio.Lock()

    async def get_engine(self) -> AsyncEngine:
        """Return the engine, creating it if needed.

        Raises:
            DatabaseConnectionError: If the engine cannot be created
        """
        if self._engine is not None:
            return self._engine

        async with self._lock:
            if self._engine is None:
                try:
                    self._engine = create_engine(self.db_path, config=self.config)
                except (SQLAlchemyError, OSError) as e:
                    raise DatabaseConnectionError(
                        "Failed to create database engine",
                        details={"db_path": str(self.db_path), "error": str(e)},
                    ) from e
            return self._engine

    async def close(self) -> None:
        engine, self._engine = self._engine, None
        if engine is None:
            return
        try:
            await dispose_engine(engine)
        except SQLAlchemyError as e:
            logger.error(f"Error disposing engine for {self.db_path}: {e}")

    async def health_check(self) -> bool:
        """True when ``SELECT 1`` succeeds."""
        try:
            engine = await self.get_engine()
            async with engine.connect() as conn:
                value = (await conn.execute(text("SELECT 1"))).scalar()
        except (SQLAlchemyError, DatabaseConnectionError) as e:
            logger.error(f"Store health check failed: {e}")
            return False
        return value == 1
