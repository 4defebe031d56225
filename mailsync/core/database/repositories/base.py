"""Base repository."""

from typing import Any, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine

from mailsync.core.database.engine_manager import EngineManager
from mailsync.utils.errors import DatabaseError


class Repository:
    """Common plumbing for the store's repositories.

    Subclasses build SQLAlchemy Core statements; this base only owns the
    engine access and the execute helpers every repository needs.
    """

    def __init__(self, engine_manager: EngineManager):
        """Initialise repository.

        Args:
            engine_manager: Engine manager for database access
        """
        self.engine_mgr = engine_manager

    async def _engine(self) -> AsyncEngine:
        return await self.engine_mgr.get_engine()

    async def _execute(self, query):
        """Run a write statement in its own transaction."""
        engine = await self._engine()
        try:
            async with engine.begin() as conn:
                return await conn.execute(query)
        except SQLAlchemyError as e:
            raise DatabaseError(f"Write failed: {e}") from e

    async def _fetch_one(self, query) -> Optional[Any]:
        engine = await self._engine()
        try:
            async with engine.connect() as conn:
                result = await conn.execute(query)
                return result.fetchone()
        except SQLAlchemyError as e:
            raise DatabaseError(f"Query failed: {e}") from e

    async def _fetch_all(self, query) -> List[Any]:
        engine = await self._engine()
        try:
            async with engine.connect() as conn:
                result = await conn.execute(query)
                return list(result.fetchall())
        except SQLAlchemyError as e:
            raise DatabaseError(f"Query failed: {e}") from e
