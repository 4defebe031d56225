"""Local mail store: engine lifecycle plus repositories."""

import os
from pathlib import Path
from typing import Optional

from mailsync.core.database.base import metadata
from mailsync.core.database.config import DatabaseConfig
from mailsync.core.database.engine_manager import EngineManager
from mailsync.core.database.repositories import (
    AccountRepository,
    FolderRepository,
    MessageRepository,
    SyncCursorRepository,
)
from mailsync.utils.errors import DatabaseConnectionError
from mailsync.utils.logging import get_logger
from mailsync.utils.paths import DATABASE_PATH

logger = get_logger(__name__)


class MailStore:
    """Facade over the SQLite store used by the sync engine."""

    def __init__(
        self,
        db_path: Optional[Path] = None,
        config: Optional[DatabaseConfig] = None,
        config_manager=None,
    ) -> None:
        self.db_path = Path(db_path) if db_path else self._resolve_db_path(config_manager)
        self.engine_mgr = EngineManager(self.db_path, config=config)
        self.accounts = AccountRepository(self.engine_mgr)
        self.folders = FolderRepository(self.engine_mgr)
        self.messages = MessageRepository(self.engine_mgr)
        self.cursors = SyncCursorRepository(self.engine_mgr)
        self.initialised = False

    def _resolve_db_path(self, config_manager) -> Path:
        """Resolve the database file path from config manager."""
        if config_manager:
            raw_path = config_manager.config.database.database_path
            return Path(os.path.expanduser(raw_path))
        return DATABASE_PATH

    async def initialise(self) -> None:
        """Create missing tables."""
        if self.initialised:
            return
        engine = await self.engine_mgr.get_engine()
        try:
            async with engine.begin() as conn:
                await conn.run_sync(metadata.create_all)
        except Exception as e:
            raise DatabaseConnectionError(
                "Failed to initialise mail store",
                details={"db_path": str(self.db_path), "error": str(e)},
            ) from e
        self.initialised = True
        logger.info(f"Mail store ready: {self.db_path}")

    async def close(self) -> None:
        await self.engine_mgr.close()
        self.initialised = False

    async def __aenter__(self) -> "MailStore":
        await self.initialise()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> bool:
        await self.close()
        return False
