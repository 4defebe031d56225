"""Explicit transaction scope for writes spanning several tables."""

import time
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, AsyncTransaction

from mailsync.core.database.config import get_config
from mailsync.utils.errors import DatabaseTransactionError
from mailsync.utils.logging import get_logger

logger = get_logger(__name__)


class TransactionManager:
    """Commit on clean exit, roll back on any exception.

    A transaction that outlives ``timeout`` is rolled back instead of
    committed, so a stalled ingest never half-applies.

    Usage:
        async with TransactionManager(engine) as tx:
            await tx.connection.execute(query)
    """

    def __init__(self, engine: AsyncEngine, timeout: Optional[float] = None):
        self.engine = engine
        self.config = get_config()
        self.timeout = timeout or self.config.transaction_timeout
        self._connection: Optional[AsyncConnection] = None
        self._transaction: Optional[AsyncTransaction] = None
        self._started = 0.0

    @property
    def connection(self) -> AsyncConnection:
        if self._connection is None:
            raise RuntimeError("TransactionManager used outside 'async with'")
        return self._connection

    async def __aenter__(self) -> "TransactionManager":
        self._started = time.monotonic()
        try:
            self._connection = await self.engine.connect()
            self._transaction = await self._connection.begin()
        except SQLAlchemyError as e:
            await self._release()
            raise DatabaseTransactionError(
                "Failed to start transaction", details={"error": str(e)}
            ) from e
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> bool:
        elapsed = time.monotonic() - self._started
        try:
            if exc_type is not None:
                await self._transaction.rollback()
                logger.debug(f"Rolled back after {elapsed:.2f}s: {exc_type.__name__}")
                return False

            if elapsed > self.timeout:
                await self._transaction.rollback()
                raise DatabaseTransactionError(
                    f"Transaction exceeded {self.timeout}s",
                    details={"elapsed": round(elapsed, 3)},
                )

            await self._transaction.commit()
            if elapsed > self.config.slow_transaction_threshold:
                logger.warning(f"Slow transaction: {elapsed:.2f}s")
            return False
        finally:
            await self._release()

    async def _release(self) -> None:
        if self._connection is not None:
            await self._connection.close()
            self._connection = None
