"""Per-mailbox and per-connection locking for shared IMAP sessions."""

import asyncio
from contextlib import asynccontextmanager
from typing import Callable, Dict, Optional, Tuple

from mailsync.utils.logging import get_logger

logger = get_logger(__name__)


class MailboxLocks:
    """Serialises commands that share one IMAP connection.

    Every command sequence runs under two locks, always taken in the same
    order: the (account, mailbox) lock, then the account's connection lock.
    While IDLE holds both it registers an interrupter; anyone who finds a
    lock busy calls it so IDLE sends DONE and lets go.
    """

    def __init__(self):
        self._mailbox_locks: Dict[Tuple[str, str], asyncio.Lock] = {}
        self._connection_locks: Dict[str, asyncio.Lock] = {}
        self._interrupters: Dict[str, Callable[[], None]] = {}

    def mailbox_lock(self, account_id: str, mailbox: str) -> asyncio.Lock:
        key = (account_id, mailbox)
        lock = self._mailbox_locks.get(key)
        if lock is None:
            lock = self._mailbox_locks[key] = asyncio.Lock()
        return lock

    def connection_lock(self, account_id: str) -> asyncio.Lock:
        lock = self._connection_locks.get(account_id)
        if lock is None:
            lock = self._connection_locks[account_id] = asyncio.Lock()
        return lock

    def set_interrupter(self, account_id: str, interrupter: Callable[[], None]) -> None:
        self._interrupters[account_id] = interrupter

    def clear_interrupter(
        self, account_id: str, interrupter: Optional[Callable[[], None]] = None
    ) -> None:
        """Remove the interrupter (only if it is still ``interrupter`` when given)."""
        current = self._interrupters.get(account_id)
        if interrupter is None or current is interrupter:
            self._interrupters.pop(account_id, None)

    def interrupt(self, account_id: str) -> None:
        interrupter = self._interrupters.get(account_id)
        if interrupter is not None:
            logger.debug(f"Interrupting IDLE for account {account_id}")
            interrupter()

    @asynccontextmanager
    async def hold(self, account_id: str, mailbox: str):
        """Hold the mailbox lock and the connection lock for ``account_id``.

        Both are released on every exit path, including cancellation.
        """
        mailbox_lock = self.mailbox_lock(account_id, mailbox)
        connection_lock = self.connection_lock(account_id)

        if mailbox_lock.locked():
            self.interrupt(account_id)
        async with mailbox_lock:
            if connection_lock.locked():
                self.interrupt(account_id)
            async with connection_lock:
                yield

    def forget(self, account_id: str) -> None:
        """Drop the interrupter of a disconnected account."""
        self._interrupters.pop(account_id, None)
