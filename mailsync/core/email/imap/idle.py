"""IDLE watcher - waits for server push and triggers incremental sync."""

import asyncio
from typing import Awaitable, Callable, Optional

import aioimaplib

from mailsync.utils.config import SyncConfig
from mailsync.utils.errors import ConnectivityError, ProtocolError
from mailsync.utils.logging import get_logger

from .connection import AccountSession, ConnectionManager
from .constants import STOP_WAIT_SERVER_PUSH, Capabilities, Timeouts
from .protocol import check_response, exists_count, has_exists, quote_mailbox
from .sync import IncrementalSyncer

logger = get_logger(__name__)

PushHandler = Callable[[], Awaitable[None]]


class IdleWatcher:
    """Keeps one IDLE loop per account on a single mailbox.

    The loop holds the mailbox lock only while idling; an EXISTS push ends
    the IDLE, releases the lock and runs the registered push handler.
    Servers without IDLE are polled instead.
    """

    def __init__(
        self,
        connections: ConnectionManager,
        syncer: IncrementalSyncer,
        config: SyncConfig,
    ):
        self.connections = connections
        self.syncer = syncer
        self.config = config

    def _make_handler(self, account_id: str, mailbox: str) -> PushHandler:
        async def handler() -> None:
            await self.syncer.sync_new_emails(account_id, mailbox)

        return handler

    async def start_idle(self, account_id: str, mailbox: str) -> bool:
        """Watch ``mailbox``, replacing any IDLE already running for the account.

        Returns:
            False if the account is not connected
        """
        session = self.connections.get_session(account_id)
        if session is None:
            logger.warning(f"Cannot start IDLE, {account_id} is not connected")
            return False

        handler = self._make_handler(account_id, mailbox)
        previous = session.idle_task
        session.push_handler = handler
        if previous is not None and not previous.done():
            # the old loop sees it was superseded once it leaves IDLE
            self.connections.locks.interrupt(account_id)

        session.idle_task = asyncio.create_task(
            self._idle_loop(session, mailbox, handler), name=f"idle:{account_id}"
        )
        logger.info(f"IDLE started on {mailbox} for {account_id}")
        return True

    async def stop_idle(self, account_id: str) -> None:
        session = self.connections.get_session(account_id)
        if session is None:
            return

        task = session.idle_task
        session.push_handler = None
        session.idle_task = None
        if task is None or task.done():
            return

        self.connections.locks.interrupt(account_id)
        try:
            await asyncio.wait_for(asyncio.shield(task), timeout=Timeouts.IDLE_STOP)
        except asyncio.TimeoutError:
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
        logger.info(f"IDLE stopped for {account_id}")

    def _is_current(self, session: AccountSession, handler: PushHandler) -> bool:
        return (
            self.connections.get_session(session.account_id) is session
            and session.push_handler is handler
        )

    async def _idle_loop(
        self, session: AccountSession, mailbox: str, handler: PushHandler
    ) -> None:
        account_id = session.account_id
        last_count: Optional[int] = None

        while self._is_current(session, handler):
            try:
                if session.client.has_capability(Capabilities.IDLE):
                    new_mail = await self._idle_once(session, mailbox, handler)
                else:
                    new_mail, last_count = await self._poll_once(
                        session, mailbox, last_count
                    )

            except (ConnectivityError, OSError) as e:
                logger.warning(f"IDLE loop for {account_id} ended: {e}")
                return

            except (ProtocolError, asyncio.TimeoutError, aioimaplib.AioImapException) as e:
                logger.warning(f"IDLE cycle failed for {account_id}: {e}")
                await asyncio.sleep(self.config.poll_interval)
                continue

            if new_mail and self._is_current(session, handler):
                try:
                    await handler()
                except Exception as e:
                    logger.error(f"Push handler failed for {account_id}: {e}")

        logger.debug(f"IDLE loop for {account_id} superseded, exiting")

    async def _idle_once(
        self, session: AccountSession, mailbox: str, handler: PushHandler
    ) -> bool:
        """One IDLE round; True when the server announced new messages."""
        client = session.client
        account_id = session.account_id
        locks = self.connections.locks
        new_mail = False

        async with locks.hold(account_id, mailbox):
            stopping = asyncio.Event()

            def interrupter() -> None:
                if stopping.is_set():
                    return
                stopping.set()
                if client.has_pending_idle():
                    asyncio.ensure_future(client.stop_wait_server_push())

            locks.set_interrupter(account_id, interrupter)
            try:
                # superseded while waiting for the locks
                if not self._is_current(session, handler):
                    return False

                check_response(await client.select(quote_mailbox(mailbox)), "select")
                idle = await client.idle_start(timeout=self.config.idle_timeout)
                try:
                    while client.has_pending_idle() and not stopping.is_set():
                        push = await client.wait_server_push()
                        if push == STOP_WAIT_SERVER_PUSH:
                            break
                        if isinstance(push, (bytes, str)):
                            push = [push]
                        if has_exists(push):
                            new_mail = True
                            break
                finally:
                    if client.has_pending_idle():
                        client.idle_done()
                    await asyncio.wait_for(idle, timeout=Timeouts.IDLE_DONE)
            finally:
                locks.clear_interrupter(account_id, interrupter)

        return new_mail

    async def _poll_once(self, session: AccountSession, mailbox: str, last_count):
        """SELECT and NOOP, compare the EXISTS count, then wait a poll interval."""
        client = session.client
        async with self.connections.locks.hold(session.account_id, mailbox):
            response = await client.select(quote_mailbox(mailbox))
            check_response(response, "select")
            count = exists_count(response.lines)

            response = await client.noop()
            check_response(response, "noop")
            # untagged EXISTS in the NOOP reply is newer than the SELECT's
            pushed = exists_count(response.lines)
            if pushed is not None:
                count = pushed

        new_mail = (
            last_count is not None and count is not None and count > last_count
        )
        if not new_mail:
            await asyncio.sleep(self.config.poll_interval)
        return new_mail, count if count is not None else last_count
