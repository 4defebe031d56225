"""IMAP connection management - one live session per account with reconnect."""

import asyncio
import ssl
import time
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Dict, List, Optional

import aioimaplib
from pydantic import BaseModel

from mailsync.core.database import MailStore
from mailsync.security import SecretStore
from mailsync.utils.config import SyncConfig
from mailsync.utils.errors import (
    AuthenticationFailedError,
    ConfigurationError,
    ConnectionTimeoutError,
    ConnectivityError,
    InvalidConfigError,
    MailSyncError,
    MissingCredentialsError,
    NotConnectedError,
    UnknownAccountError,
    sanitize_error_message,
)
from mailsync.utils.logging import async_log_call, get_logger, log_event
from mailsync.utils.scheduler import ReconnectScheduler

from .constants import IMAPResponse
from .locks import MailboxLocks

logger = get_logger(__name__)

ClientFactory = Callable[..., aioimaplib.IMAP4]


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"


class ConnectionTestParams(BaseModel):
    """Credentials for a throwaway connectivity check."""

    email: str
    password: str
    host: str
    port: int = 993


class ConnectionTestResult(BaseModel):
    success: bool
    error: Optional[str] = None


@dataclass(eq=False)
class AccountSession:
    """The live connection of one account and what hangs off it."""

    account_id: str
    client: Optional[aioimaplib.IMAP4] = None
    idle_task: Optional[asyncio.Task] = None
    push_handler: Optional[Callable[[], Awaitable[None]]] = None
    connected_at: Optional[float] = None


def open_client(
    host: str,
    port: int,
    use_tls: bool,
    timeout: float,
    conn_lost_cb: Optional[Callable[[Optional[Exception]], None]] = None,
) -> aioimaplib.IMAP4:
    """Create an aioimaplib client; TLS is negotiated on connect when ``use_tls``."""
    return aioimaplib.IMAP4(
        host=host,
        port=port,
        timeout=timeout,
        conn_lost_cb=conn_lost_cb,
        ssl_context=ssl.create_default_context() if use_tls else None,
    )


def _server_text(response) -> str:
    text = response.lines[-1] if response.lines else "No response"
    if isinstance(text, (bytes, bytearray)):
        text = bytes(text).decode("utf-8", errors="replace")
    return str(text)


class ConnectionManager:
    """Owns the per-account IMAP sessions and the reconnect policy."""

    def __init__(
        self,
        store: MailStore,
        secrets: SecretStore,
        config: SyncConfig,
        locks: MailboxLocks,
        timers: Optional[ReconnectScheduler] = None,
        client_factory: Optional[ClientFactory] = None,
    ):
        """Initialise the connection manager.

        Args:
            store: Mail store holding the account rows
            secrets: Secret store used to decrypt account passwords
            config: Sync tuning (timeouts, backoff, TLS ports)
            locks: Shared mailbox locks
            timers: Reconnect timer backend (apscheduler-backed by default)
            client_factory: Callable building an IMAP client, see ``open_client``
        """
        self.store = store
        self.secrets = secrets
        self.config = config
        self.locks = locks
        self.timers = timers or ReconnectScheduler()
        self.client_factory = client_factory or open_client
        self.on_connected: Optional[Callable[[str], Awaitable[None]]] = None

        self._sessions: Dict[str, AccountSession] = {}
        self._retry_counts: Dict[str, int] = {}
        self._states: Dict[str, ConnectionState] = {}
        self._connect_locks: Dict[str, asyncio.Lock] = {}
        # Bumped by disconnect so an in-flight connect knows it was cancelled
        self._generations: Dict[str, int] = {}

    ## Session lookup

    def get_session(self, account_id: str) -> Optional[AccountSession]:
        return self._sessions.get(account_id)

    def require_session(self, account_id: str) -> AccountSession:
        """Return the live session or raise NotConnectedError."""
        session = self._sessions.get(account_id)
        if session is None or session.client is None:
            raise NotConnectedError(details={"account_id": account_id})
        return session

    def is_connected(self, account_id: str) -> bool:
        return account_id in self._sessions

    def connected_accounts(self) -> List[str]:
        return list(self._sessions)

    def state(self, account_id: str) -> ConnectionState:
        return self._states.get(account_id, ConnectionState.DISCONNECTED)

    def retry_count(self, account_id: str) -> int:
        return self._retry_counts.get(account_id, 0)

    ## Connect / disconnect

    async def connect(self, account_id: str) -> bool:
        """Open (or reuse) the account's session.

        Returns:
            True when a live session exists afterwards, False on any
            connectivity failure

        Raises:
            UnknownAccountError: If no account row exists
            MissingCredentialsError: If the account has no stored password
            CredentialDecryptionError: If the stored password cannot be decrypted
            InvalidConfigError: If no IMAP host is known for the account
        """
        generation = self._generations.get(account_id, 0)
        lock = self._connect_locks.setdefault(account_id, asyncio.Lock())
        async with lock:
            if account_id in self._sessions:
                return True

            account = await self.store.accounts.get(account_id)
            if account is None:
                raise UnknownAccountError(
                    f"Account not found: {account_id}",
                    details={"account_id": account_id},
                )
            if not account.password_encrypted:
                raise MissingCredentialsError(details={"account_id": account_id})

            password = await self.secrets.decrypt(account.password_encrypted)

            host = account.host
            if not host:
                raise InvalidConfigError(
                    "No IMAP host configured for account",
                    details={"account_id": account_id, "provider": account.provider},
                )

            reconnecting = account_id in self._retry_counts
            self._states[account_id] = (
                ConnectionState.RECONNECTING if reconnecting else ConnectionState.CONNECTING
            )

            session = AccountSession(account_id=account_id)
            start_time = time.time()
            logger.info(
                "Connecting to IMAP server",
                extra={"account_id": account_id, "server": host, "port": account.port},
            )

            try:
                session.client = self.client_factory(
                    host=host,
                    port=account.port,
                    use_tls=account.port in self.config.implicit_tls_ports,
                    timeout=self.config.command_timeout,
                    conn_lost_cb=lambda exc: self._handle_connection_lost(session, exc),
                )
                await self._authenticate(
                    session.client, account.email, password, self.config.connect_timeout
                )

            except ConnectivityError as e:
                logger.warning(
                    f"IMAP connection failed for {account_id}: {e.message}",
                    extra={"account_id": account_id, "server": host},
                )
                if session.client is not None:
                    await self._close_client(session.client)
                self._states[account_id] = (
                    ConnectionState.RECONNECTING
                    if account_id in self._retry_counts
                    else ConnectionState.DISCONNECTED
                )
                return False

            if self._generations.get(account_id, 0) != generation:
                logger.info(f"Connect for {account_id} superseded by disconnect")
                await self._close_client(session.client)
                self._states[account_id] = ConnectionState.DISCONNECTED
                return False

            session.connected_at = time.time()
            self._sessions[account_id] = session
            self._retry_counts.pop(account_id, None)
            self._states[account_id] = ConnectionState.CONNECTED

        log_event(
            "connected",
            f"IMAP session established for {account_id}",
            account_id=account_id,
            duration_seconds=round(time.time() - start_time, 2),
        )

        if self.on_connected is not None:
            try:
                await self.on_connected(account_id)
            except Exception as e:
                logger.error(f"Post-connect hook failed for {account_id}: {e}")

        return True

    async def _authenticate(
        self, client: aioimaplib.IMAP4, username: str, password: str, timeout: float
    ) -> None:
        """Wait for the greeting and LOGIN, mapping failures to ConnectivityError.

        Raises:
            ConnectionTimeoutError: If greeting or login exceed ``timeout``
            AuthenticationFailedError: If the server rejects the credentials
            ConnectivityError: For any other transport or protocol failure
        """
        try:
            await asyncio.wait_for(client.wait_hello_from_server(), timeout=timeout)
            response = await asyncio.wait_for(
                client.login(username, password), timeout=timeout
            )

        except asyncio.TimeoutError as e:
            raise ConnectionTimeoutError(
                "IMAP connection timeout", details={"timeout": timeout}
            ) from e

        except aioimaplib.AioImapException as e:
            raise ConnectivityError(f"IMAP connection error: {e}") from e

        except OSError as e:
            raise ConnectivityError(f"Failed to connect to IMAP server: {e}") from e

        if response.result != IMAPResponse.OK:
            raise AuthenticationFailedError(
                _server_text(response), details={"result": response.result}
            )

    async def _close_client(self, client: aioimaplib.IMAP4) -> None:
        try:
            await asyncio.wait_for(client.logout(), timeout=self.config.logout_timeout)
            logger.debug("IMAP connection closed successfully")
        except Exception as e:
            logger.debug(f"Error closing IMAP connection: {e}")

    @async_log_call
    async def disconnect(self, account_id: str) -> None:
        """Tear down the session, pending reconnect and IDLE of an account.

        Safe to call for accounts that are not connected.
        """
        self._generations[account_id] = self._generations.get(account_id, 0) + 1
        self.timers.cancel(account_id)
        self._retry_counts.pop(account_id, None)
        # Removed before LOGOUT so the lost-connection callback ignores it
        session = self._sessions.pop(account_id, None)
        self.locks.forget(account_id)
        self._states[account_id] = ConnectionState.DISCONNECTED

        if session is None:
            return

        session.push_handler = None
        if session.idle_task is not None and not session.idle_task.done():
            session.idle_task.cancel()
            await asyncio.gather(session.idle_task, return_exceptions=True)
        session.idle_task = None

        if session.client is not None:
            await self._close_client(session.client)

        logger.info(f"Disconnected account {account_id}")

    async def disconnect_all(self) -> None:
        account_ids = set(self._sessions) | set(self._retry_counts)
        results = await asyncio.gather(
            *(self.disconnect(account_id) for account_id in account_ids),
            return_exceptions=True,
        )
        for account_id, result in zip(account_ids, results):
            if isinstance(result, Exception):
                logger.error(f"Error disconnecting {account_id}: {result}")

    async def aclose(self) -> None:
        await self.disconnect_all()
        self.timers.shutdown()

    ## Reconnect policy

    def _handle_connection_lost(
        self, session: AccountSession, exc: Optional[Exception]
    ) -> None:
        """aioimaplib ``conn_lost_cb``: drop the session and schedule a retry."""
        account_id = session.account_id
        if self._sessions.get(account_id) is not session:
            return  # closed on purpose or superseded

        del self._sessions[account_id]
        self.locks.forget(account_id)
        session.push_handler = None
        if session.idle_task is not None and not session.idle_task.done():
            session.idle_task.cancel()

        logger.warning(
            f"IMAP connection lost for {account_id}: {exc or 'closed by server'}",
            extra={"account_id": account_id},
        )
        self.schedule_reconnect(account_id)

    def schedule_reconnect(self, account_id: str) -> Optional[float]:
        """Arm the next reconnect attempt with exponential backoff.

        Returns:
            The delay in seconds, or None once the attempts are exhausted
        """
        attempt = self._retry_counts.get(account_id, 0)
        if attempt >= self.config.max_reconnect_attempts:
            self._retry_counts.pop(account_id, None)
            self._states[account_id] = ConnectionState.DISCONNECTED
            log_event(
                "reconnect_gave_up",
                f"IMAP reconnect failed after {attempt} attempts for {account_id}",
                account_id=account_id,
                attempts=attempt,
            )
            return None

        delay = min(
            self.config.reconnect_base_delay * (2**attempt),
            self.config.reconnect_max_delay,
        )
        self._retry_counts[account_id] = attempt + 1
        self._states[account_id] = ConnectionState.RECONNECTING
        self.timers.arm(account_id, delay, self._reconnect)

        log_event(
            "reconnect_scheduled",
            f"Reconnecting {account_id} in {delay:.0f}s (attempt {attempt + 1})",
            account_id=account_id,
            attempt=attempt + 1,
            delay=delay,
        )
        return delay

    async def _reconnect(self, account_id: str) -> None:
        if account_id not in self._retry_counts:
            return  # disconnected while the timer was pending

        try:
            connected = await self.connect(account_id)
        except ConfigurationError as e:
            logger.error(f"Reconnect aborted for {account_id}: {e.message}")
            self._retry_counts.pop(account_id, None)
            self._states[account_id] = ConnectionState.DISCONNECTED
            return

        if not connected and account_id in self._retry_counts:
            self.schedule_reconnect(account_id)

    ## Connectivity check

    async def test_connection(self, params: ConnectionTestParams) -> ConnectionTestResult:
        """Try a login with throwaway credentials, never touching the arena."""
        client = None
        try:
            client = self.client_factory(
                host=params.host,
                port=params.port,
                use_tls=params.port in self.config.implicit_tls_ports,
                timeout=self.config.test_connection_timeout,
            )
            await asyncio.wait_for(
                self._authenticate(
                    client,
                    params.email,
                    params.password,
                    self.config.test_connection_timeout,
                ),
                timeout=self.config.test_connection_timeout,
            )
            result = ConnectionTestResult(success=True)

        except (asyncio.TimeoutError, ConnectionTimeoutError):
            result = ConnectionTestResult(success=False, error="Connection timed out")

        except MailSyncError as e:
            result = ConnectionTestResult(
                success=False, error=sanitize_error_message(e.message)
            )

        except Exception as e:
            result = ConnectionTestResult(
                success=False, error=sanitize_error_message(str(e))
            )

        if client is not None:
            await self._close_client(client)

        logger.info(
            f"Connection test for {params.host}:{params.port}: "
            f"{'ok' if result.success else 'failed'}"
        )
        return result
