"""IMAP sync engine - the public facade wiring connections, IDLE and sync."""

from typing import List, Optional

from mailsync.core.database import MailStore
from mailsync.core.models import Folder
from mailsync.security import SecretStore
from mailsync.utils.config import ConfigManager, SyncConfig
from mailsync.utils.logging import get_logger
from mailsync.utils.scheduler import ReconnectScheduler

from .connection import (
    ClientFactory,
    ConnectionManager,
    ConnectionState,
    ConnectionTestParams,
    ConnectionTestResult,
)
from .folders import MailboxCatalog
from .idle import IdleWatcher
from .locks import MailboxLocks
from .operations import MessageOperations
from .sync import IncrementalSyncer, NewEmailCallback

logger = get_logger(__name__)


class ImapEngine:
    """Per-account IMAP synchronisation engine.

    Keeps one session per connected account, mirrors folders, ingests new
    messages above the stored UID cursor and keeps an IDLE watch on the
    configured mailbox so new mail is picked up as the server announces it.
    """

    def __init__(
        self,
        store: Optional[MailStore] = None,
        secrets: Optional[SecretStore] = None,
        config: Optional[SyncConfig] = None,
        config_manager: Optional[ConfigManager] = None,
        timers: Optional[ReconnectScheduler] = None,
        client_factory: Optional[ClientFactory] = None,
    ):
        """Initialise the engine.

        Args:
            store: Mail store; built from the config manager when omitted
            secrets: Secret store for account passwords
            config: Sync tuning; read from the config manager when omitted
            config_manager: Source of persisted settings
            timers: Reconnect timer backend
            client_factory: IMAP client factory (tests pass a fake)
        """
        if config is None or store is None:
            config_manager = config_manager or ConfigManager()
        self.config = config or config_manager.config.sync
        self.store = store or MailStore(config_manager=config_manager)
        self.secrets = secrets or SecretStore()

        self.locks = MailboxLocks()
        self.connections = ConnectionManager(
            self.store,
            self.secrets,
            self.config,
            self.locks,
            timers=timers,
            client_factory=client_factory,
        )
        self.catalog = MailboxCatalog(self.connections, self.store)
        self.syncer = IncrementalSyncer(self.connections, self.store, self.config)
        self.idle = IdleWatcher(self.connections, self.syncer, self.config)
        self.operations = MessageOperations(self.connections, self.config)

        self.connections.on_connected = self._on_connected

    async def _on_connected(self, account_id: str) -> None:
        if self.config.idle_on_connect:
            await self.idle.start_idle(account_id, self.config.idle_mailbox)

    ## Connections

    async def connect(self, account_id: str) -> bool:
        await self.store.initialise()
        return await self.connections.connect(account_id)

    async def disconnect(self, account_id: str) -> None:
        await self.connections.disconnect(account_id)

    async def disconnect_all(self) -> None:
        await self.connections.disconnect_all()

    async def test_connection(self, params: ConnectionTestParams) -> ConnectionTestResult:
        return await self.connections.test_connection(params)

    def is_connected(self, account_id: str) -> bool:
        return self.connections.is_connected(account_id)

    def connected_accounts(self) -> List[str]:
        return self.connections.connected_accounts()

    def state(self, account_id: str) -> ConnectionState:
        return self.connections.state(account_id)

    ## Sync

    async def start_idle(self, account_id: str, mailbox: str) -> bool:
        return await self.idle.start_idle(account_id, mailbox)

    async def stop_idle(self, account_id: str) -> None:
        await self.idle.stop_idle(account_id)

    async def sync_new_emails(self, account_id: str, mailbox: str) -> int:
        return await self.syncer.sync_new_emails(account_id, mailbox)

    async def list_and_sync_folders(self, account_id: str) -> List[Folder]:
        return await self.catalog.list_and_sync_folders(account_id)

    def set_new_email_callback(self, callback: Optional[NewEmailCallback]) -> None:
        """Register ``callback(account_id, folder_id, count)`` for new mail."""
        self.syncer.new_email_callback = callback

    ## Messages

    async def move_message(self, account_id: str, uid: int, source: str, dest: str) -> bool:
        return await self.operations.move_message(account_id, uid, source, dest)

    async def download_attachment(
        self, account_id: str, uid: int, mailbox: str, part: str
    ) -> Optional[bytes]:
        return await self.operations.download_attachment(account_id, uid, mailbox, part)

    ## Lifecycle

    async def aclose(self) -> None:
        """Disconnect every account, stop the timers and close the store."""
        await self.connections.aclose()
        await self.store.close()
        logger.info("IMAP engine closed")

    async def __aenter__(self) -> "ImapEngine":
        await self.store.initialise()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> bool:
        await self.aclose()
        return False
