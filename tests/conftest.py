"""
Shared test fixtures and configuration for pytest
"""
import os
import tempfile

# Keep config, logs and keys out of the real home directory
os.environ.setdefault("MAILSYNC_HOME", tempfile.mkdtemp(prefix="mailsync-tests-"))

import pytest
from cryptography.fernet import Fernet

from mailsync.core.database import MailStore
from mailsync.core.database.config import reset_config
from mailsync.core.email.imap.connection import ConnectionManager
from mailsync.core.email.imap.locks import MailboxLocks
from mailsync.core.models import Folder, FolderType, folder_id_for
from mailsync.security import SecretStore
from mailsync.utils.config import ConfigManager, SyncConfig

from .fakes import FakeServer, FakeTimers


@pytest.fixture(autouse=True)
def reset_config_manager():
    ConfigManager.reset()
    reset_config()
    yield
    ConfigManager.reset()
    reset_config()


@pytest.fixture
async def store(tmp_path):
    """Initialised mail store on a temporary SQLite file."""
    mail_store = MailStore(db_path=tmp_path / "mail.db")
    await mail_store.initialise()
    yield mail_store
    await mail_store.close()


@pytest.fixture
def secrets():
    return SecretStore.from_key(Fernet.generate_key())


@pytest.fixture
def sync_config():
    """Fast timings so tests never wait on real backoff or polling."""
    return SyncConfig(
        poll_interval=0.01,
        connect_timeout=1.0,
        test_connection_timeout=0.5,
        logout_timeout=0.5,
        idle_on_connect=False,
        attachment_chunk_size=64,
        max_attachment_bytes=1024,
    )


@pytest.fixture
def server():
    return FakeServer(password="secret")


@pytest.fixture
def timers():
    return FakeTimers()


@pytest.fixture
async def account(store, secrets, server):
    """Stored account whose password matches the fake server."""
    blob = await secrets.encrypt(server.password)
    return await store.accounts.add(
        "alice@example.com", blob, imap_host="imap.example.com", imap_port=993
    )


@pytest.fixture
async def inbox(store, account):
    folder = Folder(
        id=folder_id_for(account.id, "INBOX"),
        account_id=account.id,
        name="INBOX",
        path="INBOX",
        type=FolderType.INBOX,
    )
    await store.folders.insert_if_absent(folder)
    return folder


@pytest.fixture
def connections(store, secrets, sync_config, server, timers):
    return ConnectionManager(
        store,
        secrets,
        sync_config,
        MailboxLocks(),
        timers=timers,
        client_factory=server.factory,
    )


@pytest.fixture
async def connected(connections, account):
    assert await connections.connect(account.id)
    yield connections
    await connections.disconnect_all()
