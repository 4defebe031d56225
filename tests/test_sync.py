"""
Tests for incremental new-mail ingestion

Tests cover:
- First and follow-up syncs against the UID cursor
- Idempotence and cursor monotonicity
- Envelope fallbacks, flags and attachment persistence
- Skipping unparseable messages
- The concurrent-sync guard and new-mail callbacks
"""
import asyncio

import pytest

from mailsync.core.email.imap.sync import IncrementalSyncer, build_message
from mailsync.core.email.imap.protocol import tokenize
from mailsync.core.models import Folder, message_id_for

from .fakes import WITH_ATTACHMENT, FakeMessage, envelope


@pytest.fixture
def syncer(connected, store, sync_config):
    return IncrementalSyncer(connected, store, sync_config)


class TestSyncNewEmails:
    """Tests for sync_new_emails"""

    @pytest.mark.asyncio
    async def test_first_sync_ingests_everything(self, syncer, store, server, account, inbox):
        for uid in (3, 5, 8):
            server.add("INBOX", FakeMessage(uid))

        assert await syncer.sync_new_emails(account.id, "INBOX") == 3

        assert await store.cursors.get(account.id, "INBOX") == 8
        assert await store.messages.count_for_folder(inbox.id) == 3
        assert ("uid_search", "UID 1:*") in server.client.calls

    @pytest.mark.asyncio
    async def test_follow_up_sync_uses_cursor(self, syncer, store, server, account, inbox):
        server.add("INBOX", FakeMessage(1))
        await syncer.sync_new_emails(account.id, "INBOX")

        server.add("INBOX", FakeMessage(2))
        assert await syncer.sync_new_emails(account.id, "INBOX") == 1
        assert ("uid_search", "UID 2:*") in server.client.calls
        assert await store.cursors.get(account.id, "INBOX") == 2

    @pytest.mark.asyncio
    async def test_nothing_new_is_idempotent(self, syncer, store, server, account, inbox):
        """Test UID n:* returning the last seen UID ingests nothing"""
        server.add("INBOX", FakeMessage(4))
        await syncer.sync_new_emails(account.id, "INBOX")

        assert await syncer.sync_new_emails(account.id, "INBOX") == 0
        assert await store.cursors.get(account.id, "INBOX") == 4
        assert await store.messages.count_for_folder(inbox.id) == 1

    @pytest.mark.asyncio
    async def test_cursor_never_moves_back(self, syncer, store, server, account, inbox):
        await store.cursors.advance(account.id, "INBOX", 10)
        await store.cursors.advance(account.id, "INBOX", 4)
        server.add("INBOX", FakeMessage(7))

        assert await syncer.sync_new_emails(account.id, "INBOX") == 0
        assert await store.cursors.get(account.id, "INBOX") == 10

    @pytest.mark.asyncio
    async def test_batches(self, syncer, store, server, account, inbox, sync_config):
        sync_config.fetch_batch_size = 2
        for uid in range(1, 6):
            server.add("INBOX", FakeMessage(uid))

        assert await syncer.sync_new_emails(account.id, "INBOX") == 5
        fetches = [call for call in server.client.calls if call[:2] == ("uid", "fetch")]
        assert [call[2] for call in fetches] == ["1,2", "3,4", "5"]

    @pytest.mark.asyncio
    async def test_message_fields(self, syncer, store, server, account, inbox):
        server.add("INBOX", FakeMessage(12, body=b"Hi   there\r\nBob", flags="\\Seen \\Flagged"))
        await syncer.sync_new_emails(account.id, "INBOX")

        message = await store.messages.get(message_id_for(account.id, 12))
        assert message.id == f"{account.id}_12"
        assert message.folder_id == inbox.id
        assert message.subject == "Hello"
        assert message.from_name == "Alice"
        assert message.from_email == "alice@example.com"
        assert message.to_email == "bob@example.com"
        assert message.message_id == "<12@example.com>"
        assert message.snippet == "Hi there Bob"
        assert message.is_read and message.is_flagged
        assert not message.has_attachments

    @pytest.mark.asyncio
    async def test_attachments_persisted(self, syncer, store, server, account, inbox):
        server.add("INBOX", FakeMessage(20, bodystructure=WITH_ATTACHMENT))
        await syncer.sync_new_emails(account.id, "INBOX")

        message = await store.messages.get(message_id_for(account.id, 20))
        assert message.has_attachments
        assert [(a.part_number, a.filename) for a in message.attachments] == [("2", "report.pdf")]

    @pytest.mark.asyncio
    async def test_unparseable_message_skipped(self, syncer, store, server, account, inbox):
        for uid in (1, 2, 3):
            server.add("INBOX", FakeMessage(uid))
        server.garbled.add(2)

        assert await syncer.sync_new_emails(account.id, "INBOX") == 2
        assert await store.messages.get(message_id_for(account.id, 2)) is None
        assert await store.cursors.get(account.id, "INBOX") == 3

    @pytest.mark.asyncio
    async def test_unknown_folder_returns_zero(self, syncer, server, account):
        server.add("Archive", FakeMessage(1))
        assert await syncer.sync_new_emails(account.id, "Archive") == 0

    @pytest.mark.asyncio
    async def test_not_connected_returns_zero(self, store, connections, sync_config, account, inbox):
        syncer = IncrementalSyncer(connections, store, sync_config)
        assert await syncer.sync_new_emails(account.id, "INBOX") == 0

    @pytest.mark.asyncio
    async def test_search_failure_releases_everything(self, syncer, server, account, inbox, connected):
        server.fail_search = True
        assert await syncer.sync_new_emails(account.id, "INBOX") == 0

        assert not syncer.is_syncing(account.id)
        assert not connected.locks.mailbox_lock(account.id, "INBOX").locked()
        assert not connected.locks.connection_lock(account.id).locked()


class TestConcurrencyAndCallbacks:
    """Tests for the in-flight guard and new-mail notification"""

    @pytest.mark.asyncio
    async def test_concurrent_second_call_returns_zero(self, syncer, server, account, inbox, connected):
        server.add("INBOX", FakeMessage(1))
        lock = connected.locks.connection_lock(account.id)
        await lock.acquire()

        first = asyncio.create_task(syncer.sync_new_emails(account.id, "INBOX"))
        await asyncio.sleep(0.01)
        assert syncer.is_syncing(account.id)
        assert await syncer.sync_new_emails(account.id, "INBOX") == 0

        lock.release()
        assert await first == 1

    @pytest.mark.asyncio
    async def test_sync_callback(self, syncer, server, account, inbox):
        calls = []
        syncer.new_email_callback = lambda *args: calls.append(args)
        server.add("INBOX", FakeMessage(1))
        server.add("INBOX", FakeMessage(2))

        await syncer.sync_new_emails(account.id, "INBOX")
        await syncer.sync_new_emails(account.id, "INBOX")

        assert calls == [(account.id, inbox.id, 2)]

    @pytest.mark.asyncio
    async def test_async_callback_errors_are_contained(self, syncer, server, account, inbox):
        async def callback(account_id, folder_id, count):
            raise RuntimeError("consumer broke")

        syncer.new_email_callback = callback
        server.add("INBOX", FakeMessage(1))

        assert await syncer.sync_new_emails(account.id, "INBOX") == 1


class TestBuildMessage:
    """Tests for envelope fallbacks"""

    def test_missing_envelope_fields(self):
        inbox = Folder(id="acc_INBOX", account_id="acc", name="INBOX", path="INBOX")
        raw_envelope = tokenize(
            envelope(subject=None, sender=None, to=None, date=None, message_id=None).encode()
        )[0]
        message = build_message(
            "acc", inbox, {"UID": 9, "FLAGS": (), "ENVELOPE": raw_envelope}
        )

        assert message.subject == "(no subject)"
        assert message.from_email == ""
        assert message.to_email == ""
        assert message.date.tzinfo is not None
        assert message.message_id == "acc_9"
        assert message.snippet == "(no subject)"
