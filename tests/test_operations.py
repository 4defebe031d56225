"""
Tests for message operations

Tests cover:
- UID MOVE and the COPY/STORE/EXPUNGE fallback
- Chunked attachment download with incremental decoding
- The attachment size cap
"""
import base64
import quopri

import pytest

from mailsync.core.email.imap.operations import MessageOperations, StreamDecoder
from mailsync.utils.errors import ProtocolError

from .fakes import FakeMessage


@pytest.fixture
def operations(connected, sync_config):
    return MessageOperations(connected, sync_config)


class TestStreamDecoder:
    """Tests for incremental transfer decoding"""

    def _decode_in_chunks(self, encoding, data, size):
        decoder = StreamDecoder(encoding)
        out = b"".join(decoder.feed(data[i : i + size]) for i in range(0, len(data), size))
        return out + decoder.finish()

    def test_base64_across_odd_chunks(self):
        payload = bytes(range(256)) * 3
        encoded = base64.encodebytes(payload)
        for size in (1, 5, 7, 76, 1000):
            assert self._decode_in_chunks("base64", encoded, size) == payload

    def test_quoted_printable_across_chunks(self):
        payload = ("Grüße aus Köln = " * 20).encode("utf-8")
        encoded = quopri.encodestring(payload)
        for size in (1, 3, 10):
            assert self._decode_in_chunks("Quoted-Printable", encoded, size) == payload

    def test_identity(self):
        assert self._decode_in_chunks(None, b"raw bytes", 2) == b"raw bytes"

    def test_corrupt_base64(self):
        decoder = StreamDecoder("base64")
        assert decoder.feed(b"QUJDQ") == b"ABC"
        with pytest.raises(ProtocolError):
            decoder.finish()


class TestMoveMessage:
    """Tests for move_message"""

    @pytest.mark.asyncio
    async def test_uid_move(self, operations, server, account):
        server.add("INBOX", FakeMessage(5))

        assert await operations.move_message(account.id, 5, "INBOX", "Archive") is True
        assert 5 in server.mailboxes["Archive"]
        assert 5 not in server.mailboxes["INBOX"]
        assert ("uid", "move", "5", '"Archive"') in server.client.calls

    @pytest.mark.asyncio
    async def test_fallback_without_move(self, operations, server, account):
        server.capabilities.discard("MOVE")
        server.add("INBOX", FakeMessage(5))

        assert await operations.move_message(account.id, 5, "INBOX", "Archive") is True

        commands = [call[:2] for call in server.client.calls if call[0] in ("uid", "expunge")]
        assert commands == [("uid", "copy"), ("uid", "store"), ("expunge",)]
        assert 5 in server.mailboxes["Archive"]
        assert 5 not in server.mailboxes["INBOX"]

    @pytest.mark.asyncio
    async def test_server_refusal_returns_false(self, operations, server, account, connected):
        server.add("INBOX", FakeMessage(5))
        server.fail_commands.add("move")

        assert await operations.move_message(account.id, 5, "INBOX", "Archive") is False
        assert not connected.locks.mailbox_lock(account.id, "INBOX").locked()

    @pytest.mark.asyncio
    async def test_unknown_source_returns_false(self, operations, account):
        assert await operations.move_message(account.id, 5, "Nope", "Archive") is False

    @pytest.mark.asyncio
    async def test_not_connected_returns_false(self, connections, sync_config, account):
        operations = MessageOperations(connections, sync_config)
        assert await operations.move_message(account.id, 1, "INBOX", "Archive") is False


class TestDownloadAttachment:
    """Tests for download_attachment"""

    @pytest.mark.asyncio
    async def test_base64_download_in_chunks(self, operations, server, account, sync_config):
        payload = b"%PDF-1.4 " + bytes(range(200))
        server.add(
            "INBOX",
            FakeMessage(
                7,
                parts={"2": base64.encodebytes(payload)},
                mime_headers={
                    "2": b"Content-Type: application/pdf\r\n"
                    b"Content-Transfer-Encoding: base64\r\n\r\n"
                },
            ),
        )

        data = await operations.download_attachment(account.id, 7, "INBOX", "2")

        assert data == payload
        assert server.range_fetches > 1

    @pytest.mark.asyncio
    async def test_unencoded_download(self, operations, server, account):
        server.add("INBOX", FakeMessage(7, parts={"1.2": b"plain text"}))
        assert await operations.download_attachment(account.id, 7, "INBOX", "1.2") == b"plain text"

    @pytest.mark.asyncio
    async def test_endless_stream_is_capped(self, operations, server, account, sync_config):
        """Test downloads stop once the decoded size passes the cap"""
        server.add("INBOX", FakeMessage(7))
        server.endless_parts.add("2")

        assert await operations.download_attachment(account.id, 7, "INBOX", "2") is None

        max_fetches = sync_config.max_attachment_bytes // sync_config.attachment_chunk_size + 1
        assert server.range_fetches == max_fetches

    @pytest.mark.asyncio
    async def test_missing_message_returns_none(self, operations, account, connected):
        assert await operations.download_attachment(account.id, 99, "INBOX", "2") is None
        assert not connected.locks.connection_lock(account.id).locked()
