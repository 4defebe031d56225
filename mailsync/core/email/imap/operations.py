"""Message operations - moving messages and streaming attachment downloads."""

import asyncio
import base64
import binascii
import quopri
import re
from email.parser import BytesHeaderParser
from typing import List, Optional

import aioimaplib

from mailsync.utils.config import SyncConfig
from mailsync.utils.errors import (
    AttachmentTooLargeError,
    ConnectivityError,
    ErrorHandler,
    ProtocolError,
)
from mailsync.utils.logging import get_logger

from .connection import ConnectionManager
from .constants import Capabilities, FetchItems, IMAPFlags
from .protocol import check_response, parse_fetch_response, quote_mailbox

logger = get_logger(__name__)

_NON_BASE64 = re.compile(rb"[^A-Za-z0-9+/=]")


class StreamDecoder:
    """Undo a Content-Transfer-Encoding over a stream of arbitrary chunks.

    Base64 keeps the trailing partial quantum and quoted-printable keeps the
    trailing partial line until more data (or ``finish``) arrives.
    """

    def __init__(self, encoding: Optional[str]):
        self.encoding = (encoding or "").strip().lower()
        self._pending = b""

    def feed(self, data: bytes) -> bytes:
        if self.encoding == "base64":
            data = self._pending + _NON_BASE64.sub(b"", data)
            usable = len(data) - len(data) % 4
            self._pending = data[usable:]
            return self._b64(data[:usable])

        if self.encoding == "quoted-printable":
            data = self._pending + data
            cut = data.rfind(b"\n") + 1
            self._pending = data[cut:]
            return quopri.decodestring(data[:cut])

        return data

    def finish(self) -> bytes:
        pending, self._pending = self._pending, b""
        if not pending:
            return b""
        if self.encoding == "base64":
            return self._b64(pending + b"=" * (-len(pending) % 4))
        return quopri.decodestring(pending)

    @staticmethod
    def _b64(data: bytes) -> bytes:
        try:
            return base64.b64decode(data)
        except (binascii.Error, ValueError) as e:
            raise ProtocolError("Corrupt base64 attachment data") from e


def _fetched_bytes(lines, key: str) -> bytes:
    """Payload of ``key`` in a single-message FETCH response."""
    for attrs in parse_fetch_response(lines):
        if key in attrs:
            value = attrs[key]
            if value is None:
                return b""
            if isinstance(value, str):
                return value.encode("latin-1", errors="replace")
            return bytes(value)
    raise ProtocolError(f"FETCH response without {key}")


class MessageOperations:
    """Commands that act on single messages of a connected account."""

    def __init__(self, connections: ConnectionManager, config: SyncConfig):
        self.connections = connections
        self.config = config

    async def move_message(
        self, account_id: str, uid: int, source: str, dest: str
    ) -> bool:
        """Move one message between mailboxes.

        Uses UID MOVE when the server advertises it, otherwise copies,
        flags the source copy ``\\Deleted`` and expunges.

        Returns:
            True on success, False on any failure
        """
        try:
            session = self.connections.require_session(account_id)
            async with self.connections.locks.hold(account_id, source):
                client = session.client
                check_response(await client.select(quote_mailbox(source)), "select")

                target = quote_mailbox(dest)
                if client.has_capability(Capabilities.MOVE):
                    check_response(await client.uid("move", str(uid), target), "uid move")
                else:
                    check_response(await client.uid("copy", str(uid), target), "uid copy")
                    check_response(
                        await client.uid(
                            "store", str(uid), "+FLAGS", f"({IMAPFlags.DELETED})"
                        ),
                        "uid store",
                    )
                    check_response(await client.expunge(), "expunge")

        except (ConnectivityError, ProtocolError) as e:
            logger.warning(
                f"Move of UID {uid} from {source} to {dest} failed: {e.message}",
                extra={"account_id": account_id},
            )
            return False

        except (asyncio.TimeoutError, OSError, aioimaplib.AioImapException) as e:
            logger.warning(f"Move of UID {uid} from {source} to {dest} failed: {e}")
            return False

        logger.info(f"Moved UID {uid} from {source} to {dest} for {account_id}")
        return True

    async def download_attachment(
        self, account_id: str, uid: int, mailbox: str, part: str
    ) -> Optional[bytes]:
        """Download and decode one body part in bounded chunks.

        Returns:
            The decoded bytes, or None on failure or when the part is larger
            than ``max_attachment_bytes``
        """
        try:
            session = self.connections.require_session(account_id)
            async with self.connections.locks.hold(account_id, mailbox):
                client = session.client
                check_response(await client.select(quote_mailbox(mailbox)), "select")
                encoding = await self._part_encoding(client, uid, part)
                data = await self._stream_part(client, uid, part, StreamDecoder(encoding))

        except AttachmentTooLargeError as e:
            ErrorHandler.handle(e, f"Download of part {part} of UID {uid}", log_traceback=False)
            return None

        except (ConnectivityError, ProtocolError) as e:
            logger.warning(
                f"Download of part {part} of UID {uid} failed: {e.message}",
                extra={"account_id": account_id, "mailbox": mailbox},
            )
            return None

        except (asyncio.TimeoutError, OSError, aioimaplib.AioImapException) as e:
            logger.warning(f"Download of part {part} of UID {uid} failed: {e}")
            return None

        logger.debug(f"Downloaded {len(data)} bytes from part {part} of UID {uid}")
        return data

    async def _part_encoding(self, client, uid: int, part: str) -> Optional[str]:
        response = await client.uid("fetch", str(uid), FetchItems.part_mime(part))
        check_response(response, "uid fetch")
        header = _fetched_bytes(response.lines, f"BODY[{part}.MIME]")
        headers = BytesHeaderParser().parsebytes(header)
        return headers.get("Content-Transfer-Encoding")

    async def _stream_part(
        self, client, uid: int, part: str, decoder: StreamDecoder
    ) -> bytes:
        chunk_size = self.config.attachment_chunk_size
        limit = self.config.max_attachment_bytes
        chunks: List[bytes] = []
        total = 0
        offset = 0

        while True:
            response = await client.uid(
                "fetch", str(uid), FetchItems.part_range(part, offset, chunk_size)
            )
            check_response(response, "uid fetch")
            raw = _fetched_bytes(response.lines, f"BODY[{part}]")
            offset += len(raw)

            last = len(raw) < chunk_size
            decoded = decoder.feed(raw)
            if last:
                decoded += decoder.finish()

            chunks.append(decoded)
            total += len(decoded)
            if total > limit:
                raise AttachmentTooLargeError(
                    details={"uid": uid, "part": part, "limit": limit}
                )
            if last:
                break

        return b"".join(chunks)
