"""Incremental UID-based ingestion of new messages."""

import asyncio
import inspect
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Union

import aioimaplib

from mailsync.core.database import MailStore
from mailsync.core.models import Folder, Message, message_id_for
from mailsync.utils.config import SyncConfig
from mailsync.utils.errors import (
    ConnectivityError,
    DatabaseError,
    ProtocolError,
)
from mailsync.utils.logging import async_log_call, get_logger, log_event

from .attachments import extract_attachments, node_from_bodystructure
from .connection import ConnectionManager
from .constants import NO_SUBJECT, FetchItems, IMAPFlags
from .protocol import (
    as_text,
    check_response,
    decode_body_text,
    iter_fetch_responses,
    make_snippet,
    parse_envelope,
    parse_fetch_item,
    parse_search_response,
    quote_mailbox,
)

logger = get_logger(__name__)

NewEmailCallback = Callable[[str, str, int], Union[None, Awaitable[None]]]


def build_message(account_id: str, folder: Folder, attrs: Dict[str, Any]) -> Message:
    """Turn one parsed FETCH response into a Message with attachment metadata.

    Raises:
        ProtocolError: If UID or ENVELOPE are missing or malformed
    """
    uid = attrs.get("UID")
    if uid is None:
        raise ProtocolError("FETCH response without UID")
    if "ENVELOPE" not in attrs:
        raise ProtocolError("FETCH response without ENVELOPE", details={"uid": uid})

    envelope = parse_envelope(attrs["ENVELOPE"])
    msg_id = message_id_for(account_id, uid)

    structure = None
    if attrs.get("BODYSTRUCTURE") is not None:
        structure = node_from_bodystructure(attrs["BODYSTRUCTURE"])

    body_text = ""
    body_raw = attrs.get("BODY[1]")
    if body_raw is not None:
        first_part = structure.find("1") if structure else None
        body_text = decode_body_text(
            body_raw if isinstance(body_raw, bytes) else (as_text(body_raw) or "").encode(),
            first_part.encoding if first_part else None,
            first_part.parameters.get("charset") if first_part else None,
        )

    subject = envelope.subject if envelope.subject is not None else NO_SUBJECT
    sender = envelope.from_[0] if envelope.from_ else None
    recipient = envelope.to[0] if envelope.to else None
    flags = {flag.lower() for flag in attrs.get("FLAGS", ())}

    return Message(
        id=msg_id,
        account_id=account_id,
        folder_id=folder.id,
        uid=uid,
        message_id=envelope.message_id or msg_id,
        subject=subject,
        from_name=sender.name if sender else "",
        from_email=sender.email if sender else "",
        to_email=recipient.email if recipient else "",
        date=envelope.date or datetime.now(timezone.utc),
        snippet=make_snippet(body_text, subject),
        body_text=body_text,
        is_read=IMAPFlags.SEEN.lower() in flags,
        is_flagged=IMAPFlags.FLAGGED.lower() in flags,
        attachments=extract_attachments(structure),
    )


class IncrementalSyncer:
    """Fetches messages above the stored UID cursor and persists them."""

    def __init__(
        self,
        connections: ConnectionManager,
        store: MailStore,
        config: SyncConfig,
    ):
        self.connections = connections
        self.store = store
        self.config = config
        self.new_email_callback: Optional[NewEmailCallback] = None
        self._in_flight: Set[str] = set()

    def is_syncing(self, account_id: str) -> bool:
        return account_id in self._in_flight

    @async_log_call
    async def sync_new_emails(self, account_id: str, mailbox: str) -> int:
        """Ingest every message of ``mailbox`` above the cursor.

        A second call for an account already syncing returns 0 at once.

        Returns:
            Number of messages newly inserted
        """
        # check and claim without an await in between
        if account_id in self._in_flight:
            logger.debug(f"Sync already running for {account_id}, skipping")
            return 0
        self._in_flight.add(account_id)

        try:
            folder, inserted = await self._sync(account_id, mailbox)
        finally:
            self._in_flight.discard(account_id)

        if inserted > 0 and folder is not None:
            log_event(
                "new_mail",
                f"{inserted} new message(s) in {mailbox}",
                account_id=account_id,
                folder_id=folder.id,
                count=inserted,
            )
            await self._notify(account_id, folder.id, inserted)

        return inserted

    async def _sync(self, account_id: str, mailbox: str):
        session = self.connections.get_session(account_id)
        if session is None:
            logger.debug(f"Sync skipped, {account_id} is not connected")
            return None, 0

        try:
            folder = await self.store.folders.find(account_id, mailbox)
            if folder is None:
                logger.debug(f"Sync skipped, no folder row for {mailbox}")
                return None, 0
            last_uid = await self.store.cursors.get(account_id, mailbox)
        except DatabaseError as e:
            logger.error(f"Sync of {mailbox} for {account_id} failed: {e.message}")
            return None, 0

        uid_range = f"{last_uid + 1}:*" if last_uid else "1:*"
        inserted = 0
        max_uid = last_uid or 0

        try:
            async with self.connections.locks.hold(account_id, mailbox):
                client = self.connections.require_session(account_id).client
                check_response(await client.select(quote_mailbox(mailbox)), "select")

                response = await client.uid_search(f"UID {uid_range}")
                check_response(response, "uid search")
                # "n:*" always matches the highest UID, even when it is <= n
                uids = [uid for uid in parse_search_response(response.lines) if uid > max_uid]

                batch_size = self.config.fetch_batch_size
                for start in range(0, len(uids), batch_size):
                    batch = uids[start : start + batch_size]
                    batch_inserted, batch_max = await self._ingest_batch(
                        client, account_id, folder, batch, last_uid or 0
                    )
                    inserted += batch_inserted
                    max_uid = max(max_uid, batch_max)

        except (ConnectivityError, ProtocolError, DatabaseError) as e:
            logger.warning(f"Sync of {mailbox} for {account_id} aborted: {e.message}")

        except (asyncio.TimeoutError, OSError, aioimaplib.AioImapException) as e:
            logger.warning(f"Sync of {mailbox} for {account_id} aborted: {e}")

        if max_uid > (last_uid or 0):
            try:
                await self.store.cursors.advance(account_id, mailbox, max_uid)
            except DatabaseError as e:
                logger.error(f"Failed to advance cursor for {mailbox}: {e.message}")

        logger.info(
            f"Synced {mailbox} for {account_id}: {inserted} new",
            extra={"account_id": account_id, "mailbox": mailbox, "last_uid": max_uid},
        )
        return folder, inserted

    async def _ingest_batch(
        self, client, account_id: str, folder: Folder, uids: List[int], cursor: int
    ):
        uid_set = ",".join(str(uid) for uid in uids)
        response = await client.uid("fetch", uid_set, FetchItems.NEW_MESSAGE)
        check_response(response, "uid fetch")

        inserted = 0
        max_uid = cursor
        for raw in iter_fetch_responses(response.lines):
            try:
                attrs = parse_fetch_item(raw)
                uid = attrs.get("UID")
                if uid is not None and uid <= cursor:
                    continue
                message = build_message(account_id, folder, attrs)
            except ProtocolError as e:
                logger.warning(
                    f"Skipping unparseable message in {folder.path}: {e.message}",
                    extra={"account_id": account_id},
                )
                continue

            if await self.store.messages.insert_if_absent(message):
                inserted += 1
            max_uid = max(max_uid, message.uid)

        return inserted, max_uid

    async def _notify(self, account_id: str, folder_id: str, count: int) -> None:
        callback = self.new_email_callback
        if callback is None:
            return
        try:
            result = callback(account_id, folder_id, count)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.error(f"New-email callback failed: {e}")
