"""Mailbox catalog - mirrors the server's folder list into the local store."""

from typing import List, Optional

from mailsync.core.database import MailStore
from mailsync.core.models import Folder, FolderType, folder_id_for
from mailsync.utils.errors import ConnectivityError, DatabaseError, ProtocolError
from mailsync.utils.logging import get_logger

from .connection import ConnectionManager
from .constants import SPECIAL_USE_TYPES
from .protocol import MailboxInfo, check_response, parse_list_response

logger = get_logger(__name__)


def classify_mailbox(path: str, flags=()) -> FolderType:
    """Map a mailbox to a canonical folder type.

    Special-use attributes win; without one, the path is matched by name.
    """
    lowered_flags = [flag.lower() for flag in flags]
    for flag in lowered_flags:
        if flag in SPECIAL_USE_TYPES:
            return SPECIAL_USE_TYPES[flag]

    lower = path.lower()
    if lower == "inbox":
        return FolderType.INBOX
    if "sent" in lower:
        return FolderType.SENT
    if "draft" in lower:
        return FolderType.DRAFTS
    if "trash" in lower or "deleted" in lower:
        return FolderType.TRASH
    if "junk" in lower or "spam" in lower:
        return FolderType.JUNK
    if "archive" in lower:
        return FolderType.ARCHIVE
    return FolderType.OTHER


def folder_from_mailbox(account_id: str, mailbox: MailboxInfo) -> Folder:
    return Folder(
        id=folder_id_for(account_id, mailbox.path),
        account_id=account_id,
        name=mailbox.name,
        path=mailbox.path,
        type=classify_mailbox(mailbox.path, mailbox.flags),
    )


class MailboxCatalog:
    """Lists server mailboxes and persists them as folder rows."""

    def __init__(self, connections: ConnectionManager, store: MailStore):
        self.connections = connections
        self.store = store

    async def list_and_sync_folders(self, account_id: str) -> List[Folder]:
        """LIST every mailbox and insert the ones not yet known.

        Returns:
            All mailboxes reported by the server, or an empty list when the
            account is not connected or the server response is unusable
        """
        try:
            session = self.connections.require_session(account_id)
            # LIST does not depend on the selected mailbox; INBOX always exists
            async with self.connections.locks.hold(account_id, "INBOX"):
                response = await session.client.list('""', "*")
            check_response(response, "list")

        except (ConnectivityError, ProtocolError) as e:
            logger.warning(f"Folder listing failed for {account_id}: {e.message}")
            return []

        except Exception as e:
            logger.error(f"Unexpected error listing folders for {account_id}: {e}")
            return []

        folders = [
            folder_from_mailbox(account_id, mailbox)
            for mailbox in parse_list_response(response.lines)
        ]

        inserted = 0
        try:
            for folder in folders:
                if await self.store.folders.insert_if_absent(folder):
                    inserted += 1
        except DatabaseError as e:
            logger.error(f"Failed to persist folders for {account_id}: {e.message}")
            return []

        logger.info(
            f"Synced {len(folders)} folders for {account_id} ({inserted} new)"
        )
        return folders

    async def find_folder(self, account_id: str, path: str) -> Optional[Folder]:
        return await self.store.folders.find(account_id, path)
