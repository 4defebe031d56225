"""Folder domain model"""

from dataclasses import dataclass
from enum import Enum


class FolderType(str, Enum):
    """Canonical folder types."""

    INBOX = "inbox"
    SENT = "sent"
    DRAFTS = "drafts"
    TRASH = "trash"
    JUNK = "junk"
    ARCHIVE = "archive"
    FLAGGED = "flagged"
    OTHER = "other"


def folder_id_for(account_id: str, path: str) -> str:
    """Deterministic folder id."""
    return f"{account_id}_{path}"


@dataclass(frozen=True)
class Folder:
    """A remote mailbox known to the local store."""

    id: str
    account_id: str
    name: str
    path: str
    type: FolderType = FolderType.OTHER
