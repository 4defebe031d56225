"""Database utilities."""

from datetime import datetime, timezone
from typing import Any, Dict

from mailsync.core.models import Account, AttachmentMeta, Folder, FolderType, Message


def utc_now_iso() -> str:
    """Current UTC time as ISO8601."""
    return datetime.now(timezone.utc).isoformat()


def to_iso(value: datetime) -> str:
    """Normalise a datetime to an ISO8601 UTC string."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def row_to_account(row) -> Account:
    return Account(
        id=row.id,
        email=row.email,
        provider=row.provider,
        password_encrypted=row.password_encrypted,
        imap_host=row.imap_host,
        imap_port=row.imap_port,
    )


def row_to_folder(row) -> Folder:
    return Folder(
        id=row.id,
        account_id=row.account_id,
        name=row.name,
        path=row.path,
        type=FolderType(row.type),
    )


def row_to_attachment(row) -> AttachmentMeta:
    return AttachmentMeta(
        part_number=row.part_number,
        filename=row.filename,
        mime_type=row.mime_type,
        size=row.size,
        content_id=row.content_id,
    )


def row_to_message(row) -> Message:
    """Convert a ``messages`` row to a Message (attachments not loaded)."""
    return Message(
        id=row.id,
        account_id=row.account_id,
        folder_id=row.folder_id,
        uid=row.uid,
        subject=row.subject,
        from_name=row.from_name,
        from_email=row.from_email,
        to_email=row.to_email,
        date=datetime.fromisoformat(row.date),
        snippet=row.snippet,
        body_text=row.body_text or "",
        message_id=row.message_id,
        has_attachments=bool(row.has_attachments),
        is_read=bool(row.is_read),
        is_flagged=bool(row.is_flagged),
    )


def message_to_row(message: Message) -> Dict[str, Any]:
    """Convert a Message to ``messages`` column values."""
    return {
        "id": message.id,
        "account_id": message.account_id,
        "folder_id": message.folder_id,
        "uid": message.uid,
        "message_id": message.message_id,
        "subject": message.subject,
        "from_name": message.from_name,
        "from_email": message.from_email,
        "to_email": message.to_email,
        "date": to_iso(message.date),
        "snippet": message.snippet,
        "body_text": message.body_text,
        "has_attachments": message.has_attachments,
        "is_read": message.is_read,
        "is_flagged": message.is_flagged,
    }
