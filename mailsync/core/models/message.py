"""Message domain model"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from .attachment import AttachmentMeta


def message_id_for(account_id: str, uid: int) -> str:
    """Deterministic message row id, stable across retries."""
    return f"{account_id}_{uid}"


@dataclass
class Message:
    """An ingested email, as persisted in the ``messages`` table."""

    id: str
    account_id: str
    folder_id: str
    uid: int
    subject: str
    from_name: str
    from_email: str
    to_email: str
    date: datetime
    snippet: str = ""
    body_text: str = ""
    message_id: Optional[str] = None
    has_attachments: bool = False
    is_read: bool = False
    is_flagged: bool = False
    attachments: List[AttachmentMeta] = field(default_factory=list)
