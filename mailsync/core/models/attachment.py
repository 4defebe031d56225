"""Attachment metadata model"""

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class AttachmentMeta:
    """Attachment descriptor derived from a message's BODYSTRUCTURE."""

    part_number: str
    filename: str
    mime_type: str
    size: int = 0
    content_id: Optional[str] = None

    @property
    def is_inline(self) -> bool:
        return self.content_id is not None


def attachment_id_for(message_id: str, part_number: str) -> str:
    """Deterministic attachment row id."""
    return f"{message_id}_att_{part_number}"
