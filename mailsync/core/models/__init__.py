from .account import Account
from .attachment import AttachmentMeta, attachment_id_for
from .folder import Folder, FolderType, folder_id_for
from .message import Message, message_id_for

__all__ = [
    "Account",
    "AttachmentMeta",
    "Folder",
    "FolderType",
    "Message",
    "attachment_id_for",
    "folder_id_for",
    "message_id_for",
]
