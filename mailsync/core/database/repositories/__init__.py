from .accounts import AccountRepository
from .cursors import SyncCursorRepository
from .folders import FolderRepository
from .messages import MessageRepository

__all__ = [
    "AccountRepository",
    "FolderRepository",
    "MessageRepository",
    "SyncCursorRepository",
]
