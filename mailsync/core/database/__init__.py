"""Database access layer - public API."""

from .engine_manager import EngineManager
from .store import MailStore
from .transaction import TransactionManager

__all__ = ["EngineManager", "MailStore", "TransactionManager"]
