from .base import MasterKeyBackend
from .key_file import KeyFileBackend
from .keyring import KeyringBackend

__all__ = ["MasterKeyBackend", "KeyFileBackend", "KeyringBackend"]
