from .key_store import KeyStore
from .secret_store import SecretStore

__all__ = ["KeyStore", "SecretStore"]
