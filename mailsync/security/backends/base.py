"""Interface shared by the places a master key can be kept."""

from abc import ABC, abstractmethod
from typing import Optional


class MasterKeyBackend(ABC):
    """Storage for the Fernet master key.

    ``KeyStore`` tries backends in ascending ``priority`` and uses the first
    one whose ``is_available`` returns True.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Human readable name, shown in logs."""

    @property
    @abstractmethod
    def priority(self) -> int:
        """Lower values are tried first."""

    @abstractmethod
    async def is_available(self) -> bool:
        """Whether this backend can be used on this machine."""

    @abstractmethod
    async def load(self, service: str) -> Optional[bytes]:
        """Return the stored key for ``service``, or None if none exists yet."""

    @abstractmethod
    async def store(self, service: str, key: bytes) -> None:
        """Persist ``key`` (urlsafe base64, as produced by Fernet) for ``service``."""
