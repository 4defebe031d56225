"""Master key management for credential encryption."""

import asyncio
from typing import List, Optional

from cryptography.fernet import Fernet

from mailsync.utils.errors import KeyStoreError
from mailsync.utils.logging import get_logger

from .backends.base import MasterKeyBackend
from .backends.key_file import KeyFileBackend
from .backends.keyring import KeyringBackend

logger = get_logger(__name__)


class KeyStore:
    """
    Get-or-create store for the Fernet master key.

    Automatically selects the best available backend.
    """

    def __init__(
        self,
        service_name: str = "mailsync",
        backends: Optional[List[MasterKeyBackend]] = None,
    ):
        self.service_name = service_name
        self._candidates = backends or [KeyringBackend(), KeyFileBackend()]
        self.backend: Optional[MasterKeyBackend] = None
        self._master_key: Optional[bytes] = None
        self._lock = asyncio.Lock()

    async def _select_backend(self) -> MasterKeyBackend:
        """Select best available backend.

        Returns:
            MasterKeyBackend: The selected backend.
        """
        for backend in sorted(self._candidates, key=lambda b: b.priority):
            try:
                if await backend.is_available():
                    logger.debug(f"Selected key backend: {backend.name}")
                    return backend

            except Exception as e:
                logger.debug(f"Backend {backend.name} not available: {e}")
                continue

        raise KeyStoreError("No master key backend available")

    async def get_master_key(self) -> bytes:
        """Return the master key, generating and storing one on first use.

        Raises:
            KeyStoreError: If the backend fails to load or store the key.
        """
        async with self._lock:
            if self._master_key:
                return self._master_key

            if self.backend is None:
                self.backend = await self._select_backend()

            try:
                key = await self.backend.load(self.service_name)
                if key is None:
                    key = Fernet.generate_key()
                    await self.backend.store(self.service_name, key)
                    logger.info(f"Generated new master key in {self.backend.name}")

            except Exception as e:
                raise KeyStoreError(
                    f"Failed to access master key: {str(e)}",
                    details={"backend": self.backend.name},
                ) from e

            self._master_key = key
            return key
