"""System keyring backend"""

import asyncio
from typing import Optional

import keyring
from keyring.backends import fail

from mailsync.utils.logging import get_logger

from .base import MasterKeyBackend

logger = get_logger(__name__)

KEY_NAME = "master-key"


class KeyringBackend(MasterKeyBackend):
    """System keyring backend."""

    @property
    def name(self) -> str:
        return "System Keyring"

    @property
    def priority(self) -> int:
        return 1

    async def is_available(self) -> bool:
        """Check if a usable keyring is configured.

        Returns:
            bool: True if keyring is available, False otherwise.
        """
        try:
            backend = await asyncio.to_thread(keyring.get_keyring)
            return not isinstance(backend, fail.Keyring)
        except Exception as e:
            logger.debug(f"Keyring availability check failed: {e}")
            return False

    async def load(self, service: str) -> Optional[bytes]:
        """Load the master key from the system keyring."""
        value = await asyncio.to_thread(keyring.get_password, service, KEY_NAME)
        return value.encode() if value else None

    async def store(self, service: str, key: bytes) -> None:
        """Store the master key in the system keyring."""
        await asyncio.to_thread(keyring.set_password, service, KEY_NAME, key.decode())
