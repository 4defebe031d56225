"""Key file backend (fallback)"""

import asyncio
from pathlib import Path
from typing import Optional

from mailsync.utils.paths import MASTER_KEY_PATH

from .base import MasterKeyBackend


class KeyFileBackend(MasterKeyBackend):
    """Owner-only key file under the secrets directory."""

    def __init__(self, path: Optional[Path] = None):
        self._path = path or MASTER_KEY_PATH

    @property
    def name(self) -> str:
        return "Key File"

    @property
    def priority(self) -> int:
        return 99  # Lowest priority (fallback)

    async def is_available(self) -> bool:
        """Always available as fallback."""
        return True

    async def load(self, service: str) -> Optional[bytes]:
        """Read the key file if it exists."""

        def read() -> Optional[bytes]:
            if not self._path.exists():
                return None
            return self._path.read_bytes().strip() or None

        return await asyncio.to_thread(read)

    async def store(self, service: str, key: bytes) -> None:
        """Write the key file with 0600 permissions."""

        def write() -> None:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._path.write_bytes(key)
            self._path.chmod(0o600)

        await asyncio.to_thread(write)
