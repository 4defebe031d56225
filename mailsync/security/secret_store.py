"""Encryption of stored account credentials."""

import binascii
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken

from mailsync.utils.errors import CredentialDecryptionError, KeyStoreError

from .key_store import KeyStore


class SecretStore:
    """Encrypts passwords for the ``accounts`` table and decrypts them on connect.

    Blobs are Fernet tokens (already urlsafe base64) so they can live in a
    text column unchanged. ``bytes`` blobs are accepted as well.
    """

    def __init__(self, key_store: Optional[KeyStore] = None, key: Optional[bytes] = None):
        self._key_store = key_store or KeyStore()
        self._fernet: Optional[Fernet] = Fernet(key) if key else None

    @classmethod
    def from_key(cls, key: bytes) -> "SecretStore":
        """Build a store around an explicit Fernet key."""
        return cls(key=key)

    async def _cipher(self) -> Fernet:
        if self._fernet is None:
            self._fernet = Fernet(await self._key_store.get_master_key())
        return self._fernet

    async def encrypt(self, plaintext: str) -> str:
        """Encrypt a credential for storage."""
        cipher = await self._cipher()
        return cipher.encrypt(plaintext.encode("utf-8")).decode("ascii")

    async def decrypt(self, blob: str | bytes) -> str:
        """Decrypt a stored credential.

        Raises:
            CredentialDecryptionError: If the blob is malformed, was encrypted
                with a different key, or the master key is unavailable.
        """
        token = blob.encode("ascii") if isinstance(blob, str) else bytes(blob)

        try:
            cipher = await self._cipher()
            return cipher.decrypt(token).decode("utf-8")

        except KeyStoreError as e:
            raise CredentialDecryptionError(
                "Master key unavailable", details=e.details
            ) from e
        except (InvalidToken, binascii.Error, UnicodeError, ValueError) as e:
            raise CredentialDecryptionError() from e
