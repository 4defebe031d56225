"""Account domain model"""

from dataclasses import dataclass
from typing import Optional

DEFAULT_IMAP_PORT = 993

PROVIDER_HOSTS = {
    "gmail": "imap.gmail.com",
    "outlook": "outlook.office365.com",
    "yahoo": "imap.mail.yahoo.com",
    "icloud": "imap.mail.me.com",
}


@dataclass(frozen=True)
class Account:
    """A configured mail account as stored in the ``accounts`` table."""

    id: str
    email: str
    provider: str = "custom"
    password_encrypted: Optional[str] = None
    imap_host: Optional[str] = None
    imap_port: Optional[int] = None

    @property
    def host(self) -> Optional[str]:
        """Explicit host, else the provider's well-known IMAP host."""
        return self.imap_host or PROVIDER_HOSTS.get(self.provider.lower())

    @property
    def port(self) -> int:
        return self.imap_port or DEFAULT_IMAP_PORT
