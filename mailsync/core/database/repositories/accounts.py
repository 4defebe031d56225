"""Account repository."""

import uuid
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from mailsync.core.database.models import accounts
from mailsync.core.database.utils import row_to_account, utc_now_iso
from mailsync.core.models import Account
from mailsync.utils.errors import InvalidConfigError
from mailsync.utils.logging import get_logger

from .base import Repository

logger = get_logger(__name__)


class AccountRepository(Repository):
    """Accounts are created by the CLI and only read by the engine."""

    async def add(
        self,
        email: str,
        password_encrypted: Optional[str],
        provider: str = "custom",
        imap_host: Optional[str] = None,
        imap_port: Optional[int] = None,
    ) -> Account:
        """Create a new account row.

        Raises:
            InvalidConfigError: If an account with this address already exists
        """
        account = Account(
            id=uuid.uuid4().hex,
            email=email,
            provider=provider,
            password_encrypted=password_encrypted,
            imap_host=imap_host,
            imap_port=imap_port,
        )
        engine = await self._engine()
        try:
            async with engine.begin() as conn:
                await conn.execute(
                    accounts.insert().values(
                        id=account.id,
                        email=account.email,
                        provider=account.provider,
                        password_encrypted=account.password_encrypted,
                        imap_host=account.imap_host,
                        imap_port=account.imap_port,
                        created_at=utc_now_iso(),
                    )
                )
        except IntegrityError as e:
            raise InvalidConfigError(
                f"Account already exists: {email}", details={"email": email}
            ) from e

        logger.info(f"Account added: {account.id} ({provider})")
        return account

    async def get(self, account_id: str) -> Optional[Account]:
        row = await self._fetch_one(select(accounts).where(accounts.c.id == account_id))
        return row_to_account(row) if row else None

    async def get_by_email(self, email: str) -> Optional[Account]:
        row = await self._fetch_one(select(accounts).where(accounts.c.email == email))
        return row_to_account(row) if row else None

    async def list_all(self) -> List[Account]:
        rows = await self._fetch_all(select(accounts).order_by(accounts.c.created_at))
        return [row_to_account(row) for row in rows]
