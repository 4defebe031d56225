"""Sync cursor repository."""

from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.dialects.sqlite import insert

from mailsync.core.database.models import sync_cursors
from mailsync.core.database.utils import utc_now_iso

from .base import Repository


class SyncCursorRepository(Repository):
    """Highest ingested UID per (account, mailbox)."""

    async def get(self, account_id: str, mailbox: str) -> Optional[int]:
        """Return the stored ``last_uid``, or None when the mailbox was never synced."""
        row = await self._fetch_one(
            select(sync_cursors.c.last_uid).where(
                sync_cursors.c.account_id == account_id,
                sync_cursors.c.mailbox == mailbox,
            )
        )
        return int(row[0]) if row else None

    async def advance(self, account_id: str, mailbox: str, last_uid: int) -> None:
        """Raise the cursor to ``last_uid``; a lower value never moves it back."""
        stmt = insert(sync_cursors).values(
            account_id=account_id,
            mailbox=mailbox,
            last_uid=last_uid,
            updated_at=utc_now_iso(),
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["account_id", "mailbox"],
            set_={
                "last_uid": func.max(sync_cursors.c.last_uid, stmt.excluded.last_uid),
                "updated_at": stmt.excluded.updated_at,
            },
        )
        await self._execute(stmt)
