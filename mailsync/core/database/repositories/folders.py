"""Folder repository."""

from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.dialects.sqlite import insert

from mailsync.core.database.models import folders
from mailsync.core.database.utils import row_to_folder
from mailsync.core.models import Folder

from .base import Repository


class FolderRepository(Repository):
    """Persisted mailbox rows, keyed by ``{account_id}_{path}``."""

    async def insert_if_absent(self, folder: Folder) -> bool:
        """Insert the folder unless a row with its id exists.

        Returns:
            True if a row was inserted
        """
        query = (
            insert(folders)
            .values(
                id=folder.id,
                account_id=folder.account_id,
                name=folder.name,
                path=folder.path,
                type=folder.type.value,
            )
            .on_conflict_do_nothing()
        )
        result = await self._execute(query)
        return result.rowcount == 1

    async def find(self, account_id: str, path: str) -> Optional[Folder]:
        row = await self._fetch_one(
            select(folders).where(
                folders.c.account_id == account_id, folders.c.path == path
            )
        )
        return row_to_folder(row) if row else None

    async def list_for_account(self, account_id: str) -> List[Folder]:
        rows = await self._fetch_all(
            select(folders)
            .where(folders.c.account_id == account_id)
            .order_by(folders.c.path)
        )
        return [row_to_folder(row) for row in rows]
