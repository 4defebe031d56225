"""Message repository with SQLAlchemy Core queries."""

from typing import List, Optional

from sqlalchemy import func, select
from sqlalchemy.dialects.sqlite import insert
from sqlalchemy.exc import SQLAlchemyError

from mailsync.core.database.models import attachments, messages
from mailsync.core.database.transaction import TransactionManager
from mailsync.core.database.utils import message_to_row, row_to_attachment, row_to_message
from mailsync.core.models import AttachmentMeta, Message, attachment_id_for
from mailsync.utils.errors import DatabaseTransactionError
from mailsync.utils.logging import get_logger

from .base import Repository

logger = get_logger(__name__)


class MessageRepository(Repository):
    """Repository for ingested messages and their attachment metadata."""

    async def insert_if_absent(
        self, message: Message, attachment_list: Optional[List[AttachmentMeta]] = None
    ) -> bool:
        """Insert a message together with its attachment rows.

        The message row, its ``has_attachments`` flag and every attachment
        row are written in one transaction, so a reader never sees a message
        whose attachments are missing.

        Args:
            message: Message to insert
            attachment_list: Attachment metadata (defaults to ``message.attachments``)

        Returns:
            True if the message was new, False if a row with its id existed
        """
        attachment_list = (
            attachment_list if attachment_list is not None else message.attachments
        )
        values = message_to_row(message)
        values["has_attachments"] = bool(attachment_list) or message.has_attachments

        engine = await self._engine()
        try:
            async with TransactionManager(engine) as tx:
                inserted = await self._insert_rows(tx, values, attachment_list)
        except SQLAlchemyError as e:
            raise DatabaseTransactionError(
                f"Failed to insert message {message.id}",
                details={"error": str(e)},
            ) from e

        if inserted:
            logger.debug(
                f"Inserted message {message.id} ({len(attachment_list)} attachments)"
            )
        return inserted

    async def _insert_rows(
        self, tx: TransactionManager, values, attachment_list: List[AttachmentMeta]
    ) -> bool:
        result = await tx.connection.execute(
            insert(messages).values(**values).on_conflict_do_nothing()
        )
        if result.rowcount != 1:
            return False

        for meta in attachment_list:
            await tx.connection.execute(
                insert(attachments)
                .values(
                    id=attachment_id_for(values["id"], meta.part_number),
                    email_id=values["id"],
                    filename=meta.filename,
                    mime_type=meta.mime_type,
                    size=meta.size,
                    part_number=meta.part_number,
                    content_id=meta.content_id,
                )
                .on_conflict_do_nothing()
            )
        return True

    async def get(self, message_id: str) -> Optional[Message]:
        row = await self._fetch_one(select(messages).where(messages.c.id == message_id))
        if row is None:
            return None
        message = row_to_message(row)
        message.attachments = await self.list_attachments(message_id)
        return message

    async def list_attachments(self, message_id: str) -> List[AttachmentMeta]:
        rows = await self._fetch_all(
            select(attachments)
            .where(attachments.c.email_id == message_id)
            .order_by(attachments.c.part_number)
        )
        return [row_to_attachment(row) for row in rows]

    async def list_for_folder(
        self, folder_id: str, limit: int = 100, offset: int = 0
    ) -> List[Message]:
        rows = await self._fetch_all(
            select(messages)
            .where(messages.c.folder_id == folder_id)
            .order_by(messages.c.date.desc())
            .limit(limit)
            .offset(offset)
        )
        return [row_to_message(row) for row in rows]

    async def count_for_folder(self, folder_id: str) -> int:
        row = await self._fetch_one(
            select(func.count()).select_from(messages).where(
                messages.c.folder_id == folder_id
            )
        )
        return int(row[0]) if row else 0
