"""SQLAlchemy table definitions for the local mail store."""

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    ForeignKey,
    Index,
    Integer,
    PrimaryKeyConstraint,
    String,
    Table,
    Text,
    UniqueConstraint,
)

from mailsync.core.database.base import metadata

accounts = Table(
    "accounts",
    metadata,
    Column("id", String(255), primary_key=True),
    Column("email", String(500), nullable=False, unique=True),
    Column("provider", String(50), nullable=False, default="custom", server_default="custom"),
    Column("password_encrypted", Text, nullable=True),
    Column("imap_host", String(255), nullable=True),
    Column("imap_port", Integer, nullable=True),
    Column("created_at", String(32), nullable=False),  # ISO8601 UTC
)

folders = Table(
    "folders",
    metadata,
    Column("id", String(1024), primary_key=True),
    Column(
        "account_id",
        String(255),
        ForeignKey("accounts.id", ondelete="CASCADE"),
        nullable=False,
    ),
    Column("name", String(500), nullable=False),
    Column("path", String(1000), nullable=False),
    Column("type", String(20), nullable=False, default="other", server_default="other"),
    UniqueConstraint("account_id", "path", name="uq_folders_account_path"),
    CheckConstraint(
        "type IN ('inbox', 'sent', 'drafts', 'trash', 'junk', 'archive', 'flagged', 'other')",
        name="type_values",
    ),
)

messages = Table(
    "messages",
    metadata,
    Column("id", String(300), primary_key=True),
    Column(
        "account_id",
        String(255),
        ForeignKey("accounts.id", ondelete="CASCADE"),
        nullable=False,
    ),
    Column("folder_id", String(1024), ForeignKey("folders.id"), nullable=False),
    Column("uid", Integer, nullable=False),
    Column("message_id", String(1000), nullable=True),  # Message-ID header, used for threading
    Column("subject", String(1000), nullable=False, default="", server_default=""),
    Column("from_name", String(500), nullable=False, default="", server_default=""),
    Column("from_email", String(500), nullable=False, default="", server_default=""),
    Column("to_email", Text, nullable=False, default="", server_default=""),
    Column("date", String(32), nullable=False),  # ISO8601 UTC
    Column("snippet", String(200), nullable=False, default="", server_default=""),
    Column("body_text", Text, nullable=True),
    Column("has_attachments", Boolean, nullable=False, default=False, server_default="0"),
    Column("is_read", Boolean, nullable=False, default=False, server_default="0"),
    Column("is_flagged", Boolean, nullable=False, default=False, server_default="0"),
    Index("ix_messages_folder_date", "folder_id", "date"),
)

attachments = Table(
    "attachments",
    metadata,
    Column("id", String(400), primary_key=True),
    Column(
        "email_id",
        String(300),
        ForeignKey("messages.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    ),
    Column("filename", String(255), nullable=False),
    Column("mime_type", String(255), nullable=False),
    Column("size", Integer, nullable=False, default=0, server_default="0"),
    Column("part_number", String(64), nullable=False),
    Column("content_id", String(500), nullable=True),
)

sync_cursors = Table(
    "sync_cursors",
    metadata,
    Column("account_id", String(255), ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False),
    Column("mailbox", String(1000), nullable=False),
    Column("last_uid", Integer, nullable=False, default=0, server_default="0"),
    Column("updated_at", String(32), nullable=False),
    PrimaryKeyConstraint("account_id", "mailbox"),
)
