"""Mail protocol handling.

The IMAP engine keeps one session per account and synchronises new
messages into the local store:

    >>> from mailsync.core.email.imap import ImapEngine
    >>>
    >>> async with ImapEngine() as engine:
    ...     await engine.connect(account_id)
    ...     folders = await engine.list_and_sync_folders(account_id)
    ...     count = await engine.sync_new_emails(account_id, "INBOX")
"""
