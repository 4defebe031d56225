"""IMAP constants and configuration values."""

from mailsync.core.models import FolderType


class IMAPResponse:
    """Standard IMAP response codes."""

    OK = "OK"
    NO = "NO"
    BAD = "BAD"


class IMAPFlags:
    """Standard IMAP flags."""

    SEEN = "\\Seen"  # Read/unread status
    FLAGGED = "\\Flagged"  # Starred/flagged
    DELETED = "\\Deleted"  # Marked for deletion


class Capabilities:
    IDLE = "IDLE"
    MOVE = "MOVE"


class FetchItems:
    """FETCH item lists used by the engine."""

    # BODY.PEEK keeps \Seen untouched on the server
    NEW_MESSAGE = "(UID FLAGS ENVELOPE BODYSTRUCTURE BODY.PEEK[1])"

    @staticmethod
    def part_mime(part: str) -> str:
        return f"(BODY.PEEK[{part}.MIME])"

    @staticmethod
    def part_range(part: str, offset: int, length: int) -> str:
        return f"(BODY.PEEK[{part}]<{offset}.{length}>)"


SNIPPET_LENGTH = 200
NO_SUBJECT = "(no subject)"

# RFC 6154 special-use attributes (plus the non-standard \Inbox some servers send)
SPECIAL_USE_TYPES = {
    "\\inbox": FolderType.INBOX,
    "\\sent": FolderType.SENT,
    "\\drafts": FolderType.DRAFTS,
    "\\trash": FolderType.TRASH,
    "\\junk": FolderType.JUNK,
    "\\archive": FolderType.ARCHIVE,
    "\\flagged": FolderType.FLAGGED,
    "\\all": FolderType.OTHER,
    "\\important": FolderType.OTHER,
}

# Pushed by aioimaplib when IDLE ends without a server notification
STOP_WAIT_SERVER_PUSH = [b"stop_wait_server_push"]


class Timeouts:
    """Timeout values for IMAP operations (in seconds)."""

    IDLE_DONE = 5.0  # waiting for the tagged reply after DONE
    IDLE_STOP = 5.0  # waiting for a superseded IDLE loop to exit
