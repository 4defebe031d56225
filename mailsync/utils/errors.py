"""Error taxonomy of the engine and helpers to log and display errors."""

import re
from enum import Enum
from typing import Any, Dict

from mailsync.utils.logging import get_logger

logger = get_logger(__name__)


## Error Categories


class ErrorCategory(Enum):
    """Broad class of a failure, used by callers to decide what to report."""

    CONFIGURATION = "configuration"
    NETWORK = "network"
    AUTHENTICATION = "authentication"
    PROTOCOL = "protocol"
    RESOURCE = "resource"
    DATABASE = "database"
    UNKNOWN = "unknown"


## Custom Exceptions


class MailSyncError(Exception):
    """Base exception for all mailsync errors."""

    category = ErrorCategory.UNKNOWN
    user_message = "An error occurred"

    def __init__(
        self, message: str | None = None, details: Dict[str, Any] | None = None
    ):
        self.message = message or self.user_message
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Serialisable description for logs and API results."""
        return {
            "error_type": self.__class__.__name__,
            "category": self.category.value,
            "message": self.message,
            "details": self.details,
        }


## Configuration Errors
# Raised to the caller: they indicate misuse, not a transient fault.


class ConfigurationError(MailSyncError):
    """Base exception for configuration-related errors."""

    category = ErrorCategory.CONFIGURATION
    user_message = "A configuration error occurred"


class UnknownAccountError(ConfigurationError):
    """Exception when an account id has no stored account row."""

    user_message = "Account not found"


class MissingCredentialsError(ConfigurationError):
    """Exception when an account has no stored credential."""

    user_message = "No password stored for account"


class CredentialDecryptionError(ConfigurationError):
    """Exception when a stored credential cannot be decrypted."""

    user_message = "Stored credential could not be decrypted"


class InvalidConfigError(ConfigurationError):
    """Exception for invalid configuration settings."""

    user_message = "Invalid configuration settings"


## Connectivity Errors
# Caught at the engine boundary and converted to False / None results.


class ConnectivityError(MailSyncError):
    """Base exception for network-related errors."""

    category = ErrorCategory.NETWORK
    user_message = "Failed to connect to email server"


class ConnectionTimeoutError(ConnectivityError):
    """Exception for network timeout errors."""

    user_message = "The connection timed out"


class AuthenticationFailedError(ConnectivityError):
    """Exception for rejected IMAP logins."""

    category = ErrorCategory.AUTHENTICATION
    user_message = "Invalid email or password"


class NotConnectedError(ConnectivityError):
    """Exception when an operation needs a live session that does not exist."""

    user_message = "Account not connected"


## Protocol Errors


class ProtocolError(MailSyncError):
    """Exception for unexpected or malformed IMAP responses."""

    category = ErrorCategory.PROTOCOL
    user_message = "The email server sent an unexpected response"


## Resource Limit Errors


class ResourceLimitError(MailSyncError):
    """Base exception for operations exceeding a hard limit."""

    category = ErrorCategory.RESOURCE
    user_message = "A resource limit was exceeded"


class AttachmentTooLargeError(ResourceLimitError):
    """Exception when an attachment download exceeds the size cap."""

    user_message = "Attachment exceeds the download size limit"


## Database Errors


class DatabaseError(MailSyncError):
    """Base exception for database-related errors."""

    category = ErrorCategory.DATABASE
    user_message = "A database error occurred"


class DatabaseConnectionError(DatabaseError):
    """Exception for database connection failures."""

    user_message = "Failed to connect to the database"


class DatabaseTransactionError(DatabaseError):
    """Exception for database transaction failures."""

    user_message = "A database transaction error occurred"


class KeyStoreError(MailSyncError):
    """Exception for master key storage failures."""

    category = ErrorCategory.AUTHENTICATION
    user_message = "A key store error occurred"


## Error Handler


class ErrorHandler:
    """Logs an exception once and turns it into a serialisable dict."""

    @staticmethod
    def handle(
        error: Exception, context: str = "", log_traceback: bool = True
    ) -> Dict[str, Any]:
        """Log ``error`` under ``context`` and describe it.

        Unknown exception types are reported with the ``unknown`` category.
        """
        if isinstance(error, MailSyncError):
            summary = error.to_dict()
        else:
            summary = {
                "error_type": "UnknownError",
                "category": ErrorCategory.UNKNOWN.value,
                "message": str(error),
                "details": {"context": context},
            }

        logger.error(
            f"{context}: {summary['message']}",
            exc_info=error if log_traceback else None,
            extra={"details": summary["details"]},
        )
        return summary


## Utility Functions

MAX_ERROR_MESSAGE_LENGTH = 500

_HTML_SIGNIFICANT = re.compile(r"[<>\"'&]")
_LINE_BREAKS = re.compile(r"[\r\n\0]")
_OTHER_CONTROL = re.compile(r"[\x01-\x08\x0b\x0c\x0e-\x1f\x7f]")


def sanitize_error_message(raw: str, limit: int = MAX_ERROR_MESSAGE_LENGTH) -> str:
    """Make a server-supplied error text safe to show in a UI.

    HTML-significant characters are dropped, CR/LF/NUL become spaces, the
    remaining control characters are dropped and the result is truncated.
    """
    message = _HTML_SIGNIFICANT.sub("", raw or "")
    message = _LINE_BREAKS.sub(" ", message)
    message = _OTHER_CONTROL.sub("", message)
    return message[:limit]


def format_error_message(error: Exception) -> str:
    """Format an error message for display."""
    if isinstance(error, MailSyncError):
        return sanitize_error_message(error.message)
    else:
        return "An unexpected error occurred - check logs for details."
