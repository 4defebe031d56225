"""
Tests for the error hierarchy and helpers
"""
import pytest

from mailsync.utils.errors import (
    AttachmentTooLargeError,
    AuthenticationFailedError,
    ConfigurationError,
    ConnectivityError,
    CredentialDecryptionError,
    ErrorCategory,
    ErrorHandler,
    MailSyncError,
    MissingCredentialsError,
    ResourceLimitError,
    UnknownAccountError,
    format_error_message,
    sanitize_error_message,
)


class TestErrorHierarchy:
    """Tests for exception classes"""

    @pytest.mark.parametrize(
        "error_class, base",
        [
            (UnknownAccountError, ConfigurationError),
            (MissingCredentialsError, ConfigurationError),
            (CredentialDecryptionError, ConfigurationError),
            (AuthenticationFailedError, ConnectivityError),
            (AttachmentTooLargeError, ResourceLimitError),
        ],
    )
    def test_subclasses(self, error_class, base):
        assert issubclass(error_class, base)
        assert issubclass(error_class, MailSyncError)

    def test_default_message(self):
        error = UnknownAccountError()
        assert error.message == "Account not found"
        assert str(error) == "Account not found"

    def test_to_dict(self):
        error = AuthenticationFailedError("bad login", details={"host": "imap.example.com"})
        assert error.to_dict() == {
            "error_type": "AuthenticationFailedError",
            "category": ErrorCategory.AUTHENTICATION.value,
            "message": "bad login",
            "details": {"host": "imap.example.com"},
        }


class TestErrorHandler:
    """Tests for ErrorHandler.handle"""

    def test_known_error(self):
        result = ErrorHandler.handle(AttachmentTooLargeError(), "download", log_traceback=False)
        assert result["error_type"] == "AttachmentTooLargeError"
        assert result["category"] == "resource"

    def test_unknown_error(self):
        result = ErrorHandler.handle(RuntimeError("boom"), "sync", log_traceback=False)
        assert result["error_type"] == "UnknownError"
        assert result["message"] == "boom"
        assert result["details"] == {"context": "sync"}


class TestSanitizeErrorMessage:
    """Tests for sanitize_error_message"""

    def test_strips_html_characters(self):
        assert sanitize_error_message("<b>\"Tom's\" & co</b>") == "bToms  co/b"

    def test_line_breaks_become_spaces(self):
        assert sanitize_error_message("one\r\ntwo\0three") == "one  two three"

    def test_control_characters_dropped(self):
        assert sanitize_error_message("a\x07b\x1bc\x7f") == "abc"

    def test_truncated(self):
        assert len(sanitize_error_message("x" * 2000)) == 500
        assert sanitize_error_message("abcdef", limit=3) == "abc"

    def test_empty(self):
        assert sanitize_error_message("") == ""
        assert sanitize_error_message(None) == ""

    def test_format_error_message(self):
        assert format_error_message(ConnectivityError("<down>")) == "down"
        assert "unexpected" in format_error_message(ValueError("secret detail"))
