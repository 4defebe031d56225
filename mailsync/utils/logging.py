"""Logging for the mailsync engine.

Everything logs under the ``mailsync`` logger hierarchy. ``init_logging``
installs three handlers on it:

- a rich console handler (WARNING and above),
- ``app.log``, rotating JSON lines with every record,
- ``events.log``, rotating JSON lines with domain events only
  (records carrying ``event_type``, see ``log_event``).

All handlers pass through ``SensitiveDataFilter`` so passwords, tokens and
addresses never reach a terminal or a file in clear text.
"""

import json
import logging
import re
import time
from datetime import datetime, timezone
from functools import wraps
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Dict, Optional

from rich.logging import RichHandler

from .paths import LOGS_DIR

ROOT_LOGGER = "mailsync"

# Attributes every LogRecord carries; anything else came in through ``extra``.
_RESERVED_ATTRS = set(
    logging.LogRecord("", 0, "", 0, "", (), None).__dict__.keys()
) | {"message", "asctime"}


## JSON Formatter


class JSONFormatter(logging.Formatter):
    """One JSON object per line; ``extra`` fields go under ``context``."""

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "function": record.funcName,
            "line": record.lineno,
            "message": record.getMessage(),
        }

        context = {
            key: value
            for key, value in record.__dict__.items()
            if key not in _RESERVED_ATTRS and not key.startswith("_")
        }
        if context:
            entry["context"] = context
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=str)


## Log Masking


class SensitiveDataMasker:
    """Masks credentials and e-mail addresses in strings and dicts."""

    REDACTED = "[REDACTED]"

    # key=value / key: value pairs whose value must not be logged
    _SECRET_VALUE = re.compile(
        r'((?:password|passwd|token|secret)["\']?\s*[:=]\s*["\']?)([^"\'}\s,]+)',
        re.IGNORECASE,
    )
    _EMAIL = re.compile(r"([a-zA-Z0-9._%+-]+)@([a-zA-Z0-9.-]+\.[a-zA-Z]{2,})")

    SENSITIVE_FIELDS = frozenset(
        {
            "password",
            "passwd",
            "pwd",
            "secret",
            "token",
            "credential",
            "password_encrypted",
            "master_key",
        }
    )

    def __init__(self, strategy: str = "full"):
        if strategy not in ("full", "partial"):
            raise ValueError(f"Unknown masking strategy: {strategy}")
        self.strategy = strategy

    def mask_func(self, value: str) -> str:
        if self.strategy == "partial" and len(value) > 6:
            return value[:3] + "*" * (len(value) - 6) + value[-3:]
        return self.REDACTED

    def mask_string(self, text: str) -> str:
        if not text or not isinstance(text, str):
            return text
        text = self._SECRET_VALUE.sub(lambda m: m.group(1) + self.mask_func(m.group(2)), text)
        return self._EMAIL.sub(lambda m: self._mask_email(m.group(1), m.group(2)), text)

    def mask_dict(self, data: Dict[str, Any]) -> Dict[str, Any]:
        masked = {}
        for key, value in data.items():
            if key.lower() in self.SENSITIVE_FIELDS:
                masked[key] = self.mask_func(str(value))
            elif isinstance(value, dict):
                masked[key] = self.mask_dict(value)
            elif isinstance(value, str):
                masked[key] = self.mask_string(value)
            else:
                masked[key] = value
        return masked

    @staticmethod
    def _mask_email(user: str, domain: str) -> str:
        masked_user = user[0] + "***" if len(user) > 1 else "***"
        return f"{masked_user}@{domain[0]}***"


class SensitiveDataFilter(logging.Filter):
    """Rewrites the message and ``extra`` fields of each record in place."""

    def __init__(self, strategy: str = "full"):
        super().__init__()
        self.masker = SensitiveDataMasker(strategy)

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.msg, str):
            record.msg = self.masker.mask_string(record.msg)

        for key, value in list(record.__dict__.items()):
            if key in _RESERVED_ATTRS:
                continue
            if key.lower() in self.masker.SENSITIVE_FIELDS:
                setattr(record, key, self.masker.mask_func(str(value)))
            elif isinstance(value, str):
                setattr(record, key, self.masker.mask_string(value))
            elif isinstance(value, dict):
                setattr(record, key, self.masker.mask_dict(value))
        return True


def _is_event(record: logging.LogRecord) -> bool:
    return hasattr(record, "event_type")


## Log Manager


class LogManager:
    """Installs and re-levels the handlers of the ``mailsync`` logger."""

    APP_LOG_BYTES = 5 * 1024 * 1024
    EVENT_LOG_BYTES = 2 * 1024 * 1024

    def __init__(
        self,
        log_level: str = "INFO",
        log_to_files: bool = True,
        log_dir: Optional[Path] = None,
    ):
        self.log_level = self._parse_level(log_level)
        self.log_to_files = log_to_files
        self.log_dir = log_dir or LOGS_DIR
        self.root_logger = logging.getLogger(ROOT_LOGGER)
        self.root_logger.setLevel(logging.DEBUG)
        self._console: Optional[logging.Handler] = None
        self._install_handlers()

    @staticmethod
    def _parse_level(level: str) -> int:
        value = logging.getLevelName(level.upper())
        if not isinstance(value, int):
            raise ValueError(f"Invalid logging level: {level}")
        return value

    def _file_handler(self, filename: str, max_bytes: int, backups: int) -> RotatingFileHandler:
        handler = RotatingFileHandler(
            self.log_dir / filename, maxBytes=max_bytes, backupCount=backups, encoding="utf-8"
        )
        handler.setFormatter(JSONFormatter())
        return handler

    def _install_handlers(self) -> None:
        from .errors import MailSyncError

        masking = SensitiveDataFilter()
        self.root_logger.handlers.clear()

        console = RichHandler(show_time=True, show_path=False, markup=False, rich_tracebacks=True)
        console.setFormatter(logging.Formatter("%(message)s", datefmt="[%X]"))
        console.setLevel(max(self.log_level, logging.WARNING))
        console.addFilter(masking)
        self.root_logger.addHandler(console)
        self._console = console

        if not self.log_to_files:
            return

        try:
            self.log_dir.mkdir(parents=True, exist_ok=True)
            app = self._file_handler("app.log", self.APP_LOG_BYTES, 5)
            events = self._file_handler("events.log", self.EVENT_LOG_BYTES, 3)
        except OSError as e:
            raise MailSyncError(
                f"Failed to open log files in {self.log_dir}: {e}"
            ) from e

        app.setLevel(logging.DEBUG)
        app.addFilter(masking)
        events.setLevel(logging.INFO)
        events.addFilter(_is_event)
        events.addFilter(masking)
        self.root_logger.addHandler(app)
        self.root_logger.addHandler(events)

    def set_level(self, level: str) -> None:
        """Change the console threshold; the files keep logging everything."""
        self.log_level = self._parse_level(level)
        if self._console is not None:
            self._console.setLevel(max(self.log_level, logging.WARNING))


## Decorators


def async_log_call(func):
    """Trace entry, exit and duration of a coroutine function at DEBUG."""

    @wraps(func)
    async def wrapper(*args, **kwargs):
        logger = logging.getLogger(ROOT_LOGGER)
        name = f"{func.__module__}.{func.__qualname__}"
        logger.debug(f"-> {name}")
        started = time.monotonic()
        try:
            result = await func(*args, **kwargs)
        except Exception as e:
            logger.debug(f"<- {name} raised after {time.monotonic() - started:.3f}s: {e}")
            raise
        logger.debug(f"<- {name} ({time.monotonic() - started:.3f}s)")
        return result

    return wrapper


## Module-level helpers

_log_manager: Optional[LogManager] = None


def init_logging(log_level: str = "INFO", log_to_files: bool = True) -> LogManager:
    """Install the handlers once; later calls only change the level."""
    global _log_manager
    if _log_manager is None:
        _log_manager = LogManager(log_level, log_to_files=log_to_files)
    else:
        _log_manager.set_level(log_level)
    return _log_manager


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """Logger under the ``mailsync`` hierarchy.

    Until ``init_logging`` runs, records propagate to whatever the host
    application configured.
    """
    if name and not name.startswith(ROOT_LOGGER):
        name = f"{ROOT_LOGGER}.{name}"
    return logging.getLogger(name or ROOT_LOGGER)


def log_event(event_type: str, message: str, level: int = logging.INFO, **extra) -> None:
    """Emit a domain event (``new_mail``, ``connected``, ``reconnect_scheduled``...)."""
    logging.getLogger(f"{ROOT_LOGGER}.events").log(
        level, message, extra={"event_type": event_type, **extra}
    )
