"""Persistent engine settings: pydantic models backed by a JSON file."""

import json
from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel, Field, ValidationError, field_validator

from .errors import InvalidConfigError, MailSyncError
from .logging import get_logger
from .paths import CONFIG_PATH, DATABASE_PATH

logger = get_logger(__name__)


class SyncConfig(BaseModel):
    """Pydantic model for connection, IDLE and sync tuning."""

    reconnect_base_delay: float = 1.0  # in seconds
    reconnect_max_delay: float = 30.0  # in seconds
    max_reconnect_attempts: int = 5
    test_connection_timeout: float = 10.0  # in seconds
    connect_timeout: float = 30.0  # in seconds
    logout_timeout: float = 5.0  # in seconds
    command_timeout: float = 60.0  # in seconds
    idle_timeout: float = 29 * 60  # RFC 2177 recommends re-issuing IDLE before 30 min
    poll_interval: float = 60.0  # NOOP polling when the server lacks IDLE
    idle_mailbox: str = "INBOX"
    idle_on_connect: bool = True
    fetch_batch_size: int = 50
    max_attachment_bytes: int = 25 * 1024 * 1024
    attachment_chunk_size: int = 1024 * 1024
    implicit_tls_ports: List[int] = Field(default_factory=lambda: [993])

    @field_validator(
        "reconnect_base_delay",
        "reconnect_max_delay",
        "test_connection_timeout",
        "connect_timeout",
        "idle_timeout",
        "poll_interval",
    )
    @classmethod
    def _positive(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("must be > 0")
        return value

    @field_validator("fetch_batch_size", "max_attachment_bytes", "attachment_chunk_size")
    @classmethod
    def _positive_int(cls, value: int) -> int:
        if value < 1:
            raise ValueError("must be >= 1")
        return value


class LoggingConfig(BaseModel):
    """Console level and whether JSON log files are written."""

    log_level: str = "INFO"
    log_to_files: bool = True


class StoreConfig(BaseModel):
    """Pydantic model for the local mail store."""

    database_path: str = str(DATABASE_PATH)


class AppConfig(BaseModel):
    """Root of ``config.json``."""

    version: str = "0.1.0"
    sync: SyncConfig = Field(default_factory=SyncConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    database: StoreConfig = Field(default_factory=StoreConfig)


class ConfigManager:
    """Process-wide access to ``config.json``.

    The first instantiation reads (or creates) the file; later calls return
    the same instance regardless of arguments until ``reset()``.
    """

    _instance = None
    _initialized = False

    def __new__(cls, *args, **kwargs):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self, config_path: Optional[Path] = None):
        if ConfigManager._initialized:
            return
        self.path = Path(config_path) if config_path else CONFIG_PATH
        self.config = self._read() if self.path.exists() else self._write_defaults()
        ConfigManager._initialized = True

    @classmethod
    def reset(cls) -> None:
        """Forget the singleton (mainly for testing)."""
        cls._instance = None
        cls._initialized = False

    def _write_defaults(self) -> AppConfig:
        logger.info(f"Writing default configuration to {self.path}")
        config = AppConfig()
        self._save_config(config)
        return config

    def _read(self) -> AppConfig:
        """Parse and validate the config file.

        Raises:
            InvalidConfigError: If the file is unreadable, not JSON, or does
                not match the ``AppConfig`` schema
        """
        try:
            raw = self.path.read_text(encoding="utf-8")
            config = AppConfig.model_validate(json.loads(raw))
        except json.JSONDecodeError as e:
            raise InvalidConfigError(
                f"{self.path} is not valid JSON: {e}", details={"path": str(self.path)}
            ) from e
        except ValidationError as e:
            raise InvalidConfigError(
                f"{self.path} does not match the settings schema: {e}",
                details={"path": str(self.path)},
            ) from e
        except OSError as e:
            raise InvalidConfigError(f"Cannot read {self.path}: {e}") from e

        logger.debug(f"Configuration loaded from {self.path}")
        return config

    def _save_config(self, config: Optional[AppConfig] = None) -> None:
        config = config or self.config
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(
                json.dumps(config.model_dump(), indent=2), encoding="utf-8"
            )
        except OSError as e:
            raise MailSyncError(f"Failed to save configuration: {e}") from e

    def save(self) -> None:
        """Persist the in-memory configuration."""
        self._save_config()
