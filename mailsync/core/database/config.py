"""Store tuning read from ``DB_*`` environment variables."""

import os
from dataclasses import dataclass, fields
from typing import Optional


def _env(name: str, default, cast):
    raw = os.getenv(f"DB_{name.upper()}")
    if raw is None:
        return default
    if cast is bool:
        return raw.strip().lower() in ("1", "true", "yes", "on")
    return cast(raw)


@dataclass(frozen=True)
class DatabaseConfig:
    """Pool, locking and diagnostics settings for the SQLite store.

    Every field can be overridden with ``DB_<FIELD>``, e.g. ``DB_POOL_SIZE=2``.
    """

    pool_size: int = 5
    max_overflow: int = 10
    pool_timeout: float = 30.0  # seconds to wait for a pooled connection
    busy_timeout: float = 30.0  # sqlite3 lock wait, seconds
    transaction_timeout: float = 60.0
    slow_transaction_threshold: float = 1.0
    echo: bool = False

    def __post_init__(self):
        for name in ("pool_size", "pool_timeout", "busy_timeout", "transaction_timeout"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be > 0")
        if self.max_overflow < 0:
            raise ValueError("max_overflow must be >= 0")

    @classmethod
    def from_env(cls) -> "DatabaseConfig":
        defaults = cls()
        return cls(
            **{
                f.name: _env(f.name, getattr(defaults, f.name), type(getattr(defaults, f.name)))
                for f in fields(cls)
            }
        )


_config: Optional[DatabaseConfig] = None


def get_config() -> DatabaseConfig:
    """Process-wide settings, read from the environment on first use."""
    global _config
    if _config is None:
        _config = DatabaseConfig.from_env()
    return _config


def reset_config() -> None:
    """Forget cached settings so the environment is read again."""
    global _config
    _config = None
