from .connection import (
    ConnectionManager,
    ConnectionState,
    ConnectionTestParams,
    ConnectionTestResult,
)
from .engine import ImapEngine
from .idle import IdleWatcher
from .sync import IncrementalSyncer

__all__ = [
    "ImapEngine",
    "ConnectionManager",
    "ConnectionState",
    "ConnectionTestParams",
    "ConnectionTestResult",
    "IdleWatcher",
    "IncrementalSyncer",
]
