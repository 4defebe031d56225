"""Centralized path definitions for the mailsync engine.

This module provides a single source of truth for all application paths.
The base directory can be relocated with the ``MAILSYNC_HOME`` environment
variable (used by the test suite and by portable installs).
"""

import os
from pathlib import Path

# Base application directory
MAILSYNC_DIR = Path(os.getenv("MAILSYNC_HOME", str(Path.home() / ".mailsync")))

# Subdirectories
DATA_DIR = MAILSYNC_DIR / "data"
LOGS_DIR = MAILSYNC_DIR / "logs"
SECRETS_DIR = MAILSYNC_DIR / "secrets"

# Specific files
CONFIG_PATH = MAILSYNC_DIR / "config.json"
DATABASE_PATH = DATA_DIR / "mailsync.db"
MASTER_KEY_PATH = SECRETS_DIR / ".master.key"
