"""Stable constants shared across the store layer."""

from __future__ import annotations

from pathlib import PurePosixPath
from typing import Final

# Schema versions for persisted contracts.
CONFIG_SCHEMA_VERSION: Final[int] = 1
STORE_SCHEMA_VERSION: Final[int] = 1

# Default runtime paths (relative to the config file directory unless overridden).
STATE_DIR: Final[PurePosixPath] = PurePosixPath("state")
DEFAULT_DB_FILENAME: Final[str] = "speccheck.db"
DEFAULT_DB_PATH: Final[PurePosixPath] = STATE_DIR / DEFAULT_DB_FILENAME
LOG_DIR: Final[PurePosixPath] = PurePosixPath("logs")

# Cache lifetimes, in seconds.
COMPONENT_CACHE_TTL_SECONDS: Final[int] = 7 * 24 * 60 * 60
DATASHEET_CACHE_TTL_SECONDS: Final[int] = 30 * 24 * 60 * 60

# Scan history retention ceiling (rows).
SCAN_HISTORY_RETENTION_LIMIT: Final[int] = 100

# Default page sizes for list/search queries.
DEFAULT_SEARCH_LIMIT: Final[int] = 20
DEFAULT_HISTORY_PAGE_SIZE: Final[int] = 50
MAX_PAGE_SIZE: Final[int] = 1_000

__all__ = [
    "COMPONENT_CACHE_TTL_SECONDS",
    "CONFIG_SCHEMA_VERSION",
    "DATASHEET_CACHE_TTL_SECONDS",
    "DEFAULT_DB_FILENAME",
    "DEFAULT_DB_PATH",
    "DEFAULT_HISTORY_PAGE_SIZE",
    "DEFAULT_SEARCH_LIMIT",
    "LOG_DIR",
    "MAX_PAGE_SIZE",
    "SCAN_HISTORY_RETENTION_LIMIT",
    "STATE_DIR",
    "STORE_SCHEMA_VERSION",
]
