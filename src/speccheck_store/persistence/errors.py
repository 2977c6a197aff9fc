"""Error hierarchy for the local store."""

from __future__ import annotations


class StoreDBError(RuntimeError):
    """Base class for persistence DB errors."""


class StoreDBBusyError(StoreDBError):
    """Raised when bounded busy retries are exhausted."""


class StoreDBMigrationError(StoreDBError):
    """Raised when migrations cannot be applied safely."""


class StoreDBCorruptionError(StoreDBError):
    """Raised when SQLite reports possible corruption."""


class StoreDBTransactionError(StoreDBError):
    """Raised when a transaction is opened while the calling thread already holds one."""


class StoreDBAsyncPolicyError(StoreDBError):
    """Raised when sync DB I/O is attempted from an active async event loop."""


__all__ = [
    "StoreDBAsyncPolicyError",
    "StoreDBBusyError",
    "StoreDBCorruptionError",
    "StoreDBError",
    "StoreDBMigrationError",
    "StoreDBTransactionError",
]
