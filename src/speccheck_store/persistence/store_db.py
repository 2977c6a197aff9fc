"""
speccheck-store — connection manager

File: src/speccheck_store/persistence/store_db.py

Purpose
- Own the single SQLite handle for one database file and serialize every
  statement issued against it.

What should be included in this file
- Lazy open + migrate behind a one-shot lock barrier.
- Atomic transactions that hold the handle for their full duration.
- Busy retry with bounded exponential backoff and actionable error mapping.
- Maintenance helpers (size, vacuum, integrity check, backup, reset).

Functional requirements
- No caller may observe an unmigrated store.
- Two concurrent first accesses must migrate exactly once.
- ``sqlite3.IntegrityError`` propagates unwrapped; other failures map onto
  the ``StoreDBError`` hierarchy.

Non-functional requirements
- Repositories never retry; busy handling lives only here.
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
import threading
import time
from collections.abc import Callable, Iterable, Iterator, Mapping, Sequence
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Final, Literal, TypeAlias, TypeVar

from speccheck_store.constants import STORE_SCHEMA_VERSION
from speccheck_store.persistence.errors import (
    StoreDBAsyncPolicyError,
    StoreDBBusyError,
    StoreDBCorruptionError,
    StoreDBError,
    StoreDBMigrationError,
    StoreDBTransactionError,
)
from speccheck_store.persistence.migrations import (
    SCHEMA_MIGRATIONS,
    Migration,
    MigrationEngine,
    MigrationRecord,
)

logger = logging.getLogger(__name__)

SQLValue = str | int | float | bytes | None
SQLParams = Sequence[SQLValue]
RowValue = str | int | float | bytes | None
T = TypeVar("T")
AsyncBlockingPolicy: TypeAlias = Literal["allow", "strict"]
Clock: TypeAlias = Callable[[], datetime]

MEMORY_PATH: Final[str] = ":memory:"
DEFAULT_BUSY_TIMEOUT_MS: Final[int] = 5_000
DEFAULT_BUSY_RETRY_LIMIT: Final[int] = 4
DEFAULT_BUSY_RETRY_BACKOFF_MS: Final[int] = 25
DEFAULT_ASYNC_BLOCKING_POLICY: Final[AsyncBlockingPolicy] = "allow"
ASYNC_BLOCKING_POLICIES: Final[tuple[AsyncBlockingPolicy, ...]] = ("allow", "strict")

_SQLITE_BUSY_CODES: Final[frozenset[int]] = frozenset(
    code
    for code in (
        getattr(sqlite3, "SQLITE_BUSY", None),
        getattr(sqlite3, "SQLITE_BUSY_RECOVERY", None),
        getattr(sqlite3, "SQLITE_BUSY_SNAPSHOT", None),
        getattr(sqlite3, "SQLITE_LOCKED", None),
        getattr(sqlite3, "SQLITE_LOCKED_SHAREDCACHE", None),
    )
    if isinstance(code, int)
)

_SQLITE_CORRUPTION_CODES: Final[frozenset[int]] = frozenset(
    code
    for code in (
        getattr(sqlite3, "SQLITE_CORRUPT", None),
        getattr(sqlite3, "SQLITE_NOTADB", None),
    )
    if isinstance(code, int)
)

_BUSY_SUBSTRINGS: Final[tuple[str, ...]] = (
    "database is locked",
    "database table is locked",
    "database schema is locked",
)

_CORRUPTION_SUBSTRINGS: Final[tuple[str, ...]] = (
    "database disk image is malformed",
    "malformed database",
    "file is not a database",
)

_SIDECAR_SUFFIXES: Final[tuple[str, ...]] = ("-wal", "-shm", "-journal")


@dataclass(frozen=True, slots=True)
class ExecuteResult:
    rowcount: int
    lastrowid: int | None


class StoreDB:
    """Single-handle SQLite manager with lazy migration and serialized access."""

    def __init__(
        self,
        path: str | Path,
        *,
        busy_timeout_ms: int = DEFAULT_BUSY_TIMEOUT_MS,
        busy_retry_limit: int = DEFAULT_BUSY_RETRY_LIMIT,
        busy_retry_backoff_ms: int = DEFAULT_BUSY_RETRY_BACKOFF_MS,
        clock: Clock | None = None,
        migrations: Mapping[int, Sequence[str]] | Iterable[Migration] | None = None,
        target_version: int = STORE_SCHEMA_VERSION,
        async_blocking_policy: AsyncBlockingPolicy = DEFAULT_ASYNC_BLOCKING_POLICY,
    ) -> None:
        if busy_timeout_ms < 0:
            raise ValueError("busy_timeout_ms must be >= 0")
        if busy_retry_limit < 0:
            raise ValueError("busy_retry_limit must be >= 0")
        if busy_retry_backoff_ms < 0:
            raise ValueError("busy_retry_backoff_ms must be >= 0")
        if async_blocking_policy not in ASYNC_BLOCKING_POLICIES:
            allowed = ", ".join(ASYNC_BLOCKING_POLICIES)
            raise ValueError(
                f"async_blocking_policy must be one of: {allowed}; got {async_blocking_policy!r}"
            )

        self._in_memory = str(path) == MEMORY_PATH
        self._path = Path(MEMORY_PATH) if self._in_memory else Path(path).expanduser()
        self._busy_timeout_ms = busy_timeout_ms
        self._busy_retry_limit = busy_retry_limit
        self._busy_retry_backoff_ms = busy_retry_backoff_ms
        self._async_blocking_policy = async_blocking_policy
        self._clock: Clock = clock if clock is not None else _utc_now
        self._engine = MigrationEngine(
            SCHEMA_MIGRATIONS if migrations is None else migrations,
            target_version=target_version,
        )

        self._init_lock = threading.Lock()
        self._op_lock = threading.RLock()
        self._conn: sqlite3.Connection | None = None
        self._schema_version: int | None = None
        self._tx_owner: int | None = None
        self._open_count = 0

    @property
    def path(self) -> Path:
        return self._path

    @property
    def in_memory(self) -> bool:
        return self._in_memory

    @property
    def async_blocking_policy(self) -> str:
        return self._async_blocking_policy

    @property
    def migration_engine(self) -> MigrationEngine:
        return self._engine

    @property
    def is_open(self) -> bool:
        return self._conn is not None

    @property
    def open_count(self) -> int:
        """Number of times the handle has been opened and migrated."""

        return self._open_count

    def now(self) -> datetime:
        """Current time according to the injected clock."""

        return self._clock()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def migrate(self) -> int:
        """Force initialization and return the schema version it established."""

        self._assert_sync_io_allowed(operation="migrate")
        with self._op_lock:
            self._connection()
            assert self._schema_version is not None
            return self._schema_version

    async def migrate_async(self) -> int:
        return await asyncio.to_thread(self.migrate)

    def schema_version(self) -> int:
        self._assert_sync_io_allowed(operation="schema_version")
        with self._op_lock:
            return self._engine.current_version(self._connection())

    def schema_history(self) -> list[MigrationRecord]:
        self._assert_sync_io_allowed(operation="schema_history")
        with self._op_lock:
            applied = self._engine.applied(self._connection())
        return [applied[version] for version in sorted(applied)]

    def pending_migrations(self) -> tuple[Migration, ...]:
        """Versions ``migrate`` would apply, computed without creating or changing the file.

        An open handle is reused. Otherwise the file, if present, is read through
        a short-lived read-only connection.
        """

        self._assert_sync_io_allowed(operation="pending_migrations")
        with self._op_lock, self._init_lock:
            if self._conn is not None:
                return self._engine.pending(self._conn)
            if self._in_memory or not self._path.exists():
                return tuple(
                    migration
                    for migration in self._engine.migrations
                    if migration.version <= self._engine.target_version
                )
            try:
                conn = sqlite3.connect(
                    f"{self._path.resolve().as_uri()}?mode=ro",
                    uri=True,
                    timeout=self._busy_timeout_ms / 1000.0,
                    isolation_level=None,
                )
            except sqlite3.Error as exc:
                self._raise_actionable_error(exc, operation="open database read-only")
            try:
                return self._engine.pending(conn)
            finally:
                conn.close()

    def close(self) -> None:
        """Close the handle; the next call reopens it lazily."""

        with self._op_lock, self._init_lock:
            if self._tx_owner is not None:
                raise StoreDBTransactionError("cannot close the store while a transaction is open")
            self._close_locked()

    def reset(self) -> None:
        """Close the handle and delete the database file with its sidecar files."""

        with self._op_lock, self._init_lock:
            if self._tx_owner is not None:
                raise StoreDBTransactionError("cannot reset the store while a transaction is open")
            self._close_locked()
            if self._in_memory:
                return
            removed: list[str] = []
            for candidate in (self._path, *self._sidecar_paths()):
                if candidate.exists():
                    candidate.unlink()
                    removed.append(candidate.name)
            logger.info(
                "reset local store",
                extra={"db_path": str(self._path), "removed_files": removed},
            )

    def __enter__(self) -> StoreDB:
        self.migrate()
        return self

    def __exit__(self, exc_type: object, exc: object, tb: object) -> None:
        del exc_type, exc, tb
        self.close()

    # ------------------------------------------------------------------
    # Statements
    # ------------------------------------------------------------------

    @contextmanager
    def transaction(self, *, immediate: bool = True) -> Iterator[sqlite3.Connection]:
        """Run statements atomically; the handle is held for the whole block.

        Opening a second transaction from the thread that already owns one raises
        :class:`StoreDBTransactionError`.
        """

        self._assert_sync_io_allowed(operation="transaction")
        me = threading.get_ident()
        if self._tx_owner == me:
            raise StoreDBTransactionError(
                "nested transactions are not supported; pass the open connection "
                "to the inner operation instead"
            )

        with self._op_lock:
            conn = self._connection()
            begin_sql = "BEGIN IMMEDIATE" if immediate else "BEGIN"
            self._execute_with_retry(conn, begin_sql, (), operation="begin transaction")
            self._tx_owner = me
            try:
                yield conn
                self._execute_with_retry(conn, "COMMIT", (), operation="commit transaction")
            except BaseException:
                if conn.in_transaction:
                    self._execute_with_retry(
                        conn, "ROLLBACK", (), operation="rollback transaction"
                    )
                raise
            finally:
                self._tx_owner = None

    def with_transaction(self, fn: Callable[[sqlite3.Connection], T]) -> T:
        with self.transaction() as conn:
            return fn(conn)

    async def with_transaction_async(self, fn: Callable[[sqlite3.Connection], T]) -> T:
        return await asyncio.to_thread(self.with_transaction, fn)

    def execute(
        self,
        sql: str,
        params: SQLParams = (),
        *,
        conn: sqlite3.Connection | None = None,
    ) -> ExecuteResult:
        """Execute a parameterized statement and report affected rows and last row id."""

        self._assert_sync_io_allowed(operation="execute")
        with self._op_lock:
            target = conn if conn is not None else self._connection()
            cursor = self._execute_with_retry(target, sql, params, operation="execute statement")
            return ExecuteResult(rowcount=cursor.rowcount, lastrowid=cursor.lastrowid)

    def executemany(
        self,
        sql: str,
        params_iter: Iterable[SQLParams],
        *,
        conn: sqlite3.Connection | None = None,
    ) -> int:
        """Execute a statement for each parameter tuple; atomic when run outside a transaction."""

        self._assert_sync_io_allowed(operation="executemany")
        params_list = [tuple(params) for params in params_iter]
        if conn is not None:
            with self._op_lock:
                return self._executemany_with_retry(
                    conn, sql, params_list, operation="execute many"
                )

        with self.transaction() as tx:
            return self._executemany_with_retry(tx, sql, params_list, operation="execute many")

    def query_all(
        self,
        sql: str,
        params: SQLParams = (),
        *,
        conn: sqlite3.Connection | None = None,
    ) -> list[dict[str, RowValue]]:
        """Run a query and return rows as typed dictionaries."""

        self._assert_sync_io_allowed(operation="query_all")
        with self._op_lock:
            target = conn if conn is not None else self._connection()
            cursor = self._execute_with_retry(target, sql, params, operation="query all")
            return [_row_to_dict(row) for row in cursor.fetchall()]

    query_many = query_all

    def query_one(
        self,
        sql: str,
        params: SQLParams = (),
        *,
        conn: sqlite3.Connection | None = None,
    ) -> dict[str, RowValue] | None:
        """Run a query and return the first row as a typed dictionary."""

        self._assert_sync_io_allowed(operation="query_one")
        with self._op_lock:
            target = conn if conn is not None else self._connection()
            cursor = self._execute_with_retry(target, sql, params, operation="query one")
            row = cursor.fetchone()
            return None if row is None else _row_to_dict(row)

    async def execute_async(self, sql: str, params: SQLParams = ()) -> ExecuteResult:
        return await asyncio.to_thread(self.execute, sql, tuple(params))

    async def executemany_async(self, sql: str, params_iter: Iterable[SQLParams]) -> int:
        params_list = [tuple(params) for params in params_iter]
        return await asyncio.to_thread(self.executemany, sql, params_list)

    async def query_all_async(
        self,
        sql: str,
        params: SQLParams = (),
    ) -> list[dict[str, RowValue]]:
        return await asyncio.to_thread(self.query_all, sql, tuple(params))

    query_many_async = query_all_async

    async def query_one_async(
        self,
        sql: str,
        params: SQLParams = (),
    ) -> dict[str, RowValue] | None:
        return await asyncio.to_thread(self.query_one, sql, tuple(params))

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def database_size_bytes(self) -> int:
        row = self.query_one(
            "SELECT page_count * page_size AS size_bytes "
            "FROM pragma_page_count(), pragma_page_size()"
        )
        if row is None:
            return 0
        size = row.get("size_bytes")
        return size if isinstance(size, int) else 0

    def vacuum(self) -> None:
        """Rebuild the database file to reclaim free pages."""

        self._assert_sync_io_allowed(operation="vacuum")
        with self._op_lock:
            if self._tx_owner is not None:
                raise StoreDBTransactionError("VACUUM cannot run inside a transaction")
            conn = self._connection()
            before = self.database_size_bytes()
            self._execute_with_retry(conn, "VACUUM", (), operation="vacuum")
            after = self.database_size_bytes()
        logger.info(
            "vacuumed local store",
            extra={"db_path": str(self._path), "size_before": before, "size_after": after},
        )

    def integrity_check(self, *, max_errors: int = 100) -> tuple[str, ...]:
        """Return integrity-check errors; empty tuple means OK."""

        if max_errors <= 0:
            raise ValueError("max_errors must be > 0")
        rows = self.query_all(f"PRAGMA integrity_check({max_errors})")
        messages = tuple(str(row.get("integrity_check", "")) for row in rows)
        if messages == ("ok",):
            return ()
        return messages

    def backup(self, destination: str | Path) -> Path:
        """Create a consistent snapshot using SQLite backup API."""

        self._assert_sync_io_allowed(operation="backup")
        destination_path = Path(destination).expanduser()
        destination_path.parent.mkdir(parents=True, exist_ok=True)

        with self._op_lock:
            source = self._connection()
            target = sqlite3.connect(
                destination_path,
                timeout=self._busy_timeout_ms / 1000.0,
                isolation_level=None,
            )
            try:
                source.backup(target)
                target.execute("PRAGMA journal_mode=WAL")
            except sqlite3.Error as exc:
                self._raise_actionable_error(exc, operation="backup")
            finally:
                target.close()

        return destination_path

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _connection(self) -> sqlite3.Connection:
        conn = self._conn
        if conn is not None:
            return conn
        with self._init_lock:
            if self._conn is None:
                self._conn = self._open_and_migrate()
            return self._conn

    def _open_and_migrate(self) -> sqlite3.Connection:
        if not self._in_memory:
            self._path.parent.mkdir(parents=True, exist_ok=True)
        try:
            conn = sqlite3.connect(
                MEMORY_PATH if self._in_memory else self._path,
                timeout=self._busy_timeout_ms / 1000.0,
                isolation_level=None,
                check_same_thread=False,
            )
        except sqlite3.Error as exc:
            self._raise_actionable_error(exc, operation="open database")
        conn.row_factory = sqlite3.Row

        try:
            self._configure_connection(conn)
            version = self._engine.apply(conn)
        except BaseException:
            conn.close()
            raise

        self._schema_version = version
        self._open_count += 1
        logger.info(
            "opened local store",
            extra={"db_path": str(self._path), "schema_version": version},
        )
        return conn

    def _configure_connection(self, conn: sqlite3.Connection) -> None:
        try:
            conn.execute("PRAGMA foreign_keys=ON")
            conn.execute(f"PRAGMA busy_timeout={self._busy_timeout_ms}")
            journal_row = conn.execute("PRAGMA journal_mode=WAL").fetchone()
        except sqlite3.Error as exc:
            self._raise_actionable_error(exc, operation="configure connection")
        if journal_row is None:
            raise StoreDBError("failed to configure journal_mode")
        journal_mode = str(journal_row[0]).lower()
        expected = "memory" if self._in_memory else "wal"
        if journal_mode != expected:
            raise StoreDBError(f"journal_mode must be {expected.upper()}, got {journal_mode!r}")

    def _close_locked(self) -> None:
        conn = self._conn
        self._conn = None
        self._schema_version = None
        if conn is not None:
            conn.close()

    def _sidecar_paths(self) -> tuple[Path, ...]:
        return tuple(self._path.with_name(self._path.name + suffix) for suffix in _SIDECAR_SUFFIXES)

    def _is_async_event_loop_thread(self) -> bool:
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            return False
        return True

    def _assert_sync_io_allowed(self, *, operation: str) -> None:
        if self._async_blocking_policy != "strict":
            return
        if not self._is_async_event_loop_thread():
            return
        raise StoreDBAsyncPolicyError(
            f"{operation} is disallowed from an active event loop thread for {self._path}; "
            "use the async StoreDB APIs (e.g. execute_async/query_*_async/migrate_async) "
            "or offload sync calls via asyncio.to_thread(...)"
        )

    def _execute_with_retry(
        self,
        conn: sqlite3.Connection,
        sql: str,
        params: SQLParams,
        *,
        operation: str,
    ) -> sqlite3.Cursor:
        for attempt in range(self._busy_retry_limit + 1):
            try:
                return conn.execute(sql, tuple(params))
            except sqlite3.IntegrityError:
                raise
            except sqlite3.Error as exc:
                if self._is_busy_error(exc) and attempt < self._busy_retry_limit:
                    time.sleep((self._busy_retry_backoff_ms / 1000.0) * float(2**attempt))
                    continue
                self._raise_actionable_error(exc, operation=operation)
        raise StoreDBBusyError(f"{operation} exhausted retries unexpectedly")

    def _executemany_with_retry(
        self,
        conn: sqlite3.Connection,
        sql: str,
        params_list: Sequence[SQLParams],
        *,
        operation: str,
    ) -> int:
        for attempt in range(self._busy_retry_limit + 1):
            try:
                cursor = conn.executemany(sql, params_list)
                return cursor.rowcount
            except sqlite3.IntegrityError:
                raise
            except sqlite3.Error as exc:
                if self._is_busy_error(exc) and attempt < self._busy_retry_limit:
                    time.sleep((self._busy_retry_backoff_ms / 1000.0) * float(2**attempt))
                    continue
                self._raise_actionable_error(exc, operation=operation)
        raise StoreDBBusyError(f"{operation} exhausted retries unexpectedly")

    def _is_busy_error(self, exc: sqlite3.Error) -> bool:
        code = getattr(exc, "sqlite_errorcode", None)
        if isinstance(code, int) and code in _SQLITE_BUSY_CODES:
            return True
        message = str(exc).lower()
        return any(fragment in message for fragment in _BUSY_SUBSTRINGS)

    def _is_corruption_error(self, exc: sqlite3.Error) -> bool:
        code = getattr(exc, "sqlite_errorcode", None)
        if isinstance(code, int) and code in _SQLITE_CORRUPTION_CODES:
            return True
        message = str(exc).lower()
        return any(fragment in message for fragment in _CORRUPTION_SUBSTRINGS)

    def _raise_actionable_error(self, exc: sqlite3.Error, *, operation: str) -> None:
        if self._is_corruption_error(exc):
            raise StoreDBCorruptionError(
                f"{operation} failed for {self._path}: {exc}. "
                "Run `StoreDB.integrity_check()` and restore from `StoreDB.backup(...)` "
                "or `speccheck-store reset --yes` if needed."
            ) from exc
        if self._is_busy_error(exc):
            raise StoreDBBusyError(
                f"{operation} hit SQLITE_BUSY for {self._path} after "
                f"{self._busy_retry_limit + 1} attempt(s): {exc}"
            ) from exc
        raise StoreDBError(f"{operation} failed for {self._path}: {exc}") from exc


def _row_to_dict(row: sqlite3.Row) -> dict[str, RowValue]:
    raw = dict(row)
    return {str(key): raw[key] for key in raw}


def _utc_now() -> datetime:
    return datetime.now(UTC)


__all__ = [
    "ASYNC_BLOCKING_POLICIES",
    "DEFAULT_ASYNC_BLOCKING_POLICY",
    "DEFAULT_BUSY_RETRY_BACKOFF_MS",
    "DEFAULT_BUSY_RETRY_LIMIT",
    "DEFAULT_BUSY_TIMEOUT_MS",
    "MEMORY_PATH",
    "AsyncBlockingPolicy",
    "Clock",
    "ExecuteResult",
    "MigrationRecord",
    "RowValue",
    "SQLParams",
    "SQLValue",
    "StoreDB",
    "StoreDBAsyncPolicyError",
    "StoreDBBusyError",
    "StoreDBCorruptionError",
    "StoreDBError",
    "StoreDBMigrationError",
    "StoreDBTransactionError",
]
