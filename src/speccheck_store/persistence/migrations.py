"""
speccheck-store — schema catalogue and migration engine

File: src/speccheck_store/persistence/migrations.py

Purpose
- Registered schema versions for the local store.
- ``MigrationEngine``: brings a fresh or outdated database file up to a target
  version, one atomic unit per version.

Functional requirements
- A missing ``schema_versions`` table reads as version 0.
- Versions apply strictly in increasing order; unregistered numbers are skipped.
- Statements and the version record commit together or not at all.
- Applied versions are checksum-verified on every start.
"""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Final

from speccheck_store.constants import STORE_SCHEMA_VERSION
from speccheck_store.persistence.errors import StoreDBMigrationError
from speccheck_store.utils.hashing import sha256_text

logger = logging.getLogger(__name__)

_SCHEMA_VERSIONS_TABLE_SQL: Final[str] = """
CREATE TABLE IF NOT EXISTS schema_versions (
    version INTEGER PRIMARY KEY CHECK (version > 0),
    name TEXT NOT NULL,
    checksum TEXT NOT NULL CHECK (length(checksum) = 64),
    applied_at TEXT NOT NULL
)
"""

_MIGRATION_0001_STATEMENTS: Final[tuple[str, ...]] = (
    """
    CREATE TABLE IF NOT EXISTS component_cache (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        part_number TEXT NOT NULL,
        manufacturer TEXT NOT NULL,
        category TEXT NOT NULL,
        specs_json TEXT NOT NULL,
        source_type TEXT NOT NULL,
        source_url TEXT,
        source_confidence REAL NOT NULL CHECK (source_confidence BETWEEN 0 AND 1),
        source_retrieved_at INTEGER,
        datasheet_url TEXT,
        created_at INTEGER NOT NULL,
        updated_at INTEGER NOT NULL,
        expires_at INTEGER,
        UNIQUE (part_number, manufacturer)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS datasheet_cache (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        url TEXT NOT NULL UNIQUE,
        part_number TEXT NOT NULL,
        content_hash TEXT NOT NULL,
        parsed_specs_json TEXT,
        raw_text TEXT,
        page_count INTEGER CHECK (page_count IS NULL OR page_count >= 0),
        file_size INTEGER CHECK (file_size IS NULL OR file_size >= 0),
        created_at INTEGER NOT NULL,
        expires_at INTEGER
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS scan_history (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        claim_raw TEXT NOT NULL,
        claim_value REAL,
        claim_unit TEXT,
        claim_type TEXT,
        verdict_type TEXT NOT NULL,
        verdict_confidence REAL NOT NULL CHECK (verdict_confidence BETWEEN 0 AND 1),
        verdict_summary TEXT,
        verdict_explanation TEXT,
        verdict_json TEXT NOT NULL,
        component_count INTEGER NOT NULL DEFAULT 0 CHECK (component_count >= 0),
        created_at INTEGER NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS scan_components (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        scan_id INTEGER NOT NULL REFERENCES scan_history(id) ON DELETE CASCADE,
        position INTEGER NOT NULL CHECK (position >= 0),
        part_number TEXT NOT NULL,
        manufacturer TEXT NOT NULL,
        category TEXT NOT NULL,
        bounding_box_json TEXT,
        confidence REAL NOT NULL CHECK (confidence BETWEEN 0 AND 1),
        UNIQUE (scan_id, position)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS saved_components (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        part_number TEXT NOT NULL,
        manufacturer TEXT NOT NULL,
        category TEXT NOT NULL,
        specs_json TEXT NOT NULL,
        notes TEXT,
        tags_json TEXT NOT NULL DEFAULT '[]',
        created_at INTEGER NOT NULL,
        updated_at INTEGER NOT NULL,
        UNIQUE (part_number, manufacturer)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS offline_bundle (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        bundle_version TEXT NOT NULL,
        component_count INTEGER NOT NULL CHECK (component_count >= 0),
        size_bytes INTEGER NOT NULL CHECK (size_bytes >= 0),
        downloaded_at INTEGER NOT NULL,
        is_active INTEGER NOT NULL DEFAULT 0 CHECK (is_active IN (0, 1))
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS consent_log (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        consent_type TEXT NOT NULL,
        granted INTEGER NOT NULL CHECK (granted IN (0, 1)),
        version TEXT NOT NULL,
        recorded_at INTEGER NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_component_cache_part_number ON component_cache(part_number)",
    "CREATE INDEX IF NOT EXISTS idx_component_cache_category ON component_cache(category)",
    "CREATE INDEX IF NOT EXISTS idx_component_cache_expires ON component_cache(expires_at)",
    "CREATE INDEX IF NOT EXISTS idx_datasheet_cache_part_number ON datasheet_cache(part_number)",
    "CREATE INDEX IF NOT EXISTS idx_datasheet_cache_expires ON datasheet_cache(expires_at)",
    "CREATE INDEX IF NOT EXISTS idx_scan_history_created ON scan_history(created_at DESC, id DESC)",
    "CREATE INDEX IF NOT EXISTS idx_scan_history_verdict ON scan_history(verdict_type)",
    "CREATE INDEX IF NOT EXISTS idx_scan_components_scan ON scan_components(scan_id, position)",
    "CREATE INDEX IF NOT EXISTS idx_saved_components_category ON saved_components(category)",
    """
    CREATE UNIQUE INDEX IF NOT EXISTS idx_offline_bundle_single_active
    ON offline_bundle(is_active) WHERE is_active = 1
    """,
    "CREATE INDEX IF NOT EXISTS idx_consent_log_type "
    "ON consent_log(consent_type, recorded_at DESC)",
)


@dataclass(frozen=True, slots=True)
class MigrationRecord:
    version: int
    name: str
    checksum: str
    applied_at: str


@dataclass(frozen=True, slots=True)
class Migration:
    version: int
    name: str
    statements: tuple[str, ...]
    checksum: str

    @classmethod
    def build(cls, version: int, name: str, statements: Sequence[str]) -> Migration:
        if isinstance(version, bool) or not isinstance(version, int) or version <= 0:
            raise StoreDBMigrationError(
                f"migration version must be a positive integer: {version!r}"
            )
        frozen = tuple(statements)
        return cls(
            version=version,
            name=name,
            statements=frozen,
            checksum=migration_checksum(version, name, frozen),
        )


def migration_checksum(version: int, name: str, statements: Sequence[str]) -> str:
    parts = [f"{version}:{name}\n"]
    for statement in statements:
        parts.append("\n".join(line.rstrip() for line in statement.strip().splitlines()))
        parts.append("\n--\n")
    return sha256_text("".join(parts))


SCHEMA_MIGRATIONS: Final[tuple[Migration, ...]] = (
    Migration.build(1, "initial_local_store", _MIGRATION_0001_STATEMENTS),
)


class MigrationEngine:
    """Apply an ordered catalogue of schema versions to one SQLite connection.

    ``migrations`` is either a sequence of :class:`Migration` or a plain mapping of
    ``version -> statements``; mapping entries are named ``v<version>``.
    """

    def __init__(
        self,
        migrations: Mapping[int, Sequence[str]] | Iterable[Migration] = SCHEMA_MIGRATIONS,
        *,
        target_version: int = STORE_SCHEMA_VERSION,
    ) -> None:
        if isinstance(target_version, bool) or not isinstance(target_version, int):
            raise StoreDBMigrationError("target schema version must be an integer")
        if target_version < 0:
            raise StoreDBMigrationError("target schema version must be >= 0")

        if isinstance(migrations, Mapping):
            catalogue = [
                Migration.build(version, f"v{version}", statements)
                for version, statements in migrations.items()
            ]
        else:
            catalogue = list(migrations)

        by_version: dict[int, Migration] = {}
        for migration in catalogue:
            if migration.version in by_version:
                raise StoreDBMigrationError(f"duplicate migration version {migration.version}")
            by_version[migration.version] = migration

        self._migrations = tuple(by_version[version] for version in sorted(by_version))
        self._target_version = target_version

    @property
    def target_version(self) -> int:
        return self._target_version

    @property
    def migrations(self) -> tuple[Migration, ...]:
        return self._migrations

    def current_version(self, conn: sqlite3.Connection) -> int:
        return max(self.applied(conn), default=0)

    def applied(self, conn: sqlite3.Connection) -> dict[int, MigrationRecord]:
        """Return applied versions; an absent ``schema_versions`` table means none."""

        try:
            exists = conn.execute(
                "SELECT 1 FROM sqlite_master WHERE type = 'table' AND name = 'schema_versions'"
            ).fetchone()
            if exists is None:
                return {}
            rows = conn.execute(
                """
                SELECT version, name, checksum, applied_at
                FROM schema_versions
                ORDER BY version ASC
                """
            ).fetchall()
        except sqlite3.Error as exc:
            raise StoreDBMigrationError(f"unable to read schema_versions: {exc}") from exc

        out: dict[int, MigrationRecord] = {}
        for row in rows:
            version, name, checksum, applied_at = row[0], row[1], row[2], row[3]
            if not isinstance(version, int):
                raise StoreDBMigrationError("schema_versions.version must be integer")
            if not isinstance(name, str):
                raise StoreDBMigrationError("schema_versions.name must be text")
            if not isinstance(checksum, str):
                raise StoreDBMigrationError("schema_versions.checksum must be text")
            if not isinstance(applied_at, str):
                raise StoreDBMigrationError("schema_versions.applied_at must be text")
            out[version] = MigrationRecord(
                version=version,
                name=name,
                checksum=checksum,
                applied_at=applied_at,
            )
        return out

    def pending(self, conn: sqlite3.Connection) -> tuple[Migration, ...]:
        applied = self.applied(conn)
        current = max(applied, default=0)
        self._verify(applied, current)
        return tuple(
            migration
            for migration in self._migrations
            if current < migration.version <= self._target_version
        )

    def pending_versions(self, conn: sqlite3.Connection) -> tuple[int, ...]:
        return tuple(migration.version for migration in self.pending(conn))

    def apply(self, conn: sqlite3.Connection) -> int:
        """Apply every pending version and return the resulting schema version."""

        current = self.current_version(conn)
        for migration in self.pending(conn):
            self._apply_one(conn, migration)
            current = migration.version
        return current

    def _verify(self, applied: Mapping[int, MigrationRecord], current: int) -> None:
        if current > self._target_version:
            raise StoreDBMigrationError(
                "database schema is newer than supported by this build "
                f"(db={current}, code={self._target_version})"
            )
        registered = {migration.version: migration for migration in self._migrations}
        for version, record in sorted(applied.items()):
            migration = registered.get(version)
            if migration is None:
                continue
            if record.checksum != migration.checksum:
                raise StoreDBMigrationError(
                    "migration checksum mismatch for version "
                    f"{version}: db={record.checksum} code={migration.checksum}"
                )

    def _apply_one(self, conn: sqlite3.Connection, migration: Migration) -> None:
        try:
            conn.execute("BEGIN IMMEDIATE")
        except sqlite3.Error as exc:
            raise StoreDBMigrationError(
                f"unable to start migration {migration.version}: {exc}"
            ) from exc

        try:
            conn.execute(_SCHEMA_VERSIONS_TABLE_SQL)
            for statement in migration.statements:
                conn.execute(statement)
            conn.execute(
                """
                INSERT INTO schema_versions (version, name, checksum, applied_at)
                VALUES (?, ?, ?, ?)
                """,
                (migration.version, migration.name, migration.checksum, _utc_now_iso()),
            )
            conn.execute("COMMIT")
        except sqlite3.Error as exc:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            logger.error(
                "schema migration failed",
                extra={"schema_version": migration.version, "migration_name": migration.name},
            )
            raise StoreDBMigrationError(
                f"migration {migration.version} ({migration.name}) failed: {exc}"
            ) from exc

        logger.info(
            "applied schema migration",
            extra={"schema_version": migration.version, "migration_name": migration.name},
        )


def _utc_now_iso() -> str:
    return datetime.now(UTC).isoformat(timespec="microseconds").replace("+00:00", "Z")


__all__ = [
    "Migration",
    "MigrationEngine",
    "MigrationRecord",
    "SCHEMA_MIGRATIONS",
    "migration_checksum",
]
