"""
speccheck-store — persistence layer

File: src/speccheck_store/persistence/__init__.py

Purpose
- Local store: connection management, migrations, repositories and the
  composition root that wires them together.

What should be included in this file
- Re-exports of the public persistence API.

Functional requirements
- Single embedded database file, single writer connection per process.

Non-functional requirements
- SQLite-first; no external database or transaction coordinator.
"""

from speccheck_store.persistence.aio import AsyncRepo
from speccheck_store.persistence.bundle import (
    BundleImportError,
    BundleImportSummary,
    import_bundle,
    load_bundle_file,
)
from speccheck_store.persistence.maintenance import (
    CleanupReport,
    StoreMaintenance,
    StoreStats,
    clean_expired_caches,
    clean_expired_caches_async,
    collect_store_stats,
    collect_store_stats_async,
)
from speccheck_store.persistence.migrations import (
    SCHEMA_MIGRATIONS,
    Migration,
    MigrationEngine,
    MigrationRecord,
)
from speccheck_store.persistence.repositories import (
    ComponentCacheRepo,
    ConsentLogRepo,
    DatasheetCacheRepo,
    OfflineBundleRepo,
    SavedComponentsRepo,
    ScanHistoryRepo,
)
from speccheck_store.persistence.store import SpecStore, StoreSettings
from speccheck_store.persistence.store_db import (
    ExecuteResult,
    StoreDB,
    StoreDBAsyncPolicyError,
    StoreDBBusyError,
    StoreDBCorruptionError,
    StoreDBError,
    StoreDBMigrationError,
    StoreDBTransactionError,
)

__all__ = [
    "AsyncRepo",
    "BundleImportError",
    "BundleImportSummary",
    "CleanupReport",
    "ComponentCacheRepo",
    "ConsentLogRepo",
    "DatasheetCacheRepo",
    "ExecuteResult",
    "Migration",
    "MigrationEngine",
    "MigrationRecord",
    "OfflineBundleRepo",
    "SCHEMA_MIGRATIONS",
    "SavedComponentsRepo",
    "ScanHistoryRepo",
    "SpecStore",
    "StoreDB",
    "StoreDBAsyncPolicyError",
    "StoreDBBusyError",
    "StoreDBCorruptionError",
    "StoreDBError",
    "StoreDBMigrationError",
    "StoreDBTransactionError",
    "StoreMaintenance",
    "StoreSettings",
    "StoreStats",
    "clean_expired_caches",
    "clean_expired_caches_async",
    "collect_store_stats",
    "collect_store_stats_async",
    "import_bundle",
    "load_bundle_file",
]
