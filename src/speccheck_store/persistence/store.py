"""
speccheck-store — composition root

File: src/speccheck_store/persistence/store.py

Purpose
- Build one ``StoreDB`` from effective configuration and hand it to every
  repository.

What should be included in this file
- ``StoreSettings``: typed view over the validated config mapping.
- ``SpecStore``: owns the ``StoreDB``, the six repositories and their async
  façades.

Functional requirements
- Settings are fixed for the lifetime of a ``SpecStore``.
- Constructing a ``SpecStore`` does not touch the database file; the first
  repository call opens and migrates it.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from typing import Any

from speccheck_store.config.schema import DEFAULT_CONFIG
from speccheck_store.constants import (
    COMPONENT_CACHE_TTL_SECONDS,
    DATASHEET_CACHE_TTL_SECONDS,
    DEFAULT_DB_PATH,
    DEFAULT_SEARCH_LIMIT,
    SCAN_HISTORY_RETENTION_LIMIT,
)
from speccheck_store.persistence.aio import AsyncRepo
from speccheck_store.persistence.repositories import (
    ComponentCacheRepo,
    ConsentLogRepo,
    DatasheetCacheRepo,
    OfflineBundleRepo,
    SavedComponentsRepo,
    ScanHistoryRepo,
)
from speccheck_store.persistence.store_db import (
    DEFAULT_ASYNC_BLOCKING_POLICY,
    DEFAULT_BUSY_RETRY_BACKOFF_MS,
    DEFAULT_BUSY_RETRY_LIMIT,
    DEFAULT_BUSY_TIMEOUT_MS,
    AsyncBlockingPolicy,
    Clock,
    StoreDB,
)


@dataclass(frozen=True, slots=True)
class StoreSettings:
    """Runtime knobs for one store instance."""

    database_path: str = str(DEFAULT_DB_PATH)
    busy_timeout_ms: int = DEFAULT_BUSY_TIMEOUT_MS
    busy_retry_limit: int = DEFAULT_BUSY_RETRY_LIMIT
    busy_retry_backoff_ms: int = DEFAULT_BUSY_RETRY_BACKOFF_MS
    async_blocking_policy: AsyncBlockingPolicy = DEFAULT_ASYNC_BLOCKING_POLICY
    component_ttl_seconds: int = COMPONENT_CACHE_TTL_SECONDS
    datasheet_ttl_seconds: int = DATASHEET_CACHE_TTL_SECONDS
    retention_limit: int = SCAN_HISTORY_RETENTION_LIMIT
    search_limit: int = DEFAULT_SEARCH_LIMIT

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> StoreSettings:
        """Build settings from a validated config mapping (see ``load_config``).

        Missing sections or keys fall back to ``DEFAULT_CONFIG``.
        """

        paths = _section(config, "paths")
        database = _section(config, "database")
        cache = _section(config, "cache")
        history = _section(config, "history")
        search = _section(config, "search")
        return cls(
            database_path=str(paths["database"]),
            busy_timeout_ms=int(database["busy_timeout_ms"]),
            busy_retry_limit=int(database["busy_retry_limit"]),
            busy_retry_backoff_ms=int(database["busy_retry_backoff_ms"]),
            async_blocking_policy=database["async_blocking_policy"],
            component_ttl_seconds=int(cache["component_ttl_seconds"]),
            datasheet_ttl_seconds=int(cache["datasheet_ttl_seconds"]),
            retention_limit=int(history["retention_limit"]),
            search_limit=int(search["default_limit"]),
        )

    @property
    def component_ttl(self) -> timedelta:
        return timedelta(seconds=self.component_ttl_seconds)

    @property
    def datasheet_ttl(self) -> timedelta:
        return timedelta(seconds=self.datasheet_ttl_seconds)


class SpecStore:
    """One database, one ``StoreDB``, every repository sharing it."""

    def __init__(
        self,
        settings: StoreSettings | None = None,
        *,
        db: StoreDB | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._settings = settings if settings is not None else StoreSettings()
        self._db = db if db is not None else _build_db(self._settings, clock=clock)

        self.components = ComponentCacheRepo(self._db, ttl=self._settings.component_ttl)
        self.datasheets = DatasheetCacheRepo(self._db, ttl=self._settings.datasheet_ttl)
        self.history = ScanHistoryRepo(self._db, retention_limit=self._settings.retention_limit)
        self.saved = SavedComponentsRepo(self._db)
        self.bundles = OfflineBundleRepo(self._db)
        self.consent = ConsentLogRepo(self._db)

        self.components_async = AsyncRepo(self.components)
        self.datasheets_async = AsyncRepo(self.datasheets)
        self.history_async = AsyncRepo(self.history)
        self.saved_async = AsyncRepo(self.saved)
        self.bundles_async = AsyncRepo(self.bundles)
        self.consent_async = AsyncRepo(self.consent)

    @classmethod
    def from_config(cls, config: Mapping[str, Any], *, clock: Clock | None = None) -> SpecStore:
        return cls(StoreSettings.from_config(config), clock=clock)

    @classmethod
    def in_memory(cls, *, clock: Clock | None = None, **overrides: Any) -> SpecStore:
        """Store backed by a private ``:memory:`` database; handy for tests and dry runs."""
        return cls(StoreSettings(database_path=":memory:", **overrides), clock=clock)

    @property
    def settings(self) -> StoreSettings:
        return self._settings

    @property
    def db(self) -> StoreDB:
        return self._db

    @property
    def path(self) -> Path:
        return self._db.path

    def close(self) -> None:
        self._db.close()

    def __enter__(self) -> SpecStore:
        return self

    def __exit__(self, exc_type: object, exc: object, tb: object) -> None:
        self.close()


def _build_db(settings: StoreSettings, *, clock: Clock | None) -> StoreDB:
    return StoreDB(
        settings.database_path,
        busy_timeout_ms=settings.busy_timeout_ms,
        busy_retry_limit=settings.busy_retry_limit,
        busy_retry_backoff_ms=settings.busy_retry_backoff_ms,
        async_blocking_policy=settings.async_blocking_policy,
        clock=clock,
    )


def _section(config: Mapping[str, Any], name: str) -> dict[str, Any]:
    merged: dict[str, Any] = dict(DEFAULT_CONFIG[name])  # type: ignore[literal-required]
    raw = config.get(name)
    if isinstance(raw, Mapping):
        merged.update(raw)
    return merged


__all__ = ["SpecStore", "StoreSettings"]
