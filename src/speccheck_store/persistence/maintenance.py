"""
speccheck-store — store maintenance

File: src/speccheck_store/persistence/maintenance.py

Purpose
- Aggregate statistics across every store and run expired-cache cleanup.

What should be included in this file
- ``StoreStats`` / ``CleanupReport`` value types.
- ``StoreMaintenance`` with sync and async (``asyncio.gather``) variants.
- Module-level convenience wrappers.

Functional requirements
- Statistics are best-effort: each section runs inside its own boundary and a
  failing section is reported as ``None`` with a warning event.
- Cleanup is not best-effort: write failures propagate.
"""

from __future__ import annotations

import asyncio
import sqlite3
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, TypeVar

import structlog

from speccheck_store.domain.models import (
    CanonicalModel,
    ComponentCacheStats,
    DatasheetCacheStats,
    ScanHistoryStats,
)
from speccheck_store.persistence.store_db import StoreDBError

if TYPE_CHECKING:
    from speccheck_store.persistence.store import SpecStore

T = TypeVar("T")

_STATS_SECTION_ERRORS = (StoreDBError, sqlite3.Error, ValueError)


@dataclass(frozen=True, slots=True)
class StoreStats(CanonicalModel):
    """Snapshot of every store; ``None`` marks a section that could not be read."""

    components: ComponentCacheStats | None
    datasheets: DatasheetCacheStats | None
    history: ScanHistoryStats | None
    saved_count: int | None
    database_size_bytes: int | None

    @property
    def unavailable_sections(self) -> tuple[str, ...]:
        return tuple(
            name
            for name in (
                "components",
                "datasheets",
                "history",
                "saved_count",
                "database_size_bytes",
            )
            if getattr(self, name) is None
        )


@dataclass(frozen=True, slots=True)
class CleanupReport(CanonicalModel):
    components_removed: int
    datasheets_removed: int

    @property
    def total_removed(self) -> int:
        return self.components_removed + self.datasheets_removed


class StoreMaintenance:
    """Cross-store statistics and cleanup over one ``SpecStore``."""

    def __init__(self, store: SpecStore, *, logger: Any | None = None) -> None:
        self._store = store
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    def collect_stats(self) -> StoreStats:
        store = self._store
        return StoreStats(
            components=self._section("components", store.components.get_stats),
            datasheets=self._section("datasheets", store.datasheets.get_stats),
            history=self._section("history", store.history.get_stats),
            saved_count=self._section("saved_count", store.saved.get_count),
            database_size_bytes=self._section(
                "database_size_bytes", store.db.database_size_bytes
            ),
        )

    async def collect_stats_async(self) -> StoreStats:
        store = self._store
        components, datasheets, history, saved_count, size = await asyncio.gather(
            self._section_async("components", store.components.get_stats),
            self._section_async("datasheets", store.datasheets.get_stats),
            self._section_async("history", store.history.get_stats),
            self._section_async("saved_count", store.saved.get_count),
            self._section_async("database_size_bytes", store.db.database_size_bytes),
        )
        return StoreStats(
            components=components,
            datasheets=datasheets,
            history=history,
            saved_count=saved_count,
            database_size_bytes=size,
        )

    def clean_expired(self) -> CleanupReport:
        report = CleanupReport(
            components_removed=self._store.components.clean_expired(),
            datasheets_removed=self._store.datasheets.clean_expired(),
        )
        self._log_cleanup(report)
        return report

    async def clean_expired_async(self) -> CleanupReport:
        components_removed, datasheets_removed = await asyncio.gather(
            asyncio.to_thread(self._store.components.clean_expired),
            asyncio.to_thread(self._store.datasheets.clean_expired),
        )
        report = CleanupReport(
            components_removed=components_removed,
            datasheets_removed=datasheets_removed,
        )
        self._log_cleanup(report)
        return report

    def _section(self, name: str, fn: Callable[[], T]) -> T | None:
        try:
            return fn()
        except _STATS_SECTION_ERRORS as exc:
            self._log_section_failure(name, exc)
            return None

    async def _section_async(self, name: str, fn: Callable[[], T]) -> T | None:
        try:
            return await asyncio.to_thread(fn)
        except _STATS_SECTION_ERRORS as exc:
            self._log_section_failure(name, exc)
            return None

    def _log_section_failure(self, name: str, exc: BaseException) -> None:
        self._logger.warning(
            "store_stats_section_unavailable",
            section=name,
            error_type=type(exc).__name__,
            error=str(exc),
        )

    def _log_cleanup(self, report: CleanupReport) -> None:
        self._logger.info(
            "store_expired_cleanup",
            components_removed=report.components_removed,
            datasheets_removed=report.datasheets_removed,
            total_removed=report.total_removed,
        )


def collect_store_stats(store: SpecStore, *, logger: Any | None = None) -> StoreStats:
    return StoreMaintenance(store, logger=logger).collect_stats()


async def collect_store_stats_async(store: SpecStore, *, logger: Any | None = None) -> StoreStats:
    return await StoreMaintenance(store, logger=logger).collect_stats_async()


def clean_expired_caches(store: SpecStore, *, logger: Any | None = None) -> CleanupReport:
    return StoreMaintenance(store, logger=logger).clean_expired()


async def clean_expired_caches_async(
    store: SpecStore, *, logger: Any | None = None
) -> CleanupReport:
    return await StoreMaintenance(store, logger=logger).clean_expired_async()


__all__ = [
    "CleanupReport",
    "StoreMaintenance",
    "StoreStats",
    "clean_expired_caches",
    "clean_expired_caches_async",
    "collect_store_stats",
    "collect_store_stats_async",
]
