"""
speccheck-store — repositories

File: src/speccheck_store/persistence/repositories.py

Purpose
- Repository facades translating typed domain records to and from the local
  store tables.

What should be included in this file
- Repositories: ComponentCacheRepo, DatasheetCacheRepo, ScanHistoryRepo,
  SavedComponentsRepo, OfflineBundleRepo, ConsentLogRepo.
- TTL filtering, search ranking, retention enforcement and tag membership
  queries.

Functional requirements
- Upserts on a natural key are read-modify-write inside one transaction and
  apply the merge policies from ``speccheck_store.domain.merge``.
- Expired cache rows are invisible to reads and only removed by cleanup.
- A scan and its components commit together, along with any retention trim.

Non-functional requirements
- Repositories hold no state beyond the injected ``StoreDB`` and settings.
- Busy retries live in ``StoreDB``; repositories never retry.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable, Iterable, Iterator, Mapping, Sequence
from contextlib import contextmanager
from dataclasses import replace
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Final, cast

from speccheck_store.constants import (
    COMPONENT_CACHE_TTL_SECONDS,
    DATASHEET_CACHE_TTL_SECONDS,
    DEFAULT_HISTORY_PAGE_SIZE,
    DEFAULT_SEARCH_LIMIT,
    MAX_PAGE_SIZE,
    SCAN_HISTORY_RETENTION_LIMIT,
)
from speccheck_store.domain.merge import (
    merge_component_cache,
    merge_datasheet,
    merge_saved_component,
    with_tag,
    without_tag,
)
from speccheck_store.domain.models import (
    BoundingBox,
    Claim,
    ComponentCacheEntry,
    ComponentCacheStats,
    ComponentCategory,
    ComponentSpecs,
    ConsentRecord,
    DataSource,
    DatasheetCacheEntry,
    DatasheetCacheStats,
    OfflineBundle,
    SavedComponentEntry,
    ScanComponent,
    ScanHistoryEntry,
    ScanHistoryStats,
    ScanHistorySummary,
    SourceType,
    SpecMap,
    SpecValue,
    Verdict,
    canonical_json,
    normalize_tag,
    normalize_tags,
    parse_spec_map,
)
from speccheck_store.persistence.store_db import RowValue, SQLParams, StoreDB

if TYPE_CHECKING:
    import sqlite3

logger = logging.getLogger(__name__)

_TagRewrite = Callable[[tuple[str, ...]], tuple[str, ...]]

_EPOCH: Final[datetime] = datetime(1970, 1, 1, tzinfo=UTC)
_ONE_MS: Final[timedelta] = timedelta(milliseconds=1)
_LIVE: Final[str] = "(expires_at IS NULL OR expires_at > ?)"
_EXPIRED: Final[str] = "(expires_at IS NOT NULL AND expires_at <= ?)"

_COMPONENT_COLUMNS: Final[str] = """
    id, part_number, manufacturer, category, specs_json, source_type, source_url,
    source_confidence, source_retrieved_at, datasheet_url, created_at, updated_at, expires_at
"""
_DATASHEET_COLUMNS: Final[str] = """
    id, url, part_number, content_hash, parsed_specs_json, raw_text, page_count,
    file_size, created_at, expires_at
"""
_SCAN_SUMMARY_COLUMNS: Final[str] = """
    id, claim_raw, verdict_type, verdict_confidence, component_count, created_at
"""
_SAVED_COLUMNS: Final[str] = """
    id, part_number, manufacturer, category, specs_json, notes, tags_json, created_at, updated_at
"""
_BUNDLE_COLUMNS: Final[str] = (
    "id, bundle_version, component_count, size_bytes, downloaded_at, is_active"
)
_CONSENT_COLUMNS: Final[str] = "id, consent_type, granted, version, recorded_at"


class _BaseRepo:
    def __init__(self, db: StoreDB) -> None:
        self._db = db

    @property
    def db(self) -> StoreDB:
        return self._db

    @staticmethod
    def _validate_page(limit: int, offset: int = 0) -> None:
        if isinstance(limit, bool) or not isinstance(limit, int):
            raise ValueError("limit must be an integer")
        if isinstance(offset, bool) or not isinstance(offset, int):
            raise ValueError("offset must be an integer")
        if limit <= 0 or limit > MAX_PAGE_SIZE:
            raise ValueError(f"limit must be in [1, {MAX_PAGE_SIZE}]")
        if offset < 0:
            raise ValueError("offset must be >= 0")

    @contextmanager
    def _atomic(self, conn: sqlite3.Connection | None) -> Iterator[sqlite3.Connection]:
        """Join the caller's transaction when given one, otherwise open a new one."""

        if conn is not None:
            yield conn
            return
        with self._db.transaction() as tx:
            yield tx

    def _now_ms(self) -> int:
        return _to_epoch_ms(self._db.now())


# ---------------------------------------------------------------------------
# Component spec cache
# ---------------------------------------------------------------------------


class ComponentCacheRepo(_BaseRepo):
    """TTL cache of resolved component specs keyed by ``(part_number, manufacturer)``."""

    def __init__(
        self,
        db: StoreDB,
        *,
        ttl: timedelta = timedelta(seconds=COMPONENT_CACHE_TTL_SECONDS),
    ) -> None:
        super().__init__(db)
        if ttl <= timedelta(0):
            raise ValueError("component cache ttl must be > 0")
        self._ttl = ttl

    @property
    def ttl(self) -> timedelta:
        return self._ttl

    def get_by_part_number(self, part_number: str) -> ComponentCacheEntry | None:
        """Most recently updated live entry for ``part_number`` across manufacturers."""

        parsed = _as_non_empty_str(part_number, "part_number")
        row = self._db.query_one(
            f"""
            SELECT {_COMPONENT_COLUMNS}
            FROM component_cache
            WHERE part_number = ? AND {_LIVE}
            ORDER BY updated_at DESC, id DESC
            LIMIT 1
            """,
            (parsed, self._now_ms()),
        )
        return None if row is None else _component_from_row(row)

    def get_by_part_number_and_manufacturer(
        self,
        part_number: str,
        manufacturer: str,
    ) -> ComponentCacheEntry | None:
        parsed_part = _as_non_empty_str(part_number, "part_number")
        parsed_manufacturer = _as_non_empty_str(manufacturer, "manufacturer")
        row = self._db.query_one(
            f"""
            SELECT {_COMPONENT_COLUMNS}
            FROM component_cache
            WHERE part_number = ? AND manufacturer = ? AND {_LIVE}
            """,
            (parsed_part, parsed_manufacturer, self._now_ms()),
        )
        return None if row is None else _component_from_row(row)

    def get_by_category(
        self,
        category: ComponentCategory | str,
        *,
        limit: int = MAX_PAGE_SIZE,
        offset: int = 0,
    ) -> list[ComponentCacheEntry]:
        parsed = _as_category(category, "category")
        self._validate_page(limit, offset)
        rows = self._db.query_all(
            f"""
            SELECT {_COMPONENT_COLUMNS}
            FROM component_cache
            WHERE category = ? AND {_LIVE}
            ORDER BY updated_at DESC, id DESC
            LIMIT ? OFFSET ?
            """,
            (parsed.value, self._now_ms(), limit, offset),
        )
        return [_component_from_row(row) for row in rows]

    def search(self, query: str, limit: int = DEFAULT_SEARCH_LIMIT) -> list[ComponentCacheEntry]:
        """Substring search over part number and manufacturer.

        Ranking: exact part number, then part-number prefix, then any other match;
        ties break on most recent update.
        """

        self._validate_page(limit)
        if not isinstance(query, str):
            raise ValueError("query must be a string")
        text = query.strip()
        if not text:
            return []
        escaped = _escape_like(text)
        contains = f"%{escaped}%"
        prefix = f"{escaped}%"
        rows = self._db.query_all(
            f"""
            SELECT {_COMPONENT_COLUMNS}
            FROM component_cache
            WHERE {_LIVE}
              AND (part_number LIKE ? ESCAPE '\\' OR manufacturer LIKE ? ESCAPE '\\')
            ORDER BY
                CASE
                    WHEN part_number = ? COLLATE NOCASE THEN 0
                    WHEN part_number LIKE ? ESCAPE '\\' THEN 1
                    ELSE 2
                END ASC,
                updated_at DESC,
                id DESC
            LIMIT ?
            """,
            (self._now_ms(), contains, contains, text, prefix, limit),
        )
        return [_component_from_row(row) for row in rows]

    def cache(
        self,
        specs: ComponentSpecs,
        *,
        pinned: bool = False,
        conn: sqlite3.Connection | None = None,
    ) -> ComponentCacheEntry:
        """Insert or refresh the entry for ``specs.natural_key``; returns the stored row."""

        if not isinstance(specs, ComponentSpecs):
            raise TypeError(f"expected ComponentSpecs, got {type(specs).__name__}")

        with self._atomic(conn) as tx:
            existing_row = self._db.query_one(
                f"""
                SELECT {_COMPONENT_COLUMNS}
                FROM component_cache
                WHERE part_number = ? AND manufacturer = ?
                """,
                specs.natural_key,
                conn=tx,
            )
            existing = None if existing_row is None else _component_from_row(existing_row)
            merged = merge_component_cache(
                existing,
                specs,
                now=self._db.now(),
                ttl=None if pinned else self._ttl,
            )
            params = _component_params(merged)
            if merged.id is None:
                result = self._db.execute(
                    """
                    INSERT INTO component_cache (
                        part_number,
                        manufacturer,
                        category,
                        specs_json,
                        source_type,
                        source_url,
                        source_confidence,
                        source_retrieved_at,
                        datasheet_url,
                        created_at,
                        updated_at,
                        expires_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    params,
                    conn=tx,
                )
                return replace(merged, id=result.lastrowid)

            self._db.execute(
                """
                UPDATE component_cache
                SET part_number = ?,
                    manufacturer = ?,
                    category = ?,
                    specs_json = ?,
                    source_type = ?,
                    source_url = ?,
                    source_confidence = ?,
                    source_retrieved_at = ?,
                    datasheet_url = ?,
                    created_at = ?,
                    updated_at = ?,
                    expires_at = ?
                WHERE id = ?
                """,
                (*params, merged.id),
                conn=tx,
            )
            return merged

    def cache_many(
        self,
        specs_list: Iterable[ComponentSpecs],
        *,
        pinned: bool = False,
        conn: sqlite3.Connection | None = None,
    ) -> int:
        """Cache every entry in one transaction; all succeed or none are stored."""

        items = list(specs_list)
        for index, item in enumerate(items):
            if not isinstance(item, ComponentSpecs):
                raise TypeError(
                    f"specs_list[{index}]: expected ComponentSpecs, got {type(item).__name__}"
                )
        if not items:
            return 0
        with self._atomic(conn) as tx:
            for item in items:
                self.cache(item, pinned=pinned, conn=tx)
        return len(items)

    def clean_expired(self) -> int:
        result = self._db.execute(
            f"DELETE FROM component_cache WHERE {_EXPIRED}",
            (self._now_ms(),),
        )
        if result.rowcount:
            logger.info(
                "removed expired component cache entries",
                extra={"removed": result.rowcount},
            )
        return result.rowcount

    def clear_all(self) -> int:
        return self._db.execute("DELETE FROM component_cache").rowcount

    def get_stats(self) -> ComponentCacheStats:
        totals = self._db.query_one(
            f"""
            SELECT
                COUNT(*) AS total_count,
                COALESCE(SUM(CASE WHEN {_EXPIRED} THEN 1 ELSE 0 END), 0) AS expired_count
            FROM component_cache
            """,
            (self._now_ms(),),
        )
        rows = self._db.query_all(
            """
            SELECT category, COUNT(*) AS entry_count
            FROM component_cache
            GROUP BY category
            ORDER BY category ASC
            """
        )
        return ComponentCacheStats(
            total_count=_row_int(totals, "total_count", "component_cache.total_count"),
            expired_count=_row_int(totals, "expired_count", "component_cache.expired_count"),
            by_category={
                _row_text(row, "category", "component_cache.category"): _row_int(
                    row, "entry_count", "component_cache.entry_count"
                )
                for row in rows
            },
        )


# ---------------------------------------------------------------------------
# Datasheet cache
# ---------------------------------------------------------------------------


class DatasheetCacheRepo(_BaseRepo):
    """TTL cache of fetched datasheet documents keyed by URL."""

    def __init__(
        self,
        db: StoreDB,
        *,
        ttl: timedelta = timedelta(seconds=DATASHEET_CACHE_TTL_SECONDS),
    ) -> None:
        super().__init__(db)
        if ttl <= timedelta(0):
            raise ValueError("datasheet cache ttl must be > 0")
        self._ttl = ttl

    @property
    def ttl(self) -> timedelta:
        return self._ttl

    def cache(
        self,
        url: str,
        part_number: str,
        content_hash: str,
        *,
        parsed_specs: Mapping[str, SpecValue | Mapping[str, object]] | None = None,
        raw_text: str | None = None,
        page_count: int | None = None,
        file_size: int | None = None,
    ) -> DatasheetCacheEntry:
        now = self._db.now()
        incoming = DatasheetCacheEntry(
            url=url,
            part_number=part_number,
            content_hash=content_hash,
            created_at=now,
            expires_at=now + self._ttl,
            parsed_specs=None if parsed_specs is None else parse_spec_map(parsed_specs),
            raw_text=raw_text,
            page_count=page_count,
            file_size=file_size,
        )

        with self._db.transaction() as tx:
            existing_row = self._db.query_one(
                f"SELECT {_DATASHEET_COLUMNS} FROM datasheet_cache WHERE url = ?",
                (incoming.url,),
                conn=tx,
            )
            existing = None if existing_row is None else _datasheet_from_row(existing_row)
            merged = merge_datasheet(existing, incoming)
            params = _datasheet_params(merged)
            if merged.id is None:
                result = self._db.execute(
                    """
                    INSERT INTO datasheet_cache (
                        url,
                        part_number,
                        content_hash,
                        parsed_specs_json,
                        raw_text,
                        page_count,
                        file_size,
                        created_at,
                        expires_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    params,
                    conn=tx,
                )
                return replace(merged, id=result.lastrowid)

            self._db.execute(
                """
                UPDATE datasheet_cache
                SET url = ?,
                    part_number = ?,
                    content_hash = ?,
                    parsed_specs_json = ?,
                    raw_text = ?,
                    page_count = ?,
                    file_size = ?,
                    created_at = ?,
                    expires_at = ?
                WHERE id = ?
                """,
                (*params, merged.id),
                conn=tx,
            )
            return merged

    def get_by_url(self, url: str) -> DatasheetCacheEntry | None:
        parsed = _as_non_empty_str(url, "url")
        row = self._db.query_one(
            f"SELECT {_DATASHEET_COLUMNS} FROM datasheet_cache WHERE url = ? AND {_LIVE}",
            (parsed, self._now_ms()),
        )
        return None if row is None else _datasheet_from_row(row)

    def get_by_part_number(self, part_number: str) -> list[DatasheetCacheEntry]:
        parsed = _as_non_empty_str(part_number, "part_number")
        rows = self._db.query_all(
            f"""
            SELECT {_DATASHEET_COLUMNS}
            FROM datasheet_cache
            WHERE part_number = ? AND {_LIVE}
            ORDER BY created_at DESC, id DESC
            """,
            (parsed, self._now_ms()),
        )
        return [_datasheet_from_row(row) for row in rows]

    def is_cached(self, url: str) -> bool:
        parsed = _as_non_empty_str(url, "url")
        row = self._db.query_one(
            f"SELECT 1 AS hit FROM datasheet_cache WHERE url = ? AND {_LIVE}",
            (parsed, self._now_ms()),
        )
        return row is not None

    def has_content_changed(self, url: str, new_hash: str) -> bool:
        """True when there is no live entry for ``url`` or its hash differs."""

        parsed_hash = _as_non_empty_str(new_hash, "new_hash")
        entry = self.get_by_url(url)
        return entry is None or entry.content_hash != parsed_hash

    def update_parsed_specs(
        self,
        url: str,
        specs: Mapping[str, SpecValue | Mapping[str, object]],
    ) -> bool:
        parsed_url = _as_non_empty_str(url, "url")
        specs_json = _spec_map_json(parse_spec_map(specs, "parsed_specs"))
        result = self._db.execute(
            "UPDATE datasheet_cache SET parsed_specs_json = ? WHERE url = ?",
            (specs_json, parsed_url),
        )
        return result.rowcount > 0

    def delete(self, url: str) -> bool:
        parsed = _as_non_empty_str(url, "url")
        return self._db.execute("DELETE FROM datasheet_cache WHERE url = ?", (parsed,)).rowcount > 0

    def clean_expired(self) -> int:
        result = self._db.execute(
            f"DELETE FROM datasheet_cache WHERE {_EXPIRED}",
            (self._now_ms(),),
        )
        if result.rowcount:
            logger.info(
                "removed expired datasheet cache entries",
                extra={"removed": result.rowcount},
            )
        return result.rowcount

    def clear_all(self) -> int:
        return self._db.execute("DELETE FROM datasheet_cache").rowcount

    def get_total_size_bytes(self) -> int:
        row = self._db.query_one(
            f"""
            SELECT COALESCE(SUM(file_size), 0) AS total_size_bytes
            FROM datasheet_cache
            WHERE {_LIVE}
            """,
            (self._now_ms(),),
        )
        return _row_int(row, "total_size_bytes", "datasheet_cache.total_size_bytes")

    def get_stats(self) -> DatasheetCacheStats:
        row = self._db.query_one(
            f"""
            SELECT
                COUNT(*) AS total_count,
                COALESCE(SUM(CASE WHEN {_EXPIRED} THEN 1 ELSE 0 END), 0) AS expired_count,
                COALESCE(SUM(file_size), 0) AS total_size_bytes,
                MIN(created_at) AS oldest_entry
            FROM datasheet_cache
            """,
            (self._now_ms(),),
        )
        return DatasheetCacheStats(
            total_count=_row_int(row, "total_count", "datasheet_cache.total_count"),
            expired_count=_row_int(row, "expired_count", "datasheet_cache.expired_count"),
            total_size_bytes=_row_int(row, "total_size_bytes", "datasheet_cache.total_size_bytes"),
            oldest_entry=_row_optional_datetime(
                row, "oldest_entry", "datasheet_cache.oldest_entry"
            ),
        )


# ---------------------------------------------------------------------------
# Scan history
# ---------------------------------------------------------------------------


class ScanHistoryRepo(_BaseRepo):
    """Append-mostly log of scans with bounded retention."""

    def __init__(
        self,
        db: StoreDB,
        *,
        retention_limit: int = SCAN_HISTORY_RETENTION_LIMIT,
    ) -> None:
        super().__init__(db)
        if isinstance(retention_limit, bool) or not isinstance(retention_limit, int):
            raise ValueError("retention_limit must be an integer")
        if retention_limit <= 0:
            raise ValueError("retention_limit must be > 0")
        self._retention_limit = retention_limit

    @property
    def retention_limit(self) -> int:
        return self._retention_limit

    def save(
        self,
        claim: Claim,
        verdict: Verdict,
        components: Sequence[ScanComponent] = (),
    ) -> int:
        """Persist one scan with its components and trim history to the retention limit."""

        if not isinstance(claim, Claim):
            raise TypeError(f"expected Claim, got {type(claim).__name__}")
        if not isinstance(verdict, Verdict):
            raise TypeError(f"expected Verdict, got {type(verdict).__name__}")
        items = tuple(components)
        for index, component in enumerate(items):
            if not isinstance(component, ScanComponent):
                raise TypeError(
                    f"components[{index}]: expected ScanComponent, got {type(component).__name__}"
                )

        created_at = self._now_ms()
        with self._db.transaction() as tx:
            result = self._db.execute(
                """
                INSERT INTO scan_history (
                    claim_raw,
                    claim_value,
                    claim_unit,
                    claim_type,
                    verdict_type,
                    verdict_confidence,
                    verdict_summary,
                    verdict_explanation,
                    verdict_json,
                    component_count,
                    created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    claim.raw,
                    claim.value,
                    claim.unit,
                    claim.claim_type,
                    verdict.verdict_type,
                    verdict.confidence,
                    verdict.summary,
                    verdict.explanation,
                    verdict.to_json(),
                    len(items),
                    created_at,
                ),
                conn=tx,
            )
            scan_id = result.lastrowid
            if scan_id is None:
                raise ValueError("scan_history insert did not yield a row id")

            for position, component in enumerate(items):
                self._db.execute(
                    """
                    INSERT INTO scan_components (
                        scan_id,
                        position,
                        part_number,
                        manufacturer,
                        category,
                        bounding_box_json,
                        confidence
                    ) VALUES (?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        scan_id,
                        position,
                        component.part_number,
                        component.manufacturer,
                        component.category.value,
                        None
                        if component.bounding_box is None
                        else component.bounding_box.to_json(),
                        component.confidence,
                    ),
                    conn=tx,
                )

            evicted = self._enforce_retention(tx)

        if evicted:
            logger.info(
                "evicted scan history beyond retention limit",
                extra={"evicted": evicted, "retention_limit": self._retention_limit},
            )
        return scan_id

    def get_by_id(self, scan_id: int) -> ScanHistoryEntry | None:
        parsed = _as_row_id(scan_id, "scan_id")
        row = self._db.query_one(
            """
            SELECT
                id,
                claim_raw,
                claim_value,
                claim_unit,
                claim_type,
                verdict_json,
                created_at
            FROM scan_history
            WHERE id = ?
            """,
            (parsed,),
        )
        if row is None:
            return None
        component_rows = self._db.query_all(
            """
            SELECT part_number, manufacturer, category, bounding_box_json, confidence
            FROM scan_components
            WHERE scan_id = ?
            ORDER BY position ASC
            """,
            (parsed,),
        )
        return ScanHistoryEntry(
            id=_row_int(row, "id", "scan_history.id"),
            claim=Claim(
                raw=_row_text(row, "claim_raw", "scan_history.claim_raw"),
                value=_row_optional_float(row, "claim_value", "scan_history.claim_value"),
                unit=_row_optional_text(row, "claim_unit", "scan_history.claim_unit"),
                claim_type=_row_optional_text(row, "claim_type", "scan_history.claim_type"),
            ),
            verdict=Verdict.from_json(_row_text(row, "verdict_json", "scan_history.verdict_json")),
            components=tuple(_scan_component_from_row(item) for item in component_rows),
            created_at=_row_datetime(row, "created_at", "scan_history.created_at"),
        )

    def get_recent(
        self,
        limit: int = DEFAULT_HISTORY_PAGE_SIZE,
        offset: int = 0,
    ) -> list[ScanHistorySummary]:
        self._validate_page(limit, offset)
        rows = self._db.query_all(
            f"""
            SELECT {_SCAN_SUMMARY_COLUMNS}
            FROM scan_history
            ORDER BY created_at DESC, id DESC
            LIMIT ? OFFSET ?
            """,
            (limit, offset),
        )
        return [_scan_summary_from_row(row) for row in rows]

    def get_by_verdict_type(
        self,
        verdict_type: str,
        limit: int = DEFAULT_HISTORY_PAGE_SIZE,
        offset: int = 0,
    ) -> list[ScanHistorySummary]:
        parsed = _as_non_empty_str(verdict_type, "verdict_type")
        self._validate_page(limit, offset)
        rows = self._db.query_all(
            f"""
            SELECT {_SCAN_SUMMARY_COLUMNS}
            FROM scan_history
            WHERE verdict_type = ?
            ORDER BY created_at DESC, id DESC
            LIMIT ? OFFSET ?
            """,
            (parsed, limit, offset),
        )
        return [_scan_summary_from_row(row) for row in rows]

    def search(self, text: str, limit: int = DEFAULT_SEARCH_LIMIT) -> list[ScanHistorySummary]:
        """Substring search over the raw claim text and the verdict summary."""

        self._validate_page(limit)
        if not isinstance(text, str):
            raise ValueError("text must be a string")
        needle = text.strip()
        if not needle:
            return []
        pattern = f"%{_escape_like(needle)}%"
        rows = self._db.query_all(
            f"""
            SELECT {_SCAN_SUMMARY_COLUMNS}
            FROM scan_history
            WHERE claim_raw LIKE ? ESCAPE '\\' OR verdict_summary LIKE ? ESCAPE '\\'
            ORDER BY created_at DESC, id DESC
            LIMIT ?
            """,
            (pattern, pattern, limit),
        )
        return [_scan_summary_from_row(row) for row in rows]

    def delete(self, scan_id: int) -> bool:
        parsed = _as_row_id(scan_id, "scan_id")
        return self._db.execute("DELETE FROM scan_history WHERE id = ?", (parsed,)).rowcount > 0

    def clear_all(self) -> int:
        return self._db.execute("DELETE FROM scan_history").rowcount

    def get_count(self) -> int:
        row = self._db.query_one("SELECT COUNT(*) AS scan_count FROM scan_history")
        return _row_int(row, "scan_count", "scan_history.scan_count")

    def get_stats(self) -> ScanHistoryStats:
        totals = self._db.query_one(
            """
            SELECT COUNT(*) AS total_scans, MAX(created_at) AS last_scan_at
            FROM scan_history
            """
        )
        rows = self._db.query_all(
            """
            SELECT verdict_type, COUNT(*) AS scan_count
            FROM scan_history
            GROUP BY verdict_type
            ORDER BY verdict_type ASC
            """
        )
        return ScanHistoryStats(
            total_scans=_row_int(totals, "total_scans", "scan_history.total_scans"),
            by_verdict_type={
                _row_text(row, "verdict_type", "scan_history.verdict_type"): _row_int(
                    row, "scan_count", "scan_history.scan_count"
                )
                for row in rows
            },
            last_scan_at=_row_optional_datetime(
                totals, "last_scan_at", "scan_history.last_scan_at"
            ),
        )

    def _enforce_retention(self, conn: sqlite3.Connection) -> int:
        row = self._db.query_one("SELECT COUNT(*) AS scan_count FROM scan_history", conn=conn)
        surplus = _row_int(row, "scan_count", "scan_history.scan_count") - self._retention_limit
        if surplus <= 0:
            return 0
        result = self._db.execute(
            """
            DELETE FROM scan_history
            WHERE id IN (
                SELECT id
                FROM scan_history
                ORDER BY created_at ASC, id ASC
                LIMIT ?
            )
            """,
            (surplus,),
            conn=conn,
        )
        return result.rowcount


# ---------------------------------------------------------------------------
# Saved components
# ---------------------------------------------------------------------------


class SavedComponentsRepo(_BaseRepo):
    """User-curated components with notes and an ordered tag set."""

    def save(
        self,
        component: ComponentSpecs,
        *,
        notes: str | None = None,
        tags: Iterable[str] | None = None,
        conn: sqlite3.Connection | None = None,
    ) -> int:
        """Insert or merge ``component`` and return the id of the surviving row."""

        if not isinstance(component, ComponentSpecs):
            raise TypeError(f"expected ComponentSpecs, got {type(component).__name__}")

        with self._atomic(conn) as tx:
            existing = self._get_by_key(component.part_number, component.manufacturer, conn=tx)
            merged = merge_saved_component(
                existing,
                component,
                notes=notes,
                tags=None if tags is None else normalize_tags(_as_tag_list(tags)),
                now=self._db.now(),
            )
            if merged.id is None:
                result = self._db.execute(
                    """
                    INSERT INTO saved_components (
                        part_number,
                        manufacturer,
                        category,
                        specs_json,
                        notes,
                        tags_json,
                        created_at,
                        updated_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        merged.part_number,
                        merged.manufacturer,
                        merged.category.value,
                        _spec_map_json(merged.specs),
                        merged.notes,
                        _tags_json(merged.tags),
                        _to_epoch_ms(merged.created_at),
                        _to_epoch_ms(merged.updated_at),
                    ),
                    conn=tx,
                )
                if result.lastrowid is None:
                    raise ValueError("saved_components insert did not yield a row id")
                return result.lastrowid

            self._db.execute(
                """
                UPDATE saved_components
                SET specs_json = ?,
                    notes = ?,
                    tags_json = ?,
                    updated_at = ?
                WHERE id = ?
                """,
                (
                    _spec_map_json(merged.specs),
                    merged.notes,
                    _tags_json(merged.tags),
                    _to_epoch_ms(merged.updated_at),
                    merged.id,
                ),
                conn=tx,
            )
            return merged.id

    def toggle(self, component: ComponentSpecs) -> bool:
        """Save ``component`` if absent, remove it if present; returns the new saved state."""

        if not isinstance(component, ComponentSpecs):
            raise TypeError(f"expected ComponentSpecs, got {type(component).__name__}")
        with self._db.transaction() as tx:
            existing = self._get_by_key(component.part_number, component.manufacturer, conn=tx)
            if existing is not None:
                self._db.execute(
                    "DELETE FROM saved_components WHERE id = ?", (existing.id,), conn=tx
                )
                return False
            self.save(component, conn=tx)
            return True

    def add_tag(self, saved_id: int, tag: str) -> bool:
        """Add ``tag``; returns False only when ``saved_id`` does not exist."""

        normalized = normalize_tag(tag)
        return self._rewrite_tags(saved_id, lambda tags: with_tag(tags, normalized))

    def remove_tag(self, saved_id: int, tag: str) -> bool:
        normalized = normalize_tag(tag)
        return self._rewrite_tags(saved_id, lambda tags: without_tag(tags, normalized))

    def update_tags(self, saved_id: int, tags: Iterable[str]) -> bool:
        replacement = normalize_tags(_as_tag_list(tags))
        return self._rewrite_tags(saved_id, lambda _tags: replacement)

    def update_notes(self, saved_id: int, notes: str | None) -> bool:
        """Replace notes; ``None`` clears them."""

        parsed_id = _as_row_id(saved_id, "saved_id")
        parsed_notes = None if notes is None else _as_non_empty_str(notes, "notes")
        result = self._db.execute(
            "UPDATE saved_components SET notes = ?, updated_at = ? WHERE id = ?",
            (parsed_notes, self._now_ms(), parsed_id),
        )
        return result.rowcount > 0

    def get_by_id(self, saved_id: int) -> SavedComponentEntry | None:
        parsed = _as_row_id(saved_id, "saved_id")
        row = self._db.query_one(
            f"SELECT {_SAVED_COLUMNS} FROM saved_components WHERE id = ?",
            (parsed,),
        )
        return None if row is None else _saved_from_row(row)

    def get_by_part_number(self, part_number: str, manufacturer: str) -> SavedComponentEntry | None:
        return self._get_by_key(part_number, manufacturer)

    def get_all(self) -> list[SavedComponentEntry]:
        rows = self._db.query_all(
            f"SELECT {_SAVED_COLUMNS} FROM saved_components ORDER BY updated_at DESC, id DESC"
        )
        return [_saved_from_row(row) for row in rows]

    def get_by_tag(self, tag: str) -> list[SavedComponentEntry]:
        normalized = normalize_tag(tag)
        rows = self._db.query_all(
            f"""
            SELECT {_SAVED_COLUMNS}
            FROM saved_components
            WHERE EXISTS (
                SELECT 1 FROM json_each(saved_components.tags_json) AS t WHERE t.value = ?
            )
            ORDER BY updated_at DESC, id DESC
            """,
            (normalized,),
        )
        return [_saved_from_row(row) for row in rows]

    def get_by_category(self, category: ComponentCategory | str) -> list[SavedComponentEntry]:
        parsed = _as_category(category, "category")
        rows = self._db.query_all(
            f"""
            SELECT {_SAVED_COLUMNS}
            FROM saved_components
            WHERE category = ?
            ORDER BY updated_at DESC, id DESC
            """,
            (parsed.value,),
        )
        return [_saved_from_row(row) for row in rows]

    def search(self, text: str, limit: int = DEFAULT_SEARCH_LIMIT) -> list[SavedComponentEntry]:
        """Substring search over part number, manufacturer and notes."""

        self._validate_page(limit)
        if not isinstance(text, str):
            raise ValueError("text must be a string")
        needle = text.strip()
        if not needle:
            return []
        pattern = f"%{_escape_like(needle)}%"
        rows = self._db.query_all(
            f"""
            SELECT {_SAVED_COLUMNS}
            FROM saved_components
            WHERE part_number LIKE ? ESCAPE '\\'
               OR manufacturer LIKE ? ESCAPE '\\'
               OR notes LIKE ? ESCAPE '\\'
            ORDER BY updated_at DESC, id DESC
            LIMIT ?
            """,
            (pattern, pattern, pattern, limit),
        )
        return [_saved_from_row(row) for row in rows]

    def is_saved(self, part_number: str, manufacturer: str) -> bool:
        parsed_part = _as_non_empty_str(part_number, "part_number")
        parsed_manufacturer = _as_non_empty_str(manufacturer, "manufacturer")
        row = self._db.query_one(
            "SELECT 1 AS hit FROM saved_components WHERE part_number = ? AND manufacturer = ?",
            (parsed_part, parsed_manufacturer),
        )
        return row is not None

    def get_all_tags(self) -> list[str]:
        rows = self._db.query_all(
            """
            SELECT DISTINCT t.value AS tag
            FROM saved_components, json_each(saved_components.tags_json) AS t
            ORDER BY tag ASC
            """
        )
        return [_row_text(row, "tag", "saved_components.tag") for row in rows]

    def get_count(self) -> int:
        row = self._db.query_one("SELECT COUNT(*) AS saved_count FROM saved_components")
        return _row_int(row, "saved_count", "saved_components.saved_count")

    def remove(self, saved_id: int) -> bool:
        parsed = _as_row_id(saved_id, "saved_id")
        return self._db.execute("DELETE FROM saved_components WHERE id = ?", (parsed,)).rowcount > 0

    def remove_by_part_number(self, part_number: str, manufacturer: str) -> bool:
        parsed_part = _as_non_empty_str(part_number, "part_number")
        parsed_manufacturer = _as_non_empty_str(manufacturer, "manufacturer")
        result = self._db.execute(
            "DELETE FROM saved_components WHERE part_number = ? AND manufacturer = ?",
            (parsed_part, parsed_manufacturer),
        )
        return result.rowcount > 0

    def clear_all(self) -> int:
        return self._db.execute("DELETE FROM saved_components").rowcount

    def _get_by_key(
        self,
        part_number: str,
        manufacturer: str,
        *,
        conn: sqlite3.Connection | None = None,
    ) -> SavedComponentEntry | None:
        parsed_part = _as_non_empty_str(part_number, "part_number")
        parsed_manufacturer = _as_non_empty_str(manufacturer, "manufacturer")
        row = self._db.query_one(
            f"""
            SELECT {_SAVED_COLUMNS}
            FROM saved_components
            WHERE part_number = ? AND manufacturer = ?
            """,
            (parsed_part, parsed_manufacturer),
            conn=conn,
        )
        return None if row is None else _saved_from_row(row)

    def _rewrite_tags(self, saved_id: int, rewrite: _TagRewrite) -> bool:
        parsed_id = _as_row_id(saved_id, "saved_id")
        with self._db.transaction() as tx:
            row = self._db.query_one(
                "SELECT tags_json FROM saved_components WHERE id = ?",
                (parsed_id,),
                conn=tx,
            )
            if row is None:
                return False
            current = _load_tags(_row_text(row, "tags_json", "saved_components.tags_json"))
            updated = rewrite(current)
            if updated != current:
                self._db.execute(
                    "UPDATE saved_components SET tags_json = ?, updated_at = ? WHERE id = ?",
                    (_tags_json(updated), self._now_ms(), parsed_id),
                    conn=tx,
                )
            return True


# ---------------------------------------------------------------------------
# Offline bundles and consent
# ---------------------------------------------------------------------------


class OfflineBundleRepo(_BaseRepo):
    """Registry of imported offline component bundles; at most one is active."""

    def record_import(
        self,
        bundle_version: str,
        component_count: int,
        size_bytes: int,
        *,
        conn: sqlite3.Connection | None = None,
    ) -> OfflineBundle:
        parsed_version = _as_non_empty_str(bundle_version, "bundle_version")
        parsed_count = _as_non_negative_int(component_count, "component_count")
        parsed_size = _as_non_negative_int(size_bytes, "size_bytes")
        downloaded_at = self._now_ms()

        with self._atomic(conn) as tx:
            self._db.execute(
                "UPDATE offline_bundle SET is_active = 0 WHERE is_active = 1",
                conn=tx,
            )
            result = self._db.execute(
                """
                INSERT INTO offline_bundle (
                    bundle_version,
                    component_count,
                    size_bytes,
                    downloaded_at,
                    is_active
                ) VALUES (?, ?, ?, ?, 1)
                """,
                (parsed_version, parsed_count, parsed_size, downloaded_at),
                conn=tx,
            )
        if result.lastrowid is None:
            raise ValueError("offline_bundle insert did not yield a row id")
        return OfflineBundle(
            id=result.lastrowid,
            bundle_version=parsed_version,
            component_count=parsed_count,
            size_bytes=parsed_size,
            downloaded_at=_from_epoch_ms(downloaded_at),
            is_active=True,
        )

    def get_active(self) -> OfflineBundle | None:
        row = self._db.query_one(
            f"SELECT {_BUNDLE_COLUMNS} FROM offline_bundle WHERE is_active = 1"
        )
        return None if row is None else _bundle_from_row(row)

    def list_bundles(self, *, limit: int = DEFAULT_HISTORY_PAGE_SIZE) -> list[OfflineBundle]:
        self._validate_page(limit)
        rows = self._db.query_all(
            f"""
            SELECT {_BUNDLE_COLUMNS}
            FROM offline_bundle
            ORDER BY downloaded_at DESC, id DESC
            LIMIT ?
            """,
            (limit,),
        )
        return [_bundle_from_row(row) for row in rows]


class ConsentLogRepo(_BaseRepo):
    """Append-only record of consent decisions."""

    def record(self, consent_type: str, granted: bool, version: str) -> ConsentRecord:
        parsed_type = _as_non_empty_str(consent_type, "consent_type")
        parsed_version = _as_non_empty_str(version, "version")
        if not isinstance(granted, bool):
            raise ValueError("granted must be a bool")
        recorded_at = self._now_ms()
        result = self._db.execute(
            """
            INSERT INTO consent_log (consent_type, granted, version, recorded_at)
            VALUES (?, ?, ?, ?)
            """,
            (parsed_type, int(granted), parsed_version, recorded_at),
        )
        if result.lastrowid is None:
            raise ValueError("consent_log insert did not yield a row id")
        return ConsentRecord(
            id=result.lastrowid,
            consent_type=parsed_type,
            granted=granted,
            version=parsed_version,
            recorded_at=_from_epoch_ms(recorded_at),
        )

    def latest(self, consent_type: str) -> ConsentRecord | None:
        parsed = _as_non_empty_str(consent_type, "consent_type")
        row = self._db.query_one(
            f"""
            SELECT {_CONSENT_COLUMNS}
            FROM consent_log
            WHERE consent_type = ?
            ORDER BY recorded_at DESC, id DESC
            LIMIT 1
            """,
            (parsed,),
        )
        return None if row is None else _consent_from_row(row)

    def history(
        self,
        consent_type: str | None = None,
        *,
        limit: int = DEFAULT_HISTORY_PAGE_SIZE,
        offset: int = 0,
    ) -> list[ConsentRecord]:
        self._validate_page(limit, offset)
        params: list[object] = []
        sql = f"SELECT {_CONSENT_COLUMNS} FROM consent_log"
        if consent_type is not None:
            sql += " WHERE consent_type = ?"
            params.append(_as_non_empty_str(consent_type, "consent_type"))
        sql += " ORDER BY recorded_at DESC, id DESC LIMIT ? OFFSET ?"
        params.extend((limit, offset))
        rows = self._db.query_all(sql, cast("SQLParams", tuple(params)))
        return [_consent_from_row(row) for row in rows]


# ---------------------------------------------------------------------------
# Row mapping
# ---------------------------------------------------------------------------


def _component_params(entry: ComponentCacheEntry) -> tuple[object, ...]:
    retrieved_at = entry.source.retrieved_at
    return (
        entry.part_number,
        entry.manufacturer,
        entry.category.value,
        _spec_map_json(entry.specs),
        entry.source.type.value,
        entry.source.url,
        entry.source.confidence,
        None if retrieved_at is None else _to_epoch_ms(retrieved_at),
        entry.datasheet_url,
        _to_epoch_ms(entry.created_at),
        _to_epoch_ms(entry.updated_at),
        None if entry.expires_at is None else _to_epoch_ms(entry.expires_at),
    )


def _component_from_row(row: Mapping[str, RowValue]) -> ComponentCacheEntry:
    return ComponentCacheEntry(
        id=_row_int(row, "id", "component_cache.id"),
        part_number=_row_text(row, "part_number", "component_cache.part_number"),
        manufacturer=_row_text(row, "manufacturer", "component_cache.manufacturer"),
        category=ComponentCategory.parse_lenient(row.get("category")),
        specs=parse_spec_map(
            _load_json_object(
                _row_text(row, "specs_json", "component_cache.specs_json"),
                "component_cache.specs_json",
            ),
            "component_cache.specs_json",
        ),
        source=DataSource(
            type=SourceType(_row_text(row, "source_type", "component_cache.source_type")),
            confidence=_row_float(row, "source_confidence", "component_cache.source_confidence"),
            url=_row_optional_text(row, "source_url", "component_cache.source_url"),
            retrieved_at=_row_optional_datetime(
                row, "source_retrieved_at", "component_cache.source_retrieved_at"
            ),
        ),
        datasheet_url=_row_optional_text(row, "datasheet_url", "component_cache.datasheet_url"),
        created_at=_row_datetime(row, "created_at", "component_cache.created_at"),
        updated_at=_row_datetime(row, "updated_at", "component_cache.updated_at"),
        expires_at=_row_optional_datetime(row, "expires_at", "component_cache.expires_at"),
    )


def _datasheet_params(entry: DatasheetCacheEntry) -> tuple[object, ...]:
    return (
        entry.url,
        entry.part_number,
        entry.content_hash,
        None if entry.parsed_specs is None else _spec_map_json(entry.parsed_specs),
        entry.raw_text,
        entry.page_count,
        entry.file_size,
        _to_epoch_ms(entry.created_at),
        None if entry.expires_at is None else _to_epoch_ms(entry.expires_at),
    )


def _datasheet_from_row(row: Mapping[str, RowValue]) -> DatasheetCacheEntry:
    parsed_specs_json = _row_optional_text(
        row, "parsed_specs_json", "datasheet_cache.parsed_specs_json"
    )
    return DatasheetCacheEntry(
        id=_row_int(row, "id", "datasheet_cache.id"),
        url=_row_text(row, "url", "datasheet_cache.url"),
        part_number=_row_text(row, "part_number", "datasheet_cache.part_number"),
        content_hash=_row_text(row, "content_hash", "datasheet_cache.content_hash"),
        parsed_specs=(
            None
            if parsed_specs_json is None
            else parse_spec_map(
                _load_json_object(parsed_specs_json, "datasheet_cache.parsed_specs_json"),
                "datasheet_cache.parsed_specs_json",
            )
        ),
        raw_text=_row_optional_text(row, "raw_text", "datasheet_cache.raw_text"),
        page_count=_row_optional_int(row, "page_count", "datasheet_cache.page_count"),
        file_size=_row_optional_int(row, "file_size", "datasheet_cache.file_size"),
        created_at=_row_datetime(row, "created_at", "datasheet_cache.created_at"),
        expires_at=_row_optional_datetime(row, "expires_at", "datasheet_cache.expires_at"),
    )


def _scan_summary_from_row(row: Mapping[str, RowValue]) -> ScanHistorySummary:
    return ScanHistorySummary(
        id=_row_int(row, "id", "scan_history.id"),
        claim_raw=_row_text(row, "claim_raw", "scan_history.claim_raw"),
        verdict_type=_row_text(row, "verdict_type", "scan_history.verdict_type"),
        confidence=_row_float(row, "verdict_confidence", "scan_history.verdict_confidence"),
        component_count=_row_int(row, "component_count", "scan_history.component_count"),
        created_at=_row_datetime(row, "created_at", "scan_history.created_at"),
    )


def _scan_component_from_row(row: Mapping[str, RowValue]) -> ScanComponent:
    box_json = _row_optional_text(row, "bounding_box_json", "scan_components.bounding_box_json")
    return ScanComponent(
        part_number=_row_text(row, "part_number", "scan_components.part_number"),
        manufacturer=_row_text(row, "manufacturer", "scan_components.manufacturer"),
        category=ComponentCategory.parse_lenient(row.get("category")),
        confidence=_row_float(row, "confidence", "scan_components.confidence"),
        bounding_box=None if box_json is None else BoundingBox.from_json(box_json),
    )


def _saved_from_row(row: Mapping[str, RowValue]) -> SavedComponentEntry:
    return SavedComponentEntry(
        id=_row_int(row, "id", "saved_components.id"),
        part_number=_row_text(row, "part_number", "saved_components.part_number"),
        manufacturer=_row_text(row, "manufacturer", "saved_components.manufacturer"),
        category=ComponentCategory.parse_lenient(row.get("category")),
        specs=parse_spec_map(
            _load_json_object(
                _row_text(row, "specs_json", "saved_components.specs_json"),
                "saved_components.specs_json",
            ),
            "saved_components.specs_json",
        ),
        notes=_row_optional_text(row, "notes", "saved_components.notes"),
        tags=_load_tags(_row_text(row, "tags_json", "saved_components.tags_json")),
        created_at=_row_datetime(row, "created_at", "saved_components.created_at"),
        updated_at=_row_datetime(row, "updated_at", "saved_components.updated_at"),
    )


def _bundle_from_row(row: Mapping[str, RowValue]) -> OfflineBundle:
    return OfflineBundle(
        id=_row_int(row, "id", "offline_bundle.id"),
        bundle_version=_row_text(row, "bundle_version", "offline_bundle.bundle_version"),
        component_count=_row_int(row, "component_count", "offline_bundle.component_count"),
        size_bytes=_row_int(row, "size_bytes", "offline_bundle.size_bytes"),
        downloaded_at=_row_datetime(row, "downloaded_at", "offline_bundle.downloaded_at"),
        is_active=_row_int(row, "is_active", "offline_bundle.is_active") == 1,
    )


def _consent_from_row(row: Mapping[str, RowValue]) -> ConsentRecord:
    return ConsentRecord(
        id=_row_int(row, "id", "consent_log.id"),
        consent_type=_row_text(row, "consent_type", "consent_log.consent_type"),
        granted=_row_int(row, "granted", "consent_log.granted") == 1,
        version=_row_text(row, "version", "consent_log.version"),
        recorded_at=_row_datetime(row, "recorded_at", "consent_log.recorded_at"),
    )


# ---------------------------------------------------------------------------
# Value helpers
# ---------------------------------------------------------------------------


def _spec_map_json(specs: SpecMap) -> str:
    return canonical_json({name: value.to_dict() for name, value in specs.items()})


def _tags_json(tags: Sequence[str]) -> str:
    # Insertion order is the tag order; do not sort.
    return json.dumps(list(tags), separators=(",", ":"), ensure_ascii=False)


def _load_tags(payload: str) -> tuple[str, ...]:
    try:
        loaded = json.loads(payload)
    except json.JSONDecodeError as exc:
        raise ValueError(f"saved_components.tags_json: invalid JSON ({exc})") from exc
    return normalize_tags(loaded, "saved_components.tags_json")


def _as_tag_list(tags: Iterable[str]) -> list[object]:
    if isinstance(tags, str):
        raise ValueError("tags: expected a collection of tags, got a single string")
    return list(tags)


def _escape_like(text: str) -> str:
    return text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _to_epoch_ms(value: datetime) -> int:
    if value.tzinfo is None or value.utcoffset() is None:
        raise ValueError("datetime must be timezone-aware UTC")
    return (value.astimezone(UTC) - _EPOCH) // _ONE_MS


def _from_epoch_ms(value: int) -> datetime:
    return _EPOCH + value * _ONE_MS


def _as_category(value: ComponentCategory | str, path: str) -> ComponentCategory:
    if isinstance(value, ComponentCategory):
        return value
    parsed = _as_non_empty_str(value, path).lower()
    try:
        return ComponentCategory(parsed)
    except ValueError as exc:
        allowed = ", ".join(item.value for item in ComponentCategory)
        raise ValueError(f"{path}: invalid value {value!r}; expected one of: {allowed}") from exc


def _as_row_id(value: object, path: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{path}: expected integer")
    if value <= 0:
        raise ValueError(f"{path}: must be > 0")
    return value


def _row_text(row: Mapping[str, RowValue] | None, key: str, path: str) -> str:
    value = None if row is None else row.get(key)
    if not isinstance(value, str):
        raise ValueError(f"{path}: expected text value")
    return value


def _row_optional_text(row: Mapping[str, RowValue], key: str, path: str) -> str | None:
    value = row.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValueError(f"{path}: expected text value")
    return value


def _row_int(row: Mapping[str, RowValue] | None, key: str, path: str) -> int:
    value = None if row is None else row.get(key)
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{path}: expected integer value")
    return value


def _row_optional_int(row: Mapping[str, RowValue], key: str, path: str) -> int | None:
    if row.get(key) is None:
        return None
    return _row_int(row, key, path)


def _row_float(row: Mapping[str, RowValue], key: str, path: str) -> float:
    value = row.get(key)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"{path}: expected numeric value")
    return float(value)


def _row_optional_float(row: Mapping[str, RowValue], key: str, path: str) -> float | None:
    if row.get(key) is None:
        return None
    return _row_float(row, key, path)


def _row_datetime(row: Mapping[str, RowValue], key: str, path: str) -> datetime:
    return _from_epoch_ms(_row_int(row, key, path))


def _row_optional_datetime(
    row: Mapping[str, RowValue] | None,
    key: str,
    path: str,
) -> datetime | None:
    if row is None or row.get(key) is None:
        return None
    return _row_datetime(row, key, path)


def _load_json_object(payload: str, path: str) -> dict[str, object]:
    try:
        loaded = json.loads(payload)
    except json.JSONDecodeError as exc:
        raise ValueError(f"{path}: invalid JSON ({exc})") from exc
    if not isinstance(loaded, dict):
        raise ValueError(f"{path}: JSON root must be object")
    out: dict[str, object] = {}
    for key, value in loaded.items():
        if not isinstance(key, str):
            raise ValueError(f"{path}: key must be text")
        out[key] = value
    return out


def _as_non_empty_str(value: object, path: str) -> str:
    if not isinstance(value, str):
        raise ValueError(f"{path}: expected string")
    parsed = value.strip()
    if not parsed:
        raise ValueError(f"{path}: must not be empty")
    return parsed


def _as_non_negative_int(value: object, path: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{path}: expected integer")
    if value < 0:
        raise ValueError(f"{path}: must be >= 0")
    return value


__all__ = [
    "ComponentCacheRepo",
    "ConsentLogRepo",
    "DatasheetCacheRepo",
    "OfflineBundleRepo",
    "SavedComponentsRepo",
    "ScanHistoryRepo",
]
