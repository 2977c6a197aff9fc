"""
Field-by-field merge policies applied when an upsert hits an existing natural key.

Each function is pure: it takes the stored row (or ``None``) and the incoming
values and returns the row that should be persisted. Repositories call these
inside a transaction, so the policy stays testable without a database.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import replace
from datetime import datetime, timedelta

from speccheck_store.domain.models import (
    ComponentCacheEntry,
    ComponentSpecs,
    DatasheetCacheEntry,
    SavedComponentEntry,
    normalize_tag,
    normalize_tags,
)


def merge_component_cache(
    existing: ComponentCacheEntry | None,
    incoming: ComponentSpecs,
    *,
    now: datetime,
    ttl: timedelta | None,
) -> ComponentCacheEntry:
    """Incoming specs, source and expiry win; ``created_at`` and ``id`` survive.

    ``ttl`` of ``None`` produces a pinned entry with no expiry.
    """

    expires_at = None if ttl is None else now + ttl
    return ComponentCacheEntry(
        id=None if existing is None else existing.id,
        part_number=incoming.part_number,
        manufacturer=incoming.manufacturer,
        category=incoming.category,
        specs=dict(incoming.specs),
        source=incoming.source,
        datasheet_url=incoming.datasheet_url,
        created_at=now if existing is None else existing.created_at,
        updated_at=now,
        expires_at=expires_at,
    )


def merge_datasheet(
    existing: DatasheetCacheEntry | None,
    incoming: DatasheetCacheEntry,
) -> DatasheetCacheEntry:
    """A re-fetched document replaces the cached one entirely; only the row id is kept."""

    if existing is None:
        return replace(incoming, id=None)
    return replace(incoming, id=existing.id)


def merge_saved_component(
    existing: SavedComponentEntry | None,
    incoming: ComponentSpecs,
    *,
    notes: str | None,
    tags: Iterable[str] | None,
    now: datetime,
) -> SavedComponentEntry:
    """Specs always overwrite; notes and tags overwrite only when given.

    Identity and category stay as first saved.
    """

    incoming_tags = None if tags is None else normalize_tags(list(tags))
    if existing is None:
        return SavedComponentEntry(
            part_number=incoming.part_number,
            manufacturer=incoming.manufacturer,
            category=incoming.category,
            specs=dict(incoming.specs),
            notes=notes,
            tags=() if incoming_tags is None else incoming_tags,
            created_at=now,
            updated_at=now,
        )

    return SavedComponentEntry(
        id=existing.id,
        part_number=existing.part_number,
        manufacturer=existing.manufacturer,
        category=existing.category,
        specs=dict(incoming.specs),
        notes=existing.notes if notes is None else notes,
        tags=existing.tags if incoming_tags is None else incoming_tags,
        created_at=existing.created_at,
        updated_at=now,
    )


def with_tag(tags: tuple[str, ...], tag: str) -> tuple[str, ...]:
    """Add ``tag`` to an ordered tag set; adding a present tag is a no-op."""

    normalized = normalize_tag(tag)
    if normalized in tags:
        return tags
    return normalize_tags((*tags, normalized))


def without_tag(tags: tuple[str, ...], tag: str) -> tuple[str, ...]:
    """Remove ``tag`` from an ordered tag set; removing an absent tag is a no-op."""

    normalized = normalize_tag(tag)
    return tuple(item for item in tags if item != normalized)


__all__ = [
    "merge_component_cache",
    "merge_datasheet",
    "merge_saved_component",
    "with_tag",
    "without_tag",
]
