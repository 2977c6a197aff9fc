"""Unit tests for upsert merge policies."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from speccheck_store.domain import merge, models

try:
    from hypothesis import HealthCheck, given, settings
    from hypothesis import strategies as st
except ModuleNotFoundError:
    _HYPOTHESIS_AVAILABLE = False
else:
    _HYPOTHESIS_AVAILABLE = True

_T0 = datetime(2026, 2, 1, 12, 0, 0, tzinfo=UTC)


def _specs(
    current: float = 3_000.0,
    *,
    source: models.SourceType = models.SourceType.API,
) -> models.ComponentSpecs:
    return models.ComponentSpecs(
        part_number="LM2596",
        manufacturer="Texas Instruments",
        category=models.ComponentCategory.IC,
        specs={"max_current": models.SpecValue(current, "mA")},
        source=models.DataSource(source, 0.9),
    )


def test_component_cache_insert_uses_now_and_ttl() -> None:
    entry = merge.merge_component_cache(None, _specs(), now=_T0, ttl=timedelta(days=7))

    assert entry.id is None
    assert entry.created_at == _T0
    assert entry.updated_at == _T0
    assert entry.expires_at == _T0 + timedelta(days=7)


def test_component_cache_recache_keeps_identity_and_created_at() -> None:
    first = merge.merge_component_cache(None, _specs(), now=_T0, ttl=timedelta(days=7))
    stored = models.ComponentCacheEntry(
        part_number=first.part_number,
        manufacturer=first.manufacturer,
        category=first.category,
        specs=first.specs,
        source=first.source,
        created_at=first.created_at,
        updated_at=first.updated_at,
        expires_at=first.expires_at,
        id=12,
    )
    later = _T0 + timedelta(days=3)

    merged = merge.merge_component_cache(
        stored,
        _specs(1_500.0, source=models.SourceType.DATASHEET),
        now=later,
        ttl=None,
    )

    assert merged.id == 12
    assert merged.created_at == _T0
    assert merged.updated_at == later
    assert merged.expires_at is None
    assert merged.specs["max_current"].value == 1_500.0
    assert merged.source.type is models.SourceType.DATASHEET


def test_datasheet_merge_replaces_everything_but_id() -> None:
    existing = models.DatasheetCacheEntry(
        url="https://example.invalid/a.pdf",
        part_number="LM2596",
        content_hash="old",
        created_at=_T0,
        raw_text="rev A",
        id=4,
    )
    incoming = models.DatasheetCacheEntry(
        url="https://example.invalid/a.pdf",
        part_number="LM2596",
        content_hash="new",
        created_at=_T0 + timedelta(hours=1),
        page_count=30,
        id=99,
    )

    merged = merge.merge_datasheet(existing, incoming)
    assert merged.id == 4
    assert merged.content_hash == "new"
    assert merged.raw_text is None
    assert merged.created_at == _T0 + timedelta(hours=1)
    assert merge.merge_datasheet(None, incoming).id is None


def test_saved_component_merge_keeps_notes_and_tags_unless_given() -> None:
    created = merge.merge_saved_component(
        None, _specs(), notes="bench PSU", tags=["power", "power", "bench"], now=_T0
    )
    assert created.tags == ("power", "bench")
    stored = models.SavedComponentEntry(
        part_number=created.part_number,
        manufacturer=created.manufacturer,
        category=created.category,
        specs=created.specs,
        created_at=created.created_at,
        updated_at=created.updated_at,
        notes=created.notes,
        tags=created.tags,
        id=3,
    )
    later = _T0 + timedelta(minutes=5)

    kept = merge.merge_saved_component(stored, _specs(1_000.0), notes=None, tags=None, now=later)
    assert kept.id == 3
    assert kept.notes == "bench PSU"
    assert kept.tags == ("power", "bench")
    assert kept.specs["max_current"].value == 1_000.0
    assert kept.created_at == _T0
    assert kept.updated_at == later

    replaced = merge.merge_saved_component(stored, _specs(), notes="rewired", tags=[], now=later)
    assert replaced.notes == "rewired"
    assert replaced.tags == ()


def test_saved_component_merge_keeps_first_saved_category() -> None:
    created = merge.merge_saved_component(None, _specs(), notes=None, tags=None, now=_T0)
    stored = models.SavedComponentEntry(
        part_number=created.part_number,
        manufacturer=created.manufacturer,
        category=created.category,
        specs=created.specs,
        created_at=created.created_at,
        updated_at=created.updated_at,
        id=8,
    )
    recategorized = models.ComponentSpecs(
        part_number="LM2596",
        manufacturer="Texas Instruments",
        category=models.ComponentCategory.INDUCTOR,
        specs={"max_current": models.SpecValue(2_000.0, "mA")},
        source=models.DataSource(models.SourceType.API, 0.9),
    )

    merged = merge.merge_saved_component(stored, recategorized, notes=None, tags=None, now=_T0)

    assert merged.category is models.ComponentCategory.IC
    assert merged.specs["max_current"].value == 2_000.0


def test_with_and_without_tag_are_idempotent() -> None:
    tags = ("power", "bench")

    assert merge.with_tag(tags, " power ") is tags
    assert merge.with_tag(tags, "led") == ("power", "bench", "led")
    assert merge.without_tag(tags, "bench") == ("power",)
    assert merge.without_tag(tags, "absent") == tags
    with pytest.raises(ValueError, match="tag"):
        merge.with_tag(tags, "  ")


if _HYPOTHESIS_AVAILABLE:
    _TAG = st.text(alphabet="abcdefghij-", min_size=1, max_size=8)

    @settings(
        max_examples=25,
        derandomize=True,
        deadline=None,
        suppress_health_check=[HealthCheck.function_scoped_fixture],
    )
    @given(tags=st.lists(_TAG, max_size=12), extra=_TAG)
    def test_tag_set_operations_preserve_order_and_uniqueness(
        tags: list[str],
        extra: str,
    ) -> None:
        normalized = models.normalize_tags(tags)
        added = merge.with_tag(normalized, extra)

        assert len(set(added)) == len(added)
        assert added[: len(normalized)] == normalized
        assert extra in added
        removed = merge.without_tag(added, extra)
        assert extra not in removed
        assert removed == tuple(tag for tag in normalized if tag != extra)

else:

    def test_tag_set_operations_preserve_order_and_uniqueness() -> None:
        pytest.skip("hypothesis is not installed")
