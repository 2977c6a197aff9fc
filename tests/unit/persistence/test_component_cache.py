from __future__ import annotations

from datetime import timedelta
from typing import TYPE_CHECKING

import pytest

from speccheck_store.domain.models import ComponentCategory, ComponentSpecs
from speccheck_store.persistence.repositories import ComponentCacheRepo

from . import FakeClock, fixed_now, make_component, make_db, make_store

if TYPE_CHECKING:
    from pathlib import Path


def test_cache_then_lookup_round_trips_specs(tmp_path: Path) -> None:
    clock = FakeClock()
    store = make_store(tmp_path, clock)
    specs = make_component(1)

    stored = store.components.cache(specs)
    loaded = store.components.get_by_part_number_and_manufacturer("PN-0001", "Texas Instruments")

    assert stored.id is not None
    assert loaded is not None
    assert loaded == stored
    assert loaded.to_specs() == specs
    assert loaded.created_at == fixed_now(0)
    assert loaded.expires_at == fixed_now(0) + timedelta(days=7)
    store.close()


def test_recache_updates_in_place_and_keeps_created_at(tmp_path: Path) -> None:
    clock = FakeClock()
    store = make_store(tmp_path, clock)

    first = store.components.cache(make_component(1, max_current=3_000.0))
    clock.advance(hours=5)
    second = store.components.cache(make_component(1, max_current=2_500.0))

    assert second.id == first.id
    assert second.created_at == first.created_at
    assert second.updated_at == fixed_now(5 * 3_600)
    assert second.expires_at == fixed_now(5 * 3_600) + timedelta(days=7)
    assert second.specs["max_current"].value == 2_500.0
    assert store.components.get_stats().total_count == 1
    store.close()


def test_entry_expires_after_ttl_and_is_cleaned(tmp_path: Path) -> None:
    clock = FakeClock()
    store = make_store(tmp_path, clock)
    store.components.cache(make_component(7, part_number="LM2596", max_current=3_000.0))

    clock.advance(days=6, hours=23)
    assert store.components.get_by_part_number("LM2596") is not None

    clock.advance(days=1)
    assert store.components.get_by_part_number("LM2596") is None
    assert store.components.search("LM2596") == []

    stats = store.components.get_stats()
    assert stats.total_count == 1
    assert stats.expired_count == 1

    assert store.components.clean_expired() == 1
    assert store.components.get_stats().total_count == 0
    store.close()


def test_expiry_boundary_is_inclusive(tmp_path: Path) -> None:
    clock = FakeClock()
    store = make_store(tmp_path, clock, component_ttl_seconds=60)
    store.components.cache(make_component(1))

    clock.advance(seconds=59)
    assert store.components.get_by_part_number("PN-0001") is not None
    clock.advance(seconds=1)
    assert store.components.get_by_part_number("PN-0001") is None
    store.close()


def test_pinned_entries_never_expire_until_recached_unpinned(tmp_path: Path) -> None:
    clock = FakeClock()
    store = make_store(tmp_path, clock)

    pinned = store.components.cache(make_component(3), pinned=True)
    assert pinned.expires_at is None

    clock.advance(days=365)
    assert store.components.get_by_part_number("PN-0003") is not None
    assert store.components.clean_expired() == 0

    refreshed = store.components.cache(make_component(3))
    assert refreshed.expires_at == clock() + timedelta(days=7)
    store.close()


def test_part_number_lookup_prefers_most_recent_manufacturer(tmp_path: Path) -> None:
    clock = FakeClock()
    store = make_store(tmp_path, clock)

    store.components.cache(make_component(1, part_number="NE555", manufacturer="Texas Instruments"))
    clock.advance(seconds=10)
    store.components.cache(make_component(2, part_number="NE555", manufacturer="STMicro"))

    hit = store.components.get_by_part_number("NE555")
    assert hit is not None
    assert hit.manufacturer == "STMicro"

    ti = store.components.get_by_part_number_and_manufacturer("NE555", "Texas Instruments")
    assert ti is not None
    assert ti.manufacturer == "Texas Instruments"
    assert store.components.get_by_part_number_and_manufacturer("NE555", "Onsemi") is None
    store.close()


def test_search_ranks_exact_then_prefix_then_substring(tmp_path: Path) -> None:
    clock = FakeClock()
    store = make_store(tmp_path, clock)

    store.components.cache(make_component(1, part_number="LM2596", manufacturer="TI"))
    clock.advance(seconds=1)
    store.components.cache(make_component(2, part_number="XLM2596-5.0", manufacturer="XL"))
    clock.advance(seconds=1)
    store.components.cache(make_component(3, part_number="LM2596S-ADJ", manufacturer="Onsemi"))
    clock.advance(seconds=1)
    store.components.cache(make_component(4, part_number="AMS1117", manufacturer="AMS"))

    results = store.components.search("lm2596")
    assert [entry.part_number for entry in results] == ["LM2596", "LM2596S-ADJ", "XLM2596-5.0"]

    by_manufacturer = store.components.search("onsemi")
    assert [entry.part_number for entry in by_manufacturer] == ["LM2596S-ADJ"]

    assert len(store.components.search("LM2596", limit=1)) == 1
    assert store.components.search("   ") == []
    store.close()


def test_search_treats_like_wildcards_literally(tmp_path: Path) -> None:
    store = make_store(tmp_path, FakeClock())
    store.components.cache(make_component(1, part_number="R_10K%"))
    store.components.cache(make_component(2, part_number="R10K"))

    assert [entry.part_number for entry in store.components.search("%")] == ["R_10K%"]
    assert [entry.part_number for entry in store.components.search("R_")] == ["R_10K%"]
    store.close()


def test_get_by_category_pages_live_entries(tmp_path: Path) -> None:
    clock = FakeClock()
    store = make_store(tmp_path, clock)
    for seed in range(5):
        store.components.cache(make_component(seed, category=ComponentCategory.LED))
        clock.advance(seconds=1)
    store.components.cache(make_component(9, category=ComponentCategory.BATTERY))

    first_page = store.components.get_by_category(ComponentCategory.LED, limit=2)
    second_page = store.components.get_by_category("led", limit=2, offset=2)

    assert [entry.part_number for entry in first_page] == ["PN-0004", "PN-0003"]
    assert [entry.part_number for entry in second_page] == ["PN-0002", "PN-0001"]
    with pytest.raises(ValueError, match="limit"):
        store.components.get_by_category(ComponentCategory.LED, limit=0)
    with pytest.raises(ValueError, match="category"):
        store.components.get_by_category("flux_capacitor")
    store.close()


def test_cache_many_is_all_or_nothing(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    store = make_store(tmp_path, FakeClock())
    repo = store.components
    original_cache = repo.cache
    calls: list[str] = []

    def flaky_cache(specs: ComponentSpecs, **kwargs: object) -> object:
        calls.append(specs.part_number)
        if len(calls) == 3:
            raise RuntimeError("simulated write failure")
        return original_cache(specs, **kwargs)  # type: ignore[arg-type]

    monkeypatch.setattr(repo, "cache", flaky_cache)
    with pytest.raises(RuntimeError, match="simulated"):
        repo.cache_many([make_component(seed) for seed in range(5)])
    monkeypatch.undo()

    assert calls == ["PN-0000", "PN-0001", "PN-0002"]
    assert repo.get_stats().total_count == 0

    assert repo.cache_many([make_component(seed) for seed in range(5)]) == 5
    assert repo.cache_many([]) == 0
    with pytest.raises(TypeError, match=r"specs_list\[1\]"):
        repo.cache_many([make_component(1), {"part_number": "nope"}])  # type: ignore[list-item]
    assert repo.get_stats().total_count == 5
    store.close()


def test_stats_group_by_category_and_clear_all(tmp_path: Path) -> None:
    store = make_store(tmp_path, FakeClock())
    store.components.cache(make_component(1, category=ComponentCategory.LED))
    store.components.cache(make_component(2, category=ComponentCategory.LED))
    store.components.cache(make_component(3, category=ComponentCategory.CAPACITOR))

    stats = store.components.get_stats()
    assert stats.total_count == 3
    assert stats.expired_count == 0
    assert stats.by_category == {"capacitor": 1, "led": 2}

    assert store.components.clear_all() == 3
    assert store.components.get_stats().by_category == {}
    store.close()


def test_repo_rejects_non_positive_ttl(tmp_path: Path) -> None:
    db = make_db(tmp_path)
    with pytest.raises(ValueError, match="ttl"):
        ComponentCacheRepo(db, ttl=timedelta(0))
    with pytest.raises(TypeError, match="ComponentSpecs"):
        ComponentCacheRepo(db).cache({"part_number": "LM2596"})  # type: ignore[arg-type]


def test_expired_entry_is_invisible_to_every_read(tmp_path: Path) -> None:
    clock = FakeClock()
    store = make_store(tmp_path, clock)
    store.components.cache(
        make_component(
            3, part_number="XHP70.2", manufacturer="Cree", category=ComponentCategory.LED
        )
    )
    assert store.components.get_by_category(ComponentCategory.LED) != []

    clock.advance(days=7)

    assert store.components.get_by_part_number("XHP70.2") is None
    assert store.components.get_by_part_number_and_manufacturer("XHP70.2", "Cree") is None
    assert store.components.get_by_category(ComponentCategory.LED) == []
    assert store.components.search("XHP") == []
    assert store.components.get_stats().expired_count == 1
    store.close()
