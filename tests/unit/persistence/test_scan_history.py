from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from speccheck_store.persistence.store_db import ExecuteResult, SQLParams

from . import (
    FakeClock,
    fixed_now,
    make_claim,
    make_scan_component,
    make_store,
    make_verdict,
)

if TYPE_CHECKING:
    import sqlite3
    from pathlib import Path

    from speccheck_store.persistence.store import SpecStore


def _component_rows(store: SpecStore) -> int:
    row = store.db.query_one("SELECT COUNT(*) AS n FROM scan_components")
    assert row is not None
    count = row["n"]
    assert isinstance(count, int)
    return count


def test_save_and_load_preserves_claim_verdict_and_component_order(tmp_path: Path) -> None:
    clock = FakeClock()
    store = make_store(tmp_path, clock)
    components = [make_scan_component(3), make_scan_component(1), make_scan_component(2)]

    scan_id = store.history.save(make_claim(1), make_verdict(1), components)
    entry = store.history.get_by_id(scan_id)

    assert entry is not None
    assert entry.id == scan_id
    assert entry.claim == make_claim(1)
    assert entry.verdict == make_verdict(1)
    assert entry.components == tuple(components)
    assert entry.created_at == fixed_now(0)
    assert store.history.get_by_id(scan_id + 100) is None
    store.close()


def test_scan_without_components_is_allowed(tmp_path: Path) -> None:
    store = make_store(tmp_path, FakeClock())
    scan_id = store.history.save(make_claim(1), make_verdict(1, verdict_type="plausible"))

    entry = store.history.get_by_id(scan_id)
    assert entry is not None
    assert entry.components == ()
    summary = store.history.get_recent()[0]
    assert summary.component_count == 0
    assert summary.verdict_type == "plausible"
    store.close()


def test_retention_keeps_newest_scans(tmp_path: Path) -> None:
    clock = FakeClock()
    store = make_store(tmp_path, clock, retention_limit=50)

    for seed in range(60):
        store.history.save(make_claim(seed), make_verdict(seed), [make_scan_component(seed)])
        clock.advance(seconds=1)

    assert store.history.get_count() == 50
    assert _component_rows(store) == 50

    recent = store.history.get_recent(limit=1_000)
    assert len(recent) == 50
    assert recent[0].claim_raw == make_claim(59).raw
    assert recent[-1].claim_raw == make_claim(10).raw
    store.close()


def test_retention_breaks_timestamp_ties_by_id(tmp_path: Path) -> None:
    store = make_store(tmp_path, FakeClock(), retention_limit=2)

    first = store.history.save(make_claim(1), make_verdict(1))
    second = store.history.save(make_claim(2), make_verdict(2))
    third = store.history.save(make_claim(3), make_verdict(3))

    assert store.history.get_by_id(first) is None
    assert [item.id for item in store.history.get_recent()] == [third, second]
    store.close()


def test_failed_component_insert_rolls_back_the_whole_scan(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    store = make_store(tmp_path, FakeClock())
    store.history.save(make_claim(0), make_verdict(0), [make_scan_component(0)])

    original_execute = store.db.execute

    def failing_execute(
        sql: str,
        params: SQLParams = (),
        *,
        conn: sqlite3.Connection | None = None,
    ) -> ExecuteResult:
        if "INSERT INTO scan_components" in sql and params[1] == 1:
            raise RuntimeError("simulated crash mid-scan")
        return original_execute(sql, params, conn=conn)

    monkeypatch.setattr(store.db, "execute", failing_execute)
    with pytest.raises(RuntimeError, match="simulated"):
        store.history.save(
            make_claim(1),
            make_verdict(1),
            [make_scan_component(1), make_scan_component(2)],
        )
    monkeypatch.undo()

    assert store.history.get_count() == 1
    assert _component_rows(store) == 1
    store.close()


def test_recent_verdict_filter_and_search(tmp_path: Path) -> None:
    clock = FakeClock()
    store = make_store(tmp_path, clock)

    store.history.save(make_claim(1, raw="20000mAh power bank"), make_verdict(1))
    clock.advance(seconds=1)
    store.history.save(
        make_claim(2, raw="65W charger"),
        make_verdict(2, verdict_type="plausible", summary="within 100% of the rated limit"),
    )
    clock.advance(seconds=1)
    store.history.save(make_claim(3, raw="10000mAh power bank"), make_verdict(3))

    assert [item.claim_raw for item in store.history.get_recent(limit=2)] == [
        "10000mAh power bank",
        "65W charger",
    ]
    assert [item.claim_raw for item in store.history.get_recent(limit=2, offset=2)] == [
        "20000mAh power bank"
    ]

    implausible = store.history.get_by_verdict_type("implausible")
    assert [item.claim_raw for item in implausible] == [
        "10000mAh power bank",
        "20000mAh power bank",
    ]
    assert store.history.get_by_verdict_type("unknown") == []

    assert [item.claim_raw for item in store.history.search("POWER BANK")] == [
        "10000mAh power bank",
        "20000mAh power bank",
    ]
    assert [item.claim_raw for item in store.history.search("100%")] == ["65W charger"]
    assert store.history.search("") == []
    store.close()


def test_delete_cascades_to_components_and_stats(tmp_path: Path) -> None:
    clock = FakeClock()
    store = make_store(tmp_path, clock)

    kept = store.history.save(make_claim(1), make_verdict(1), [make_scan_component(1)])
    clock.advance(seconds=30)
    dropped = store.history.save(
        make_claim(2),
        make_verdict(2, verdict_type="plausible"),
        [make_scan_component(2), make_scan_component(3)],
    )

    stats = store.history.get_stats()
    assert stats.total_scans == 2
    assert stats.by_verdict_type == {"implausible": 1, "plausible": 1}
    assert stats.last_scan_at == fixed_now(30)

    assert store.history.delete(dropped)
    assert not store.history.delete(dropped)
    assert _component_rows(store) == 1
    assert store.history.get_by_id(kept) is not None

    assert store.history.clear_all() == 1
    assert _component_rows(store) == 0
    empty = store.history.get_stats()
    assert empty.total_scans == 0
    assert empty.last_scan_at is None
    store.close()


def test_save_validates_argument_types(tmp_path: Path) -> None:
    store = make_store(tmp_path, FakeClock())

    with pytest.raises(TypeError, match="Claim"):
        store.history.save("1000 lumens", make_verdict(1))  # type: ignore[arg-type]
    with pytest.raises(TypeError, match=r"components\[0\]"):
        store.history.save(make_claim(1), make_verdict(1), ["LED"])  # type: ignore[list-item]
    with pytest.raises(ValueError, match="scan_id"):
        store.history.get_by_id(0)
    assert store.history.get_count() == 0
    store.close()
