"""Unit tests for core domain models."""

from __future__ import annotations

import json
from dataclasses import FrozenInstanceError
from datetime import UTC, datetime, timedelta, timezone

import pytest

from speccheck_store.domain import models


def _utc_dt() -> datetime:
    return datetime(2026, 2, 1, 12, 0, 0, tzinfo=UTC)


def _lm2596() -> models.ComponentSpecs:
    return models.ComponentSpecs(
        part_number=" LM2596 ",
        manufacturer="Texas Instruments",
        category=models.ComponentCategory.IC,
        specs={
            "max_current": models.SpecValue(3_000, "mA"),
            "vin": {"value": 40, "unit": "V", "min": 4.5, "max": 40},
        },
        source=models.DataSource(models.SourceType.DATASHEET, 0.95, url="https://example.invalid"),
        datasheet_url="https://example.invalid/lm2596.pdf",
    )


def test_spec_value_serializes_range_under_short_keys() -> None:
    value = models.SpecValue(40, "V", conditions="Ta=25C", min_value=4.5, max_value=40)

    assert value.value == 40.0
    assert isinstance(value.value, float)
    assert value.to_dict() == {
        "value": 40.0,
        "unit": "V",
        "conditions": "Ta=25C",
        "min": 4.5,
        "max": 40.0,
        "typical": None,
    }
    assert models.SpecValue.from_dict(value.to_dict()) == value


@pytest.mark.parametrize(
    ("kwargs", "fragment"),
    [
        ({"value": 1.0, "unit": "A", "min_value": 2.0, "max_value": 1.0}, "min must be <= max"),
        ({"value": float("nan"), "unit": "A"}, "must be finite"),
        ({"value": True, "unit": "A"}, "expected number"),
        ({"value": 1.0, "unit": 5}, "expected string"),
    ],
)
def test_spec_value_rejects_invalid_values(kwargs: dict[str, object], fragment: str) -> None:
    with pytest.raises(ValueError, match=fragment):
        models.SpecValue(**kwargs)  # type: ignore[arg-type]


def test_component_specs_normalizes_fields_and_spec_dicts() -> None:
    specs = _lm2596()

    assert specs.part_number == "LM2596"
    assert specs.natural_key == ("LM2596", "Texas Instruments")
    assert isinstance(specs.specs["vin"], models.SpecValue)
    assert specs.specs["vin"].min_value == 4.5


def test_component_specs_json_roundtrip_is_canonical() -> None:
    specs = _lm2596()

    encoded = specs.to_json()
    decoded = models.ComponentSpecs.from_json(encoded)

    assert decoded == specs
    assert decoded.to_json() == encoded
    assert list(json.loads(encoded)) == sorted(json.loads(encoded))


def test_component_specs_from_dict_accepts_bare_source_type() -> None:
    specs = models.ComponentSpecs.from_dict(
        {"part_number": "XHP70.2", "manufacturer": "Cree", "category": "LED", "source": "ocr"}
    )

    assert specs.category is models.ComponentCategory.LED
    assert specs.source.type is models.SourceType.OCR
    assert specs.source.confidence == 1.0
    assert specs.specs == {}


def test_component_specs_from_dict_rejects_unknown_fields_and_categories() -> None:
    base = {"part_number": "NE555", "manufacturer": "TI", "category": "ic"}

    with pytest.raises(ValueError, match="unexpected fields: \\['pins'\\]"):
        models.ComponentSpecs.from_dict({**base, "pins": 8})
    with pytest.raises(ValueError, match="missing required fields: \\['manufacturer'\\]"):
        models.ComponentSpecs.from_dict({"part_number": "NE555", "category": "ic"})
    with pytest.raises(ValueError, match="expected one of"):
        models.ComponentSpecs.from_dict({**base, "category": "flux_capacitor"})
    with pytest.raises(ValueError, match="ComponentSpecs.part_number"):
        models.ComponentSpecs.from_dict({**base, "part_number": "   "})


def test_stored_category_parsing_is_lenient() -> None:
    assert models.ComponentCategory.parse_lenient(" Battery ") is models.ComponentCategory.BATTERY
    assert models.ComponentCategory.parse_lenient("gizmo") is models.ComponentCategory.UNKNOWN
    assert models.ComponentCategory.parse_lenient(None) is models.ComponentCategory.UNKNOWN
    assert (
        models.ComponentCategory.parse_lenient(models.ComponentCategory.LED)
        is models.ComponentCategory.LED
    )


def test_naive_datetimes_are_rejected_and_offsets_normalized() -> None:
    with pytest.raises(ValueError, match="timezone-aware"):
        models.ComponentCacheEntry(
            part_number="LM2596",
            manufacturer="TI",
            category="ic",  # type: ignore[arg-type]
            specs={},
            source=models.DataSource(models.SourceType.API, 0.5),
            created_at=datetime(2026, 2, 1, 12, 0, 0),
            updated_at=_utc_dt(),
        )

    plus_two = timezone(timedelta(hours=2))
    entry = models.ComponentCacheEntry(
        part_number="LM2596",
        manufacturer="TI",
        category="ic",  # type: ignore[arg-type]
        specs={},
        source=models.DataSource(models.SourceType.API, 0.5),
        created_at=datetime(2026, 2, 1, 14, 0, 0, tzinfo=plus_two),
        updated_at="2026-02-01T12:00:00Z",  # type: ignore[arg-type]
        expires_at=_utc_dt() + timedelta(days=7),
    )

    assert entry.created_at == _utc_dt()
    assert entry.created_at.tzinfo is UTC
    assert entry.updated_at == _utc_dt()
    assert not entry.is_expired(_utc_dt())
    assert entry.is_expired(_utc_dt() + timedelta(days=7))


def test_pinned_cache_entry_never_expires() -> None:
    entry = models.ComponentCacheEntry(
        part_number="18650-35E",
        manufacturer="Samsung SDI",
        category=models.ComponentCategory.BATTERY,
        specs={},
        source=models.DataSource(models.SourceType.CACHE, 1.0),
        created_at=_utc_dt(),
        updated_at=_utc_dt(),
    )

    assert not entry.is_expired(_utc_dt() + timedelta(days=10_000))
    assert entry.to_specs().natural_key == entry.natural_key


def test_normalize_tags_keeps_first_occurrence_order() -> None:
    assert models.normalize_tags(["power", " bench", "power", "led "]) == (
        "power",
        "bench",
        "led",
    )
    assert models.normalize_tags(frozenset({"b", "a"})) == ("a", "b")
    assert models.normalize_tags(()) == ()


@pytest.mark.parametrize(
    ("tags", "fragment"),
    [
        ("power", "single string"),
        (["ok", ""], "tags\\[1\\]"),
        (["x" * 65], "must be <= 64"),
        ([str(index) for index in range(65)], "too many tags"),
        ({"power": 1}, "expected array"),
    ],
)
def test_normalize_tags_rejects_invalid_input(tags: object, fragment: str) -> None:
    with pytest.raises(ValueError, match=fragment):
        models.normalize_tags(tags)


def test_verdict_confidence_and_details_are_validated() -> None:
    verdict = models.Verdict(
        "impossible",
        0.9,
        summary="Claimed flux exceeds emitter maximum",
        details={"max_possible": 4292, "claimed": 10_000, "notes": ["per emitter"]},
    )
    assert models.Verdict.from_dict(verdict.to_dict()) == verdict

    with pytest.raises(ValueError, match="must be <= 1.0"):
        models.Verdict("plausible", 1.5)
    with pytest.raises(ValueError, match="must be >= 0.0"):
        models.Verdict("plausible", -0.1)
    with pytest.raises(ValueError, match="not JSON-serializable"):
        models.Verdict("plausible", 0.5, details={"when": _utc_dt()})


def test_bounding_box_is_frozen_and_non_negative() -> None:
    box = models.BoundingBox(0.1, 0.2, 0.3, 0.4)

    with pytest.raises(FrozenInstanceError):
        box.x = 0.5  # type: ignore[misc]
    with pytest.raises(ValueError, match="BoundingBox.width"):
        models.BoundingBox(0.0, 0.0, -1.0, 1.0)

    component = models.ScanComponent.from_dict(
        {
            "part_number": "XHP70.2",
            "manufacturer": "Cree",
            "category": "not-a-category",
            "confidence": 0.7,
            "bounding_box": {"x": 0.1, "y": 0.2, "width": 0.3, "height": 0.4},
        }
    )
    assert component.bounding_box == box
    assert component.category is models.ComponentCategory.UNKNOWN


def test_claim_serialization_matches_constructor() -> None:
    claim = models.Claim("10000 lumens", value=10_000, unit="lm", claim_type="luminous_flux")

    assert claim.value == 10_000.0
    assert models.Claim.from_json(claim.to_json()) == claim
    with pytest.raises(ValueError, match="JSON root must be an object"):
        models.Claim.from_json("[]")
    with pytest.raises(ValueError, match="invalid JSON"):
        models.Claim.from_json("{")


def test_parse_spec_map_reports_entry_path() -> None:
    with pytest.raises(ValueError, match="specs.vin"):
        models.parse_spec_map({"vin": 40})
