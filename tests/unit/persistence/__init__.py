"""Shared deterministic fixtures and builders for persistence tests."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Final

from speccheck_store.domain.models import (
    BoundingBox,
    Claim,
    ComponentCategory,
    ComponentSpecs,
    DataSource,
    ScanComponent,
    SourceType,
    SpecValue,
    Verdict,
)
from speccheck_store.persistence.store import SpecStore, StoreSettings
from speccheck_store.persistence.store_db import StoreDB

_BASE_TS: Final[datetime] = datetime(2026, 2, 1, 12, 0, 0, tzinfo=UTC)


def fixed_now(seed: int) -> datetime:
    return _BASE_TS + timedelta(seconds=seed)


class FakeClock:
    """Manually advanced UTC clock; always whole seconds so epoch-ms storage is exact."""

    def __init__(self, start: datetime | None = None) -> None:
        self._now = start if start is not None else fixed_now(0)

    def __call__(self) -> datetime:
        return self._now

    def advance(self, *, days: int = 0, hours: int = 0, seconds: int = 0) -> datetime:
        self._now = self._now + timedelta(days=days, hours=hours, seconds=seconds)
        return self._now

    def set(self, value: datetime) -> None:
        self._now = value


def make_db(tmp_path: Path, clock: FakeClock | None = None, **kwargs: object) -> StoreDB:
    db_path = tmp_path / "state" / "speccheck.db"
    return StoreDB(db_path, clock=clock, **kwargs)  # type: ignore[arg-type]


def make_store(
    tmp_path: Path,
    clock: FakeClock | None = None,
    **overrides: object,
) -> SpecStore:
    settings = StoreSettings(
        database_path=str(tmp_path / "state" / "speccheck.db"),
        **overrides,  # type: ignore[arg-type]
    )
    return SpecStore(settings, clock=clock)


def make_spec_value(seed: int, *, unit: str = "mA") -> SpecValue:
    return SpecValue(value=float(1_000 + seed), unit=unit, conditions="Ta=25C")


def make_component(
    seed: int,
    *,
    part_number: str | None = None,
    manufacturer: str = "Texas Instruments",
    category: ComponentCategory = ComponentCategory.IC,
    max_current: float | None = None,
    source_type: SourceType = SourceType.DATASHEET,
) -> ComponentSpecs:
    current = float(3_000 + seed) if max_current is None else max_current
    return ComponentSpecs(
        part_number=part_number if part_number is not None else f"PN-{seed:04d}",
        manufacturer=manufacturer,
        category=category,
        specs={
            "max_current": SpecValue(value=current, unit="mA"),
            "vin_max": SpecValue(value=40.0, unit="V", min_value=4.5, max_value=40.0),
        },
        source=DataSource(
            type=source_type,
            confidence=0.9,
            url=f"https://example.invalid/ds/{seed}.pdf",
        ),
        datasheet_url=f"https://example.invalid/ds/{seed}.pdf",
    )


def make_claim(seed: int, *, raw: str | None = None) -> Claim:
    return Claim(
        raw=raw if raw is not None else f"{10_000 + seed} lumens",
        value=float(10_000 + seed),
        unit="lm",
        claim_type="luminous_flux",
    )


def make_verdict(
    seed: int,
    *,
    verdict_type: str = "implausible",
    confidence: float = 0.8,
    summary: str | None = None,
) -> Verdict:
    return Verdict(
        verdict_type=verdict_type,
        confidence=confidence,
        summary=summary if summary is not None else f"claim {seed} exceeds physical limits",
        explanation="LED count and driver current cap output well below the claim.",
        details={"seed": seed, "max_lumens": 850.0},
    )


def make_scan_component(seed: int, *, position_hint: str = "") -> ScanComponent:
    return ScanComponent(
        part_number=f"LED-{seed:03d}{position_hint}",
        manufacturer="Cree",
        category=ComponentCategory.LED,
        confidence=0.75,
        bounding_box=BoundingBox(x=0.1 * (seed % 5), y=0.2, width=0.05, height=0.05),
    )


__all__ = [
    "FakeClock",
    "fixed_now",
    "make_claim",
    "make_component",
    "make_db",
    "make_scan_component",
    "make_spec_value",
    "make_store",
    "make_verdict",
]
