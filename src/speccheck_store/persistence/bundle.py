"""
speccheck-store — offline bundle import

File: src/speccheck_store/persistence/bundle.py

Purpose
- Load a YAML offline bundle of component specs into the component cache.

What should be included in this file
- YAML parsing via ``yaml.safe_load``; the document is either a list of
  component objects or a mapping with a ``components`` list and an optional
  ``bundle_version``.
- Validation of every entry before anything is written.
- One transaction covering the pinned cache writes and the bundle record.

Functional requirements
- All-or-nothing: a single invalid entry rejects the whole bundle.
- Imported entries are pinned (never expire) and the new bundle becomes the
  only active one.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

import yaml

from speccheck_store.domain.models import CanonicalModel, ComponentSpecs, OfflineBundle
from speccheck_store.observability.logging import correlation_scope

if TYPE_CHECKING:
    from speccheck_store.persistence.store import SpecStore

logger = logging.getLogger(__name__)


class BundleImportError(ValueError):
    """Raised when a bundle file cannot be read or fails validation."""

    def __init__(self, path: Path, errors: Sequence[str]) -> None:
        self.path = path
        self.errors = tuple(errors)
        joined = "; ".join(self.errors)
        super().__init__(f"invalid offline bundle {path.as_posix()}: {joined}")


@dataclass(frozen=True, slots=True)
class BundleImportSummary(CanonicalModel):
    bundle: OfflineBundle
    source_path: str
    imported_count: int
    categories: dict[str, int]


def load_bundle_file(path: str | Path) -> tuple[str | None, list[ComponentSpecs]]:
    """Parse and validate a bundle file without touching the store.

    Returns the bundle version declared in the file (if any) and the parsed
    component specs in file order.
    """

    bundle_path = Path(path)
    try:
        with bundle_path.open("r", encoding="utf-8") as handle:
            payload = yaml.safe_load(handle)
    except OSError as exc:
        raise BundleImportError(bundle_path, [f"unable to read file: {exc}"]) from exc
    except yaml.YAMLError as exc:
        raise BundleImportError(bundle_path, [f"invalid YAML: {exc}"]) from exc

    declared_version: str | None = None
    records: Sequence[object]
    if isinstance(payload, list):
        records = payload
    elif isinstance(payload, Mapping):
        raw_version = payload.get("bundle_version")
        if raw_version is not None:
            if not isinstance(raw_version, (str, int, float)) or isinstance(raw_version, bool):
                raise BundleImportError(bundle_path, ["bundle_version must be a string"])
            declared_version = str(raw_version).strip() or None
        components_raw = payload.get("components")
        if isinstance(components_raw, Sequence) and not isinstance(
            components_raw, (str, bytes, bytearray)
        ):
            records = components_raw
        else:
            raise BundleImportError(
                bundle_path, ["document must be a list or contain a 'components' list"]
            )
    else:
        raise BundleImportError(
            bundle_path, ["document must be a list or contain a 'components' list"]
        )

    errors: list[str] = []
    components: list[ComponentSpecs] = []
    seen: dict[tuple[str, str], int] = {}
    for index, record in enumerate(records):
        entry_path = f"components[{index}]"
        if not isinstance(record, Mapping):
            errors.append(f"{entry_path} must be an object")
            continue
        try:
            spec = ComponentSpecs.from_dict(record)
        except ValueError as exc:
            errors.append(f"{entry_path}: {exc}")
            continue
        previous = seen.get(spec.natural_key)
        if previous is not None:
            errors.append(f"{entry_path} duplicates components[{previous}] {spec.natural_key}")
            continue
        seen[spec.natural_key] = index
        components.append(spec)

    if errors:
        raise BundleImportError(bundle_path, errors)
    return declared_version, components


def import_bundle(
    store: SpecStore,
    path: str | Path,
    *,
    bundle_version: str | None = None,
) -> BundleImportSummary:
    """Import a bundle file: pin every component and register the bundle as active.

    ``bundle_version`` overrides the version declared in the file; one of the
    two must be present.
    """

    bundle_path = Path(path)
    declared_version, components = load_bundle_file(bundle_path)
    version = (bundle_version or "").strip() or declared_version
    if not version:
        raise BundleImportError(
            bundle_path, ["bundle_version missing; declare it in the file or pass one explicitly"]
        )
    size_bytes = bundle_path.stat().st_size

    with correlation_scope(bundle_version=version):
        with store.db.transaction() as tx:
            store.components.cache_many(components, pinned=True, conn=tx)
            bundle = store.bundles.record_import(version, len(components), size_bytes, conn=tx)

        categories: dict[str, int] = {}
        for spec in components:
            categories[spec.category.value] = categories.get(spec.category.value, 0) + 1

        logger.info(
            "imported offline bundle",
            extra={
                "bundle_path": bundle_path.as_posix(),
                "component_count": len(components),
                "size_bytes": size_bytes,
            },
        )

    return BundleImportSummary(
        bundle=bundle,
        source_path=bundle_path.as_posix(),
        imported_count=len(components),
        categories=dict(sorted(categories.items())),
    )


__all__ = [
    "BundleImportError",
    "BundleImportSummary",
    "import_bundle",
    "load_bundle_file",
]
