"""Dataclass domain models with strict validation and canonical serialization."""

from __future__ import annotations

import json
import math
from collections.abc import Mapping
from dataclasses import dataclass, field, fields, is_dataclass
from datetime import UTC, datetime
from enum import Enum, StrEnum
from typing import NoReturn, TypeVar, cast

JSONScalar = str | int | float | bool | None
JSONValue = JSONScalar | list["JSONValue"] | dict[str, "JSONValue"]

TModel = TypeVar("TModel", bound="CanonicalModel")
TEnum = TypeVar("TEnum", bound=Enum)

_MAX_TEXT = 8192
_MAX_RAW_TEXT = 4 * 1024 * 1024
_MAX_JSON_DEPTH = 16
_MAX_JSON_COLLECTION = 512
_MAX_TAGS = 64
_MAX_TAG_LENGTH = 64


class ComponentCategory(StrEnum):
    IC = "ic"
    LED = "led"
    BATTERY = "battery"
    POUCH_CELL = "pouch_cell"
    CAPACITOR = "capacitor"
    INDUCTOR = "inductor"
    CONNECTOR = "connector"
    UNKNOWN = "unknown"

    @classmethod
    def parse_lenient(cls, value: object) -> ComponentCategory:
        """Map stored or upstream text onto a category, falling back to ``UNKNOWN``."""

        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            try:
                return cls(value.strip().lower())
            except ValueError:
                return cls.UNKNOWN
        return cls.UNKNOWN


class SourceType(StrEnum):
    DATASHEET = "datasheet"
    API = "api"
    CACHE = "cache"
    MANUAL = "manual"
    COMMUNITY = "community"
    OCR = "ocr"


class CanonicalModel:
    """Mixin for canonical dict/json serialization."""

    def to_dict(self) -> dict[str, JSONValue]:
        serialized = _serialize_value(self, self.__class__.__name__)
        if not isinstance(serialized, dict):
            _fail(self.__class__.__name__, "serialized model must be an object")
        return serialized

    def to_json(self) -> str:
        return canonical_json(self.to_dict())

    @classmethod
    def from_json(cls: type[TModel], raw: str) -> TModel:
        if not isinstance(raw, str):
            _fail(cls.__name__, f"expected JSON string, got {type(raw).__name__}")
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError as exc:
            _fail(cls.__name__, f"invalid JSON: {exc}")
        if not isinstance(parsed, dict):
            _fail(cls.__name__, "JSON root must be an object")
        return cls.from_dict(parsed)

    @classmethod
    def from_dict(cls: type[TModel], data: Mapping[str, object]) -> TModel:
        _fail(cls.__name__, "from_dict is not implemented for this model type")


def canonical_json(value: object) -> str:
    """Deterministic JSON for persistence payloads."""

    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


# ---------------------------------------------------------------------------
# Component specifications
# ---------------------------------------------------------------------------


@dataclass(slots=True)
class SpecValue(CanonicalModel):
    """One measured or rated quantity, e.g. ``max_current = 3000 mA``."""

    value: float
    unit: str
    conditions: str | None = None
    min_value: float | None = None
    max_value: float | None = None
    typical: float | None = None

    def __post_init__(self) -> None:
        self.value = _as_float(self.value, "SpecValue.value")
        self.unit = _as_str(self.unit, "SpecValue.unit", min_len=0, max_len=32)
        self.conditions = _as_optional_str(self.conditions, "SpecValue.conditions")
        self.min_value = _as_optional_float(self.min_value, "SpecValue.min")
        self.max_value = _as_optional_float(self.max_value, "SpecValue.max")
        self.typical = _as_optional_float(self.typical, "SpecValue.typical")
        if (
            self.min_value is not None
            and self.max_value is not None
            and self.min_value > self.max_value
        ):
            _fail("SpecValue", "min must be <= max")

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "value": self.value,
            "unit": self.unit,
            "conditions": self.conditions,
            "min": self.min_value,
            "max": self.max_value,
            "typical": self.typical,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> SpecValue:
        parsed = _expect_object(
            data,
            "SpecValue",
            required={"value", "unit"},
            optional={"conditions", "min", "max", "typical"},
        )
        return cls(
            value=_as_float(parsed["value"], "SpecValue.value"),
            unit=_as_str(parsed["unit"], "SpecValue.unit", min_len=0, max_len=32),
            conditions=_as_optional_str(parsed.get("conditions"), "SpecValue.conditions"),
            min_value=_as_optional_float(parsed.get("min"), "SpecValue.min"),
            max_value=_as_optional_float(parsed.get("max"), "SpecValue.max"),
            typical=_as_optional_float(parsed.get("typical"), "SpecValue.typical"),
        )


SpecMap = dict[str, SpecValue]


@dataclass(slots=True)
class DataSource(CanonicalModel):
    """Where a set of component specs came from and how much to trust it."""

    type: SourceType
    confidence: float
    url: str | None = None
    retrieved_at: datetime | None = None

    def __post_init__(self) -> None:
        self.type = _as_enum(SourceType, self.type, "DataSource.type")
        self.confidence = _as_unit_interval(self.confidence, "DataSource.confidence")
        self.url = _as_optional_str(self.url, "DataSource.url", max_len=2048)
        if self.retrieved_at is not None:
            self.retrieved_at = _as_datetime(self.retrieved_at, "DataSource.retrieved_at")

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> DataSource:
        parsed = _expect_object(
            data,
            "DataSource",
            required={"type"},
            optional={"confidence", "url", "retrieved_at"},
        )
        retrieved_at = parsed.get("retrieved_at")
        return cls(
            type=_as_enum(SourceType, parsed["type"], "DataSource.type"),
            confidence=_as_unit_interval(parsed.get("confidence", 1.0), "DataSource.confidence"),
            url=_as_optional_str(parsed.get("url"), "DataSource.url", max_len=2048),
            retrieved_at=(
                None
                if retrieved_at is None
                else _as_datetime(retrieved_at, "DataSource.retrieved_at")
            ),
        )


@dataclass(slots=True)
class ComponentSpecs(CanonicalModel):
    """Resolved specifications for one physical component, as produced upstream."""

    part_number: str
    manufacturer: str
    category: ComponentCategory
    specs: SpecMap = field(default_factory=dict)
    source: DataSource = field(default_factory=lambda: DataSource(SourceType.MANUAL, 1.0))
    datasheet_url: str | None = None

    def __post_init__(self) -> None:
        self.part_number = _as_str(self.part_number, "ComponentSpecs.part_number", max_len=256)
        self.manufacturer = _as_str(self.manufacturer, "ComponentSpecs.manufacturer", max_len=256)
        self.category = _as_enum(ComponentCategory, self.category, "ComponentSpecs.category")
        self.specs = _as_spec_map(self.specs, "ComponentSpecs.specs")
        if not isinstance(self.source, DataSource):
            _fail("ComponentSpecs.source", "expected DataSource")
        self.datasheet_url = _as_optional_str(
            self.datasheet_url, "ComponentSpecs.datasheet_url", max_len=2048
        )

    @property
    def natural_key(self) -> tuple[str, str]:
        return (self.part_number, self.manufacturer)

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> ComponentSpecs:
        parsed = _expect_object(
            data,
            "ComponentSpecs",
            required={"part_number", "manufacturer", "category"},
            optional={"specs", "source", "datasheet_url"},
        )
        raw_source = parsed.get("source")
        if raw_source is None:
            source = DataSource(SourceType.MANUAL, 1.0)
        elif isinstance(raw_source, str):
            source = DataSource(_as_enum(SourceType, raw_source, "ComponentSpecs.source"), 1.0)
        else:
            source = DataSource.from_dict(cast("Mapping[str, object]", raw_source))
        return cls(
            part_number=_as_str(parsed["part_number"], "ComponentSpecs.part_number"),
            manufacturer=_as_str(parsed["manufacturer"], "ComponentSpecs.manufacturer"),
            category=_as_enum(ComponentCategory, parsed["category"], "ComponentSpecs.category"),
            specs=_as_spec_map(parsed.get("specs", {}), "ComponentSpecs.specs"),
            source=source,
            datasheet_url=_as_optional_str(
                parsed.get("datasheet_url"), "ComponentSpecs.datasheet_url", max_len=2048
            ),
        )


@dataclass(slots=True)
class ComponentCacheEntry(CanonicalModel):
    """A cached component row; ``expires_at`` of ``None`` marks a pinned entry."""

    part_number: str
    manufacturer: str
    category: ComponentCategory
    specs: SpecMap
    source: DataSource
    created_at: datetime
    updated_at: datetime
    expires_at: datetime | None = None
    datasheet_url: str | None = None
    id: int | None = None

    def __post_init__(self) -> None:
        self.part_number = _as_str(self.part_number, "ComponentCacheEntry.part_number")
        self.manufacturer = _as_str(self.manufacturer, "ComponentCacheEntry.manufacturer")
        self.category = ComponentCategory.parse_lenient(self.category)
        self.specs = _as_spec_map(self.specs, "ComponentCacheEntry.specs")
        self.created_at = _as_datetime(self.created_at, "ComponentCacheEntry.created_at")
        self.updated_at = _as_datetime(self.updated_at, "ComponentCacheEntry.updated_at")
        if self.expires_at is not None:
            self.expires_at = _as_datetime(self.expires_at, "ComponentCacheEntry.expires_at")
        self.id = _as_optional_id(self.id, "ComponentCacheEntry.id")

    @property
    def natural_key(self) -> tuple[str, str]:
        return (self.part_number, self.manufacturer)

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and self.expires_at <= now

    def to_specs(self) -> ComponentSpecs:
        return ComponentSpecs(
            part_number=self.part_number,
            manufacturer=self.manufacturer,
            category=self.category,
            specs=dict(self.specs),
            source=self.source,
            datasheet_url=self.datasheet_url,
        )


# ---------------------------------------------------------------------------
# Datasheets
# ---------------------------------------------------------------------------


@dataclass(slots=True)
class DatasheetCacheEntry(CanonicalModel):
    url: str
    part_number: str
    content_hash: str
    created_at: datetime
    expires_at: datetime | None = None
    parsed_specs: SpecMap | None = None
    raw_text: str | None = None
    page_count: int | None = None
    file_size: int | None = None
    id: int | None = None

    def __post_init__(self) -> None:
        self.url = _as_str(self.url, "DatasheetCacheEntry.url", max_len=2048)
        self.part_number = _as_str(self.part_number, "DatasheetCacheEntry.part_number")
        self.content_hash = _as_str(
            self.content_hash, "DatasheetCacheEntry.content_hash", max_len=128
        )
        self.created_at = _as_datetime(self.created_at, "DatasheetCacheEntry.created_at")
        if self.expires_at is not None:
            self.expires_at = _as_datetime(self.expires_at, "DatasheetCacheEntry.expires_at")
        if self.parsed_specs is not None:
            self.parsed_specs = _as_spec_map(self.parsed_specs, "DatasheetCacheEntry.parsed_specs")
        if self.raw_text is not None:
            self.raw_text = _as_str(
                self.raw_text,
                "DatasheetCacheEntry.raw_text",
                min_len=0,
                max_len=_MAX_RAW_TEXT,
                strip=False,
            )
        self.page_count = _as_optional_int(
            self.page_count, "DatasheetCacheEntry.page_count", minimum=0
        )
        self.file_size = _as_optional_int(
            self.file_size, "DatasheetCacheEntry.file_size", minimum=0
        )
        self.id = _as_optional_id(self.id, "DatasheetCacheEntry.id")

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and self.expires_at <= now


# ---------------------------------------------------------------------------
# Scan history
# ---------------------------------------------------------------------------


@dataclass(slots=True)
class Claim(CanonicalModel):
    """Advertised performance claim as read off the packaging, e.g. ``"10000 lumens"``."""

    raw: str
    value: float | None = None
    unit: str | None = None
    claim_type: str | None = None

    def __post_init__(self) -> None:
        self.raw = _as_str(self.raw, "Claim.raw", max_len=1024)
        self.value = _as_optional_float(self.value, "Claim.value")
        self.unit = _as_optional_str(self.unit, "Claim.unit", max_len=32)
        self.claim_type = _as_optional_str(self.claim_type, "Claim.claim_type", max_len=64)

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> Claim:
        parsed = _expect_object(
            data, "Claim", required={"raw"}, optional={"value", "unit", "claim_type"}
        )
        return cls(
            raw=_as_str(parsed["raw"], "Claim.raw"),
            value=_as_optional_float(parsed.get("value"), "Claim.value"),
            unit=_as_optional_str(parsed.get("unit"), "Claim.unit"),
            claim_type=_as_optional_str(parsed.get("claim_type"), "Claim.claim_type"),
        )


@dataclass(slots=True)
class Verdict(CanonicalModel):
    """Plausibility verdict. ``details`` carries the analyzer's opaque payload."""

    verdict_type: str
    confidence: float
    summary: str | None = None
    explanation: str | None = None
    details: dict[str, JSONValue] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.verdict_type = _as_str(self.verdict_type, "Verdict.verdict_type", max_len=64)
        self.confidence = _as_unit_interval(self.confidence, "Verdict.confidence")
        self.summary = _as_optional_str(self.summary, "Verdict.summary")
        self.explanation = _as_optional_str(self.explanation, "Verdict.explanation")
        self.details = _as_json_object(self.details, "Verdict.details")

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> Verdict:
        parsed = _expect_object(
            data,
            "Verdict",
            required={"verdict_type", "confidence"},
            optional={"summary", "explanation", "details"},
        )
        return cls(
            verdict_type=_as_str(parsed["verdict_type"], "Verdict.verdict_type"),
            confidence=_as_unit_interval(parsed["confidence"], "Verdict.confidence"),
            summary=_as_optional_str(parsed.get("summary"), "Verdict.summary"),
            explanation=_as_optional_str(parsed.get("explanation"), "Verdict.explanation"),
            details=_as_json_object(parsed.get("details", {}), "Verdict.details"),
        )


@dataclass(frozen=True, slots=True)
class BoundingBox(CanonicalModel):
    x: float
    y: float
    width: float
    height: float

    def __post_init__(self) -> None:
        _as_float(self.x, "BoundingBox.x")
        _as_float(self.y, "BoundingBox.y")
        _as_float(self.width, "BoundingBox.width", minimum=0.0)
        _as_float(self.height, "BoundingBox.height", minimum=0.0)

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> BoundingBox:
        parsed = _expect_object(data, "BoundingBox", required={"x", "y", "width", "height"})
        return cls(
            x=_as_float(parsed["x"], "BoundingBox.x"),
            y=_as_float(parsed["y"], "BoundingBox.y"),
            width=_as_float(parsed["width"], "BoundingBox.width", minimum=0.0),
            height=_as_float(parsed["height"], "BoundingBox.height", minimum=0.0),
        )


@dataclass(slots=True)
class ScanComponent(CanonicalModel):
    part_number: str
    manufacturer: str
    category: ComponentCategory
    confidence: float
    bounding_box: BoundingBox | None = None

    def __post_init__(self) -> None:
        self.part_number = _as_str(self.part_number, "ScanComponent.part_number")
        self.manufacturer = _as_str(self.manufacturer, "ScanComponent.manufacturer")
        self.category = ComponentCategory.parse_lenient(self.category)
        self.confidence = _as_unit_interval(self.confidence, "ScanComponent.confidence")
        if self.bounding_box is not None and not isinstance(self.bounding_box, BoundingBox):
            _fail("ScanComponent.bounding_box", "expected BoundingBox")

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> ScanComponent:
        parsed = _expect_object(
            data,
            "ScanComponent",
            required={"part_number", "manufacturer", "category", "confidence"},
            optional={"bounding_box"},
        )
        raw_box = parsed.get("bounding_box")
        return cls(
            part_number=_as_str(parsed["part_number"], "ScanComponent.part_number"),
            manufacturer=_as_str(parsed["manufacturer"], "ScanComponent.manufacturer"),
            category=ComponentCategory.parse_lenient(parsed["category"]),
            confidence=_as_unit_interval(parsed["confidence"], "ScanComponent.confidence"),
            bounding_box=(
                None
                if raw_box is None
                else BoundingBox.from_dict(cast("Mapping[str, object]", raw_box))
            ),
        )


@dataclass(slots=True)
class ScanHistoryEntry(CanonicalModel):
    id: int
    claim: Claim
    verdict: Verdict
    components: tuple[ScanComponent, ...]
    created_at: datetime

    def __post_init__(self) -> None:
        self.id = _as_int(self.id, "ScanHistoryEntry.id", minimum=1)
        self.components = tuple(self.components)
        self.created_at = _as_datetime(self.created_at, "ScanHistoryEntry.created_at")


@dataclass(frozen=True, slots=True)
class ScanHistorySummary(CanonicalModel):
    """List-rendering projection of a scan; omits components and the raw verdict."""

    id: int
    claim_raw: str
    verdict_type: str
    confidence: float
    component_count: int
    created_at: datetime


# ---------------------------------------------------------------------------
# Saved components
# ---------------------------------------------------------------------------


@dataclass(slots=True)
class SavedComponentEntry(CanonicalModel):
    part_number: str
    manufacturer: str
    category: ComponentCategory
    specs: SpecMap
    created_at: datetime
    updated_at: datetime
    notes: str | None = None
    tags: tuple[str, ...] = ()
    id: int | None = None

    def __post_init__(self) -> None:
        self.part_number = _as_str(self.part_number, "SavedComponentEntry.part_number")
        self.manufacturer = _as_str(self.manufacturer, "SavedComponentEntry.manufacturer")
        self.category = ComponentCategory.parse_lenient(self.category)
        self.specs = _as_spec_map(self.specs, "SavedComponentEntry.specs")
        self.created_at = _as_datetime(self.created_at, "SavedComponentEntry.created_at")
        self.updated_at = _as_datetime(self.updated_at, "SavedComponentEntry.updated_at")
        self.notes = _as_optional_str(self.notes, "SavedComponentEntry.notes")
        self.tags = normalize_tags(self.tags, "SavedComponentEntry.tags")
        self.id = _as_optional_id(self.id, "SavedComponentEntry.id")

    @property
    def natural_key(self) -> tuple[str, str]:
        return (self.part_number, self.manufacturer)


def parse_spec_map(value: object, path: str = "specs") -> SpecMap:
    """Validate a mapping of spec name to ``SpecValue`` (or its dict form)."""

    return _as_spec_map(value, path)


def normalize_tag(tag: object, path: str = "tag") -> str:
    """Strip a tag and reject empty or oversized values."""

    return _as_str(tag, path, max_len=_MAX_TAG_LENGTH)


def normalize_tags(tags: object, path: str = "tags") -> tuple[str, ...]:
    """Normalize a tag collection into an insertion-ordered duplicate-free tuple."""

    if isinstance(tags, str):
        _fail(path, "expected a collection of tags, got a single string")
    if isinstance(tags, (set, frozenset)):
        values: list[object] = sorted(tags, key=str)
    elif isinstance(tags, (list, tuple)):
        values = list(tags)
    else:
        _fail(path, f"expected array, got {type(tags).__name__}")

    ordered: dict[str, None] = {}
    for index, item in enumerate(values):
        ordered.setdefault(normalize_tag(item, f"{path}[{index}]"), None)
    if len(ordered) > _MAX_TAGS:
        _fail(path, f"too many tags (>{_MAX_TAGS})")
    return tuple(ordered)


# ---------------------------------------------------------------------------
# Offline bundles and consent
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class OfflineBundle(CanonicalModel):
    id: int
    bundle_version: str
    component_count: int
    size_bytes: int
    downloaded_at: datetime
    is_active: bool


@dataclass(frozen=True, slots=True)
class ConsentRecord(CanonicalModel):
    id: int
    consent_type: str
    granted: bool
    version: str
    recorded_at: datetime


# ---------------------------------------------------------------------------
# Statistics
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class ComponentCacheStats(CanonicalModel):
    total_count: int
    expired_count: int
    by_category: dict[str, int]


@dataclass(frozen=True, slots=True)
class DatasheetCacheStats(CanonicalModel):
    total_count: int
    expired_count: int
    total_size_bytes: int
    oldest_entry: datetime | None


@dataclass(frozen=True, slots=True)
class ScanHistoryStats(CanonicalModel):
    total_scans: int
    by_verdict_type: dict[str, int]
    last_scan_at: datetime | None


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------


def _fail(path: str, message: str) -> NoReturn:
    raise ValueError(f"{path}: {message}")


def _expect_object(
    value: object,
    path: str,
    *,
    required: set[str],
    optional: set[str] | None = None,
) -> dict[str, object]:
    if not isinstance(value, Mapping):
        _fail(path, f"expected object, got {type(value).__name__}")

    parsed: dict[str, object] = {}
    for key, item in value.items():
        if not isinstance(key, str):
            _fail(path, f"object keys must be strings, got {type(key).__name__}")
        parsed[key] = item

    allowed = required | (optional or set())
    unknown = sorted(key for key in parsed if key not in allowed)
    if unknown:
        _fail(path, f"unexpected fields: {unknown}")

    missing = sorted(key for key in required if key not in parsed)
    if missing:
        _fail(path, f"missing required fields: {missing}")

    return parsed


def _as_str(
    value: object,
    path: str,
    *,
    min_len: int = 1,
    max_len: int = _MAX_TEXT,
    strip: bool = True,
) -> str:
    if not isinstance(value, str):
        _fail(path, f"expected string, got {type(value).__name__}")
    normalized = value.strip() if strip else value
    if len(normalized) < min_len:
        _fail(path, f"must be at least {min_len} character(s)")
    if len(normalized) > max_len:
        _fail(path, f"must be <= {max_len} characters")
    return normalized


def _as_optional_str(value: object, path: str, *, max_len: int = _MAX_TEXT) -> str | None:
    if value is None:
        return None
    return _as_str(value, path, max_len=max_len)


def _as_int(value: object, path: str, *, minimum: int | None = None) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        _fail(path, f"expected integer, got {type(value).__name__}")
    if minimum is not None and value < minimum:
        _fail(path, f"must be >= {minimum}")
    return value


def _as_optional_int(value: object, path: str, *, minimum: int | None = None) -> int | None:
    if value is None:
        return None
    return _as_int(value, path, minimum=minimum)


def _as_optional_id(value: object, path: str) -> int | None:
    return _as_optional_int(value, path, minimum=1)


def _as_float(value: object, path: str, *, minimum: float | None = None) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        _fail(path, f"expected number, got {type(value).__name__}")
    parsed = float(value)
    if not math.isfinite(parsed):
        _fail(path, "must be finite")
    if minimum is not None and parsed < minimum:
        _fail(path, f"must be >= {minimum}")
    return parsed


def _as_optional_float(value: object, path: str) -> float | None:
    if value is None:
        return None
    return _as_float(value, path)


def _as_unit_interval(value: object, path: str) -> float:
    parsed = _as_float(value, path, minimum=0.0)
    if parsed > 1.0:
        _fail(path, "must be <= 1.0")
    return parsed


def _as_datetime(value: object, path: str) -> datetime:
    parsed: datetime
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        text = value[:-1] + "+00:00" if value.endswith("Z") else value
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError as exc:
            _fail(path, f"invalid ISO-8601 datetime: {value!r} ({exc})")
    else:
        _fail(path, f"expected datetime or ISO-8601 string, got {type(value).__name__}")

    if parsed.tzinfo is None or parsed.utcoffset() is None:
        _fail(path, "datetime must be timezone-aware UTC")
    return parsed.astimezone(UTC)


def _datetime_to_iso8601z(value: datetime) -> str:
    normalized = _as_datetime(value, "datetime")
    return normalized.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _as_enum(enum_type: type[TEnum], value: object, path: str) -> TEnum:
    if isinstance(value, enum_type):
        return value
    if not isinstance(value, str):
        _fail(path, f"expected string enum value, got {type(value).__name__}")
    try:
        return enum_type(value.strip().lower())
    except ValueError:
        allowed = ", ".join(sorted(str(item.value) for item in enum_type))
        _fail(path, f"invalid value {value!r}; expected one of: {allowed}")


def _as_spec_map(value: object, path: str) -> SpecMap:
    if not isinstance(value, Mapping):
        _fail(path, f"expected object, got {type(value).__name__}")
    if len(value) > _MAX_JSON_COLLECTION:
        _fail(path, f"too many entries (>{_MAX_JSON_COLLECTION})")
    parsed: SpecMap = {}
    for key, item in value.items():
        name = _as_str(key, f"{path}.<key>", max_len=128)
        if isinstance(item, SpecValue):
            parsed[name] = item
        elif isinstance(item, Mapping):
            parsed[name] = SpecValue.from_dict(cast("Mapping[str, object]", item))
        else:
            _fail(f"{path}.{name}", f"expected SpecValue, got {type(item).__name__}")
    return parsed


def _as_json_value(value: object, path: str, *, depth: int = 0) -> JSONValue:
    if depth > _MAX_JSON_DEPTH:
        _fail(path, f"JSON nesting exceeds max depth {_MAX_JSON_DEPTH}")

    if value is None or isinstance(value, bool):
        return value
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if not math.isfinite(value):
            _fail(path, "float values must be finite")
        return value
    if isinstance(value, str):
        if len(value) > _MAX_TEXT:
            _fail(path, f"string exceeds max length {_MAX_TEXT}")
        return value
    if isinstance(value, (list, tuple)):
        if len(value) > _MAX_JSON_COLLECTION:
            _fail(path, f"list length exceeds {_MAX_JSON_COLLECTION}")
        return [
            _as_json_value(item, f"{path}[{idx}]", depth=depth + 1)
            for idx, item in enumerate(value)
        ]
    if isinstance(value, Mapping):
        if len(value) > _MAX_JSON_COLLECTION:
            _fail(path, f"object size exceeds {_MAX_JSON_COLLECTION}")
        parsed: dict[str, JSONValue] = {}
        for key, item in value.items():
            if not isinstance(key, str):
                _fail(path, f"object key must be string, got {type(key).__name__}")
            parsed[key] = _as_json_value(item, f"{path}.{key}", depth=depth + 1)
        return parsed

    _fail(path, f"value is not JSON-serializable ({type(value).__name__})")


def _as_json_object(value: object, path: str) -> dict[str, JSONValue]:
    parsed = _as_json_value(value, path)
    if not isinstance(parsed, dict):
        _fail(path, "expected JSON object")
    return parsed


def _serialize_value(value: object, path: str) -> JSONValue:
    if value is None or isinstance(value, bool):
        return cast("JSONValue", value)
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if not math.isfinite(value):
            _fail(path, "float values must be finite")
        return value
    if isinstance(value, str):
        return value
    if isinstance(value, Enum):
        raw = value.value
        if not isinstance(raw, str):
            _fail(path, "enum value must be string")
        return raw
    if isinstance(value, datetime):
        return _datetime_to_iso8601z(value)
    if isinstance(value, CanonicalModel) and type(value).to_dict is not CanonicalModel.to_dict:
        return value.to_dict()
    if isinstance(value, (list, tuple)):
        return [_serialize_value(item, f"{path}[]") for item in value]
    if isinstance(value, Mapping):
        out: dict[str, JSONValue] = {}
        for key, item in value.items():
            if not isinstance(key, str):
                _fail(path, "dict keys must be strings")
            out[key] = _serialize_value(item, f"{path}.{key}")
        return out
    if is_dataclass(value):
        out_obj: dict[str, JSONValue] = {}
        for dataclass_field in fields(value):
            out_obj[dataclass_field.name] = _serialize_value(
                getattr(value, dataclass_field.name),
                f"{path}.{dataclass_field.name}",
            )
        return out_obj

    _fail(path, f"cannot serialize value of type {type(value).__name__}")


__all__ = [
    "BoundingBox",
    "CanonicalModel",
    "Claim",
    "ComponentCacheEntry",
    "ComponentCacheStats",
    "ComponentCategory",
    "ComponentSpecs",
    "ConsentRecord",
    "DataSource",
    "DatasheetCacheEntry",
    "DatasheetCacheStats",
    "JSONScalar",
    "JSONValue",
    "OfflineBundle",
    "SavedComponentEntry",
    "ScanComponent",
    "ScanHistoryEntry",
    "ScanHistoryStats",
    "ScanHistorySummary",
    "SourceType",
    "SpecMap",
    "SpecValue",
    "Verdict",
    "canonical_json",
    "normalize_tag",
    "normalize_tags",
    "parse_spec_map",
]
