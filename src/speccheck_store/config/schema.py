"""
speccheck-store — configuration schema and validation.

File: src/speccheck_store/config/schema.py

Purpose
- Declare every config field once, as a ``FieldRule`` in ``FIELD_RULES``.
  Validation, env-variable coercion and path normalization all read that table.

Functional requirements
- Validate config payloads and return structured errors (field path + message).
- Reject unknown sections and fields; a config written for a newer schema gets
  upgrade guidance instead of a bare type error.
"""

from __future__ import annotations

import copy
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Final, Literal, TypedDict

from speccheck_store.constants import (
    COMPONENT_CACHE_TTL_SECONDS,
    CONFIG_SCHEMA_VERSION,
    DATASHEET_CACHE_TTL_SECONDS,
    DEFAULT_DB_PATH,
    DEFAULT_SEARCH_LIMIT,
    LOG_DIR,
    MAX_PAGE_SIZE,
    SCAN_HISTORY_RETENTION_LIMIT,
)

ConfigSchemaVersion: Final[int] = CONFIG_SCHEMA_VERSION


class MetaConfig(TypedDict):
    schema_version: int


class PathsConfig(TypedDict):
    database: str


class DatabaseConfig(TypedDict):
    busy_timeout_ms: int
    busy_retry_limit: int
    busy_retry_backoff_ms: int
    async_blocking_policy: Literal["allow", "strict"]


class CacheConfig(TypedDict):
    component_ttl_seconds: int
    datasheet_ttl_seconds: int


class HistoryConfig(TypedDict):
    retention_limit: int


class SearchConfig(TypedDict):
    default_limit: int


class ObservabilityConfig(TypedDict):
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"]
    log_format: Literal["json", "text"]
    log_dir: str


class StoreConfig(TypedDict):
    meta: MetaConfig
    paths: PathsConfig
    database: DatabaseConfig
    cache: CacheConfig
    history: HistoryConfig
    search: SearchConfig
    observability: ObservabilityConfig


@dataclass(frozen=True, slots=True)
class FieldRule:
    """Type and bounds of one scalar config field.

    ``path`` fields are strings that the loader resolves against the config
    file directory.
    """

    kind: Literal["int", "str", "path"]
    minimum: int | None = None
    maximum: int | None = None
    choices: tuple[str, ...] = ()


FIELD_RULES: Final[dict[str, dict[str, FieldRule]]] = {
    "meta": {
        "schema_version": FieldRule("int", minimum=1),
    },
    "paths": {
        "database": FieldRule("path"),
    },
    "database": {
        "busy_timeout_ms": FieldRule("int", minimum=0),
        "busy_retry_limit": FieldRule("int", minimum=0),
        "busy_retry_backoff_ms": FieldRule("int", minimum=0),
        "async_blocking_policy": FieldRule("str", choices=("allow", "strict")),
    },
    "cache": {
        "component_ttl_seconds": FieldRule("int", minimum=1),
        "datasheet_ttl_seconds": FieldRule("int", minimum=1),
    },
    "history": {
        "retention_limit": FieldRule("int", minimum=1),
    },
    "search": {
        "default_limit": FieldRule("int", minimum=1, maximum=MAX_PAGE_SIZE),
    },
    "observability": {
        "log_level": FieldRule("str", choices=("DEBUG", "INFO", "WARNING", "ERROR")),
        "log_format": FieldRule("str", choices=("json", "text")),
        "log_dir": FieldRule("path"),
    },
}

PATH_FIELDS: Final[tuple[tuple[str, str], ...]] = tuple(
    (section, key)
    for section, rules in FIELD_RULES.items()
    for key, rule in rules.items()
    if rule.kind == "path"
)

DEFAULT_CONFIG: Final[StoreConfig] = {
    "meta": {"schema_version": ConfigSchemaVersion},
    "paths": {"database": str(DEFAULT_DB_PATH)},
    "database": {
        "busy_timeout_ms": 5_000,
        "busy_retry_limit": 4,
        "busy_retry_backoff_ms": 25,
        "async_blocking_policy": "allow",
    },
    "cache": {
        "component_ttl_seconds": COMPONENT_CACHE_TTL_SECONDS,
        "datasheet_ttl_seconds": DATASHEET_CACHE_TTL_SECONDS,
    },
    "history": {"retention_limit": SCAN_HISTORY_RETENTION_LIMIT},
    "search": {"default_limit": DEFAULT_SEARCH_LIMIT},
    "observability": {"log_level": "INFO", "log_format": "json", "log_dir": str(LOG_DIR)},
}


@dataclass(frozen=True, slots=True)
class ConfigValidationIssue:
    path: str
    message: str


@dataclass(frozen=True, slots=True)
class ConfigValidationResult:
    """``config`` is the normalized payload, or ``None`` when any issue was found."""

    config: dict[str, Any] | None
    issues: tuple[ConfigValidationIssue, ...]

    @property
    def is_valid(self) -> bool:
        return self.config is not None and not self.issues


class ConfigValidationError(ValueError):
    """Raised by ``assert_valid_config``; ``issues`` keeps the structured list."""

    def __init__(self, issues: Sequence[ConfigValidationIssue]) -> None:
        self.issues = tuple(issues)
        lines = [f"- {issue.path}: {issue.message}" for issue in self.issues]
        super().__init__("invalid config:\n" + ("\n".join(lines) or "- unknown failure"))


def default_config() -> StoreConfig:
    return copy.deepcopy(DEFAULT_CONFIG)


def migration_guidance(found_version: int) -> str:
    if found_version < ConfigSchemaVersion:
        return (
            f"schema version {found_version} is older than supported {ConfigSchemaVersion}; "
            "upgrade speccheck.toml to the current schema"
        )
    if found_version > ConfigSchemaVersion:
        return (
            f"schema version {found_version} is newer than supported {ConfigSchemaVersion}; "
            "upgrade the speccheck-store runtime"
        )
    return "schema version is current"


def merge_config(base: Mapping[str, Any], overlay: Mapping[str, Any]) -> dict[str, Any]:
    """Return a new mapping with ``overlay`` deep-merged onto ``base``."""

    merged = {key: copy.deepcopy(value) for key, value in base.items()}
    for key, value in overlay.items():
        current = merged.get(key)
        if isinstance(value, Mapping):
            merged[key] = merge_config(current if isinstance(current, Mapping) else {}, value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def validate_config(config: object) -> ConfigValidationResult:
    """Check ``config`` against ``FIELD_RULES``.

    Issues are ordered: unknown sections first, then each section in
    declaration order.
    """

    if not isinstance(config, Mapping):
        issue = ConfigValidationIssue("<root>", f"expected object, got {type(config).__name__}")
        return ConfigValidationResult(config=None, issues=(issue,))

    issues: list[ConfigValidationIssue] = [
        ConfigValidationIssue(str(key), "unknown field")
        for key in sorted(config, key=str)
        if key not in FIELD_RULES
    ]
    normalized: dict[str, Any] = {}
    for section, rules in FIELD_RULES.items():
        payload = config.get(section)
        if payload is None:
            issues.append(ConfigValidationIssue(section, "missing required field"))
            continue
        if not isinstance(payload, Mapping):
            issues.append(
                ConfigValidationIssue(section, f"expected object, got {type(payload).__name__}")
            )
            continue
        normalized[section] = _validate_section(section, payload, rules, issues)

    if issues:
        return ConfigValidationResult(config=None, issues=tuple(issues))
    return ConfigValidationResult(config=normalized, issues=())


def assert_valid_config(config: object) -> dict[str, Any]:
    result = validate_config(config)
    if result.config is None:
        raise ConfigValidationError(result.issues)
    return result.config


def check_field(rule: FieldRule, value: object) -> object:
    """Return the normalized value for ``rule`` or raise ``ValueError``."""

    if rule.kind == "int":
        if isinstance(value, bool) or not isinstance(value, int):
            raise ValueError(f"expected integer, got {type(value).__name__}")
        if rule.minimum is not None and value < rule.minimum:
            raise ValueError(f"must be >= {rule.minimum}")
        if rule.maximum is not None and value > rule.maximum:
            raise ValueError(f"must be <= {rule.maximum}")
        return value

    if not isinstance(value, str):
        raise ValueError(f"expected string, got {type(value).__name__}")
    text = value.strip()
    if not text:
        raise ValueError("must not be empty")
    if rule.kind == "path" and "\x00" in text:
        raise ValueError("must not contain NUL bytes")
    if rule.choices and text not in rule.choices:
        raise ValueError(f"invalid value {text!r}; expected one of: {', '.join(rule.choices)}")
    return text


def _validate_section(
    section: str,
    payload: Mapping[str, object],
    rules: Mapping[str, FieldRule],
    issues: list[ConfigValidationIssue],
) -> dict[str, Any]:
    for key in sorted(payload, key=str):
        if key not in rules:
            issues.append(ConfigValidationIssue(f"{section}.{key}", "unknown field"))

    out: dict[str, Any] = {}
    for key, rule in rules.items():
        path = f"{section}.{key}"
        if key not in payload:
            issues.append(ConfigValidationIssue(path, "missing required field"))
            continue
        try:
            out[key] = check_field(rule, payload[key])
        except ValueError as exc:
            issues.append(ConfigValidationIssue(path, str(exc)))
    if section == "meta" and out.get("schema_version", ConfigSchemaVersion) != ConfigSchemaVersion:
        issues.append(
            ConfigValidationIssue("meta.schema_version", migration_guidance(out["schema_version"]))
        )
    return out


__all__ = [
    "CacheConfig",
    "ConfigSchemaVersion",
    "ConfigValidationError",
    "ConfigValidationIssue",
    "ConfigValidationResult",
    "DEFAULT_CONFIG",
    "DatabaseConfig",
    "FIELD_RULES",
    "FieldRule",
    "HistoryConfig",
    "MetaConfig",
    "ObservabilityConfig",
    "PATH_FIELDS",
    "PathsConfig",
    "SearchConfig",
    "StoreConfig",
    "assert_valid_config",
    "check_field",
    "default_config",
    "merge_config",
    "migration_guidance",
    "validate_config",
]
