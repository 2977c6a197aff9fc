"""
speccheck-store config package public API.

File: src/speccheck_store/config/__init__.py

Purpose
- Export config loading/validation entrypoints and public error types.
"""

from speccheck_store.config.loader import (
    DEFAULT_CONFIG_FILE,
    ENV_PREFIX,
    ConfigLoadError,
    dump_effective_config,
    env_overrides,
    load_config,
)
from speccheck_store.config.schema import (
    DEFAULT_CONFIG,
    FIELD_RULES,
    ConfigSchemaVersion,
    ConfigValidationError,
    ConfigValidationIssue,
    ConfigValidationResult,
    FieldRule,
    StoreConfig,
    assert_valid_config,
    default_config,
    merge_config,
    validate_config,
)

__all__ = [
    "ConfigLoadError",
    "ConfigSchemaVersion",
    "ConfigValidationError",
    "ConfigValidationIssue",
    "ConfigValidationResult",
    "DEFAULT_CONFIG",
    "DEFAULT_CONFIG_FILE",
    "ENV_PREFIX",
    "FIELD_RULES",
    "FieldRule",
    "StoreConfig",
    "assert_valid_config",
    "default_config",
    "dump_effective_config",
    "env_overrides",
    "load_config",
    "merge_config",
    "validate_config",
]
