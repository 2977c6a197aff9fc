"""
speccheck-store — unit tests for config loader

File: tests/unit/config/test_loader.py

Purpose
- Validate deterministic config loading from defaults, TOML, env overrides, and CLI overrides.

What this test file should cover
- Precedence: CLI > env > file > defaults.
- Deterministic env var path mapping and type coercion.
- Path normalization relative to the config file.
- Effective config dumping and the handoff into ``StoreSettings``.
"""

from __future__ import annotations

import hashlib
import json
from datetime import timedelta
from pathlib import Path

import pytest

from speccheck_store.config.loader import (
    ConfigLoadError,
    dump_effective_config,
    env_overrides,
    load_config,
)
from speccheck_store.config.schema import ConfigValidationError
from speccheck_store.persistence.store import StoreSettings


def _write_config(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")


def _sha256_json(data: dict[str, object]) -> str:
    payload = json.dumps(data, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def test_loader_precedence_default_file_env_cli(tmp_path: Path) -> None:
    config_path = tmp_path / "speccheck.toml"
    default_path = tmp_path / "default.toml"
    _write_config(default_path, "")
    _write_config(
        config_path,
        """
[history]
retention_limit = 60
""".strip(),
    )

    default_loaded = load_config(default_path)
    file_loaded = load_config(config_path)
    env_loaded = load_config(config_path, environ={"SPECCHECK_HISTORY_RETENTION_LIMIT": "70"})
    cli_loaded = load_config(
        config_path,
        environ={"SPECCHECK_HISTORY_RETENTION_LIMIT": "70"},
        cli_overrides={"history.retention_limit": 80},
    )

    assert default_loaded["history"]["retention_limit"] == 100
    assert file_loaded["history"]["retention_limit"] == 60
    assert env_loaded["history"]["retention_limit"] == 70
    assert cli_loaded["history"]["retention_limit"] == 80


def test_env_mapping_covers_every_section(tmp_path: Path) -> None:
    config_path = tmp_path / "speccheck.toml"
    _write_config(config_path, "")

    loaded = load_config(
        config_path,
        environ={
            "SPECCHECK_DATABASE_BUSY_TIMEOUT_MS": "250",
            "SPECCHECK_DATABASE_ASYNC_BLOCKING_POLICY": "strict",
            "SPECCHECK_CACHE_COMPONENT_TTL_SECONDS": "3600",
            "SPECCHECK_SEARCH_DEFAULT_LIMIT": "5",
            "SPECCHECK_OBSERVABILITY_LOG_FORMAT": "text",
        },
    )

    assert loaded["database"]["busy_timeout_ms"] == 250
    assert loaded["database"]["async_blocking_policy"] == "strict"
    assert loaded["cache"]["component_ttl_seconds"] == 3_600
    assert loaded["search"]["default_limit"] == 5
    assert loaded["observability"]["log_format"] == "text"


def test_invalid_env_coercion_raises_actionable_error(tmp_path: Path) -> None:
    config_path = tmp_path / "speccheck.toml"
    _write_config(config_path, "")

    with pytest.raises(ConfigLoadError, match="SPECCHECK_HISTORY_RETENTION_LIMIT"):
        load_config(config_path, environ={"SPECCHECK_HISTORY_RETENTION_LIMIT": "lots"})


def test_out_of_range_values_fail_validation(tmp_path: Path) -> None:
    config_path = tmp_path / "speccheck.toml"
    _write_config(
        config_path,
        """
[cache]
component_ttl_seconds = 0

[search]
default_limit = 5000
""".strip(),
    )

    with pytest.raises(ConfigValidationError) as excinfo:
        load_config(config_path)

    paths = [issue.path for issue in excinfo.value.issues]
    assert paths == ["cache.component_ttl_seconds", "search.default_limit"]


def test_missing_explicit_file_and_invalid_toml_are_load_errors(tmp_path: Path) -> None:
    with pytest.raises(ConfigLoadError, match="config file not found"):
        load_config(tmp_path / "absent.toml")

    broken = tmp_path / "broken.toml"
    _write_config(broken, "[history\nretention_limit = 1")
    with pytest.raises(ConfigLoadError, match="invalid TOML"):
        load_config(broken)


def test_loader_is_deterministic_for_same_inputs(tmp_path: Path) -> None:
    config_path = tmp_path / "speccheck.toml"
    _write_config(config_path, "")

    env = {"SPECCHECK_HISTORY_RETENTION_LIMIT": "60"}
    cli = {"cache.datasheet_ttl_seconds": 86_400}

    first = load_config(config_path, environ=env, cli_overrides=cli)
    second = load_config(config_path, environ=env, cli_overrides=cli)

    assert _sha256_json(first) == _sha256_json(second)


def test_path_normalization_is_relative_to_config_file(tmp_path: Path) -> None:
    config_path = tmp_path / "nested" / "speccheck.toml"
    _write_config(
        config_path,
        """
[observability]
log_dir = "../shared-logs"
""".strip(),
    )

    loaded = load_config(config_path)

    expected_db = config_path.resolve().parent / "state/speccheck.db"
    assert loaded["paths"]["database"] == expected_db.as_posix()
    assert loaded["observability"]["log_dir"] == (tmp_path.resolve() / "shared-logs").as_posix()


def test_in_memory_database_path_is_left_untouched(tmp_path: Path) -> None:
    config_path = tmp_path / "speccheck.toml"
    _write_config(config_path, "")

    loaded = load_config(config_path, cli_overrides={"paths.database": ":memory:"})

    assert loaded["paths"]["database"] == ":memory:"


def test_dump_effective_config_is_deterministic(tmp_path: Path) -> None:
    config_path = tmp_path / "speccheck.toml"
    _write_config(config_path, "")

    loaded = load_config(config_path)
    first = dump_effective_config(loaded)
    second = dump_effective_config(loaded)

    assert first == second
    parsed = json.loads(first)
    assert parsed["meta"]["schema_version"] == 1
    assert list(parsed) == sorted(parsed)


def test_store_settings_follow_effective_config(tmp_path: Path) -> None:
    config_path = tmp_path / "speccheck.toml"
    _write_config(
        config_path,
        """
[paths]
database = "data/store.db"

[cache]
component_ttl_seconds = 600
datasheet_ttl_seconds = 1200

[database]
busy_retry_limit = 0
""".strip(),
    )

    settings = StoreSettings.from_config(load_config(config_path))

    assert settings.database_path == (tmp_path.resolve() / "data/store.db").as_posix()
    assert settings.component_ttl == timedelta(minutes=10)
    assert settings.datasheet_ttl == timedelta(minutes=20)
    assert settings.busy_retry_limit == 0
    assert settings.retention_limit == 100
    assert settings.async_blocking_policy == "allow"


def test_store_settings_fall_back_to_defaults_for_partial_mappings() -> None:
    settings = StoreSettings.from_config({"history": {"retention_limit": 5}})

    assert settings.retention_limit == 5
    assert settings.search_limit == 20
    assert settings.database_path == "state/speccheck.db"


def test_cli_override_keys_must_name_section_and_field(tmp_path: Path) -> None:
    config_path = tmp_path / "speccheck.toml"
    _write_config(config_path, "")

    for bad_key in ("retention_limit", "history.", ".retention_limit", "history.a.b"):
        with pytest.raises(ConfigLoadError, match="section.field"):
            load_config(config_path, cli_overrides={bad_key: 5})


def test_env_overrides_ignore_unrelated_variables_and_strip_strings() -> None:
    overrides = env_overrides(
        {
            "SPECCHECK_OBSERVABILITY_LOG_LEVEL": " DEBUG ",
            "SPECCHECK_HISTORY_RETENTION_LIMIT": " 12 ",
            "SPECCHECK_PLUGINS_ENABLED": "yes",
            "HOME": "/root",
        }
    )

    assert overrides == {
        "history": {"retention_limit": 12},
        "observability": {"log_level": "DEBUG"},
    }


def test_unknown_file_sections_are_validation_errors(tmp_path: Path) -> None:
    config_path = tmp_path / "speccheck.toml"
    _write_config(config_path, "[plugins]\nenabled = true\n")

    with pytest.raises(ConfigValidationError, match="plugins: unknown field"):
        load_config(config_path)
