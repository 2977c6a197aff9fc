"""
speccheck-store — runtime config loader.

File: src/speccheck_store/config/loader.py

Purpose
- Build the effective config from four layers, lowest first: built-in
  defaults, ``speccheck.toml``, ``SPECCHECK_<SECTION>_<FIELD>`` environment
  variables and CLI overrides (``"section.field"`` keys).
- Resolve ``path`` fields against the directory of the config file, so a
  relative ``paths.database`` means the same file wherever the CLI runs from.
"""

from __future__ import annotations

import json
import os
import tomllib
from collections.abc import Mapping
from pathlib import Path
from typing import Any, Final

from speccheck_store.config.schema import (
    FIELD_RULES,
    PATH_FIELDS,
    assert_valid_config,
    default_config,
    merge_config,
)

DEFAULT_CONFIG_FILE: Final[str] = "speccheck.toml"
ENV_PREFIX: Final[str] = "SPECCHECK_"
MEMORY_DATABASE: Final[str] = ":memory:"


class ConfigLoadError(ValueError):
    """The config file is missing or unreadable, or an override cannot be coerced."""


def load_config(
    config_path: str | Path | None = None,
    *,
    cli_overrides: Mapping[str, object] | None = None,
    environ: Mapping[str, str] | None = None,
) -> dict[str, Any]:
    """Return the validated effective config.

    Without ``config_path`` a ``speccheck.toml`` in the working directory is
    used when present. An explicit path that does not exist is an error.
    """

    if config_path is None:
        source = Path.cwd() / DEFAULT_CONFIG_FILE
    else:
        source = Path(config_path).expanduser()
    source = source.resolve()

    # The file layer is validated alone before any override applies.
    config = assert_valid_config(
        merge_config(default_config(), _read_toml(source, required=config_path is not None))
    )
    config = merge_config(config, env_overrides(os.environ if environ is None else environ))
    config = merge_config(config, _nest_cli_overrides(cli_overrides or {}))
    config = assert_valid_config(config)

    for section, key in PATH_FIELDS:
        config[section][key] = _resolve_path(config[section][key], source.parent)
    return config


def env_overrides(environ: Mapping[str, str]) -> dict[str, dict[str, object]]:
    """Collect ``SPECCHECK_*`` variables, coerced to each field's declared kind."""

    overrides: dict[str, dict[str, object]] = {}
    for section, rules in FIELD_RULES.items():
        for key, rule in rules.items():
            name = f"{ENV_PREFIX}{section}_{key}".upper()
            raw = environ.get(name)
            if raw is None:
                continue
            value: object = raw.strip()
            if rule.kind == "int":
                try:
                    value = int(raw)
                except ValueError as exc:
                    raise ConfigLoadError(
                        f"{name} -> {section}.{key} must be an integer, got {raw!r}"
                    ) from exc
            overrides.setdefault(section, {})[key] = value
    return overrides


def dump_effective_config(config: Mapping[str, object]) -> str:
    return json.dumps(config, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def _read_toml(path: Path, *, required: bool) -> dict[str, Any]:
    try:
        with path.open("rb") as handle:
            return tomllib.load(handle)
    except FileNotFoundError as exc:
        if required:
            raise ConfigLoadError(f"config file not found: {path}") from exc
        return {}
    except tomllib.TOMLDecodeError as exc:
        raise ConfigLoadError(f"invalid TOML in {path}: {exc}") from exc
    except OSError as exc:
        raise ConfigLoadError(f"unable to read config file {path}: {exc}") from exc


def _nest_cli_overrides(overrides: Mapping[str, object]) -> dict[str, dict[str, object]]:
    nested: dict[str, dict[str, object]] = {}
    for dotted, value in overrides.items():
        section, _, key = dotted.partition(".")
        if not section or not key or "." in key:
            raise ConfigLoadError(
                f"CLI override key must look like 'section.field', got {dotted!r}"
            )
        nested.setdefault(section, {})[key] = value
    return nested


def _resolve_path(raw: str, base_dir: Path) -> str:
    if raw == MEMORY_DATABASE:
        return raw
    candidate = Path(os.path.expandvars(raw)).expanduser()
    if not candidate.is_absolute():
        candidate = base_dir / candidate
    return Path(os.path.normpath(candidate)).as_posix()


__all__ = [
    "ConfigLoadError",
    "DEFAULT_CONFIG_FILE",
    "ENV_PREFIX",
    "MEMORY_DATABASE",
    "dump_effective_config",
    "env_overrides",
    "load_config",
]
