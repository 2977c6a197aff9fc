"""Command-line interface router for speccheck-store."""

from __future__ import annotations

import argparse
import json
import logging
import sys
import uuid
from collections.abc import Iterator, Mapping, Sequence
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, Final

from speccheck_store.config import (
    ConfigLoadError,
    ConfigValidationError,
    dump_effective_config,
    load_config,
)
from speccheck_store.constants import DEFAULT_HISTORY_PAGE_SIZE
from speccheck_store.domain.models import CanonicalModel
from speccheck_store.observability import correlation_scope, setup_logging, shutdown_logging
from speccheck_store.persistence import (
    SpecStore,
    StoreSettings,
    clean_expired_caches,
    collect_store_stats,
    import_bundle,
)
from speccheck_store.ui.render import CLIRenderer, create_renderer

logger = logging.getLogger(__name__)

SEARCH_SCOPES: Final[tuple[str, ...]] = ("components", "saved", "history")


@dataclass(frozen=True, slots=True)
class CLIError(RuntimeError):
    """Typed CLI failure with an explicit process exit code."""

    message: str
    exit_code: int = 2

    def __str__(self) -> str:
        return self.message


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse command router for every store maintenance workflow."""

    parser = argparse.ArgumentParser(
        prog="speccheck-store",
        description=(
            "speccheck-store — local cache and history store for the SpecCheck scanner.\n\n"
            "Common workflows:\n"
            "  speccheck-store migrate --dry-run     Show pending schema migrations\n"
            "  speccheck-store stats                 Summarize every store\n"
            "  speccheck-store clean                 Remove expired cache entries\n"
            "  speccheck-store import-bundle b.yaml  Pin an offline component bundle\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--config",
        dest="config_path",
        default=None,
        help="Path to speccheck TOML config (default: ./speccheck.toml if present).",
    )
    common.add_argument(
        "--db",
        dest="db_path",
        default=None,
        help="Override the database path from config.",
    )
    common.add_argument(
        "--log-dir",
        dest="log_dir",
        default=None,
        help="Override the base log directory from config.",
    )
    common.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        default=False,
        help="Mirror log records to stderr.",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    migrate_parser = subparsers.add_parser(
        "migrate",
        parents=[common],
        help="Apply pending schema migrations",
    )
    migrate_parser.add_argument(
        "--dry-run",
        action="store_true",
        help="List pending migrations without applying them",
    )
    migrate_parser.add_argument(
        "--json", action="store_true", help="Emit deterministic JSON output"
    )
    migrate_parser.set_defaults(handler=_cmd_migrate)

    stats_parser = subparsers.add_parser(
        "stats",
        parents=[common],
        help="Show cache, history and saved-component statistics",
    )
    stats_parser.add_argument("--json", action="store_true", help="Emit deterministic JSON output")
    stats_parser.set_defaults(handler=_cmd_stats)

    clean_parser = subparsers.add_parser(
        "clean",
        parents=[common],
        help="Delete expired component and datasheet cache entries",
    )
    clean_parser.add_argument("--json", action="store_true", help="Emit deterministic JSON output")
    clean_parser.set_defaults(handler=_cmd_clean)

    history_parser = subparsers.add_parser(
        "history",
        parents=[common],
        help="List recent scans, newest first",
    )
    history_parser.add_argument(
        "--limit",
        type=int,
        default=DEFAULT_HISTORY_PAGE_SIZE,
        help=f"Maximum scans to list (default: {DEFAULT_HISTORY_PAGE_SIZE})",
    )
    history_parser.add_argument(
        "--verdict",
        default=None,
        help="Only list scans with this verdict type",
    )
    history_parser.add_argument(
        "--json", action="store_true", help="Emit deterministic JSON output"
    )
    history_parser.set_defaults(handler=_cmd_history)

    saved_parser = subparsers.add_parser(
        "saved",
        parents=[common],
        help="List saved components",
    )
    saved_parser.add_argument("--tag", default=None, help="Only list components with this tag")
    saved_parser.add_argument("--json", action="store_true", help="Emit deterministic JSON output")
    saved_parser.set_defaults(handler=_cmd_saved)

    search_parser = subparsers.add_parser(
        "search",
        parents=[common],
        help="Search cached components, saved components or scan history",
    )
    search_parser.add_argument("query", help="Search text")
    search_parser.add_argument(
        "--in",
        dest="scope",
        choices=SEARCH_SCOPES,
        default="components",
        help="Store to search (default: components)",
    )
    search_parser.add_argument(
        "--limit",
        type=int,
        default=None,
        help="Maximum results (default: search.default_limit from config)",
    )
    search_parser.add_argument("--json", action="store_true", help="Emit deterministic JSON output")
    search_parser.set_defaults(handler=_cmd_search)

    import_parser = subparsers.add_parser(
        "import-bundle",
        parents=[common],
        help="Import a YAML offline bundle of component specs",
    )
    import_parser.add_argument("bundle_path", help="Path to the bundle YAML file")
    import_parser.add_argument(
        "--version",
        dest="bundle_version",
        default=None,
        help="Bundle version (overrides bundle_version declared in the file)",
    )
    import_parser.add_argument("--json", action="store_true", help="Emit deterministic JSON output")
    import_parser.set_defaults(handler=_cmd_import_bundle)

    reset_parser = subparsers.add_parser(
        "reset",
        parents=[common],
        help="Delete the database file and start from an empty store",
    )
    reset_parser.add_argument(
        "--yes",
        action="store_true",
        help="Confirm deletion of every cached, saved and historical record",
    )
    reset_parser.set_defaults(handler=_cmd_reset)

    config_parser = subparsers.add_parser(
        "config",
        parents=[common],
        help="Print the effective configuration",
    )
    config_parser.add_argument("--json", action="store_true", help="Emit JSON output")
    config_parser.set_defaults(handler=_cmd_config)

    return parser


# ---------------------------------------------------------------------------
# Entrypoints
# ---------------------------------------------------------------------------


def run_cli(argv: Sequence[str] | None = None) -> int:
    """Parse argv, route to a command handler, and return process exit code."""

    parser = build_parser()
    namespace = parser.parse_args(list(argv) if argv is not None else None)
    handler = getattr(namespace, "handler", None)
    if not callable(handler):
        parser.print_help(sys.stderr)
        return 2

    try:
        result = handler(namespace)
    except CLIError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return exc.exit_code
    return int(result)


# ---------------------------------------------------------------------------
# Command handlers
# ---------------------------------------------------------------------------


def _cmd_migrate(args: argparse.Namespace) -> int:
    config = _load_effective_config(args)
    settings = StoreSettings.from_config(config)

    if _flag(args, "dry_run"):
        with SpecStore(settings) as store:
            engine = store.db.migration_engine
            pending = store.db.pending_migrations()
        payload: dict[str, object] = {
            "command": "migrate",
            "dry_run": True,
            "database": settings.database_path,
            "target_version": engine.target_version,
            "pending": [
                {"version": migration.version, "name": migration.name} for migration in pending
            ],
        }
        if _flag(args, "json"):
            _emit_json(payload)
            return 0
        renderer = _get_renderer(args)
        renderer.kv("Database", settings.database_path)
        renderer.kv("Target version", engine.target_version)
        if not pending:
            renderer.text("No pending migrations.")
            return 0
        renderer.table(
            ["VERSION", "NAME"],
            [[str(migration.version), migration.name] for migration in pending],
            title="Pending migrations:",
        )
        return 0

    with _open_store(args, config) as store:
        version = store.db.migrate()
        history = store.db.schema_history()

    payload = {
        "command": "migrate",
        "dry_run": False,
        "database": settings.database_path,
        "schema_version": version,
        "applied": [
            {"version": record.version, "name": record.name, "applied_at": record.applied_at}
            for record in history
        ],
    }
    if _flag(args, "json"):
        _emit_json(payload)
        return 0
    renderer = _get_renderer(args)
    renderer.kv("Database", settings.database_path)
    renderer.kv("Schema version", version)
    renderer.table(
        ["VERSION", "NAME", "APPLIED AT"],
        [[str(record.version), record.name, record.applied_at] for record in history],
        title="Applied migrations:",
    )
    return 0


def _cmd_stats(args: argparse.Namespace) -> int:
    config = _load_effective_config(args)
    with _open_store(args, config) as store:
        stats = collect_store_stats(store)

    if _flag(args, "json"):
        _emit_json({"command": "stats", "stats": stats.to_dict()})
        return 0

    renderer = _get_renderer(args)
    renderer.heading("Store statistics")
    renderer.kv("Database size (bytes)", _or_unavailable(stats.database_size_bytes))
    if stats.components is not None:
        renderer.section("Component cache:")
        renderer.kv("  entries", stats.components.total_count)
        renderer.kv("  expired", stats.components.expired_count)
        renderer.items(
            [f"{category}: {count}" for category, count in stats.components.by_category.items()]
        )
    else:
        renderer.section("Component cache: unavailable")
    if stats.datasheets is not None:
        renderer.section("Datasheet cache:")
        renderer.kv("  entries", stats.datasheets.total_count)
        renderer.kv("  expired", stats.datasheets.expired_count)
        renderer.kv("  total size (bytes)", stats.datasheets.total_size_bytes)
        renderer.kv("  oldest entry", _format_optional_datetime(stats.datasheets.oldest_entry))
    else:
        renderer.section("Datasheet cache: unavailable")
    if stats.history is not None:
        renderer.section("Scan history:")
        renderer.kv("  scans", stats.history.total_scans)
        renderer.kv("  last scan", _format_optional_datetime(stats.history.last_scan_at))
        renderer.items(
            [f"{verdict}: {count}" for verdict, count in stats.history.by_verdict_type.items()]
        )
    else:
        renderer.section("Scan history: unavailable")
    renderer.section("Saved components:")
    renderer.kv("  count", _or_unavailable(stats.saved_count))
    for section in stats.unavailable_sections:
        renderer.warning(f"{section} could not be read; see the log for details")
    return 0


def _cmd_clean(args: argparse.Namespace) -> int:
    config = _load_effective_config(args)
    with _open_store(args, config) as store:
        report = clean_expired_caches(store)

    if _flag(args, "json"):
        _emit_json({"command": "clean", "report": report.to_dict()})
        return 0
    renderer = _get_renderer(args)
    renderer.kv("Expired components removed", report.components_removed)
    renderer.kv("Expired datasheets removed", report.datasheets_removed)
    return 0


def _cmd_history(args: argparse.Namespace) -> int:
    config = _load_effective_config(args)
    limit = _require_positive_int(getattr(args, "limit", None), "--limit")
    verdict = _optional_str(getattr(args, "verdict", None))
    with _open_store(args, config) as store:
        scans = (
            store.history.get_by_verdict_type(verdict, limit)
            if verdict is not None
            else store.history.get_recent(limit)
        )

    if _flag(args, "json"):
        _emit_json({"command": "history", "scans": _dump_models(scans)})
        return 0
    renderer = _get_renderer(args)
    if not scans:
        renderer.text("No scans recorded.")
        return 0
    renderer.table(
        ["ID", "CREATED", "VERDICT", "CONFIDENCE", "PARTS", "CLAIM"],
        [
            [
                str(scan.id),
                _format_datetime(scan.created_at),
                scan.verdict_type,
                f"{scan.confidence:.2f}",
                str(scan.component_count),
                scan.claim_raw,
            ]
            for scan in scans
        ],
    )
    return 0


def _cmd_saved(args: argparse.Namespace) -> int:
    config = _load_effective_config(args)
    tag = _optional_str(getattr(args, "tag", None))
    with _open_store(args, config) as store:
        entries = store.saved.get_by_tag(tag) if tag is not None else store.saved.get_all()

    if _flag(args, "json"):
        _emit_json({"command": "saved", "tag": tag, "components": _dump_models(entries)})
        return 0
    renderer = _get_renderer(args)
    if not entries:
        renderer.text("No saved components." if tag is None else f"No components tagged {tag!r}.")
        return 0
    renderer.table(
        ["ID", "PART", "MANUFACTURER", "CATEGORY", "TAGS", "NOTES"],
        [
            [
                str(entry.id),
                entry.part_number,
                entry.manufacturer,
                entry.category.value,
                ",".join(entry.tags),
                entry.notes or "",
            ]
            for entry in entries
        ],
    )
    return 0


def _cmd_search(args: argparse.Namespace) -> int:
    config = _load_effective_config(args)
    query = _require_str(getattr(args, "query", None), "query")
    scope = _require_str(getattr(args, "scope", "components"), "scope")
    raw_limit = getattr(args, "limit", None)

    with _open_store(args, config) as store:
        limit = (
            store.settings.search_limit
            if raw_limit is None
            else _require_positive_int(raw_limit, "--limit")
        )
        results: Sequence[CanonicalModel]
        if scope == "saved":
            results = store.saved.search(query, limit)
        elif scope == "history":
            results = store.history.search(query, limit)
        else:
            results = store.components.search(query, limit)

    if _flag(args, "json"):
        _emit_json(
            {"command": "search", "query": query, "scope": scope, "results": _dump_models(results)}
        )
        return 0
    renderer = _get_renderer(args)
    if not results:
        renderer.text(f"No {scope} match {query!r}.")
        return 0
    for item in results:
        renderer.text(_describe_result(item))
    return 0


def _cmd_import_bundle(args: argparse.Namespace) -> int:
    config = _load_effective_config(args)
    bundle_path = _require_str(getattr(args, "bundle_path", None), "bundle_path")
    bundle_version = _optional_str(getattr(args, "bundle_version", None))

    with _open_store(args, config) as store:
        summary = import_bundle(store, bundle_path, bundle_version=bundle_version)

    if _flag(args, "json"):
        _emit_json({"command": "import-bundle", "summary": summary.to_dict()})
        return 0
    renderer = _get_renderer(args)
    renderer.kv("Bundle version", summary.bundle.bundle_version)
    renderer.kv("Components imported", summary.imported_count)
    renderer.kv("Bundle size (bytes)", summary.bundle.size_bytes)
    renderer.items([f"{category}: {count}" for category, count in summary.categories.items()])
    return 0


def _cmd_reset(args: argparse.Namespace) -> int:
    if not _flag(args, "yes"):
        raise CLIError("reset deletes every stored record; re-run with --yes to confirm")
    config = _load_effective_config(args)
    with _open_store(args, config) as store:
        store.db.reset()
        version = store.db.migrate()

    renderer = _get_renderer(args)
    renderer.kv("Reset database", store.settings.database_path)
    renderer.kv("Schema version", version)
    return 0


def _cmd_config(args: argparse.Namespace) -> int:
    config = _load_effective_config(args)
    if _flag(args, "json"):
        print(dump_effective_config(config))
        return 0

    renderer = _get_renderer(args)
    renderer.text(json.dumps(config, indent=2, sort_keys=True, ensure_ascii=False))
    return 0


# ---------------------------------------------------------------------------
# Rendering helpers
# ---------------------------------------------------------------------------


def _emit_json(payload: Mapping[str, object]) -> None:
    """Emit a JSON payload to stdout with deterministic formatting."""

    print(json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False))


def _get_renderer(args: argparse.Namespace) -> CLIRenderer:
    return create_renderer(verbose=_flag(args, "verbose"))


def _dump_models(items: Sequence[CanonicalModel]) -> list[dict[str, Any]]:
    return [item.to_dict() for item in items]


def _describe_result(item: CanonicalModel) -> str:
    payload = item.to_dict()
    if "claim_raw" in payload:
        return f"#{payload['id']} [{payload['verdict_type']}] {payload['claim_raw']}"
    return f"{payload['part_number']} ({payload['manufacturer']}) [{payload['category']}]"


def _format_datetime(value: datetime) -> str:
    return value.astimezone(UTC).strftime("%Y-%m-%dT%H:%M:%SZ")


def _format_optional_datetime(value: datetime | None) -> str:
    return "-" if value is None else _format_datetime(value)


def _or_unavailable(value: object) -> object:
    return "unavailable" if value is None else value


# ---------------------------------------------------------------------------
# Store and config helpers
# ---------------------------------------------------------------------------


def _load_effective_config(args: argparse.Namespace) -> dict[str, Any]:
    config_path = _optional_str(getattr(args, "config_path", None))
    overrides: dict[str, object] = {}
    db_path = _optional_str(getattr(args, "db_path", None))
    if db_path is not None:
        overrides["paths.database"] = db_path
    log_dir = _optional_str(getattr(args, "log_dir", None))
    if log_dir is not None:
        overrides["observability.log_dir"] = log_dir

    try:
        return load_config(config_path, cli_overrides=overrides)
    except (ConfigLoadError, ConfigValidationError) as exc:
        raise CLIError(str(exc), exit_code=2) from exc


@contextmanager
def _open_store(args: argparse.Namespace, config: Mapping[str, Any]) -> Iterator[SpecStore]:
    """Configure session logging and yield a store; both are torn down on exit."""

    session_id = _new_session_id()
    observability = config.get("observability")
    setup_logging(
        observability if isinstance(observability, Mapping) else None,
        session_id=session_id,
        log_to_stderr=_flag(args, "verbose"),
    )
    store = SpecStore.from_config(config)
    try:
        with correlation_scope(command=str(getattr(args, "command", "unknown"))):
            logger.info("store command started", extra={"db_path": store.settings.database_path})
            yield store
    finally:
        store.close()
        shutdown_logging()


def _new_session_id() -> str:
    stamp = datetime.now(UTC).strftime("%Y%m%dT%H%M%SZ")
    return f"{stamp}-{uuid.uuid4().hex[:8]}"


def _require_str(value: object, name: str) -> str:
    if not isinstance(value, str):
        raise CLIError(f"invalid {name}: expected string")
    cleaned = value.strip()
    if not cleaned:
        raise CLIError(f"invalid {name}: value cannot be empty")
    return cleaned


def _optional_str(value: object) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise CLIError("invalid optional string argument")
    cleaned = value.strip()
    return cleaned or None


def _require_positive_int(value: object, name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise CLIError(f"invalid {name}: expected a positive integer")
    return value


def _flag(args: argparse.Namespace, name: str) -> bool:
    value = getattr(args, name, False)
    return bool(value)


__all__ = ["CLIError", "build_parser", "run_cli"]
