"""
speccheck-store — unit tests for observability logging

File: tests/unit/observability/test_logging.py

Purpose
- Validate structured JSON logging with correlation metadata and queue-backed reliability.

What this test file should cover
- JSON line validity and correlation field propagation.
- Text format rendering and level filtering.
- Store modules logging through the package logger.
- Multi-threaded logging stability and queue drain on shutdown.
"""

from __future__ import annotations

import json
import logging
import logging.handlers
import threading
from typing import TYPE_CHECKING
from uuid import uuid4

import pytest
import structlog

from speccheck_store.observability.logging import (
    LoggingConfig,
    correlation_scope,
    get_active_logging_handle,
    get_correlation_context,
    setup_logging,
    setup_structured_logging,
    shutdown_logging,
)
from speccheck_store.persistence.store_db import StoreDB

if TYPE_CHECKING:
    from collections.abc import Iterator
    from pathlib import Path


@pytest.fixture(autouse=True)
def _cleanup_logging() -> Iterator[None]:
    yield
    shutdown_logging()


def _logger_name() -> str:
    return f"speccheck_store.tests.logging.{uuid4().hex}"


def _read_json_lines(path: Path) -> list[dict[str, object]]:
    lines = path.read_text(encoding="utf-8").splitlines()
    return [json.loads(line) for line in lines]


def test_json_logging_preserves_correlation_and_extra_fields(tmp_path: Path) -> None:
    logger_name = _logger_name()
    handle = setup_structured_logging(
        LoggingConfig(session_id="session-json", base_log_dir=tmp_path, logger_name=logger_name)
    )
    logger = logging.getLogger(logger_name)

    with correlation_scope(command="history", correlation_id="corr-1"):
        logger.info(
            "saved scan",
            extra={"scan_id": "42", "component_count": 3, "ratio": float("inf")},
        )
    logger.info("outside scope")

    shutdown_logging(handle)

    assert handle.log_path == tmp_path / "session-json" / "speccheck.jsonl"
    first, second = _read_json_lines(handle.log_path)
    assert first["session_id"] == "session-json"
    assert first["command"] == "history"
    assert first["correlation_id"] == "corr-1"
    assert first["scan_id"] == "42"
    assert first["fields"] == {"component_count": 3, "ratio": "non-finite"}
    assert first["level"] == "INFO"
    assert str(first["timestamp"]).endswith("Z")
    assert "command" not in second
    assert second["session_id"] == "session-json"


def test_correlation_scope_restores_previous_context() -> None:
    with correlation_scope(command="stats"):
        with correlation_scope(command="clean", scan_id="7"):
            assert get_correlation_context() == {"command": "clean", "scan_id": "7"}
        assert get_correlation_context() == {"command": "stats"}
        with correlation_scope(command=None):
            assert get_correlation_context() == {}
    assert get_correlation_context() == {}

    with pytest.raises(ValueError, match="correlation value"):
        with correlation_scope(command="  "):
            pass


def test_setup_logging_wrapper_uses_observability_config(tmp_path: Path) -> None:
    logger_name = _logger_name()
    logger = setup_logging(
        {"log_level": "WARNING", "log_format": "text", "log_dir": str(tmp_path)},
        session_id="session-text",
        logger_name=logger_name,
    )

    logger.info("filtered out")
    logger.warning("cache nearly full", extra={"expired_count": 12})
    shutdown_logging()

    content = (tmp_path / "session-text" / "speccheck.jsonl").read_text(encoding="utf-8")
    lines = content.splitlines()
    assert len(lines) == 1
    assert " WARNING " in lines[0]
    assert lines[0].endswith("cache nearly full session_id=session-text expired_count=12")


def test_explicit_log_dir_overrides_config(tmp_path: Path) -> None:
    setup_logging(
        {"log_dir": str(tmp_path / "ignored")},
        session_id="session-override",
        log_dir=tmp_path / "chosen",
        logger_name=_logger_name(),
    )

    handle = get_active_logging_handle()
    assert handle is not None
    assert handle.session_log_dir == tmp_path / "chosen" / "session-override"
    assert not (tmp_path / "ignored").exists()


@pytest.mark.parametrize("session_id", ["", "  ", "a/b", "../escape"])
def test_invalid_session_ids_are_rejected(tmp_path: Path, session_id: str) -> None:
    with pytest.raises(ValueError, match="session_id"):
        setup_structured_logging(LoggingConfig(session_id=session_id, base_log_dir=tmp_path))


def test_store_modules_log_through_package_logger(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    package_logger = logging.getLogger("speccheck_store")
    monkeypatch.setattr(package_logger, "propagate", True)
    handle = setup_structured_logging(
        LoggingConfig(session_id="session-store", base_log_dir=tmp_path / "logs")
    )

    db = StoreDB(tmp_path / "speccheck.db")
    db.migrate()
    db.close()
    shutdown_logging(handle)

    events = _read_json_lines(handle.log_path)
    applied = [event for event in events if event["message"] == "applied schema migration"]
    assert len(applied) == 1
    assert applied[0]["logger"] == "speccheck_store.persistence.migrations"
    assert applied[0]["fields"] == {"schema_version": 1, "migration_name": "initial_local_store"}


def test_structlog_events_share_session_sinks(tmp_path: Path) -> None:
    logger_name = _logger_name()
    handle = setup_structured_logging(
        LoggingConfig(
            session_id="session-structlog",
            base_log_dir=tmp_path,
            logger_name=logger_name,
        )
    )

    with correlation_scope(command="clean"):
        structlog.get_logger(logger_name).info(
            "store_expired_cleanup", components_removed=2, datasheets_removed=1
        )
    shutdown_logging(handle)

    (event,) = _read_json_lines(handle.log_path)
    assert event["message"] == "store_expired_cleanup"
    assert event["command"] == "clean"
    assert event["fields"] == {"components_removed": 2, "datasheets_removed": 1}


def test_multithreaded_logging_produces_valid_json_lines(tmp_path: Path) -> None:
    logger_name = _logger_name()
    handle = setup_structured_logging(
        LoggingConfig(
            session_id="session-threaded",
            base_log_dir=tmp_path,
            logger_name=logger_name,
            queue_size=4096,
        )
    )
    logger = logging.getLogger(logger_name)

    total_threads = 8
    per_thread = 40

    def worker(thread_idx: int) -> None:
        with correlation_scope(scan_id=f"scan-{thread_idx}"):
            for i in range(per_thread):
                logger.info("thread=%s index=%s", thread_idx, i)

    threads = [threading.Thread(target=worker, args=(idx,)) for idx in range(total_threads)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    shutdown_logging(handle)

    events = _read_json_lines(handle.log_path)
    assert len(events) == total_threads * per_thread
    for event in events:
        thread_idx = str(event["message"]).split()[0].removeprefix("thread=")
        assert event["scan_id"] == f"scan-{thread_idx}"


def test_queue_handler_non_blocking_and_shutdown_flushes(tmp_path: Path) -> None:
    logger_name = _logger_name()
    handle = setup_structured_logging(
        LoggingConfig(
            session_id="session-flush",
            base_log_dir=tmp_path,
            logger_name=logger_name,
            queue_size=10_000,
        )
    )
    logger = logging.getLogger(logger_name)

    queue_handlers = [h for h in logger.handlers if isinstance(h, logging.handlers.QueueHandler)]
    assert queue_handlers, "expected queue-backed non-blocking logging"

    expected = 300
    for i in range(expected):
        logger.info("message %s", i)

    shutdown_logging(handle)

    lines = handle.log_path.read_text(encoding="utf-8").splitlines()
    assert handle.dropped_records == 0
    assert len(lines) == expected
    assert handle.is_shutdown
    assert get_active_logging_handle() is None
