"""Session logging for store commands.

Every CLI invocation writes one log file under ``<log_dir>/<session_id>/``.
Records are handed to a bounded queue and written by a listener thread, so a
slow disk never stalls a store transaction; when the queue is full the record
is dropped and counted instead.

Correlation fields (``command``, ``scan_id``, ...) are bound with
``correlation_scope`` and copied onto each record on the emitting thread.
structlog events are routed through the same stdlib loggers, so maintenance
decisions land in the same file as everything else.
"""

from __future__ import annotations

import atexit
import contextvars
import json
import logging
import logging.handlers
import math
import queue
import threading
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Final, Literal

import structlog

from speccheck_store.domain.models import JSONValue

LogFormat = Literal["json", "text"]

SESSION_LOG_FILENAME: Final[str] = "speccheck.jsonl"
PACKAGE_LOGGER: Final[str] = "speccheck_store"

# Record attributes that are promoted to top-level event keys instead of ``fields``.
CORRELATION_KEYS: Final[frozenset[str]] = frozenset(
    {"session_id", "correlation_id", "scan_id", "bundle_version", "command"}
)

_RECORD_ATTRIBUTES: Final[frozenset[str]] = frozenset(vars(logging.makeLogRecord({}))) | {
    "message",
    "asctime",
    "correlation",
}

_correlation: contextvars.ContextVar[tuple[tuple[str, str], ...]] = contextvars.ContextVar(
    "speccheck_store_correlation", default=()
)

_active_lock = threading.Lock()
_active: StructuredLoggingHandle | None = None


@dataclass(frozen=True, slots=True)
class LoggingConfig:
    session_id: str
    base_log_dir: Path | str = Path("logs")
    logger_name: str = PACKAGE_LOGGER
    level: int | str = "INFO"
    log_format: LogFormat = "json"
    queue_size: int = 4096
    log_to_stderr: bool = False


# ---------------------------------------------------------------------------
# Correlation
# ---------------------------------------------------------------------------


def get_correlation_context() -> dict[str, str]:
    return dict(_correlation.get())


@contextmanager
def correlation_scope(**fields: str | None) -> Iterator[None]:
    """Bind correlation fields for the enclosed block; ``None`` unbinds a field."""

    state = get_correlation_context()
    for key, value in fields.items():
        if value is None:
            state.pop(key, None)
            continue
        if not isinstance(value, str) or not value.strip():
            raise ValueError(f"correlation value for {key!r} must be a non-empty string")
        state[key] = value.strip()
    token = _correlation.set(tuple(state.items()))
    try:
        yield
    finally:
        _correlation.reset(token)


# ---------------------------------------------------------------------------
# Handlers and formatters
# ---------------------------------------------------------------------------


class _DroppingQueueHandler(logging.handlers.QueueHandler):
    def __init__(self, log_queue: queue.Queue[logging.LogRecord]) -> None:
        super().__init__(log_queue)
        self.dropped = 0
        self._dropped_lock = threading.Lock()

    def prepare(self, record: logging.LogRecord) -> logging.LogRecord:
        # The listener thread cannot see this thread's contextvars.
        context = get_correlation_context()
        if context:
            record.correlation = context
        prepared: logging.LogRecord = super().prepare(record)
        return prepared

    def enqueue(self, record: logging.LogRecord) -> None:
        try:
            self.queue.put_nowait(record)
        except queue.Full:
            with self._dropped_lock:
                self.dropped += 1


class _SessionFormatter(logging.Formatter):
    def __init__(self, session_id: str) -> None:
        super().__init__()
        self._session_id = session_id

    def split_record(
        self, record: logging.LogRecord
    ) -> tuple[dict[str, str], dict[str, JSONValue]]:
        """Return ``(correlation, fields)`` for a record."""

        correlation = {"session_id": self._session_id}
        carried = getattr(record, "correlation", None)
        if isinstance(carried, Mapping):
            correlation.update(carried)

        fields: dict[str, JSONValue] = {}
        for key, value in vars(record).items():
            if key in _RECORD_ATTRIBUTES or key.startswith("_"):
                continue
            if key in CORRELATION_KEYS:
                if isinstance(value, str) and value.strip():
                    correlation[key] = value.strip()
                continue
            fields[key] = _json_safe(value)
        return correlation, fields


class _JsonLineFormatter(_SessionFormatter):
    def format(self, record: logging.LogRecord) -> str:
        correlation, fields = self.split_record(record)
        event: dict[str, JSONValue] = {
            "timestamp": _utc_timestamp(record.created),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        event.update(correlation)
        if fields:
            event["fields"] = fields
        if record.exc_info is not None:
            event["exception"] = self.formatException(record.exc_info)
        return json.dumps(event, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


class _TextLineFormatter(_SessionFormatter):
    """``<timestamp> <LEVEL> <logger> <message> key=value ...``"""

    def format(self, record: logging.LogRecord) -> str:
        correlation, fields = self.split_record(record)
        parts = [
            _utc_timestamp(record.created),
            record.levelname,
            record.name,
            record.getMessage(),
        ]
        for key, value in [*sorted(correlation.items()), *sorted(fields.items())]:
            rendered = value if isinstance(value, str) else json.dumps(value, sort_keys=True)
            parts.append(f"{key}={rendered}")
        line = " ".join(parts)
        if record.exc_info is not None:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line


# ---------------------------------------------------------------------------
# Session lifecycle
# ---------------------------------------------------------------------------


class StructuredLoggingHandle:
    """An active logging session: its log file, queue handler and listener."""

    def __init__(
        self,
        *,
        logger: logging.Logger,
        session_log_dir: Path,
        queue_handler: _DroppingQueueHandler,
        listener: logging.handlers.QueueListener,
        sinks: tuple[logging.Handler, ...],
    ) -> None:
        self.logger = logger
        self.session_log_dir = session_log_dir
        self.log_path = session_log_dir / SESSION_LOG_FILENAME
        self._queue_handler = queue_handler
        self._listener = listener
        self._sinks = sinks
        self._lock = threading.Lock()
        self._closed = False

    @property
    def dropped_records(self) -> int:
        return self._queue_handler.dropped

    @property
    def is_shutdown(self) -> bool:
        return self._closed

    def shutdown(self) -> None:
        with self._lock:
            if self._closed:
                return
            # stop() drains everything already queued before joining.
            self._listener.stop()
            self.logger.removeHandler(self._queue_handler)
            self._queue_handler.close()
            for sink in self._sinks:
                sink.close()
            self._closed = True


def setup_structured_logging(config: LoggingConfig) -> StructuredLoggingHandle:
    """Start a logging session, replacing any session that is still active."""

    session_id = config.session_id.strip() if isinstance(config.session_id, str) else ""
    if not session_id or Path(session_id).name != session_id:
        raise ValueError(f"session_id must be a plain directory name, got {config.session_id!r}")
    if config.queue_size <= 0:
        raise ValueError("queue_size must be > 0")
    level = _parse_level(config.level)

    shutdown_logging()

    session_log_dir = Path(config.base_log_dir) / session_id
    session_log_dir.mkdir(parents=True, exist_ok=True)
    formatter: logging.Formatter = (
        _TextLineFormatter(session_id)
        if config.log_format == "text"
        else _JsonLineFormatter(session_id)
    )

    sinks: list[logging.Handler] = [
        logging.FileHandler(session_log_dir / SESSION_LOG_FILENAME, encoding="utf-8")
    ]
    if config.log_to_stderr:
        sinks.append(logging.StreamHandler())
    for sink in sinks:
        sink.setFormatter(formatter)

    log_queue: queue.Queue[logging.LogRecord] = queue.Queue(maxsize=config.queue_size)
    queue_handler = _DroppingQueueHandler(log_queue)
    listener = logging.handlers.QueueListener(log_queue, *sinks)

    logger = logging.getLogger(config.logger_name)
    for stale in list(logger.handlers):
        logger.removeHandler(stale)
        stale.close()
    logger.setLevel(level)
    logger.propagate = False
    logger.addHandler(queue_handler)
    listener.start()

    _route_structlog_to_stdlib()

    handle = StructuredLoggingHandle(
        logger=logger,
        session_log_dir=session_log_dir,
        queue_handler=queue_handler,
        listener=listener,
        sinks=tuple(sinks),
    )
    global _active
    with _active_lock:
        _active = handle
    return handle


def setup_logging(
    observability_config: Mapping[str, object] | None = None,
    *,
    session_id: str,
    log_dir: Path | str | None = None,
    logger_name: str = PACKAGE_LOGGER,
    log_to_stderr: bool = False,
) -> logging.Logger:
    """Start a session from the ``[observability]`` config section.

    ``log_dir`` overrides ``observability.log_dir``.
    """

    section = observability_config or {}
    log_format: LogFormat = "text" if section.get("log_format") == "text" else "json"
    level = section.get("log_level", "INFO")
    base_log_dir = log_dir if log_dir is not None else section.get("log_dir", "logs")
    handle = setup_structured_logging(
        LoggingConfig(
            session_id=session_id,
            base_log_dir=base_log_dir if isinstance(base_log_dir, (str, Path)) else "logs",
            logger_name=logger_name,
            level=level if isinstance(level, (int, str)) else "INFO",
            log_format=log_format,
            log_to_stderr=log_to_stderr,
        )
    )
    return handle.logger


def shutdown_logging(handle: StructuredLoggingHandle | None = None) -> None:
    """Drain and close ``handle``, or the active session when none is given."""

    global _active
    with _active_lock:
        target = handle if handle is not None else _active
        if target is _active:
            _active = None
    if target is not None:
        target.shutdown()


def get_active_logging_handle() -> StructuredLoggingHandle | None:
    with _active_lock:
        return _active


atexit.register(shutdown_logging)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _route_structlog_to_stdlib() -> None:
    # Keyword arguments become the record's extra fields.
    structlog.configure(
        processors=[structlog.stdlib.render_to_log_kwargs],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )


def _parse_level(value: int | str) -> int:
    if isinstance(value, int):
        return value
    levels = logging.getLevelNamesMapping()
    name = str(value).strip().upper()
    if name not in levels:
        raise ValueError(f"unsupported logging level {value!r}")
    return levels[name]


def _utc_timestamp(epoch_seconds: float) -> str:
    moment = datetime.fromtimestamp(epoch_seconds, tz=UTC)
    return moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _json_safe(value: object) -> JSONValue:
    if value is None or isinstance(value, (bool, int, str)):
        return value
    if isinstance(value, float):
        return value if math.isfinite(value) else "non-finite"
    if isinstance(value, datetime):
        moment = value if value.tzinfo is not None else value.replace(tzinfo=UTC)
        return moment.astimezone(UTC).isoformat().replace("+00:00", "Z")
    if isinstance(value, Mapping):
        return {str(key): _json_safe(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_json_safe(item) for item in value]
    if isinstance(value, Path):
        return value.as_posix()
    return repr(value)


__all__ = [
    "CORRELATION_KEYS",
    "LogFormat",
    "LoggingConfig",
    "PACKAGE_LOGGER",
    "SESSION_LOG_FILENAME",
    "StructuredLoggingHandle",
    "correlation_scope",
    "get_active_logging_handle",
    "get_correlation_context",
    "setup_logging",
    "setup_structured_logging",
    "shutdown_logging",
]
