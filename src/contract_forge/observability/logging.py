"""Structured logging setup: queue-backed handlers, JSON-lines output, correlation fields.

Records are handed to a :class:`logging.handlers.QueueListener` thread so that worker threads
running daemon calls never block on a slow sink. ``structlog`` is configured to render into
stdlib records, so orchestrator state events and plain ``logging`` calls share one stream.
"""

from __future__ import annotations

import atexit
import contextvars
import json
import logging
import logging.handlers
import queue
import sys
import threading
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Final

import structlog

JSONScalar = str | int | float | bool | None
JSONValue = JSONScalar | list["JSONValue"] | dict[str, "JSONValue"]

DEFAULT_LOGGER_NAME: Final[str] = "contract_forge"

# Attributes every LogRecord carries; anything else on a record came in through ``extra``.
_RESERVED_ATTRIBUTES: Final[frozenset[str]] = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", None, None))
) | {"correlation", "message", "asctime", "taskName"}

_correlation: contextvars.ContextVar[tuple[tuple[str, str], ...]] = contextvars.ContextVar(
    "contract_forge_correlation", default=()
)

_active_lock = threading.Lock()
_active: StructuredLoggingHandle | None = None
_atexit_hooked = False


@dataclass(frozen=True, slots=True)
class LoggingConfig:
    """Configuration for queue-backed structured logging."""

    run_id: str
    level: int | str = "WARNING"
    log_dir: Path | str | None = None
    json_lines: bool = False
    log_to_stderr: bool = True
    logger_name: str = DEFAULT_LOGGER_NAME
    queue_size: int = 4096
    log_filename: str = "build.jsonl"


class _ContextQueueHandler(logging.handlers.QueueHandler):
    """Stamp correlation fields on the record in the emitting task; drop when the queue is full."""

    def __init__(self, sink: queue.Queue[logging.LogRecord]) -> None:
        super().__init__(sink)
        self.dropped = 0

    def prepare(self, record: logging.LogRecord) -> logging.LogRecord:
        record.correlation = get_correlation_context()
        return super().prepare(record)

    def enqueue(self, record: logging.LogRecord) -> None:
        try:
            self.queue.put_nowait(record)
        except queue.Full:
            self.dropped += 1


class _JsonLineFormatter(logging.Formatter):
    """One canonical JSON object per record, correlation fields at the top level."""

    def __init__(self, run_id: str) -> None:
        super().__init__()
        self._run_id = run_id

    def format(self, record: logging.LogRecord) -> str:
        event: dict[str, JSONValue] = {
            "timestamp": _utc_timestamp(record.created),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "run_id": self._run_id,
        }
        event.update(_correlation_of(record))
        extras = _extras_of(record)
        if extras:
            event["fields"] = extras
        if record.exc_info is not None:
            event["exception"] = self.formatException(record.exc_info)
        return json.dumps(event, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


class _ConsoleFormatter(logging.Formatter):
    """Single-line human formatter: ``LEVEL [package=.. sandbox=..] message key=value``."""

    def format(self, record: logging.LogRecord) -> str:
        parts = [record.levelname]
        correlation = _correlation_of(record)
        if correlation:
            parts.append("[" + " ".join(f"{k}={v}" for k, v in sorted(correlation.items())) + "]")
        parts.append(record.getMessage())
        parts.extend(f"{k}={v}" for k, v in sorted(_extras_of(record).items()))
        line = " ".join(parts)
        if record.exc_info is not None:
            line += "\n" + self.formatException(record.exc_info)
        return line


@dataclass(eq=False)
class StructuredLoggingHandle:
    """Runtime handle for an active structured logging setup."""

    logger: logging.Logger
    run_id: str
    log_path: Path | None
    _queue_handler: _ContextQueueHandler = field(repr=False)
    _sinks: tuple[logging.Handler, ...] = field(repr=False)
    _listener: logging.handlers.QueueListener = field(repr=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)
    _closed: bool = field(default=False, repr=False)

    @property
    def dropped_records(self) -> int:
        return self._queue_handler.dropped

    @property
    def is_shutdown(self) -> bool:
        return self._closed

    def shutdown(self) -> None:
        """Drain queued records into the sinks, then detach and close them."""

        with self._lock:
            if self._closed:
                return
            self._listener.stop()
            self.logger.removeHandler(self._queue_handler)
            self._queue_handler.close()
            for sink in self._sinks:
                sink.flush()
                sink.close()
            self._closed = True


def setup_structured_logging(config: LoggingConfig) -> StructuredLoggingHandle:
    """Configure queue-backed logging for one run and route ``structlog`` through it.

    A previously active setup is shut down first, so at most one listener runs at a time.
    """

    run_id = config.run_id.strip()
    if not run_id:
        raise ValueError("run_id must not be empty")
    if config.queue_size <= 0:
        raise ValueError("queue_size must be > 0")
    level = _level_number(config.level)

    previous = get_active_logging_handle()
    if previous is not None:
        shutdown_logging(previous)

    sinks: list[logging.Handler] = []
    log_path: Path | None = None
    if config.log_dir is not None:
        run_dir = Path(config.log_dir) / run_id
        run_dir.mkdir(parents=True, exist_ok=True)
        log_path = run_dir / config.log_filename
        file_sink = logging.FileHandler(log_path, encoding="utf-8")
        file_sink.setFormatter(_JsonLineFormatter(run_id))
        sinks.append(file_sink)
    if config.log_to_stderr:
        stderr_sink = logging.StreamHandler(sys.stderr)
        stderr_sink.setFormatter(
            _JsonLineFormatter(run_id) if config.json_lines else _ConsoleFormatter()
        )
        sinks.append(stderr_sink)
    for sink in sinks:
        sink.setLevel(level)

    logger = logging.getLogger(config.logger_name)
    logger.setLevel(level)
    logger.propagate = False
    for stale in list(logger.handlers):
        logger.removeHandler(stale)
        stale.close()

    records: queue.Queue[logging.LogRecord] = queue.Queue(maxsize=config.queue_size)
    queue_handler = _ContextQueueHandler(records)
    queue_handler.setLevel(level)
    listener = logging.handlers.QueueListener(records, *sinks, respect_handler_level=True)
    listener.start()
    logger.addHandler(queue_handler)
    configure_structlog()

    handle = StructuredLoggingHandle(
        logger=logger,
        run_id=run_id,
        log_path=log_path,
        _queue_handler=queue_handler,
        _sinks=tuple(sinks),
        _listener=listener,
    )
    _set_active(handle)
    return handle


def configure_structlog() -> None:
    """Send ``structlog`` events to stdlib logging so they share the run's sinks."""

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.format_exc_info,
            structlog.stdlib.render_to_log_kwargs,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )


def shutdown_logging(handle: StructuredLoggingHandle | None = None) -> None:
    """Shutdown ``handle`` (default: the active one) and close all of its sinks."""

    global _active
    target = handle if handle is not None else get_active_logging_handle()
    if target is None:
        return
    target.shutdown()
    with _active_lock:
        if _active is target:
            _active = None


def get_active_logging_handle() -> StructuredLoggingHandle | None:
    with _active_lock:
        return _active


def get_correlation_context() -> dict[str, str]:
    """Return the current correlation context as a plain dictionary."""

    return dict(_correlation.get())


@contextmanager
def correlation_scope(**fields: str | None) -> Iterator[None]:
    """Bind correlation fields (``package``, ``sandbox``...) for records emitted in scope.

    A ``None`` or blank value removes an inherited field. Each asyncio task sees its own
    bindings, so concurrent orchestrations never mix their fields.
    """

    merged = get_correlation_context()
    for key, value in fields.items():
        text = "" if value is None else str(value).strip()
        if text:
            merged[key] = text
        else:
            merged.pop(key, None)
    token = _correlation.set(tuple(merged.items()))
    try:
        yield
    finally:
        _correlation.reset(token)


def _set_active(handle: StructuredLoggingHandle) -> None:
    global _active, _atexit_hooked
    with _active_lock:
        _active = handle
        if not _atexit_hooked:
            atexit.register(shutdown_logging)
            _atexit_hooked = True


def _level_number(value: int | str) -> int:
    if isinstance(value, int):
        return value
    number = logging.getLevelName(value.strip().upper())
    if not isinstance(number, int):
        raise ValueError(f"unsupported logging level {value!r}")
    return number


def _utc_timestamp(epoch_seconds: float) -> str:
    stamp = datetime.fromtimestamp(epoch_seconds, tz=UTC).isoformat(timespec="milliseconds")
    return stamp.replace("+00:00", "Z")


def _correlation_of(record: logging.LogRecord) -> dict[str, str]:
    fields = getattr(record, "correlation", None)
    if not isinstance(fields, Mapping):
        return {}
    return {str(k): str(v) for k, v in fields.items()}


def _extras_of(record: logging.LogRecord) -> dict[str, JSONValue]:
    return {
        key: _jsonable(value)
        for key, value in vars(record).items()
        if key not in _RESERVED_ATTRIBUTES and not key.startswith("_")
    }


def _jsonable(value: object) -> JSONValue:
    if value is None or isinstance(value, (str, bool, int, float)):
        return value
    if isinstance(value, Mapping):
        return {str(k): _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [_jsonable(item) for item in value]
    return str(value)


__all__ = [
    "DEFAULT_LOGGER_NAME",
    "LoggingConfig",
    "StructuredLoggingHandle",
    "configure_structlog",
    "correlation_scope",
    "get_active_logging_handle",
    "get_correlation_context",
    "setup_structured_logging",
    "shutdown_logging",
]
