"""Capture of log records emitted in the current thread into bounded storages."""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass

TRACE = 5
logging.addLevelName(TRACE, "TRACE")

_TOO_MANY_LINES = "too many lines in the log, truncating it"
_TOO_MUCH_DATA = "too much data in the log, truncating it"


def _level_name(levelno: int) -> str:
    if levelno >= logging.ERROR:
        return "ERROR"
    if levelno >= logging.WARNING:
        return "WARN"
    if levelno >= logging.INFO:
        return "INFO"
    if levelno >= logging.DEBUG:
        return "DEBUG"
    return "TRACE"


class NotInitializedError(RuntimeError):
    """Raised when capturing logs before the logging system was initialized."""


@dataclass(frozen=True)
class StoredRecord:
    """A single captured log line."""

    level: str
    message: str


class LogStorage:
    """Thread-safe store of captured log records with optional size and line limits."""

    def __init__(
        self,
        min_level: int = logging.INFO,
        max_size: int | None = None,
        max_lines: int | None = None,
    ) -> None:
        self.min_level = min_level
        self.max_size = max_size
        self.max_lines = max_lines
        self._lock = threading.Lock()
        self._records: list[StoredRecord] = []
        self._size = 0
        self._truncated = False

    @property
    def records(self) -> list[StoredRecord]:
        """A snapshot of the stored records."""
        with self._lock:
            return list(self._records)

    @property
    def truncated(self) -> bool:
        """Whether the storage stopped accepting records because of a limit."""
        with self._lock:
            return self._truncated

    def handle(self, record: logging.LogRecord) -> None:
        """Store a record if it is verbose enough and no limit was reached."""
        if record.levelno < self.min_level:
            return
        message = record.getMessage()
        size = len(message.encode("utf-8"))
        with self._lock:
            if self._truncated:
                return
            if self.max_lines is not None and len(self._records) >= self.max_lines:
                self._records.append(StoredRecord("WARN", _TOO_MANY_LINES))
                self._truncated = True
                return
            if self.max_size is not None and self._size + size >= self.max_size:
                self._records.append(StoredRecord("WARN", _TOO_MUCH_DATA))
                self._truncated = True
                return
            self._size += size
            self._records.append(StoredRecord(_level_name(record.levelno), message))

    def duplicate(self) -> LogStorage:
        """Return an independent storage with the same content and limits."""
        copy = LogStorage(self.min_level, self.max_size, self.max_lines)
        with self._lock:
            copy._records = list(self._records)
            copy._size = self._size
            copy._truncated = self._truncated
        return copy

    def __str__(self) -> str:
        return "".join(f"[{r.level}] {r.message}\n" for r in self.records)


_scoped = threading.local()


def _scoped_stack() -> list[LogStorage]:
    stack = getattr(_scoped, "stack", None)
    if stack is None:
        stack = _scoped.stack = []
    return stack


class _ScopedHandler(logging.Handler):
    def __init__(self, global_handler: logging.Handler | None) -> None:
        super().__init__(logging.NOTSET)
        self.global_handler = global_handler

    def emit(self, record: logging.LogRecord) -> None:
        if self.global_handler is not None:
            self.global_handler.handle(record)
        for storage in list(_scoped_stack()):
            storage.handle(record)


class _Registry:
    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.initialized = False
        self.handler: _ScopedHandler | None = None
        self.previous_level = logging.WARNING


_registry = _Registry()


def _init_inner(handler: logging.Handler | None) -> None:
    with _registry.lock:
        _registry.initialized = True
        if _registry.handler is not None:
            return
        scoped = _ScopedHandler(handler)
        root = logging.getLogger()
        _registry.previous_level = root.level
        root.addHandler(scoped)
        root.setLevel(logging.NOTSET)
        _registry.handler = scoped


def _reset() -> None:
    with _registry.lock:
        if _registry.handler is not None:
            root = logging.getLogger()
            root.removeHandler(_registry.handler)
            root.setLevel(_registry.previous_level)
        _registry.handler = None
        _registry.initialized = False


def init() -> None:
    """Initialize the logging system without forwarding records anywhere else."""
    _init_inner(None)


def init_with(handler: logging.Handler) -> None:
    """Initialize the logging system, also forwarding every record to ``handler``."""
    _init_inner(handler)


@contextmanager
def capture(storage: LogStorage) -> Iterator[LogStorage]:
    """Forward records emitted in the current thread to ``storage`` while active."""
    if not _registry.initialized:
        raise NotInitializedError("called capture without initializing cratewide.logging")
    stack = _scoped_stack()
    stack.append(storage)
    try:
        yield storage
    finally:
        stack.pop()