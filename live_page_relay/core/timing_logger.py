"""Opt-in timing instrumentation for relay sessions.

Provides:
- @timed decorator recording enter/exit of sync and async functions
- timing_scope() for arbitrary blocks, timing_mark() for single instants
- JSONL output to the file configured with TIMING_LOG_FILE
- A bounded per-session buffer, drained when the session ends

Recording only happens inside a context where ``set_timing_context(..., True)``
was called; everywhere else the helpers cost one ContextVar lookup.

Usage:
    from .core.timing_logger import timed, timing_scope, timing_mark

    @timed
    def feed(chunk): ...

    with timing_scope("upstream_open"):
        response = await session.post(...)
    timing_mark("upstream_first_chunk")
"""

from __future__ import annotations

import datetime
import functools
import inspect
import json
import threading
import time
from collections import deque
from contextlib import contextmanager
from contextvars import ContextVar
from pathlib import Path
from typing import IO, Any, Callable, Deque, Dict, Iterator, List, Optional, TypeVar

# Upper bound of buffered records per session
MAX_TIMING_EVENTS = 10000

_PACKAGE_PREFIX = "live_page_relay."

_timing_enabled: ContextVar[bool] = ContextVar("timing_enabled", default=False)
_timing_session_id: ContextVar[Optional[str]] = ContextVar("timing_session_id", default=None)


class _TimingOutput:
    """Process-wide JSONL file plus the per-session record buffers."""

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.path: Optional[Path] = None
        self.handle: Optional[IO[str]] = None
        self.sessions: Dict[str, Deque[Dict[str, Any]]] = {}

    def open(self, path: Path) -> bool:
        with self.lock:
            if self.handle is not None and self.path == path:
                return True
            self._close_locked()
            try:
                path.parent.mkdir(parents=True, exist_ok=True)
                self.handle = open(path, "a", encoding="utf-8")
            except OSError:
                return False
            self.path = path
            return True

    def close(self) -> None:
        with self.lock:
            self._close_locked()

    def _close_locked(self) -> None:
        if self.handle is not None:
            try:
                self.handle.close()
            except OSError:
                pass
        self.handle = None
        self.path = None

    def write(self, record: Dict[str, Any]) -> None:
        with self.lock:
            if self.handle is not None:
                try:
                    self.handle.write(json.dumps(record, ensure_ascii=False, separators=(",", ":")) + "\n")
                    self.handle.flush()
                except (OSError, ValueError):
                    pass  # a broken timing file never disturbs a session
            buffer = self.sessions.get(record["session_id"])
            if buffer is None:
                buffer = self.sessions[record["session_id"]] = deque(maxlen=MAX_TIMING_EVENTS)
            buffer.append(record)


_output = _TimingOutput()


def _record(event: str, label: str, *, elapsed_ms: Optional[float] = None) -> None:
    session_id = _timing_session_id.get()
    if not session_id or not _timing_enabled.get():
        return
    wall = datetime.datetime.now(datetime.timezone.utc)
    record: Dict[str, Any] = {
        "ts": wall.isoformat(timespec="milliseconds").replace("+00:00", "Z"),
        "perf_ts": round(time.perf_counter(), 6),
        "event": event,
        "label": label,
        "session_id": session_id,
    }
    if elapsed_ms is not None:
        record["elapsed_ms"] = round(elapsed_ms, 3)
    _output.write(record)


# -----------------------------------------------------------------------------
# File + context management
# -----------------------------------------------------------------------------

def configure_timing_file(file_path: str) -> bool:
    """Append timing records to ``file_path`` (parent directories are created).

    Returns False when the file cannot be opened.
    """
    return _output.open(Path(file_path))


def close_timing_file() -> None:
    """Close the timing file. Safe to call multiple times."""
    _output.close()


def set_timing_context(session_id: str, enabled: bool) -> None:
    _timing_session_id.set(session_id)
    _timing_enabled.set(enabled)


def clear_timing_context() -> None:
    _timing_session_id.set(None)
    _timing_enabled.set(False)


def get_timing_events(session_id: str) -> List[Dict[str, Any]]:
    """Return a copy of the buffered records for ``session_id``."""
    with _output.lock:
        return list(_output.sessions.get(session_id, ()))


def clear_timing_events(session_id: str) -> List[Dict[str, Any]]:
    """Drop and return the buffered records for ``session_id``."""
    with _output.lock:
        return list(_output.sessions.pop(session_id, ()))


# -----------------------------------------------------------------------------
# Recording helpers
# -----------------------------------------------------------------------------

def timing_mark(label: str) -> None:
    """Record a single point-in-time event."""
    _record("mark", label)


@contextmanager
def timing_scope(label: str) -> Iterator[None]:
    """Record enter/exit events (with elapsed milliseconds) around a block."""
    if not _timing_enabled.get():
        yield
        return
    started = time.perf_counter()
    _record("enter", label)
    try:
        yield
    finally:
        _record("exit", label, elapsed_ms=(time.perf_counter() - started) * 1000)


F = TypeVar("F", bound=Callable[..., Any])


def timed(func: F) -> F:
    """Wrap ``func`` in a timing scope labelled ``module.qualname``.

    The ``live_page_relay.`` prefix is dropped from labels. Async generators
    are not supported.
    """
    module = getattr(func, "__module__", "") or ""
    if module.startswith(_PACKAGE_PREFIX):
        module = module[len(_PACKAGE_PREFIX):]
    qualname = getattr(func, "__qualname__", None) or getattr(func, "__name__", "unknown")
    label = f"{module}.{qualname}" if module else qualname

    if inspect.iscoroutinefunction(func):

        @functools.wraps(func)
        async def async_wrapper(*args: Any, **kwargs: Any) -> Any:
            if not _timing_enabled.get():
                return await func(*args, **kwargs)
            with timing_scope(label):
                return await func(*args, **kwargs)

        return async_wrapper  # type: ignore[return-value]

    @functools.wraps(func)
    def sync_wrapper(*args: Any, **kwargs: Any) -> Any:
        if not _timing_enabled.get():
            return func(*args, **kwargs)
        with timing_scope(label):
            return func(*args, **kwargs)

    return sync_wrapper  # type: ignore[return-value]
