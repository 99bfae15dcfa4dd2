"""Logging system with per-session context.

This module handles all logging-related functionality:
- SessionLogger: contextvar-tracked session id attached to every record
- Console formatting for the ``live_page_relay`` logger hierarchy
- Per-session minimum log level

Modules keep the plain ``LOGGER = logging.getLogger(__name__)`` pattern; the
handler installed by :meth:`SessionLogger.configure` enriches their records
with the relay session currently running in the task's context.
"""

from __future__ import annotations

import contextlib
import logging
import sys
from contextvars import ContextVar
from typing import IO, Iterator, Optional, Union

from .timing_logger import timed

ROOT_LOGGER_NAME = "live_page_relay"


class _SessionContextFilter(logging.Filter):
    """Attach session metadata and honor the per-session console level."""

    def filter(self, record: logging.LogRecord) -> bool:
        try:
            record.session_id = SessionLogger.session_id.get() or "-"
            session_level = SessionLogger.log_level.get()
        except LookupError:
            record.session_id = "-"
            session_level = None
        if session_level is not None and record.levelno < session_level:
            return False
        return True


class SessionLogger:
    """Console logger bound to the relay session running in the current context.

    Attributes:
        session_id: ContextVar storing the relay session id.
        log_level:  ContextVar storing an optional per-session minimum level.
    """

    session_id: ContextVar[Optional[str]] = ContextVar("session_id", default=None)
    log_level: ContextVar[Optional[int]] = ContextVar("log_level", default=None)
    _handler: Optional[logging.Handler] = None
    _console_formatter = logging.Formatter(
        "%(asctime)s.%(msecs)03d | %(levelname)-8s | %(name)s:%(funcName)s:%(lineno)d - [%(session_id)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    @classmethod
    @timed
    def configure(
        cls,
        level: Union[int, str] = logging.INFO,
        *,
        stream: Optional[IO[str]] = None,
    ) -> logging.Logger:
        """Install the console handler on the package logger (idempotent).

        Args:
            level: Minimum level for the ``live_page_relay`` hierarchy.
            stream: Destination stream; defaults to stdout.

        Returns:
            logging.Logger: the configured package logger.
        """
        logger = logging.getLogger(ROOT_LOGGER_NAME)
        if isinstance(level, str):
            level = logging.getLevelName(level.strip().upper())
            if not isinstance(level, int):
                level = logging.INFO
        logger.setLevel(level)

        if cls._handler is not None:
            logger.removeHandler(cls._handler)
        handler = logging.StreamHandler(stream or sys.stdout)
        handler.setFormatter(cls._console_formatter)
        handler.addFilter(_SessionContextFilter())
        logger.addHandler(handler)
        logger.propagate = False
        cls._handler = handler
        return logger

    @classmethod
    def reset(cls) -> None:
        """Remove the console handler installed by :meth:`configure`."""
        if cls._handler is None:
            return
        logger = logging.getLogger(ROOT_LOGGER_NAME)
        logger.removeHandler(cls._handler)
        logger.propagate = True
        cls._handler = None

    @classmethod
    @contextlib.contextmanager
    def bind(cls, session_id: str, *, level: Optional[int] = None) -> Iterator[None]:
        """Tag log records emitted inside the block with ``session_id``."""
        sid_token = cls.session_id.set(session_id)
        level_token = cls.log_level.set(level)
        try:
            yield
        finally:
            cls.log_level.reset(level_token)
            cls.session_id.reset(sid_token)
