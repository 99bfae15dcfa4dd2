"""Tests for the session-aware console logger."""

from __future__ import annotations

import io
import logging

from live_page_relay.core.logging_system import ROOT_LOGGER_NAME, SessionLogger


def _logger() -> logging.Logger:
    return logging.getLogger(f"{ROOT_LOGGER_NAME}.tests")


def test_configure_installs_single_handler() -> None:
    stream = io.StringIO()
    package_logger = SessionLogger.configure("info", stream=stream)
    SessionLogger.configure("INFO", stream=stream)

    handlers = [h for h in package_logger.handlers if h is SessionLogger._handler]
    assert len(handlers) == 1
    assert len(package_logger.handlers) == 1
    assert package_logger.level == logging.INFO
    assert package_logger.propagate is False


def test_records_carry_bound_session_id() -> None:
    stream = io.StringIO()
    SessionLogger.configure(logging.DEBUG, stream=stream)

    _logger().info("outside")
    with SessionLogger.bind("abc123"):
        _logger().info("inside")

    lines = stream.getvalue().splitlines()
    assert "[-] outside" in lines[0]
    assert "[abc123] inside" in lines[1]
    assert "INFO" in lines[1]


def test_session_level_filters_console_output() -> None:
    stream = io.StringIO()
    SessionLogger.configure(logging.DEBUG, stream=stream)

    with SessionLogger.bind("quiet", level=logging.WARNING):
        _logger().info("dropped")
        _logger().warning("kept")

    output = stream.getvalue()
    assert "dropped" not in output
    assert "kept" in output


def test_bind_restores_previous_context() -> None:
    with SessionLogger.bind("outer"):
        with SessionLogger.bind("inner"):
            assert SessionLogger.session_id.get() == "inner"
        assert SessionLogger.session_id.get() == "outer"
    assert SessionLogger.session_id.get() is None


def test_reset_removes_handler() -> None:
    SessionLogger.configure(logging.INFO, stream=io.StringIO())
    SessionLogger.reset()
    package_logger = logging.getLogger(ROOT_LOGGER_NAME)
    assert SessionLogger._handler is None
    assert package_logger.handlers == []
    assert package_logger.propagate is True


def test_unknown_level_name_falls_back_to_info() -> None:
    package_logger = SessionLogger.configure("chatty", stream=io.StringIO())
    assert package_logger.level == logging.INFO
