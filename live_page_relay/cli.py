"""Command-line entry point: ``live-page-relay`` / ``python -m live_page_relay``."""

from __future__ import annotations

import argparse
import logging
from typing import Any, Optional, Sequence

import uvicorn
from dotenv import find_dotenv, load_dotenv
from pydantic import ValidationError

from .core.config import RelaySettings
from .core.logging_system import SessionLogger
from .core.timing_logger import close_timing_file, configure_timing_file
from .server.app import create_app

LOGGER = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="live-page-relay",
        description="Serve a page whose body is streamed live from a text-generation API.",
    )
    parser.add_argument("--host", default=None, help="interface to bind (default: HOST or 0.0.0.0)")
    parser.add_argument("--port", type=int, default=None, help="port to listen on (default: PORT or 3000)")
    parser.add_argument(
        "--log-level",
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        type=str.upper,
        help="console log level (default: LOG_LEVEL or INFO)",
    )
    parser.add_argument("--env-file", default=None, help="dotenv file to load before reading settings")
    return parser


def load_settings(args: argparse.Namespace) -> RelaySettings:
    """Build settings from the environment, with command-line overrides applied."""
    overrides: dict[str, Any] = {}
    if args.host:
        overrides["HOST"] = args.host
    if args.port is not None:
        overrides["PORT"] = args.port
    if args.log_level:
        overrides["LOG_LEVEL"] = args.log_level
    return RelaySettings(**overrides)


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    load_dotenv(args.env_file or find_dotenv(usecwd=True))
    try:
        settings = load_settings(args)
    except ValidationError as exc:
        parser.error(str(exc))

    SessionLogger.configure(settings.LOG_LEVEL)
    if settings.ENABLE_TIMING_LOG and not configure_timing_file(settings.TIMING_LOG_FILE):
        LOGGER.warning("Timing log disabled: cannot open %s", settings.TIMING_LOG_FILE)

    LOGGER.info(
        "Starting relay on http://%s:%s (upstream=%s model=%s credential=%s)",
        settings.HOST,
        settings.PORT,
        settings.UPSTREAM_URL,
        settings.UPSTREAM_MODEL,
        "configured" if str(settings.API_KEY or "").strip() else "missing",
    )
    app = create_app(settings)
    try:
        uvicorn.run(
            app,
            host=settings.HOST,
            port=settings.PORT,
            log_level=settings.LOG_LEVEL.lower(),
            access_log=False,
        )
    finally:
        close_timing_file()
    return 0
