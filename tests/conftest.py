"""Shared fixtures for the relay test suite."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Any, AsyncIterator, Optional, Sequence

import pytest

from live_page_relay.core.config import RelaySettings
from live_page_relay.core.errors import TransportSendFailure
from live_page_relay.core.logging_system import SessionLogger
from live_page_relay.streaming.cancellation import CancellationToken

UPSTREAM_URL = "https://upstream.test/v1/responses"

_RELAY_ENV_VARS = (
    "HOST",
    "PORT",
    "OPENAI_API_KEY",
    "OPENAPI_API_KEY",
    "OPENAI_RESPONSES_URL",
    "OPENAI_MODEL",
    "STREAM_PROMPT",
    "RELAY_SECRET_KEY",
    "LOG_LEVEL",
    "TEMPLATE_PATH",
    "STATIC_DIR",
)


class FakeSink:
    """In-memory downstream sink recording every delivered message."""

    def __init__(self, *, fail_on: Optional[int] = None) -> None:
        self.messages: list[dict[str, Any]] = []
        self.open = True
        self.attempts = 0
        self._fail_on = fail_on

    @property
    def is_open(self) -> bool:
        return self.open

    async def send(self, message: dict[str, Any]) -> None:
        self.attempts += 1
        if not self.open:
            raise TransportSendFailure("peer gone")
        if self._fail_on is not None and self.attempts == self._fail_on:
            raise TransportSendFailure("socket reset")
        self.messages.append(message)


class FakeSource:
    """Upstream source replaying canned byte chunks.

    ``hang=True`` keeps the stream open after the last chunk until the
    session's token is cancelled; ``error`` is raised after the last chunk.
    """

    def __init__(
        self,
        chunks: Sequence[bytes] = (),
        *,
        open_error: Optional[BaseException] = None,
        error: Optional[BaseException] = None,
        hang: bool = False,
    ) -> None:
        self.chunks = list(chunks)
        self.open_error = open_error
        self.error = error
        self.hang = hang
        self.opened = 0
        self.closed = False
        self.delivered = 0
        self.token: Optional[CancellationToken] = None

    @contextlib.asynccontextmanager
    async def open(self, token: CancellationToken) -> AsyncIterator[AsyncIterator[bytes]]:
        self.opened += 1
        self.token = token
        if self.open_error is not None:
            raise self.open_error
        try:
            yield self._iterate(token)
        finally:
            self.closed = True

    async def _iterate(self, token: CancellationToken) -> AsyncIterator[bytes]:
        for chunk in self.chunks:
            await asyncio.sleep(0)
            if token.cancelled:
                return
            self.delivered += 1
            yield chunk
        if self.error is not None:
            raise self.error
        if self.hang:
            await token.wait()


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in _RELAY_ENV_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture(autouse=True)
def _reset_session_logger():
    yield
    SessionLogger.reset()
    logging.getLogger("live_page_relay").setLevel(logging.NOTSET)


@pytest.fixture
def settings() -> RelaySettings:
    return RelaySettings(
        API_KEY="sk-test",
        UPSTREAM_URL=UPSTREAM_URL,
        UPSTREAM_MODEL="test-model",
        UPSTREAM_PROMPT="render a page",
        UPSTREAM_RETRY_ATTEMPTS=1,
    )


@pytest.fixture
def sink() -> FakeSink:
    return FakeSink()


@pytest.fixture
def make_source():
    return FakeSource


@pytest.fixture
def make_sink():
    return FakeSink


def sse(*payloads: str) -> bytes:
    """Encode payloads as ``data:`` frames."""
    return "".join(f"data: {payload}\n\n" for payload in payloads).encode("utf-8")


@pytest.fixture
def encode_sse():
    return sse
