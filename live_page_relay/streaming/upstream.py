"""Upstream stream source.

This module issues the streaming request to the generation service and exposes
the response body as a cancellable sequence of raw byte chunks:
- Credential resolution (ConfigurationError before any connection attempt)
- Connection retries before the first byte (tenacity)
- Status/body validation (UpstreamRequestError)
- ChunkProducer: one read in flight, raced against the session's CancellationToken
"""

from __future__ import annotations

import asyncio
import contextlib
import inspect
import json
import logging
from typing import Any, AsyncIterator, Optional

import aiohttp
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from ..core.config import RelaySettings
from ..core.errors import UpstreamConnectionError, UpstreamRequestError
from ..core.timing_logger import timed, timing_mark, timing_scope
from ..core.utils import _truncate
from .cancellation import CancellationToken

LOGGER = logging.getLogger(__name__)

_RETRYABLE_EXCEPTIONS = (aiohttp.ClientConnectionError, asyncio.TimeoutError)


@timed
def create_http_session(settings: RelaySettings) -> aiohttp.ClientSession:
    """Return a ClientSession with the relay's connection and read timeouts."""
    connector = aiohttp.TCPConnector(
        limit=50,
        limit_per_host=10,
        keepalive_timeout=75,
        ttl_dns_cache=300,
    )
    sock_read = float(settings.HTTP_SOCK_READ_SECONDS) if settings.HTTP_SOCK_READ_SECONDS else None
    timeout = aiohttp.ClientTimeout(
        total=None,
        connect=float(settings.HTTP_CONNECT_TIMEOUT_SECONDS),
        sock_read=sock_read,
    )
    LOGGER.debug(
        "HTTP timeouts: connect=%ss sock_read=%s",
        settings.HTTP_CONNECT_TIMEOUT_SECONDS,
        sock_read if sock_read is not None else "disabled",
    )
    return aiohttp.ClientSession(
        connector=connector,
        timeout=timeout,
        json_serialize=json.dumps,
    )


async def _wait_or_cancel(task: asyncio.Future, token: CancellationToken) -> bool:
    """Wait for ``task`` or ``token``; return True when the token fired.

    Cancellation wins a tie so nothing read after a disconnect is delivered.
    ``task`` is left for the caller to consume or discard.
    """
    if token.cancelled:
        return True
    waiter = asyncio.ensure_future(token.wait())
    try:
        await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        if not waiter.done():
            waiter.cancel()
    return token.cancelled


async def _discard(task: asyncio.Future) -> Any:
    """Cancel ``task`` and return its result if it had already finished."""
    if not task.done():
        task.cancel()
    try:
        return await task
    except asyncio.CancelledError:
        return None
    except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
        LOGGER.debug("Discarded upstream operation failed: %s", exc)
        return None


def _has_no_body(response: aiohttp.ClientResponse) -> bool:
    """True when a successful response carries nothing to stream."""
    if response.status in (204, 205) or response.content_length == 0:
        return True
    # Body already fully received and empty
    return response.content.at_eof()


class ChunkProducer:
    """Async sequence of raw upstream byte chunks.

    ``next()`` returns the next chunk, or None at end of stream. When the
    cancellation token is set the sequence simply ends: no error, no further
    chunks. Each chunk is handed out exactly once, in arrival order.
    """

    def __init__(
        self,
        response: Optional[aiohttp.ClientResponse],
        token: CancellationToken,
        *,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._response = response
        self._token = token
        self.logger = logger or LOGGER
        self._finished = response is None
        self._released = False
        self.chunks_read = 0
        self.bytes_read = 0

    @property
    def finished(self) -> bool:
        return self._finished

    async def next(self) -> Optional[bytes]:
        """Return the next chunk, or None when the stream ended or was cancelled.

        Raises:
            UpstreamConnectionError: when the stream breaks or stalls mid-flight.
        """
        if self._finished or self._response is None:
            return None
        if self._token.cancelled:
            self._finished = True
            return None

        read = asyncio.ensure_future(self._response.content.readany())
        try:
            cancelled = await _wait_or_cancel(read, self._token)
        except asyncio.CancelledError:
            await _discard(read)
            raise
        if cancelled:
            await _discard(read)
            self._finished = True
            self.logger.debug("Upstream read interrupted by cancellation (%s)", self._token.reason)
            return None

        try:
            data = read.result()
        except asyncio.TimeoutError as exc:
            self._finished = True
            raise UpstreamConnectionError(
                "Upstream stream stalled: no data arrived within the read timeout.",
                cause=exc,
            ) from exc
        except aiohttp.ClientError as exc:
            self._finished = True
            raise UpstreamConnectionError(
                f"Upstream stream interrupted: {exc}",
                cause=exc,
            ) from exc

        if not data:
            self._finished = True
            self.logger.debug(
                "Upstream stream ended after %d chunk(s), %d byte(s)",
                self.chunks_read,
                self.bytes_read,
            )
            return None

        self.chunks_read += 1
        self.bytes_read += len(data)
        if self.chunks_read == 1:
            timing_mark("upstream_first_chunk")
        return data

    def __aiter__(self) -> "ChunkProducer":
        return self

    async def __anext__(self) -> bytes:
        chunk = await self.next()
        if chunk is None:
            raise StopAsyncIteration
        return chunk

    async def aclose(self) -> None:
        """Release the upstream response. Safe to call multiple times."""
        self._finished = True
        if self._response is None or self._released:
            return
        self._released = True
        if self._response.content.at_eof():
            result = self._response.release()
            if inspect.isawaitable(result):
                await result
        else:
            # Abandoned mid-stream: drop the connection instead of draining it.
            self._response.close()


class UpstreamStreamSource:
    """Opens streaming requests against the generation service.

    A shared ``aiohttp.ClientSession`` may be supplied (the server creates one
    per application); otherwise a session is created for each ``open()`` and
    closed with it.
    """

    def __init__(
        self,
        settings: RelaySettings,
        *,
        session: Optional[aiohttp.ClientSession] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.settings = settings
        self._session = session
        self.logger = logger or LOGGER

    def build_request(self, api_key: str, *, prompt: Optional[str] = None) -> tuple[dict[str, str], dict[str, Any]]:
        """Return the (headers, body) pair for one streaming request."""
        headers = {
            "Content-Type": "application/json",
            "Accept": "text/event-stream",
            "Authorization": f"Bearer {api_key}",
        }
        body = {
            "model": self.settings.UPSTREAM_MODEL,
            "input": prompt or self.settings.UPSTREAM_PROMPT,
            "stream": True,
        }
        return headers, body

    @contextlib.asynccontextmanager
    async def open(
        self,
        token: CancellationToken,
        *,
        prompt: Optional[str] = None,
    ) -> AsyncIterator[ChunkProducer]:
        """Start the upstream request and yield its ChunkProducer.

        Raises:
            ConfigurationError: the credential is missing (no request is made).
            UpstreamRequestError: the response status is not successful or the body is empty.
            UpstreamConnectionError: the upstream could not be reached after retries.
        """
        api_key = self.settings.resolve_api_key()
        headers, body = self.build_request(api_key, prompt=prompt)

        owns_session = self._session is None
        session = self._session or create_http_session(self.settings)
        producer: Optional[ChunkProducer] = None
        try:
            self.logger.info(
                "Opening upstream stream: endpoint=%s model=%s prompt_chars=%d",
                self.settings.UPSTREAM_URL,
                body["model"],
                len(body["input"]),
            )
            with timing_scope("upstream_open"):
                response = await self._post(session, headers, body, token)
            producer = ChunkProducer(response, token, logger=self.logger)
            if response is not None:
                await self._raise_for_status(response)
            yield producer
        finally:
            if producer is not None:
                await producer.aclose()
            if owns_session:
                await session.close()

    async def _post(
        self,
        session: aiohttp.ClientSession,
        headers: dict[str, str],
        body: dict[str, Any],
        token: CancellationToken,
    ) -> Optional[aiohttp.ClientResponse]:
        """POST with connection-level retries; None when cancelled before a response arrived."""
        retryer = AsyncRetrying(
            stop=stop_after_attempt(self.settings.UPSTREAM_RETRY_ATTEMPTS),
            wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
            retry=retry_if_exception_type(_RETRYABLE_EXCEPTIONS),
            reraise=True,
        )
        try:
            async for attempt in retryer:
                with attempt:
                    request = asyncio.ensure_future(
                        session.post(self.settings.UPSTREAM_URL, json=body, headers=headers)
                    )
                    try:
                        cancelled = await _wait_or_cancel(request, token)
                    except asyncio.CancelledError:
                        await self._discard_response(request)
                        raise
                    if cancelled:
                        self.logger.debug("Upstream request abandoned before response (%s)", token.reason)
                        await self._discard_response(request)
                        return None
                    return request.result()
        except _RETRYABLE_EXCEPTIONS as exc:
            self.logger.error("Upstream connection failed: %s", exc)
            raise UpstreamConnectionError(
                f"Unable to reach the upstream service: {str(exc) or type(exc).__name__}",
                cause=exc,
            ) from exc
        except aiohttp.ClientError as exc:
            self.logger.error("Upstream request failed: %s", exc)
            raise UpstreamConnectionError(
                f"Upstream request failed: {str(exc) or type(exc).__name__}",
                cause=exc,
            ) from exc
        return None

    async def _discard_response(self, request: asyncio.Future) -> None:
        response = await _discard(request)
        if isinstance(response, aiohttp.ClientResponse):
            response.close()

    async def _raise_for_status(self, response: aiohttp.ClientResponse) -> None:
        self.logger.info(
            "Upstream responded: status=%s content_type=%s",
            response.status,
            response.headers.get("Content-Type", ""),
        )
        if not 200 <= response.status < 300:
            try:
                body_text = await response.text()
            except (aiohttp.ClientError, UnicodeDecodeError, asyncio.TimeoutError):
                body_text = ""
            self.logger.error(
                "Upstream request failed: status=%s body=%s",
                response.status,
                _truncate(body_text),
            )
            raise UpstreamRequestError(
                status=response.status,
                body=body_text,
                reason=response.reason,
                template=self.settings.UPSTREAM_ERROR_TEMPLATE,
            )
        if _has_no_body(response):
            raise UpstreamRequestError(
                status=response.status,
                body="",
                reason="empty response body",
                template=self.settings.UPSTREAM_ERROR_TEMPLATE,
            )
