"""FastAPI application: landing page and the ``/stream`` WebSocket relay."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Any, AsyncIterator, Callable, Optional

import aiohttp
from fastapi import FastAPI, Query, WebSocket
from fastapi.responses import HTMLResponse, JSONResponse
from fastapi.staticfiles import StaticFiles

from ..core.config import RelaySettings
from ..relay.session import RelaySession, StreamSource
from ..relay.sinks import WebSocketSink
from ..streaming.upstream import UpstreamStreamSource, create_http_session
from .page import build_page

LOGGER = logging.getLogger(__name__)

# (settings, shared aiohttp session or None) -> source for one relay session
SourceFactory = Callable[[RelaySettings, Optional[aiohttp.ClientSession]], StreamSource]


def _default_source_factory(
    settings: RelaySettings,
    session: Optional[aiohttp.ClientSession],
) -> StreamSource:
    return UpstreamStreamSource(settings, session=session)


async def _log_relay_event(event: dict[str, Any]) -> None:
    LOGGER.debug("Relay event: %s", event)


async def _watch_disconnect(websocket: WebSocket, session: RelaySession) -> None:
    """Abort ``session`` as soon as the peer closes its side of the socket."""
    while True:
        message = await websocket.receive()
        if message["type"] == "websocket.disconnect":
            LOGGER.info("Peer disconnected (code=%s)", message.get("code"))
            await session.abort("peer disconnected")
            return


def create_app(
    settings: Optional[RelaySettings] = None,
    *,
    source_factory: Optional[SourceFactory] = None,
) -> FastAPI:
    """Build the relay application.

    Args:
        settings: Relay configuration (default: read from the environment).
        source_factory: Builds the upstream source for each WebSocket session.
    """
    settings = settings or RelaySettings()
    factory = source_factory or _default_source_factory

    @contextlib.asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        app.state.http_session = create_http_session(settings) if source_factory is None else None
        try:
            yield
        finally:
            http_session = app.state.http_session
            app.state.http_session = None
            if http_session is not None:
                await http_session.close()

    app = FastAPI(title="Live Page Relay", lifespan=lifespan)
    app.state.settings = settings
    app.state.http_session = None

    @app.get("/", response_class=HTMLResponse)
    def index(content: Optional[list[str]] = Query(default=None)) -> HTMLResponse:
        html, status_code = build_page(settings.TEMPLATE_PATH, content)
        LOGGER.debug("Page built: status=%s length=%d", status_code, len(html))
        return HTMLResponse(html, status_code=status_code)

    @app.get("/healthz")
    async def healthz() -> JSONResponse:
        return JSONResponse({"status": "ok"})

    @app.websocket("/stream")
    async def stream(websocket: WebSocket) -> None:
        await websocket.accept()
        sink = WebSocketSink(websocket)
        source = factory(settings, websocket.app.state.http_session)
        session = RelaySession(
            sink,
            source,
            settings=settings,
            event_emitter=_log_relay_event,
        )
        LOGGER.info("Peer connected: session=%s client=%s", session.session_id, websocket.client)

        watcher = asyncio.create_task(_watch_disconnect(websocket, session))
        try:
            state = await session.run()
        finally:
            watcher.cancel()
            try:
                await watcher
            except asyncio.CancelledError:
                pass
            except RuntimeError as exc:
                LOGGER.debug("Disconnect watcher stopped: %s", exc)
        LOGGER.info(
            "Relay finished: session=%s state=%s messages=%d",
            session.session_id,
            state.value,
            session.messages_sent,
        )
        if sink.is_open:
            try:
                await websocket.close()
            except RuntimeError as exc:
                LOGGER.debug("WebSocket already closed: %s", exc)

    if settings.STATIC_DIR:
        app.mount("/static", StaticFiles(directory=settings.STATIC_DIR), name="static")

    return app
