"""Downstream sink adapters."""

from __future__ import annotations

import json
import logging
from typing import Any, Optional

from fastapi import WebSocket, WebSocketDisconnect
from starlette.websockets import WebSocketState

from ..core.errors import TransportSendFailure

LOGGER = logging.getLogger(__name__)


class WebSocketSink:
    """Send relay messages as JSON text frames over a FastAPI WebSocket."""

    def __init__(self, websocket: WebSocket, *, logger: Optional[logging.Logger] = None) -> None:
        self.websocket = websocket
        self.logger = logger or LOGGER

    @property
    def is_open(self) -> bool:
        return (
            self.websocket.client_state == WebSocketState.CONNECTED
            and self.websocket.application_state == WebSocketState.CONNECTED
        )

    async def send(self, message: dict[str, Any]) -> None:
        """Send one message atomically.

        Raises:
            TransportSendFailure: when the peer connection is already closed.
        """
        if not self.is_open:
            raise TransportSendFailure("WebSocket is not connected")
        try:
            await self.websocket.send_text(json.dumps(message, ensure_ascii=False))
        except (WebSocketDisconnect, RuntimeError, OSError) as exc:
            raise TransportSendFailure(f"WebSocket send failed: {exc}") from exc
