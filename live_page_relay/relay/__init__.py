"""Relay session and downstream sinks.

- RelaySession: per-connection state machine
- DownstreamSink / StreamSource: the seams a session talks to
- WebSocketSink: FastAPI WebSocket adapter
"""

from .session import DownstreamSink, EventEmitter, RelaySession, RelayState, StreamSource
from .sinks import WebSocketSink

__all__ = [
    "DownstreamSink",
    "EventEmitter",
    "RelaySession",
    "RelayState",
    "StreamSource",
    "WebSocketSink",
]
