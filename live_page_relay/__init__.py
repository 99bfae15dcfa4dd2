"""Live page relay.

Serves an HTML page whose body is generated live: each browser connection gets
its own relay session that streams an upstream text-generation response
(Server-Sent Events) to the page over a WebSocket.
"""

from __future__ import annotations

from importlib.metadata import PackageNotFoundError, version

from .core.config import RelaySettings
from .relay.session import RelaySession, RelayState
from .server.app import create_app
from .streaming.upstream import UpstreamStreamSource

try:
    __version__ = version("live-page-relay")
except PackageNotFoundError:
    __version__ = "0.0.0"

__all__ = [
    "RelaySettings",
    "RelaySession",
    "RelayState",
    "UpstreamStreamSource",
    "create_app",
    "__version__",
]
