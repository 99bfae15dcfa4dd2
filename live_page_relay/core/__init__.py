"""Core infrastructure module.

Foundation services required by the relay:
- Configuration schema (RelaySettings, EncryptedStr)
- Error taxonomy
- Session-aware logging
- Pure utility functions
"""

from .config import RelaySettings, EncryptedStr
from .errors import (
    ConfigurationError,
    FrameBufferOverflow,
    FrameDecodeError,
    RelayError,
    TransportSendFailure,
    UpstreamConnectionError,
    UpstreamRequestError,
)
from .logging_system import SessionLogger

__all__ = [
    "RelaySettings",
    "EncryptedStr",
    "ConfigurationError",
    "FrameBufferOverflow",
    "FrameDecodeError",
    "RelayError",
    "TransportSendFailure",
    "UpstreamConnectionError",
    "UpstreamRequestError",
    "SessionLogger",
]
