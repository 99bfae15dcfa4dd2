"""Error taxonomy for the relay.

This module defines every failure the relay distinguishes:
- ConfigurationError: required credential missing (fails before any connection)
- UpstreamRequestError: initial upstream response rejected or body-less
- UpstreamConnectionError: transport failure, stalled read or broken payload
- FrameBufferOverflow: an incomplete frame outgrew the assembler buffer
- FrameDecodeError: a frame payload is not valid JSON (returned, not raised)
- TransportSendFailure: the downstream peer is gone when a send is attempted

Everything except FrameDecodeError and TransportSendFailure ends a relay
session with a single downstream ``error`` message built from ``str(exc)``.
"""

from __future__ import annotations

from typing import Any, Optional

from .config import DEFAULT_UPSTREAM_ERROR_TEMPLATE
from .utils import _normalize_optional_str, _render_error_template

# Bodies larger than this are cut before being shown to the peer
_MAX_ERROR_BODY_CHARS = 2000


class RelayError(RuntimeError):
    """Base class for failures that terminate a relay session."""


class ConfigurationError(RelayError):
    """Raised when required configuration (the upstream credential) is absent."""


class UpstreamRequestError(RelayError):
    """Raised when the upstream rejects the initial request or returns no body."""

    def __init__(
        self,
        *,
        status: int,
        body: Optional[str] = None,
        reason: Optional[str] = None,
        template: Optional[str] = None,
    ) -> None:
        self.status = status
        self.body = (body or "").strip()
        self.reason = _normalize_optional_str(reason)
        self.template = template or DEFAULT_UPSTREAM_ERROR_TEMPLATE
        super().__init__(self.render())

    def template_values(self) -> dict[str, Any]:
        body = self.body
        if len(body) > _MAX_ERROR_BODY_CHARS:
            body = body[:_MAX_ERROR_BODY_CHARS] + "…"
        return {
            "status": self.status,
            "reason": self.reason or "",
            "body": body,
        }

    def render(self, template: Optional[str] = None) -> str:
        """Return the peer-facing message for this failure."""
        rendered = _render_error_template(template or self.template, self.template_values())
        return rendered or f"Upstream request failed with status {self.status}"


class UpstreamConnectionError(RelayError):
    """Raised when the upstream cannot be reached or the stream breaks mid-flight."""

    def __init__(self, message: str, *, cause: Optional[BaseException] = None) -> None:
        self.cause = cause
        super().__init__(message)


class FrameBufferOverflow(RelayError):
    """Raised when buffered, undelimited upstream text exceeds the configured limit."""

    def __init__(self, size: int, limit: int) -> None:
        self.size = size
        self.limit = limit
        super().__init__(
            f"Upstream frame exceeded the {limit}-character buffer limit without a delimiter."
        )


class FrameDecodeError(ValueError):
    """Tagged decode failure for one frame payload.

    Returned by ``decode_payload`` instead of being raised so callers branch on
    the result rather than unwinding through the assembler.
    """

    def __init__(self, payload: str, detail: str) -> None:
        self.payload = payload
        self.detail = detail
        super().__init__(f"Frame payload is not valid JSON: {detail}")


class TransportSendFailure(RuntimeError):
    """Raised by a downstream sink when the peer connection is no longer open."""
