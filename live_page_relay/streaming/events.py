"""Relay events and upstream payload classification.

This module handles:
- Event variants (ChunkEvent, DoneEvent, ErrorEvent) and their downstream messages
- Tagged JSON decoding of frame payloads (dict | FrameDecodeError)
- Discriminant-based classification of decoded payloads

Unknown payload shapes are ignored rather than failing the session, since the
upstream schema may grow new event types at any time.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Iterable, Optional, Union

from ..core.config import (
    DEFAULT_DELTA_EVENT_TYPES,
    DEFAULT_ERROR_EVENT_TYPES,
    DEFAULT_UPSTREAM_ERROR_MESSAGE,
    DONE_SENTINEL,
    ERROR_PAYLOAD_DECODE_MESSAGE,
    RelaySettings,
)
from ..core.errors import FrameDecodeError
from ..core.timing_logger import timed
from ..core.utils import _normalize_optional_str, _split_csv, _truncate
from .sse_parser import Frame

LOGGER = logging.getLogger(__name__)


# -----------------------------------------------------------------------------
# Event variants
# -----------------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class ChunkEvent:
    """Incremental text produced by the upstream."""

    text: str
    terminal = False

    def to_message(self) -> dict[str, Any]:
        return {"type": "chunk", "data": self.text}


@dataclass(frozen=True, slots=True)
class DoneEvent:
    """The upstream finished successfully."""

    terminal = True

    def to_message(self) -> dict[str, Any]:
        return {"type": "done"}


@dataclass(frozen=True, slots=True)
class ErrorEvent:
    """The upstream (or the relay on its behalf) failed."""

    message: str
    terminal = True

    def to_message(self) -> dict[str, Any]:
        return {"type": "error", "message": self.message}


Event = Union[ChunkEvent, DoneEvent, ErrorEvent]


# -----------------------------------------------------------------------------
# Decoding
# -----------------------------------------------------------------------------

@timed
def decode_payload(payload: str) -> Union[dict[str, Any], FrameDecodeError]:
    """Decode a frame payload as a JSON object.

    Never raises: failures come back as a FrameDecodeError value.
    """
    try:
        decoded = json.loads(payload)
    except (json.JSONDecodeError, RecursionError) as exc:
        return FrameDecodeError(payload, str(exc))
    if not isinstance(decoded, dict):
        return FrameDecodeError(payload, f"expected an object, got {type(decoded).__name__}")
    return decoded


def _extract_error_message(data: dict[str, Any]) -> str:
    """Return the upstream error message from the known error shapes."""
    error_block = data.get("error")
    if isinstance(error_block, dict):
        message = _normalize_optional_str(error_block.get("message"))
        if message:
            return message
    elif isinstance(error_block, str) and error_block.strip():
        return error_block.strip()
    response_block = data.get("response")
    if isinstance(response_block, dict):
        nested = response_block.get("error")
        if isinstance(nested, dict):
            message = _normalize_optional_str(nested.get("message"))
            if message:
                return message
    return _normalize_optional_str(data.get("message")) or DEFAULT_UPSTREAM_ERROR_MESSAGE


def _extract_chat_delta(data: dict[str, Any]) -> Optional[str]:
    """Return ``choices[0].delta.content`` for chat-completions chunks."""
    choices = data.get("choices")
    if not isinstance(choices, list) or not choices:
        return None
    first = choices[0]
    if not isinstance(first, dict):
        return None
    delta = first.get("delta")
    if not isinstance(delta, dict):
        return None
    content = delta.get("content")
    return content if isinstance(content, str) else None


# -----------------------------------------------------------------------------
# Classifier
# -----------------------------------------------------------------------------

class EventClassifier:
    """Map frame payloads to relay events.

    Decode failures on ordinary frames are logged and skipped. A decode failure
    on a frame already announced as an error (SSE ``event:`` name in
    ``error_types``) is promoted to an ErrorEvent, as is every decode failure
    when ``strict_decode`` is set.
    """

    def __init__(
        self,
        *,
        delta_types: Optional[Iterable[str]] = None,
        error_types: Optional[Iterable[str]] = None,
        strict_decode: bool = False,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.delta_types = frozenset(
            delta_types if delta_types is not None else _split_csv(DEFAULT_DELTA_EVENT_TYPES)
        )
        self.error_types = frozenset(
            error_types if error_types is not None else _split_csv(DEFAULT_ERROR_EVENT_TYPES)
        )
        self.strict_decode = strict_decode
        self.logger = logger or LOGGER

    @classmethod
    def from_settings(
        cls,
        settings: RelaySettings,
        *,
        logger: Optional[logging.Logger] = None,
    ) -> "EventClassifier":
        return cls(
            delta_types=settings.delta_event_types(),
            error_types=settings.error_event_types(),
            strict_decode=settings.STRICT_FRAME_DECODE,
            logger=logger,
        )

    def classify_frame(self, frame: Frame) -> Optional[Event]:
        return self.classify(frame.payload, event_name=frame.event)

    @timed
    def classify(self, payload: str, *, event_name: Optional[str] = None) -> Optional[Event]:
        """Return the event carried by ``payload``, or None when it is irrelevant."""
        if payload == DONE_SENTINEL:
            return DoneEvent()

        expects_error = bool(event_name) and event_name in self.error_types
        decoded = decode_payload(payload)
        if isinstance(decoded, FrameDecodeError):
            if expects_error:
                self.logger.error(
                    "Upstream error frame could not be decoded: %s (payload=%r)",
                    decoded.detail,
                    _truncate(payload),
                )
                return ErrorEvent(ERROR_PAYLOAD_DECODE_MESSAGE)
            if self.strict_decode:
                self.logger.error("Rejecting undecodable frame: %s", decoded.detail)
                return ErrorEvent(str(decoded))
            self.logger.warning(
                "Skipping undecodable frame: %s (payload=%r)",
                decoded.detail,
                _truncate(payload),
            )
            return None

        etype = decoded.get("type")
        if not isinstance(etype, str):
            etype = None

        if etype in self.delta_types:
            delta = decoded.get("delta")
            if isinstance(delta, str):
                return ChunkEvent(delta)
            self.logger.debug("Delta frame without string delta ignored (type=%s)", etype)
            return None

        if etype in self.error_types or (etype is None and expects_error):
            return ErrorEvent(_extract_error_message(decoded))

        if etype is None:
            chat_delta = _extract_chat_delta(decoded)
            if chat_delta:
                return ChunkEvent(chat_delta)

        self.logger.debug("Ignoring upstream frame (type=%s)", etype)
        return None
