"""Server-Sent Events (SSE) frame assembly.

This module turns an arbitrarily fragmented upstream byte stream into frames:
- Incremental UTF-8 decoding (multi-byte characters may straddle reads)
- Blank-line frame boundaries (``\\n\\n``; ``\\r\\n`` is normalized first)
- ``data:`` payload extraction, ``event:`` names, ``:`` comment lines
- Trailing partial frame flush when the upstream omits the final delimiter
"""

from __future__ import annotations

import codecs
import logging
from dataclasses import dataclass
from typing import Optional

from ..core.config import COMMENT_PREFIX, DATA_PREFIX, EVENT_PREFIX, FRAME_DELIMITER
from ..core.errors import FrameBufferOverflow
from ..core.timing_logger import timed

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class Frame:
    """One atomic upstream message.

    Attributes:
        lines: Payload lines with the ``data:`` prefix and surrounding whitespace stripped.
        event: The SSE ``event:`` name, when the upstream sent one.
    """

    lines: tuple[str, ...]
    event: Optional[str] = None

    @property
    def payload(self) -> str:
        return "\n".join(self.lines)


@timed
def extract_frame(block: str) -> Optional[Frame]:
    """Build a Frame from one delimiter-bounded text block.

    Only ``data:`` lines contribute to the payload. Returns None when nothing
    meaningful remains (comment or keep-alive blocks).
    """
    lines: list[str] = []
    event_name: Optional[str] = None
    for raw_line in block.split("\n"):
        line = raw_line.strip()
        if not line or line.startswith(COMMENT_PREFIX):
            continue
        if line.startswith(DATA_PREFIX):
            lines.append(line[len(DATA_PREFIX):].strip())
            continue
        if line.startswith(EVENT_PREFIX):
            event_name = line[len(EVENT_PREFIX):].strip() or None
            continue
    frame = Frame(lines=tuple(lines), event=event_name)
    if not frame.payload:
        return None
    return frame


class FrameAssembler:
    """Reassemble complete SSE frames from raw byte chunks.

    The assembler owns one text buffer for the lifetime of one upstream
    request. After every :meth:`feed` the buffer holds at most one trailing
    incomplete frame; complete frames leave the buffer the moment they are
    extracted, in arrival order.
    """

    def __init__(
        self,
        *,
        max_buffer_chars: Optional[int] = None,
        encoding: str = "utf-8",
        logger: Optional[logging.Logger] = None,
    ) -> None:
        """Initialize the assembler.

        Args:
            max_buffer_chars: Largest incomplete frame to hold before raising
                FrameBufferOverflow (default: unbounded)
            encoding: Upstream text encoding (default: utf-8)
            logger: Logger instance for diagnostic output (default: module logger)
        """
        self.max_buffer_chars = max_buffer_chars
        self.logger = logger or LOGGER
        self._decoder = codecs.getincrementaldecoder(encoding)(errors="replace")
        self._buffer = ""
        self._closed = False

    @property
    def pending(self) -> str:
        """Buffered text that does not yet form a complete frame."""
        return self._buffer

    @property
    def closed(self) -> bool:
        return self._closed

    @timed
    def feed(self, chunk: bytes) -> list[Frame]:
        """Append ``chunk`` and return every frame it completes, in order.

        Raises:
            FrameBufferOverflow: when the remaining partial frame exceeds max_buffer_chars.
        """
        if self._closed:
            raise RuntimeError("FrameAssembler is closed")
        text = self._decoder.decode(chunk)
        if not text:
            return []
        self._buffer += text
        if "\r" in self._buffer:
            self._buffer = self._buffer.replace("\r\n", "\n")
        frames = self._drain()
        if self.max_buffer_chars is not None and len(self._buffer) > self.max_buffer_chars:
            raise FrameBufferOverflow(len(self._buffer), self.max_buffer_chars)
        return frames

    @timed
    def close(self) -> list[Frame]:
        """Flush the decoder and emit the trailing partial frame, if any.

        Upstreams may omit the delimiter after their last message, so whatever
        is left in the buffer is treated as one final frame.
        """
        if self._closed:
            return []
        self._closed = True
        self._buffer += self._decoder.decode(b"", final=True)
        self._buffer = self._buffer.replace("\r\n", "\n")
        frames = self._drain()
        remainder, self._buffer = self._buffer, ""
        if remainder.strip():
            self.logger.debug("Flushing trailing partial frame (%d chars)", len(remainder))
            frame = extract_frame(remainder)
            if frame is not None:
                frames.append(frame)
        return frames

    def _drain(self) -> list[Frame]:
        frames: list[Frame] = []
        while True:
            boundary = self._buffer.find(FRAME_DELIMITER)
            if boundary == -1:
                break
            block = self._buffer[:boundary]
            self._buffer = self._buffer[boundary + len(FRAME_DELIMITER):]
            frame = extract_frame(block)
            if frame is None:
                continue
            frames.append(frame)
        return frames
