"""Upstream streaming pipeline.

- CancellationToken: per-session single-write cancellation flag
- FrameAssembler / Frame: SSE frame reassembly
- EventClassifier / events: payload classification into relay events
- iter_events: lazy, cancellable event sequence
- UpstreamStreamSource / ChunkProducer: aiohttp-backed upstream reads
"""

from .cancellation import CancellationToken
from .events import ChunkEvent, DoneEvent, ErrorEvent, Event, EventClassifier, decode_payload
from .pipeline import iter_events
from .sse_parser import Frame, FrameAssembler, extract_frame
from .upstream import ChunkProducer, UpstreamStreamSource, create_http_session

__all__ = [
    "CancellationToken",
    "ChunkEvent",
    "DoneEvent",
    "ErrorEvent",
    "Event",
    "EventClassifier",
    "decode_payload",
    "iter_events",
    "Frame",
    "FrameAssembler",
    "extract_frame",
    "ChunkProducer",
    "UpstreamStreamSource",
    "create_http_session",
]
