"""Lazy event sequence built from an upstream chunk stream.

``iter_events`` is the pull-based heart of the relay: every chunk read from
the upstream is assembled and classified synchronously, and every resulting
event is yielded before the next chunk is requested. That ordering is the
backpressure mechanism: at most one chunk is ever in flight per session.
"""

from __future__ import annotations

import logging
from typing import AsyncGenerator, AsyncIterable, Iterable, Optional

from .cancellation import CancellationToken
from .events import DoneEvent, Event, EventClassifier
from .sse_parser import Frame, FrameAssembler

LOGGER = logging.getLogger(__name__)


async def iter_events(
    chunks: AsyncIterable[bytes],
    *,
    assembler: Optional[FrameAssembler] = None,
    classifier: Optional[EventClassifier] = None,
    token: Optional[CancellationToken] = None,
    logger: Optional[logging.Logger] = None,
) -> AsyncGenerator[Event, None]:
    """Yield relay events for ``chunks`` in upstream order.

    The sequence ends right after the first terminal event (anything still
    buffered is dropped), or silently when ``token`` is cancelled. An upstream
    that ends without the sentinel has its trailing partial frame flushed and
    then completes with a DoneEvent.

    Raises:
        FrameBufferOverflow: propagated from the assembler.
        UpstreamConnectionError: propagated from the chunk source.
    """
    assembler = assembler or FrameAssembler()
    classifier = classifier or EventClassifier()
    log = logger or LOGGER

    def _classify(frames: Iterable[Frame]) -> Iterable[Event]:
        for frame in frames:
            event = classifier.classify_frame(frame)
            if event is not None:
                yield event

    async for chunk in chunks:
        if token is not None and token.cancelled:
            log.debug("Cancellation observed; dropping %d buffered chunk bytes", len(chunk))
            return
        for event in _classify(assembler.feed(chunk)):
            yield event
            if event.terminal:
                return
            if token is not None and token.cancelled:
                return

    if token is not None and token.cancelled:
        return

    for event in _classify(assembler.close()):
        yield event
        if event.terminal:
            return
        if token is not None and token.cancelled:
            return

    log.debug("Upstream ended without a sentinel; treating as completion")
    yield DoneEvent()
