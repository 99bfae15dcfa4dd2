"""Tests for the lazy event pipeline (iter_events)."""

from __future__ import annotations

from typing import AsyncIterator, Iterable

import pytest

from live_page_relay.core.errors import FrameBufferOverflow, UpstreamConnectionError
from live_page_relay.streaming.cancellation import CancellationToken
from live_page_relay.streaming.events import ChunkEvent, DoneEvent, ErrorEvent
from live_page_relay.streaming.pipeline import iter_events
from live_page_relay.streaming.sse_parser import FrameAssembler

STREAM = (
    b'data: {"type":"delta","delta":"Hi"}\n\n'
    b'data: {"type":"delta","delta":" there"}\n\n'
    b"data: [DONE]\n\n"
)


async def _chunks(parts: Iterable[bytes]) -> AsyncIterator[bytes]:
    for part in parts:
        yield part


async def _collect(parts: Iterable[bytes], **kwargs) -> list:
    return [event async for event in iter_events(_chunks(parts), **kwargs)]


@pytest.mark.asyncio
async def test_three_frames_split_across_chunks() -> None:
    parts = [STREAM[:17], STREAM[17:52], STREAM[52:]]
    events = await _collect(parts)
    assert [e.to_message() for e in events] == [
        {"type": "chunk", "data": "Hi"},
        {"type": "chunk", "data": " there"},
        {"type": "done"},
    ]


@pytest.mark.asyncio
async def test_same_events_for_any_chunking() -> None:
    whole = await _collect([STREAM])
    byte_by_byte = await _collect([STREAM[i:i + 1] for i in range(len(STREAM))])
    assert byte_by_byte == whole


@pytest.mark.asyncio
async def test_sentinel_halts_processing_of_buffered_frames() -> None:
    stream = (
        b'data: {"type":"delta","delta":"a"}\n\n'
        b"data: [DONE]\n\n"
        b'data: {"type":"delta","delta":"late"}\n\n'
        b"data: trailing"
    )
    events = await _collect([stream])
    assert events == [ChunkEvent("a"), DoneEvent()]


@pytest.mark.asyncio
async def test_no_chunk_after_upstream_error() -> None:
    stream = (
        b'data: {"type":"error","error":{"message":"quota"}}\n\n'
        b'data: {"type":"delta","delta":"ignored"}\n\n'
    )
    events = await _collect([stream])
    assert events == [ErrorEvent("quota")]


@pytest.mark.asyncio
async def test_stream_end_without_sentinel_flushes_and_completes() -> None:
    stream = b'data: {"type":"delta","delta":"a"}\n\ndata: {"type":"delta","delta":"b"}'
    events = await _collect([stream])
    assert events == [ChunkEvent("a"), ChunkEvent("b"), DoneEvent()]


@pytest.mark.asyncio
async def test_trailing_sentinel_without_delimiter_yields_single_done() -> None:
    events = await _collect([b'data: {"type":"delta","delta":"a"}\n\ndata: [DONE]'])
    assert events == [ChunkEvent("a"), DoneEvent()]


@pytest.mark.asyncio
async def test_malformed_frame_is_skipped() -> None:
    stream = b"data: {not json\n\n" b'data: {"type":"delta","delta":"ok"}\n\n' b"data: [DONE]\n\n"
    events = await _collect([stream])
    assert events == [ChunkEvent("ok"), DoneEvent()]


@pytest.mark.asyncio
async def test_cancelled_token_ends_sequence_silently() -> None:
    token = CancellationToken()
    stream = b'data: {"type":"delta","delta":"a"}\n\ndata: {"type":"delta","delta":"b"}\n\n'
    produced = []
    async for event in iter_events(_chunks([stream, b"data: [DONE]\n\n"]), token=token):
        produced.append(event)
        token.cancel("peer disconnected")
    assert produced == [ChunkEvent("a")]


@pytest.mark.asyncio
async def test_cancelled_before_end_skips_flush_and_done() -> None:
    token = CancellationToken()
    token.cancel()
    events = await _collect([b"data: partial"], token=token)
    assert events == []


@pytest.mark.asyncio
async def test_buffer_overflow_propagates() -> None:
    with pytest.raises(FrameBufferOverflow):
        await _collect([b"data: " + b"x" * 64], assembler=FrameAssembler(max_buffer_chars=32))


@pytest.mark.asyncio
async def test_source_failure_propagates_after_earlier_events() -> None:
    async def _broken() -> AsyncIterator[bytes]:
        yield b'data: {"type":"delta","delta":"a"}\n\n'
        raise UpstreamConnectionError("stream interrupted")

    produced = []
    with pytest.raises(UpstreamConnectionError):
        async for event in iter_events(_broken()):
            produced.append(event)
    assert produced == [ChunkEvent("a")]
