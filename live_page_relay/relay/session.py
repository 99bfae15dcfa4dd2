"""Relay session: one per accepted downstream connection.

The session pulls events from the upstream pipeline and forwards each one to
its downstream sink as a single message. It owns its cancellation token; the
upstream source only reads it.

States: CONNECTING -> STREAMING -> {COMPLETED, ERRORED, ABORTED}
"""

from __future__ import annotations

import asyncio
import logging
import secrets
from enum import Enum
from typing import (
    Any,
    AsyncContextManager,
    AsyncIterable,
    Awaitable,
    Callable,
    Optional,
    Protocol,
)

from ..core.config import RelaySettings
from ..core.errors import RelayError, TransportSendFailure
from ..core.logging_system import SessionLogger
from ..core.timing_logger import (
    clear_timing_context,
    clear_timing_events,
    set_timing_context,
    timing_scope,
)
from ..streaming.cancellation import CancellationToken
from ..streaming.events import DoneEvent, ErrorEvent, Event, EventClassifier
from ..streaming.pipeline import iter_events
from ..streaming.sse_parser import FrameAssembler

LOGGER = logging.getLogger(__name__)

# Observability hook: receives relay.state / relay.message dicts
EventEmitter = Callable[[dict[str, Any]], Awaitable[None]]


class RelayState(str, Enum):
    CONNECTING = "connecting"
    STREAMING = "streaming"
    COMPLETED = "completed"
    ERRORED = "errored"
    ABORTED = "aborted"

    @property
    def terminal(self) -> bool:
        return self in (RelayState.COMPLETED, RelayState.ERRORED, RelayState.ABORTED)


class DownstreamSink(Protocol):
    """Peer connection the session writes to.

    ``send`` raises TransportSendFailure when the peer is already gone.
    """

    @property
    def is_open(self) -> bool:
        ...

    async def send(self, message: dict[str, Any]) -> None:
        ...


class StreamSource(Protocol):
    """Anything that can open a cancellable upstream byte stream."""

    def open(self, token: CancellationToken) -> AsyncContextManager[AsyncIterable[bytes]]:
        ...


class RelaySession:
    """Coordinate upstream consumption and downstream forwarding for one peer.

    At most one downstream message group reaches the peer: any number of
    ``chunk`` messages followed by exactly one ``done`` or ``error``. Once
    aborted, nothing further is sent.
    """

    def __init__(
        self,
        sink: DownstreamSink,
        source: StreamSource,
        *,
        settings: Optional[RelaySettings] = None,
        classifier: Optional[EventClassifier] = None,
        event_emitter: Optional[EventEmitter] = None,
        session_id: Optional[str] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.sink = sink
        self.source = source
        self.settings = settings or RelaySettings()
        self.logger = logger or LOGGER
        self.classifier = classifier or EventClassifier.from_settings(self.settings, logger=self.logger)
        self.session_id = session_id or secrets.token_hex(8)
        self.token = CancellationToken()
        self.state = RelayState.CONNECTING
        self.messages_sent = 0
        self._event_emitter = event_emitter
        self._state_reason: Optional[str] = None
        self._announced_state: Optional[RelayState] = None
        self._started = False

    @property
    def finished(self) -> bool:
        """True once the session reached a terminal state."""
        return self.state.terminal

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def run(self) -> RelayState:
        """Stream the upstream into the sink until a terminal state is reached.

        Never raises for relay failures: they are forwarded as an ``error``
        message. Task cancellation aborts the session and is re-raised.
        """
        if self._started:
            raise RuntimeError("RelaySession.run() may only be called once")
        self._started = True

        set_timing_context(self.session_id, self.settings.ENABLE_TIMING_LOG)
        try:
            with SessionLogger.bind(self.session_id):
                if self.token.cancelled:
                    self.logger.debug("Session aborted before streaming started")
                    self._mark_aborted(self.token.reason or "cancelled")
                    await self._emit_state()
                    return self.state
                with timing_scope("relay_session"):
                    await self._stream()
        finally:
            if self.settings.ENABLE_TIMING_LOG:
                records = clear_timing_events(self.session_id)
                self.logger.debug("Session %s recorded %d timing event(s)", self.session_id, len(records))
            clear_timing_context()
        return self.state

    async def abort(self, reason: str = "peer disconnected") -> bool:
        """Stop the session because the peer went away.

        Returns False when the session had already finished.
        """
        if not self._mark_aborted(reason):
            return False
        await self._emit_state()
        return True

    async def _stream(self) -> None:
        self._set_state(RelayState.STREAMING)
        await self._emit_state()
        try:
            async with self.source.open(self.token) as chunks:
                assembler = FrameAssembler(
                    max_buffer_chars=self.settings.MAX_BUFFER_CHARS,
                    logger=self.logger,
                )
                events = iter_events(
                    chunks,
                    assembler=assembler,
                    classifier=self.classifier,
                    token=self.token,
                    logger=self.logger,
                )
                try:
                    async for event in events:
                        await self._dispatch(event)
                        if self.finished:
                            break
                finally:
                    await events.aclose()
        except RelayError as exc:
            if self.finished or self.token.cancelled:
                self.logger.debug("Ignoring failure after session end: %s", exc)
            else:
                self.logger.error("Relay session failed: %s", exc)
                await self._dispatch(ErrorEvent(str(exc)))
        except asyncio.CancelledError:
            self._mark_aborted("relay task cancelled")
            raise

        if not self.finished:
            self._mark_aborted(self.token.reason or "upstream stopped")
        await self._emit_state()

    # ------------------------------------------------------------------
    # Forwarding
    # ------------------------------------------------------------------

    async def _dispatch(self, event: Event) -> None:
        if self.finished:
            self.logger.debug("Ignoring %s after terminal state %s", type(event).__name__, self.state.value)
            return
        if self.token.cancelled:
            self._mark_aborted(self.token.reason or "cancelled")
            return

        await self._send(event.to_message())

        # abort() may have run while the send was suspended
        if self.finished:
            return
        if event.terminal:
            if isinstance(event, DoneEvent):
                self._set_state(RelayState.COMPLETED)
            else:
                self._set_state(RelayState.ERRORED, getattr(event, "message", None))
            self.token.cancel(self.state.value)
            await self._emit_state()

    async def _send(self, message: dict[str, Any]) -> bool:
        if not self.sink.is_open:
            self.logger.debug("Downstream closed; dropping %s message", message.get("type"))
            return False
        try:
            await self.sink.send(message)
        except TransportSendFailure as exc:
            self.logger.warning("Downstream send failed (%s): %s", message.get("type"), exc)
            return False
        self.messages_sent += 1
        await self._emit({
            "type": "relay.message",
            "session_id": self.session_id,
            "message": message,
        })
        return True

    # ------------------------------------------------------------------
    # State + observability
    # ------------------------------------------------------------------

    def _set_state(self, state: RelayState, reason: Optional[str] = None) -> None:
        previous = self.state
        self.state = state
        self._state_reason = reason
        self.logger.info(
            "Relay state %s -> %s%s",
            previous.value,
            state.value,
            f" ({reason})" if reason else "",
        )

    def _mark_aborted(self, reason: str) -> bool:
        self.token.cancel(reason)
        if self.finished:
            return False
        self._set_state(RelayState.ABORTED, reason)
        return True

    async def _emit_state(self) -> None:
        if self._announced_state is self.state:
            return
        self._announced_state = self.state
        await self._emit({
            "type": "relay.state",
            "session_id": self.session_id,
            "state": self.state.value,
            "reason": self._state_reason,
            "messages_sent": self.messages_sent,
        })

    async def _emit(self, event: dict[str, Any]) -> None:
        if self._event_emitter is None:
            return
        try:
            await self._event_emitter(event)
        except Exception as exc:
            self.logger.warning("Event emitter failure (%s): %s", event.get("type"), exc)
