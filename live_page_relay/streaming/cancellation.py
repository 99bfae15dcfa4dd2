"""Single-write cancellation token shared by a relay session and its upstream source."""

from __future__ import annotations

import asyncio
from typing import Optional


class CancellationToken:
    """Monotonic cancellation flag.

    The owning relay session calls :meth:`cancel` exactly once (peer disconnect
    or terminal event); the upstream source only reads it. Each session gets its
    own token so one peer's disconnect can never stop another session.
    """

    __slots__ = ("_event", "_reason")

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._reason: Optional[str] = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> Optional[str]:
        """Why the token was cancelled, or None while it is still live."""
        return self._reason

    def cancel(self, reason: str = "cancelled") -> bool:
        """Set the token. Returns False when it was already set."""
        if self._event.is_set():
            return False
        self._reason = reason
        self._event.set()
        return True

    async def wait(self) -> None:
        """Suspend until the token is cancelled."""
        await self._event.wait()

    def __repr__(self) -> str:
        state = f"cancelled reason={self._reason!r}" if self.cancelled else "live"
        return f"<CancellationToken {state}>"
