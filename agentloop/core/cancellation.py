"""Cooperative cancellation shared across one orchestration run."""

import asyncio
from typing import Callable, List, Optional


class CancellationToken:
    """A flag checked at suspension points, plus an awaitable for waits.

    Setting the token never interrupts work in progress; code observes it at
    its next checkpoint (chunk boundary, backoff sleep, permission wait, or
    between tool calls).
    """

    def __init__(self):
        self._cancelled = False
        self._event: Optional[asyncio.Event] = None
        self._callbacks: List[Callable[[], None]] = []

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self):
        """Request cancellation. Idempotent."""
        if self._cancelled:
            return
        self._cancelled = True
        if self._event is not None:
            self._event.set()
        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            callback()

    def on_cancel(self, callback: Callable[[], None]):
        """Run ``callback`` when cancelled (immediately if already cancelled)."""
        if self._cancelled:
            callback()
        else:
            self._callbacks.append(callback)

    def _get_event(self) -> asyncio.Event:
        # Created lazily so the token can be built outside a running loop
        if self._event is None:
            self._event = asyncio.Event()
            if self._cancelled:
                self._event.set()
        return self._event

    async def wait(self):
        """Block until cancelled."""
        await self._get_event().wait()

    async def sleep(self, seconds: float) -> bool:
        """Sleep for ``seconds`` unless cancelled first.

        Returns True if the full delay elapsed, False if cancelled.
        """
        if self._cancelled:
            return False
        try:
            await asyncio.wait_for(self._get_event().wait(), timeout=max(seconds, 0))
        except asyncio.TimeoutError:
            return True
        return False
