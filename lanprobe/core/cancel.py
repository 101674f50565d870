"""Cooperative cancellation shared by every probe, port check and delay."""

from __future__ import annotations

import asyncio
import threading
from typing import Awaitable, Optional, TypeVar

from lanprobe.core.errors import ScanCancelled

T = TypeVar('T')


class CancelToken:
    """
    A cancellation signal that can be fired from any thread and awaited
    from the event loop.

    The flag itself is a ``threading.Event`` so ``cancel()`` is safe to call
    from a UI or signal-handler thread; the asyncio side is bound lazily to
    whichever loop first waits on the token.
    """

    def __init__(self) -> None:
        self._flag = threading.Event()
        self._event: Optional[asyncio.Event] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._lock = threading.Lock()

    @property
    def cancelled(self) -> bool:
        return self._flag.is_set()

    def cancel(self) -> None:
        """Fire the token. Idempotent."""
        self._flag.set()
        with self._lock:
            loop, event = self._loop, self._event
        if loop is None or event is None or loop.is_closed():
            return
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is loop:
            event.set()
        else:
            loop.call_soon_threadsafe(event.set)

    def raise_if_cancelled(self) -> None:
        if self._flag.is_set():
            raise ScanCancelled()

    def _ensure_event(self) -> asyncio.Event:
        loop = asyncio.get_running_loop()
        with self._lock:
            if self._event is None or self._loop is not loop:
                self._event = asyncio.Event()
                self._loop = loop
                if self._flag.is_set():
                    self._event.set()
            return self._event

    async def sleep(self, seconds: float) -> None:
        """Sleep for ``seconds`` unless cancelled first, in which case raise."""
        self.raise_if_cancelled()
        try:
            await asyncio.wait_for(self._ensure_event().wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return
        raise ScanCancelled()

    async def run(self, awaitable: Awaitable[T]) -> T:
        """
        Await ``awaitable`` but abort as soon as the token fires.

        The inner task is cancelled and awaited so no work is left dangling.
        """
        if self._flag.is_set():
            _discard(awaitable)
            raise ScanCancelled()
        task = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._ensure_event().wait())
        try:
            await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            if not waiter.done():
                waiter.cancel()
        if task.done():
            return task.result()
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        raise ScanCancelled()


def _discard(awaitable) -> None:
    # close without running so no "never awaited" warning is raised
    if asyncio.iscoroutine(awaitable):
        awaitable.close()
    elif isinstance(awaitable, asyncio.Future):
        awaitable.cancel()
