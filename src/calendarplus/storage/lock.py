"""Cooperative exclusive-access queue for the shared document.

One queue guards one document. Every read-modify-write against that document
runs inside the queue, whichever section it touches, so two writers can never
interleave and lose each other's update. Waiters are served strictly in
arrival order.

This is in-process exclusion only: another process or another device writing
the same synced file is not detected.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections import deque
from collections.abc import Awaitable, Callable
from types import TracebackType
from typing import TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ExclusiveAccessQueue:
    """FIFO mutex built from a wait queue of futures and a held flag.

    Example:
        ```python
        queue = ExclusiveAccessQueue("calendar-data")

        async with queue:
            data = load()
            data["drawing"] = drawing
            save(data)

        # Or wrap a coroutine function
        result = await queue.with_lock(lambda: write_section("notes", notes))
        ```
    """

    def __init__(self, name: str = "document") -> None:
        self.name = name
        self._held = False
        self._waiters: deque[asyncio.Future[None]] = deque()

    @property
    def locked(self) -> bool:
        """Whether a critical section currently holds the queue."""
        return self._held

    @property
    def waiting(self) -> int:
        """Number of callers suspended in :meth:`acquire`."""
        return sum(1 for fut in self._waiters if not fut.done())

    async def acquire(self) -> None:
        """Suspend until the caller holds exclusive access."""
        if not self._held and not self._waiters:
            self._held = True
            return

        fut: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        self._waiters.append(fut)
        logger.debug(f"Waiting for '{self.name}' ({len(self._waiters)} queued)")
        try:
            await fut
        except asyncio.CancelledError:
            if fut.done() and not fut.cancelled():
                # Ownership was handed over before the cancellation landed
                self.release()
            else:
                with contextlib.suppress(ValueError):
                    self._waiters.remove(fut)
            raise
        # Ownership is handed over directly; the held flag never drops to False

    def release(self) -> None:
        """Hand access to the next waiter, or mark the resource free.

        Raises:
            RuntimeError: If the queue is not held
        """
        if not self._held:
            raise RuntimeError(f"Release of unheld access queue '{self.name}'")

        while self._waiters:
            fut = self._waiters.popleft()
            if not fut.done():
                fut.set_result(None)
                return

        self._held = False

    async def with_lock(self, operation: Callable[[], Awaitable[T]]) -> T:
        """Run ``operation`` with exclusive access.

        Access is released on every exit path before the result is returned
        or the exception propagates.
        """
        await self.acquire()
        try:
            return await operation()
        finally:
            self.release()

    async def __aenter__(self) -> ExclusiveAccessQueue:
        await self.acquire()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.release()
