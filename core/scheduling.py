"""Deferred execution on the asyncio event loop."""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Protocol


class Scheduler(Protocol):
    def defer(self, fn: Callable[..., Any], *args: Any) -> None:
        """Run ``fn(*args)`` on a later turn. FIFO within one synchronous turn."""
        ...

    def start(self, awaitable: Awaitable[Any]) -> asyncio.Future:
        """Begin running *awaitable* now and return a future for its result."""
        ...

    def spawn(self, awaitable: Awaitable[Any]) -> asyncio.Future:
        """Run *awaitable* as a background task starting on a later turn."""
        ...

    def create_future(self) -> asyncio.Future:
        ...


class LoopScheduler:
    """Scheduler backed by an asyncio event loop.

    Tasks it creates are referenced until they finish so the loop cannot
    garbage-collect them mid-flight.
    """

    def __init__(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        self._loop = loop
        self._tasks: set[asyncio.Future] = set()

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        return self._loop or asyncio.get_running_loop()

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    def defer(self, fn: Callable[..., Any], *args: Any) -> None:
        self.loop.call_soon(fn, *args)

    def start(self, awaitable: Awaitable[Any]) -> asyncio.Future:
        loop = self.loop
        if asyncio.iscoroutine(awaitable):
            # Runs the coroutine body up to its first suspension right here.
            fut = asyncio.Task(awaitable, loop=loop, eager_start=True)
        else:
            fut = asyncio.ensure_future(awaitable, loop=loop)
        return self._track(fut)

    def spawn(self, awaitable: Awaitable[Any]) -> asyncio.Future:
        return self._track(asyncio.ensure_future(awaitable, loop=self.loop))

    def create_future(self) -> asyncio.Future:
        return self.loop.create_future()

    def _track(self, fut: asyncio.Future) -> asyncio.Future:
        if not fut.done():
            self._tasks.add(fut)
            fut.add_done_callback(self._tasks.discard)
        return fut
