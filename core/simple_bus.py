"""SimpleBus — a single-stream bus with strictly serial delivery."""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable, Generic, TypeVar

from core.models import Unsubscribe

logger = logging.getLogger(__name__)

T = TypeVar("T")
SimpleListener = Callable[[T], "Awaitable[Any] | None"]


class SimpleBus(Generic[T]):
    """Deliver each value to every listener, one listener at a time.

    Unlike :class:`core.event_bus.EventBus` there are no channels, listener
    errors propagate to the sender, and sends are serialised by a lock so
    the listeners of two concurrent sends never interleave.
    """

    def __init__(self) -> None:
        # keyed by a per-subscription token so the same callable may subscribe twice
        self._listeners: dict[object, SimpleListener] = {}
        self._once: dict[object, SimpleListener] = {}
        self._lock = asyncio.Lock()

    def on(self, listener: SimpleListener) -> Unsubscribe:
        return self._add(self._listeners, listener)

    def once(self, listener: SimpleListener) -> Unsubscribe:
        """Subscribe for the next send only. Once-listeners run after regular ones."""
        return self._add(self._once, listener)

    def remove_all_subscribers(self) -> None:
        self._listeners.clear()
        self._once.clear()

    def __len__(self) -> int:
        return len(self._listeners) + len(self._once)

    async def send(self, data: T, use_lock: bool = True) -> None:
        """Run every listener with *data*, awaiting each before the next.

        A listener that sends from inside its own handler must pass
        ``use_lock=False``; the lock is held for the whole outer send.
        """
        if not use_lock:
            await self._deliver(data)
            return
        async with self._lock:
            await self._deliver(data)

    async def _deliver(self, data: T) -> None:
        listeners = list(self._listeners.values())
        once = list(self._once.values())
        self._once.clear()
        logger.debug("Delivering", extra={"listeners": len(listeners), "once": len(once)})
        for listener in [*listeners, *once]:
            result = listener(data)
            if inspect.isawaitable(result):
                await result

    @staticmethod
    def _add(bucket: dict[object, SimpleListener], listener: SimpleListener) -> Unsubscribe:
        token = object()
        bucket[token] = listener

        def unsubscribe() -> None:
            bucket.pop(token, None)

        return unsubscribe
