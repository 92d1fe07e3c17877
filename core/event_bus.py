"""In-process publish/subscribe event bus with channel expansion."""

from __future__ import annotations

import asyncio
import contextvars
import logging
from functools import partial
from typing import Any, Iterable, Union

from core.config import BusSettings
from core.invocation import Immediate, Pending, invoke
from core.logging_config import new_send_id, set_send_id
from core.models import (
    DEFAULT_SEPARATOR,
    WILDCARD,
    DeliveryMode,
    Listener,
    Registration,
    Unsubscribe,
)
from core.registry import SubscriptionRegistry
from core.scheduling import LoopScheduler, Scheduler
from core.tracer import Span, Tracer

logger = logging.getLogger(__name__)

# A blocking invocation at a barrier: settled on the spot, or still running.
_Slot = tuple[Registration, Union[Immediate, asyncio.Future]]


class EventBus:
    """Fan one send out to exact, base and wildcard subscribers.

    A send to ``changed:123`` reaches listeners on ``changed:123``, then
    ``changed``, then ``*``. Every listener receives the original channel.

        sent          | changed:123   changed       *
        --------------|------------------------------------------
        changed:123   | changed:123   changed:123   changed:123
        changed:444   |               changed:444   changed:444
        changed       |               changed       changed
        banana        |                             banana

    Blocking only happens when both sides want it: a ``blocking`` listener
    runs inline under :meth:`send_and_wait` and is deferred under
    :meth:`send_later`; a ``nonblocking`` listener is always deferred.
    """

    def __init__(
        self,
        separator: str | None = None,
        *,
        settings: BusSettings | None = None,
        scheduler: Scheduler | None = None,
        tracer: Tracer | None = None,
    ):
        if settings is None:
            settings = BusSettings(separator=DEFAULT_SEPARATOR if separator is None else separator)
        elif separator is not None:
            # re-validated, so an empty separator is still rejected
            settings = BusSettings.model_validate({**settings.model_dump(), "separator": separator})
        self.settings = settings
        self.tracer = tracer
        self._scheduler = scheduler or LoopScheduler()
        self._registry = SubscriptionRegistry()

    @property
    def separator(self) -> str:
        return self.settings.separator

    @property
    def registry(self) -> SubscriptionRegistry:
        return self._registry

    # ── Subscriptions ────────────────────────────────────────────────────────

    def on(
        self,
        channel_or_channels: str | Iterable[str],
        listener: Listener,
        mode: DeliveryMode | str | None = None,
    ) -> Unsubscribe:
        """Subscribe *listener* to one channel or to a list of unrelated channels.

        Don't pass both ``changed`` and ``changed:123``: a send to the
        id-qualified channel already reaches the base subscribers.

        Returns an idempotent unsubscribe function.
        """
        registration = Registration(
            listener=listener,
            mode=DeliveryMode(mode) if mode is not None else self.settings.default_mode,
        )
        return self._registry.subscribe(channel_or_channels, registration)

    def once(
        self,
        channel_or_channels: str | Iterable[str],
        listener: Listener,
        mode: DeliveryMode | str | None = None,
    ) -> Unsubscribe:
        """Like :meth:`on`, but the listener runs at most once."""
        fired = False

        def fire_once(channel: str, data: Any) -> Any:
            nonlocal fired
            if fired:
                return None
            fired = True
            unsubscribe()
            return listener(channel, data)

        fire_once.__qualname__ = getattr(listener, "__qualname__", "once")
        unsubscribe = self.on(channel_or_channels, fire_once, mode)
        return unsubscribe

    def remove_all_subscriptions(self) -> None:
        self._registry.clear()

    def subscription_counts(self) -> dict[str, int]:
        return self._registry.counts()

    # ── Channel expansion ────────────────────────────────────────────────────

    def expand_channel(self, channel: str) -> list[str]:
        """Channels to check for *channel*, most specific first.

        ``changed``         → [changed, *]
        ``changed:123``     → [changed:123, changed, *]
        ``changed:aaa:bbb`` → [changed:aaa:bbb, changed, *]
        ``*``               → [*, *]
        """
        channels = [channel]
        base, sep, _ = channel.partition(self.separator)
        if sep:
            channels.append(base)
        channels.append(WILDCARD)
        return channels

    # ── Sending ──────────────────────────────────────────────────────────────

    def send_and_wait(self, channel: str, data: Any = None) -> asyncio.Future:
        """Send now and return a future for the blocking listeners' errors.

        Blocking listeners on the most specific channel are launched before
        this method returns. Their awaitables are awaited one by one before
        the next, less specific channel is launched. Nonblocking listeners
        are deferred and never awaited.

        The future resolves to the list of errors raised by blocking
        listeners, in invocation order; an empty list means none failed.

        Must be called while an event loop is running, even when nothing
        is subscribed: the returned future belongs to that loop.
        """
        ctx = contextvars.copy_context()
        return ctx.run(self._send_and_wait, channel, data)

    def send_later(self, channel: str, data: Any = None) -> None:
        """Defer every listener to a later turn and return immediately.

        Listener errors are logged, never reported to the caller.
        Deferring needs a running event loop; a send that reaches no
        listener touches no loop.
        """
        ctx = contextvars.copy_context()
        ctx.run(self._send_later, channel, data)

    def _send_and_wait(self, channel: str, data: Any) -> asyncio.Future:
        set_send_id(new_send_id())
        expansion = self.expand_channel(channel)
        logger.debug("Sending", extra={"channel": channel, "expansion": expansion})
        send_span = self._begin(channel, "send", wait=True)
        errors: list[Exception] = []

        for index, sub_channel in enumerate(expansion):
            registrations = self._registry.lookup(sub_channel)
            if not registrations:
                continue
            barrier = self._begin(sub_channel, "barrier", channel=channel)
            slots = self._launch(registrations, channel, data, barrier)
            if any(isinstance(s, asyncio.Future) and not s.done() for _, s in slots):
                # Something is still running: the rest of the chain waits on a task.
                return self._scheduler.spawn(self._wait_tail(
                    channel, data, slots, barrier, expansion[index + 1:], errors, send_span,
                ))
            self._close_barrier(barrier, channel, self._harvest(slots), errors)

        self._end(send_span, errors=len(errors))
        done = self._scheduler.create_future()
        done.set_result(errors)
        return done

    async def _wait_tail(
        self,
        channel: str,
        data: Any,
        slots: list[_Slot],
        barrier: Span | None,
        remaining: list[str],
        errors: list[Exception],
        send_span: Span | None,
    ) -> list[Exception]:
        self._close_barrier(barrier, channel, await self._settle(slots), errors)
        for sub_channel in remaining:
            registrations = self._registry.lookup(sub_channel)
            if not registrations:
                continue
            barrier = self._begin(sub_channel, "barrier", channel=channel)
            slots = self._launch(registrations, channel, data, barrier)
            self._close_barrier(barrier, channel, await self._settle(slots), errors)
        self._end(send_span, errors=len(errors))
        return errors

    def _send_later(self, channel: str, data: Any) -> None:
        set_send_id(new_send_id())
        expansion = self.expand_channel(channel)
        logger.debug("Sending later", extra={"channel": channel, "expansion": expansion})
        send_span = self._begin(channel, "send", wait=False)
        deferred = 0
        for sub_channel in expansion:
            for registration in self._registry.lookup(sub_channel):
                self._scheduler.defer(self._run_detached, registration, channel, data)
                deferred += 1
        if self.tracer:
            self.tracer.stats.add(deferred=deferred)
        self._end(send_span, deferred=deferred)

    # ── Barrier helpers ──────────────────────────────────────────────────────

    def _launch(
        self,
        registrations: tuple[Registration, ...],
        channel: str,
        data: Any,
        barrier: Span | None,
    ) -> list[_Slot]:
        """Invoke blocking listeners inline and defer nonblocking ones."""
        slots: list[_Slot] = []
        deferred = 0
        for registration in registrations:
            if registration.mode is DeliveryMode.NONBLOCKING:
                self._scheduler.defer(self._run_detached, registration, channel, data)
                deferred += 1
                continue
            outcome = invoke(registration.listener, channel, data)
            if isinstance(outcome, Pending):
                slots.append((registration, self._scheduler.start(outcome.awaitable)))
            else:
                slots.append((registration, outcome))
        if self.tracer:
            self.tracer.stats.add(invocations=len(slots), deferred=deferred)
        if barrier is not None:
            barrier.attrs.update(launched=len(slots), deferred=deferred)
        return slots

    @staticmethod
    def _harvest(slots: list[_Slot]) -> list[tuple[Registration, Exception]]:
        found = []
        for registration, slot in slots:
            if isinstance(slot, Immediate):
                if slot.error is not None:
                    found.append((registration, slot.error))
                continue
            try:
                slot.result()
            except Exception as e:
                found.append((registration, e))
        return found

    @staticmethod
    async def _settle(slots: list[_Slot]) -> list[tuple[Registration, Exception]]:
        # Awaited one at a time so a failure cannot hide the others.
        found = []
        for registration, slot in slots:
            if isinstance(slot, Immediate):
                if slot.error is not None:
                    found.append((registration, slot.error))
                continue
            try:
                await slot
            except Exception as e:
                found.append((registration, e))
        return found

    def _close_barrier(
        self,
        barrier: Span | None,
        channel: str,
        found: list[tuple[Registration, Exception]],
        errors: list[Exception],
    ) -> None:
        for registration, error in found:
            logger.warning(
                "Listener failed",
                extra={"channel": channel, "listener": registration.name, "error": repr(error)},
            )
            errors.append(error)
        if self.tracer:
            self.tracer.stats.add(errors=len(found))
        self._end(barrier, errors=len(found))

    # ── Deferred delivery ────────────────────────────────────────────────────

    def _run_detached(self, registration: Registration, channel: str, data: Any) -> None:
        outcome = invoke(registration.listener, channel, data)
        if isinstance(outcome, Pending):
            fut = self._scheduler.start(outcome.awaitable)
            fut.add_done_callback(partial(self._report_detached, registration, channel))
        elif outcome.error is not None:
            self._log_detached(registration, channel, outcome.error)

    def _report_detached(self, registration: Registration, channel: str, fut: asyncio.Future) -> None:
        if fut.cancelled():
            return
        error = fut.exception()
        if error is not None:
            self._log_detached(registration, channel, error)

    @staticmethod
    def _log_detached(registration: Registration, channel: str, error: BaseException) -> None:
        logger.error(
            "Deferred listener failed",
            extra={"channel": channel, "listener": registration.name},
            exc_info=error,
        )

    # ── Tracing ──────────────────────────────────────────────────────────────

    def _begin(self, name: str, kind: str, **attrs) -> Span | None:
        return self.tracer.begin(name, kind, **attrs) if self.tracer else None

    def _end(self, span: Span | None, **attrs) -> None:
        if span is not None and self.tracer:
            self.tracer.end(span, **attrs)
