"""Subscription registry — channel name → ordered set of registrations."""

from __future__ import annotations

import logging
from typing import Iterable

from core.models import Registration, Unsubscribe

logger = logging.getLogger(__name__)


def as_channel_list(channel_or_channels: str | Iterable[str]) -> list[str]:
    if isinstance(channel_or_channels, str):
        return [channel_or_channels]
    return list(channel_or_channels)


class SubscriptionRegistry:
    """Per-bus subscription state.

    Each channel maps to an insertion-ordered dict used as a set, so
    iteration follows registration order. A channel is present only while
    it has at least one registration.
    """

    def __init__(self) -> None:
        self._subs: dict[str, dict[Registration, None]] = {}

    def subscribe(
        self,
        channel_or_channels: str | Iterable[str],
        registration: Registration,
    ) -> Unsubscribe:
        """Attach *registration* to each channel and return an idempotent remover."""
        channels = as_channel_list(channel_or_channels)
        for channel in channels:
            self._subs.setdefault(channel, {})[registration] = None
        logger.debug(
            "Subscribed",
            extra={"channels": channels, "listener": registration.name,
                   "mode": registration.mode.value},
        )

        def unsubscribe() -> None:
            for channel in channels:
                self._discard(channel, registration)
            logger.debug("Unsubscribed", extra={"channels": channels, "listener": registration.name})

        return unsubscribe

    def lookup(self, channel: str) -> tuple[Registration, ...]:
        """Snapshot of the registrations for exactly *channel*."""
        regs = self._subs.get(channel)
        return tuple(regs) if regs else ()

    def clear(self) -> None:
        for regs in self._subs.values():
            regs.clear()
        self._subs = {}
        logger.debug("Removed all subscriptions")

    def channels(self) -> list[str]:
        return list(self._subs)

    def counts(self) -> dict[str, int]:
        return {channel: len(regs) for channel, regs in self._subs.items()}

    def __len__(self) -> int:
        return sum(len(regs) for regs in self._subs.values())

    def __contains__(self, channel: object) -> bool:
        return channel in self._subs

    def _discard(self, channel: str, registration: Registration) -> None:
        regs = self._subs.get(channel)
        if regs is None:
            return
        regs.pop(registration, None)
        # prune emptied channels
        if not regs:
            del self._subs[channel]
