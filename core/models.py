"""Subscription types shared by the registry and the dispatch engine."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable

WILDCARD = "*"
DEFAULT_SEPARATOR = ":"

# A listener receives the original (unexpanded) channel and the payload.
# It may return nothing or an awaitable.
Listener = Callable[[str, Any], "Awaitable[Any] | None"]
Unsubscribe = Callable[[], None]


class DeliveryMode(str, Enum):
    BLOCKING = "blocking"        # awaited by a waiting sender
    NONBLOCKING = "nonblocking"  # always deferred to a later turn


@dataclass(frozen=True, eq=False)
class Registration:
    """One (listener, mode) pair.

    ``eq=False`` keeps object identity as both equality and hash, so the
    same function subscribed twice yields two independent registrations.
    """
    listener: Listener
    mode: DeliveryMode = DeliveryMode.BLOCKING

    @property
    def name(self) -> str:
        return getattr(self.listener, "__qualname__", repr(self.listener))
