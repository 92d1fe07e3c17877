"""Listener invocation as a tagged outcome."""

from __future__ import annotations

import inspect
from dataclasses import dataclass
from typing import Any, Awaitable, Union

from core.models import Listener


@dataclass(frozen=True)
class Immediate:
    """The listener returned without leaving anything to await."""
    error: Exception | None = None


@dataclass(frozen=True)
class Pending:
    """The listener returned an awaitable that has not been awaited yet."""
    awaitable: Awaitable[Any]


Outcome = Union[Immediate, Pending]


def invoke(listener: Listener, channel: str, data: Any) -> Outcome:
    """Call *listener* once, catching synchronous failures."""
    try:
        result = listener(channel, data)
    except Exception as e:
        return Immediate(error=e)
    if inspect.isawaitable(result):
        return Pending(result)
    return Immediate()
