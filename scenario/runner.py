"""Scenario runner — replays a ScenarioDefinition and records what happened."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable

from pydantic import BaseModel

from core.config import BusSettings
from core.event_bus import EventBus
from core.models import Listener
from core.tracer import Tracer
from scenario.definition import ListenerKind, ListenerSpec, ScenarioDefinition

logger = logging.getLogger(__name__)


class ListenerFailure(RuntimeError):
    """Raised by scenario listeners declared with ``fail: true``."""


class LogEntry(BaseModel):
    at_ms: float
    event: str                  # marker | run | start | end | error
    listener: str | None = None
    channel: str | None = None
    note: str = ""


class SendOutcome(BaseModel):
    channel: str
    wait: bool
    errors: list[str] = []


class ScenarioResult(BaseModel):
    name: str
    log: list[LogEntry]
    sends: list[SendOutcome]
    trace: dict
    trace_summary: str = ""

    def events(self) -> list[str]:
        """Compact ``listener:event`` strings, handy for assertions."""
        return [
            e.note if e.event == "marker" else f"{e.listener}:{e.event}"
            for e in self.log
        ]


class ScenarioRunner:
    def __init__(self, settings: BusSettings | None = None):
        self.settings = settings

    async def run(self, definition: ScenarioDefinition) -> ScenarioResult:
        """Build a fresh bus, replay every send in order, then let deferred work settle."""
        loop = asyncio.get_running_loop()
        started = loop.time()
        log: list[LogEntry] = []

        def record(event: str, listener: str | None = None,
                   channel: str | None = None, note: str = "") -> None:
            log.append(LogEntry(
                at_ms=round((loop.time() - started) * 1000, 1),
                event=event, listener=listener, channel=channel, note=note,
            ))

        tracer = Tracer()
        bus = EventBus(definition.separator, settings=self.settings, tracer=tracer)

        for spec in definition.listeners:
            subscribe = bus.once if spec.once else bus.on
            subscribe(spec.channels, _make_listener(spec, record), spec.mode)

        logger.info("Scenario started", extra={"scenario": definition.name})
        outcomes: list[SendOutcome] = []
        for send in definition.sends:
            if send.wait:
                record("marker", note=f"send_and_wait {send.channel}")
                errors = await bus.send_and_wait(send.channel, send.data)
            else:
                record("marker", note=f"send_later {send.channel}")
                bus.send_later(send.channel, send.data)
                errors = []
            record("marker", note=f"returned {send.channel}")
            outcomes.append(SendOutcome(
                channel=send.channel,
                wait=send.wait,
                errors=[str(e) for e in errors],
            ))

        await asyncio.sleep(definition.settle)
        logger.info(
            "Scenario finished",
            extra={"scenario": definition.name, "entries": len(log)},
        )
        report = tracer.report(definition.name)
        return ScenarioResult(
            name=definition.name,
            log=log,
            sends=outcomes,
            trace=report.to_dict(),
            trace_summary=report.summary(),
        )


# ── Module-level helpers ──────────────────────────────────────────────────────

def _make_listener(spec: ListenerSpec, record: Callable[..., None]) -> Listener:
    """Build a recording listener that behaves as *spec* describes."""
    if spec.kind == ListenerKind.SYNC:
        def listener(channel: str, data: Any) -> None:
            if spec.fail:
                record("error", spec.id, channel)
                raise ListenerFailure(f"{spec.id} failed on {channel}")
            record("run", spec.id, channel)
        return listener

    async def async_listener(channel: str, data: Any) -> None:
        record("start", spec.id, channel)
        if spec.delay:
            await asyncio.sleep(spec.delay)
        if spec.fail:
            record("error", spec.id, channel)
            raise ListenerFailure(f"{spec.id} failed on {channel}")
        record("end", spec.id, channel)
    return async_listener
