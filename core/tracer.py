"""Tracer — lightweight span collection and dispatch accounting."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone


# ── Data classes ─────────────────────────────────────────────────────────────

@dataclass
class Span:
    """A single timed operation."""
    name: str
    kind: str                        # send | barrier
    started_at: datetime
    finished_at: datetime | None = None
    attrs: dict = field(default_factory=dict)

    @property
    def duration_seconds(self) -> float | None:
        if self.started_at and self.finished_at:
            return (self.finished_at - self.started_at).total_seconds()
        return None

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "kind": self.kind,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "duration_s": self.duration_seconds,
            **self.attrs,
        }


@dataclass
class DispatchStats:
    """Accumulated counts across all sends seen by one tracer."""
    sends: int = 0
    invocations: int = 0
    deferred: int = 0
    errors: int = 0

    def add(self, invocations: int = 0, deferred: int = 0, errors: int = 0) -> None:
        self.invocations += invocations
        self.deferred += deferred
        self.errors += errors

    def to_dict(self) -> dict:
        return {
            "sends":       self.sends,
            "invocations": self.invocations,
            "deferred":    self.deferred,
            "errors":      self.errors,
        }


# ── TraceReport ───────────────────────────────────────────────────────────────

class TraceReport:
    def __init__(self, trace_id: str, label: str, spans: list[Span], stats: DispatchStats):
        self.trace_id = trace_id
        self.label = label
        self.spans = spans
        self.stats = stats

    def summary(self) -> str:
        lines = [
            "╔══ Dispatch Trace " + "═" * 36,
            f"  Trace ID  : {self.trace_id}",
            f"  Label     : {self.label or '-'}",
            "",
            f"  {'Kind':<10} {'Name':<24} {'Duration':>10}",
            "  " + "─" * 48,
        ]
        for span in self.spans:
            d = f"{span.duration_seconds:.3f}s" if span.duration_seconds is not None else "-"
            extra = ""
            if span.kind == "barrier":
                extra = (f"  ({span.attrs.get('launched', 0)} launched, "
                         f"{span.attrs.get('errors', 0)} errors)")
            lines.append(f"  {span.kind:<10} {span.name:<24} {d:>10}{extra}")

        lines += [
            "",
            f"  Sends       : {self.stats.sends:>6}",
            f"  Invocations : {self.stats.invocations:>6}",
            f"  Deferred    : {self.stats.deferred:>6}",
            f"  Errors      : {self.stats.errors:>6}",
            "╚" + "═" * 54,
        ]
        return "\n".join(lines)

    def to_dict(self) -> dict:
        return {
            "trace_id": self.trace_id,
            "label":    self.label,
            "spans":    [s.to_dict() for s in self.spans],
            "stats":    self.stats.to_dict(),
        }


# ── Tracer ────────────────────────────────────────────────────────────────────

class Tracer:
    """Collects spans and counters for the sends of one bus.

    Spans are appended when they finish, so a barrier span appears before
    the send span that encloses it.
    """

    def __init__(self, trace_id: str | None = None):
        self.trace_id: str = trace_id or uuid.uuid4().hex[:8]
        self.stats = DispatchStats()
        self._spans: list[Span] = []

    def begin(self, name: str, kind: str, **attrs) -> Span:
        if kind == "send":
            self.stats.sends += 1
        return Span(name=name, kind=kind, started_at=datetime.now(timezone.utc), attrs=attrs)

    def end(self, span: Span, **attrs) -> None:
        span.attrs.update(attrs)
        span.finished_at = datetime.now(timezone.utc)
        self._spans.append(span)

    def report(self, label: str = "") -> TraceReport:
        return TraceReport(
            trace_id=self.trace_id,
            label=label,
            spans=list(self._spans),
            stats=self.stats,
        )
