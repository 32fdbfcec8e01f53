"""
Metrics — event counts and timings for pod generation.

The pod generator submits ``MetricsEvent``s to a recorder and never
looks at the answer: any object with a ``record(event)`` method will
do, and a recorder that fails never affects the generated pods.

``MetricsRegistry`` is the in-process recorder the CLI uses.  It keeps
the raw events, a count per event name (total and per label set) and
wall-clock timings of whole compilations.
"""

from __future__ import annotations

import logging
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Iterator, Protocol

logger = logging.getLogger(__name__)

LabelKey = tuple[tuple[str, str], ...]


@dataclass
class MetricsEvent:
    """Something that happened while generating pods."""

    name: str
    labels: dict[str, str] = field(default_factory=dict)
    timestamp: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "labels": self.labels, "timestamp": self.timestamp}


class MetricsRecorder(Protocol):
    def record(self, event: MetricsEvent) -> None: ...


def record_event(recorder: MetricsRecorder | None, event: MetricsEvent) -> None:
    """Submit *event* to *recorder*, if any.  Never raises."""
    if recorder is None:
        return
    try:
        recorder.record(event)
    except Exception as e:
        logger.debug("Metrics recorder rejected %s: %s", event.name, e)


def _label_key(labels: dict[str, str]) -> LabelKey:
    return tuple(sorted(labels.items()))


@dataclass
class EventCounter:
    """How often one event occurred, in total and per label set."""

    name: str
    total: int = 0
    series: dict[LabelKey, int] = field(default_factory=dict)

    def add(self, labels: dict[str, str]) -> None:
        key = _label_key(labels)
        self.series[key] = self.series.get(key, 0) + 1
        self.total += 1

    def count(self, **labels: str) -> int:
        """Occurrences with exactly *labels*; the total without labels."""
        if not labels:
            return self.total
        return self.series.get(_label_key(labels), 0)

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "total": self.total,
            "series": [{"labels": dict(k), "value": v} for k, v in self.series.items()],
        }


@dataclass
class Timing:
    """Durations of one operation, in milliseconds."""

    name: str
    samples: list[float] = field(default_factory=list)

    def observe(self, elapsed_ms: float) -> None:
        self.samples.append(elapsed_ms)

    def to_dict(self) -> dict[str, Any]:
        count = len(self.samples)
        total = sum(self.samples)
        return {
            "name": self.name,
            "count": count,
            "total_ms": round(total, 3),
            "mean_ms": round(total / count, 3) if count else 0.0,
            "max_ms": round(max(self.samples), 3) if count else 0.0,
        }


class MetricsRegistry:
    """In-memory recorder for one generator run."""

    def __init__(self) -> None:
        self.events: list[MetricsEvent] = []
        self._counters: dict[str, EventCounter] = {}
        self._timings: dict[str, Timing] = {}

    def record(self, event: MetricsEvent) -> None:
        """Timestamp *event*, keep it and count it."""
        event.timestamp = datetime.now(UTC).isoformat()
        self.events.append(event)
        self.counter(event.name).add(event.labels)

    def counter(self, name: str) -> EventCounter:
        if name not in self._counters:
            self._counters[name] = EventCounter(name)
        return self._counters[name]

    def counters(self) -> list[EventCounter]:
        return list(self._counters.values())

    def timing(self, name: str) -> Timing:
        if name not in self._timings:
            self._timings[name] = Timing(name)
        return self._timings[name]

    @contextmanager
    def timer(self, name: str) -> Iterator[Timing]:
        """Time the enclosed block into ``timing(name)``, even if it raises."""
        timing = self.timing(name)
        start = time.monotonic()
        try:
            yield timing
        finally:
            timing.observe((time.monotonic() - start) * 1000)

    def to_dict(self) -> dict[str, list[dict]]:
        return {
            "counters": [c.to_dict() for c in self._counters.values()],
            "timings": [t.to_dict() for t in self._timings.values()],
            "events": [e.to_dict() for e in self.events],
        }

    def reset(self) -> None:
        self.events.clear()
        self._counters.clear()
        self._timings.clear()
