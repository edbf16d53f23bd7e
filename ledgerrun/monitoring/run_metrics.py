"""Timing and event tracking for a single rebalance run."""

import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List


def start_timer() -> Callable[[], float]:
    """Start a timer and return a function that reports elapsed milliseconds.

    Example:
        >>> stop = start_timer()
        >>> elapsed_ms = stop()
    """
    start = time.perf_counter()

    def stop() -> float:
        return (time.perf_counter() - start) * 1000.0

    return stop


@dataclass
class RunEvent:
    """One recorded step of a run.

    Attributes:
        name: Event name (e.g. "snapshot_fetched")
        timestamp: ISO-8601 UTC wall-clock time of the event
        elapsed_ms: Milliseconds since the run started
        data: Extra event fields
    """

    name: str
    timestamp: str
    elapsed_ms: float
    data: Dict[str, Any] = field(default_factory=dict)


class RunMetrics:
    """Collects named, timed events across one invocation.

    Example:
        >>> metrics = RunMetrics()
        >>> metrics.event("snapshot_fetched", positions=2)
        >>> metrics.event("plan_computed", status="PLANNED")
        >>> metrics.summary()["events"][0]["name"]
        'snapshot_fetched'
    """

    def __init__(self) -> None:
        self._elapsed = start_timer()
        self.events: List[RunEvent] = []

    def event(self, name: str, **data: Any) -> RunEvent:
        """Record an event with the current elapsed time."""
        recorded = RunEvent(
            name=name,
            timestamp=datetime.now(timezone.utc).isoformat(),
            elapsed_ms=self._elapsed(),
            data=data,
        )
        self.events.append(recorded)
        return recorded

    @property
    def duration_ms(self) -> float:
        """Milliseconds since the metrics object was created."""
        return self._elapsed()

    def summary(self) -> Dict[str, Any]:
        """Return duration and events as plain data."""
        return {
            "durationMs": round(self.duration_ms, 3),
            "events": [
                {
                    "name": e.name,
                    "timestamp": e.timestamp,
                    "elapsedMs": round(e.elapsed_ms, 3),
                    **e.data,
                }
                for e in self.events
            ],
        }
