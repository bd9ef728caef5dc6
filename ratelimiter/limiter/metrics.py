"""Metrics sink interface for the rate limiter.

The limiter reports call counts, error counts and latencies through a
MetricsRecorder. The default NoOpMetricsRecorder discards everything so
the hot path never has to check whether a recorder is configured.
"""

import threading
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Protocol, Tuple, runtime_checkable

CALL_COUNTER = "ratelimit.call"
ERROR_COUNTER = "ratelimit.errors"
LATENCY = "ratelimit.latency"

TagKey = Tuple[Tuple[str, str], ...]


@runtime_checkable
class MetricsRecorder(Protocol):
    """Counter and distribution sink consumed by the limiter."""

    def add(self, name: str, value: float, tags: Mapping[str, str]) -> None:
        """Increment counter ``name`` by ``value``."""
        ...

    def observe(self, name: str, value: float, tags: Mapping[str, str]) -> None:
        """Record one observation of distribution ``name``."""
        ...


class NoOpMetricsRecorder:
    """Recorder that does nothing."""

    def add(self, name: str, value: float, tags: Mapping[str, str]) -> None:
        pass

    def observe(self, name: str, value: float, tags: Mapping[str, str]) -> None:
        pass


def _tag_key(tags: Mapping[str, str]) -> TagKey:
    return tuple(sorted((str(k), str(v)) for k, v in tags.items()))


@dataclass
class InMemoryMetricsRecorder:
    """Collects limiter metrics in process memory.

    Thread-safe. Counters and observations are keyed by metric name and
    the sorted tag set, so ``counter("ratelimit.call", status="denied")``
    sums every series whose tags include ``status=denied``.
    """

    _counters: Dict[str, Dict[TagKey, float]] = field(
        default_factory=lambda: defaultdict(lambda: defaultdict(float))
    )
    _observations: Dict[str, Dict[TagKey, List[float]]] = field(
        default_factory=lambda: defaultdict(lambda: defaultdict(list))
    )
    _lock: threading.Lock = field(default_factory=threading.Lock)

    def add(self, name: str, value: float, tags: Mapping[str, str]) -> None:
        with self._lock:
            self._counters[name][_tag_key(tags)] += value

    def observe(self, name: str, value: float, tags: Mapping[str, str]) -> None:
        with self._lock:
            self._observations[name][_tag_key(tags)].append(value)

    def counter(self, name: str, **tags: str) -> float:
        """Sum of counter ``name`` across series matching ``tags``."""
        wanted = set(_tag_key(tags))
        with self._lock:
            return sum(
                value
                for key, value in self._counters.get(name, {}).items()
                if wanted.issubset(key)
            )

    def observations(self, name: str, **tags: str) -> List[float]:
        """All observations of ``name`` across series matching ``tags``."""
        wanted = set(_tag_key(tags))
        with self._lock:
            values: List[float] = []
            for key, series in self._observations.get(name, {}).items():
                if wanted.issubset(key):
                    values.extend(series)
            return values

    def get_summary(self) -> Dict[str, Any]:
        """Snapshot suitable for a JSON metrics endpoint."""
        with self._lock:
            counters = {
                name: [
                    {"tags": dict(key), "value": value}
                    for key, value in series.items()
                ]
                for name, series in self._counters.items()
            }
            distributions = {}
            for name, series in self._observations.items():
                entries = []
                for key, values in series.items():
                    entries.append({
                        "tags": dict(key),
                        "count": len(values),
                        "sum": sum(values),
                        "max": max(values) if values else 0.0,
                        "avg": sum(values) / len(values) if values else 0.0,
                    })
                distributions[name] = entries
        return {"counters": counters, "distributions": distributions}

    def reset(self) -> None:
        with self._lock:
            self._counters.clear()
            self._observations.clear()
