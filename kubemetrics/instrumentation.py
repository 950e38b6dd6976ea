"""In-process gauges and histograms describing the server's own work."""

from __future__ import annotations

import bisect
import threading
from collections.abc import Callable, Iterable
from typing import Any

from kubemetrics.buckets import DEF_BUCKETS


def _full_name(namespace: str, subsystem: str, name: str) -> str:
    return "_".join(part for part in (namespace, subsystem, name) if part)


class Gauge:
    """A single value that can go up and down."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._value = 0.0

    @property
    def value(self) -> float:
        with self._lock:
            return self._value

    def set(self, value: float) -> None:
        with self._lock:
            self._value = float(value)


class GaugeVec:
    """A family of gauges distinguished by label values."""

    def __init__(
        self,
        name: str,
        help_text: str,
        label_names: Iterable[str],
        *,
        namespace: str = "",
        subsystem: str = "",
    ) -> None:
        self.name = name
        self.help = help_text
        self.namespace = namespace
        self.subsystem = subsystem
        self.label_names = tuple(label_names)
        self._lock = threading.Lock()
        self._children: dict[tuple[str, ...], Gauge] = {}

    @property
    def fq_name(self) -> str:
        return _full_name(self.namespace, self.subsystem, self.name)

    def with_label_values(self, *args: str) -> Gauge:
        if len(args) != len(self.label_names):
            raise ValueError(
                f"{self.fq_name}: expected {len(self.label_names)} label values, got {len(args)}"
            )
        with self._lock:
            return self._children.setdefault(tuple(args), Gauge())

    def reset(self) -> None:
        with self._lock:
            self._children.clear()

    def collect(self) -> list[tuple[dict[str, str], float]]:
        """Return ``(labels, value)`` for every child, ordered by label values."""
        with self._lock:
            children = sorted(self._children.items())
        return [
            (dict(zip(self.label_names, values)), gauge.value)
            for values, gauge in children
        ]


class Histogram:
    """Counts observations into cumulative upper-bound buckets."""

    def __init__(
        self,
        name: str,
        help_text: str,
        buckets: Iterable[float] = DEF_BUCKETS,
        *,
        namespace: str = "",
        subsystem: str = "",
    ) -> None:
        bounds = tuple(float(b) for b in buckets)
        if any(later <= earlier for earlier, later in zip(bounds, bounds[1:])):
            raise ValueError("histogram buckets must be in strictly increasing order")
        self.name = name
        self.help = help_text
        self.namespace = namespace
        self.subsystem = subsystem
        self._buckets = bounds
        self._lock = threading.Lock()
        self._counts = [0] * len(bounds)
        self._count = 0
        self._sum = 0.0

    @property
    def fq_name(self) -> str:
        return _full_name(self.namespace, self.subsystem, self.name)

    @property
    def buckets(self) -> tuple[float, ...]:
        return self._buckets

    @property
    def count(self) -> int:
        with self._lock:
            return self._count

    @property
    def sum(self) -> float:
        with self._lock:
            return self._sum

    @property
    def bucket_counts(self) -> tuple[int, ...]:
        """Cumulative counts of observations at or below each bucket bound."""
        with self._lock:
            counts = list(self._counts)
        running = 0
        cumulative = []
        for count in counts:
            running += count
            cumulative.append(running)
        return tuple(cumulative)

    def observe(self, value: float) -> None:
        index = bisect.bisect_left(self._buckets, value)
        with self._lock:
            if index < len(self._counts):
                self._counts[index] += 1
            self._count += 1
            self._sum += value


POINTS_STORED = GaugeVec(
    "points",
    "Number of metrics points stored.",
    ("type",),
    namespace="metrics_server",
    subsystem="storage",
)


def register_storage_metrics(register: Callable[[Any], Any]) -> Any:
    """Hand the stored-points gauge to ``register``; its errors propagate."""
    return register(POINTS_STORED)