"""Thread-safe storage of the last two scrapes, serving node and pod usage."""

from __future__ import annotations

import abc
import logging
import threading
from dataclasses import replace
from datetime import datetime, timedelta, timezone

from kubemetrics.instrumentation import POINTS_STORED
from kubemetrics.types import (
    ContainerMetrics,
    MetricsBatch,
    MetricsPoint,
    NamespacedName,
    Node,
    NodeMetrics,
    PodMetadata,
    PodMetrics,
    PodMetricsPoint,
    ResourceUsageError,
    TimeInfo,
    resource_usage,
)

logger = logging.getLogger(__name__)

# A fresh container needs at least this long between start and measurement
# before its start time can stand in for a previous point.
FRESH_CONTAINER_MIN_METRICS_RESOLUTION = timedelta(seconds=10)

# Timestamp reported for a pod none of whose containers produced usage.
_ZERO_TIME = datetime(1, 1, 1, tzinfo=timezone.utc)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _started_before(start_time: datetime | None, moment: datetime) -> bool:
    """An unknown start time counts as earlier than any moment."""
    return start_time is None or start_time < moment


class MetricsStorage(abc.ABC):
    """What the server needs from a metrics store."""

    @abc.abstractmethod
    def get_node_metrics(self, *args: Node) -> list[NodeMetrics]:
        """Return usage for the given nodes that have enough points."""

    @abc.abstractmethod
    def get_pod_metrics(self, *args: PodMetadata) -> list[PodMetrics]:
        """Return usage for the given pods that have enough points."""

    @abc.abstractmethod
    def store(self, batch: MetricsBatch) -> None:
        """Record a new scrape."""

    @abc.abstractmethod
    def ready(self) -> bool:
        """Whether there is anything to serve yet."""


class NodeStorage:
    """Keeps the last two metric points per node and derives usage from them.

    Points are only kept when newer than those already stored, so the window
    between the two kept points is always positive.
    """

    def __init__(self) -> None:
        self._last: dict[str, MetricsPoint] = {}
        self._prev: dict[str, MetricsPoint] = {}

    def get_metrics(self, *args: Node) -> list[NodeMetrics]:
        """Return metrics for each given node that has two usable points."""
        results: list[NodeMetrics] = []
        for node in args:
            last = self._last.get(node.name)
            prev = self._prev.get(node.name)
            if last is None or prev is None:
                continue
            try:
                usage, info = resource_usage(last, prev)
            except ResourceUsageError as exc:
                logger.error("Skipping node usage metric for %s: %s", node.name, exc)
                continue
            results.append(
                NodeMetrics(
                    name=node.name,
                    labels=dict(node.labels),
                    creation_timestamp=_now(),
                    timestamp=info.timestamp,
                    window=info.window,
                    usage=usage,
                )
            )
        return results

    def store(self, batch: MetricsBatch) -> None:
        last_nodes: dict[str, MetricsPoint] = {}
        prev_nodes: dict[str, MetricsPoint] = {}
        for name, point in batch.nodes.items():
            last_nodes[name] = point
            stored = self._last.get(name)
            if stored is None:
                continue
            if point.timestamp > stored.timestamp:
                prev_nodes[name] = stored
            elif (previous := self._prev.get(name)) is not None:
                if previous.timestamp < point.timestamp:
                    prev_nodes[name] = previous
                else:
                    logger.debug(
                        "New node metrics point is older than stored previous, "
                        "dropping previous: node=%s previous=%s timestamp=%s",
                        name,
                        previous.timestamp,
                        point.timestamp,
                    )
        self._last = last_nodes
        self._prev = prev_nodes
        POINTS_STORED.with_label_values("node").set(len(prev_nodes))


class PodStorage:
    """Keeps the last two metric points per container and derives usage.

    A previous point is only kept when it comes from the same container run
    (no restart between it and the latest point).
    """

    def __init__(self, metric_resolution: timedelta) -> None:
        self.metric_resolution = metric_resolution
        self._last: dict[NamespacedName, PodMetricsPoint] = {}
        self._prev: dict[NamespacedName, PodMetricsPoint] = {}

    def get_metrics(self, *args: PodMetadata) -> list[PodMetrics]:
        """Return metrics for each given pod whose containers all have two points."""
        results: list[PodMetrics] = []
        for pod in args:
            ref = NamespacedName(namespace=pod.namespace, name=pod.name)
            last_pod = self._last.get(ref)
            prev_pod = self._prev.get(ref)
            if last_pod is None or prev_pod is None:
                continue
            containers: list[ContainerMetrics] = []
            earliest: TimeInfo | None = None
            all_present = True
            for name, last_point in last_pod.containers.items():
                prev_point = prev_pod.containers.get(name)
                if prev_point is None:
                    all_present = False
                    break
                try:
                    usage, info = resource_usage(last_point, prev_point)
                except ResourceUsageError as exc:
                    logger.error(
                        "Skipping container usage metric for %s in pod %s: %s",
                        name,
                        ref,
                        exc,
                    )
                    continue
                containers.append(ContainerMetrics(name=name, usage=usage))
                if earliest is None or earliest.timestamp > info.timestamp:
                    earliest = info
            if not all_present:
                continue
            results.append(
                PodMetrics(
                    name=pod.name,
                    namespace=pod.namespace,
                    labels=dict(pod.labels),
                    creation_timestamp=_now(),
                    timestamp=earliest.timestamp if earliest else _ZERO_TIME,
                    window=earliest.window if earliest else timedelta(0),
                    containers=containers,
                )
            )
        return results

    def _is_fresh(self, point: MetricsPoint) -> bool:
        if point.start_time is None or not point.start_time < point.timestamp:
            return False
        age = point.timestamp - point.start_time
        return FRESH_CONTAINER_MIN_METRICS_RESOLUTION <= age < self.metric_resolution

    def _previous_point(
        self, ref: NamespacedName, name: str, point: MetricsPoint
    ) -> MetricsPoint | None:
        if self._is_fresh(point):
            return replace(point, timestamp=point.start_time, cumulative_cpu_used=0)
        last_pod = self._last.get(ref)
        if last_pod is None:
            return None
        stored = last_pod.containers.get(name)
        if stored is None or not _started_before(point.start_time, stored.timestamp):
            return None
        if point.timestamp > stored.timestamp:
            return stored
        prev_pod = self._prev.get(ref)
        if prev_pod is None:
            return None
        previous = prev_pod.containers.get(name)
        if previous is not None and previous.timestamp < point.timestamp:
            return previous
        logger.debug(
            "New container metrics point is older than stored previous, "
            "dropping previous: container=%s pod=%s timestamp=%s",
            name,
            ref,
            point.timestamp,
        )
        return None

    def store(self, batch: MetricsBatch) -> None:
        last_pods: dict[NamespacedName, PodMetricsPoint] = {}
        prev_pods: dict[NamespacedName, PodMetricsPoint] = {}
        container_count = 0
        for ref, pod in batch.pods.items():
            ref = NamespacedName(namespace=ref.namespace, name=ref.name)
            new_last = PodMetricsPoint(containers=dict(pod.containers))
            new_prev = PodMetricsPoint()
            for name, point in pod.containers.items():
                previous = self._previous_point(ref, name, point)
                if previous is not None:
                    new_prev.containers[name] = previous
            if new_prev.containers:
                prev_pods[ref] = new_prev
            last_pods[ref] = new_last
            container_count += len(new_prev.containers)
        self._last = last_pods
        self._prev = prev_pods
        POINTS_STORED.with_label_values("container").set(container_count)


class Storage(MetricsStorage):
    """Thread-safe store for node and pod metrics."""

    def __init__(self, metric_resolution: timedelta) -> None:
        self._lock = threading.Lock()
        self._nodes = NodeStorage()
        self._pods = PodStorage(metric_resolution)

    def ready(self) -> bool:
        """True once enough points are stored to serve any metrics."""
        with self._lock:
            return bool(self._nodes._prev) or bool(self._pods._prev)

    def get_node_metrics(self, *args: Node) -> list[NodeMetrics]:
        with self._lock:
            return self._nodes.get_metrics(*args)

    def get_pod_metrics(self, *args: PodMetadata) -> list[PodMetrics]:
        with self._lock:
            return self._pods.get_metrics(*args)

    def store(self, batch: MetricsBatch) -> None:
        with self._lock:
            self._nodes.store(batch)
            self._pods.store(batch)