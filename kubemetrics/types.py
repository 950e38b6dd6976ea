"""Metric points, resource quantities and the objects metrics are served for."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal

RESOURCE_CPU = "cpu"
RESOURCE_MEMORY = "memory"

_MAX_INT64 = 2**63 - 1
_MAX_UINT64 = 2**64 - 1


class ResourceUsageError(ValueError):
    """Raised when usage cannot be computed from two metric points."""


class QuantityFormat(enum.Enum):
    DECIMAL_EXPONENT = "DecimalExponent"
    BINARY_SI = "BinarySI"
    DECIMAL_SI = "DecimalSI"


@dataclass(frozen=True)
class Quantity:
    """A resource amount of ``value * 10**scale``."""

    value: int
    scale: int = 0
    format: QuantityFormat = QuantityFormat.DECIMAL_SI

    @property
    def amount(self) -> Decimal:
        return Decimal(self.value).scaleb(self.scale)


@dataclass(frozen=True, order=True)
class NamespacedName:
    namespace: str
    name: str

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}"


@dataclass(frozen=True)
class MetricsPoint:
    """Measurements of a container or node at one moment.

    ``start_time`` is None when unknown; cumulative CPU is zero at start time.
    ``cumulative_cpu_used`` is in nanocore-seconds, ``memory_usage`` in bytes.
    """

    start_time: datetime | None
    timestamp: datetime
    cumulative_cpu_used: int
    memory_usage: int


@dataclass
class PodMetricsPoint:
    containers: dict[str, MetricsPoint] = field(default_factory=dict)


@dataclass
class MetricsBatch:
    """One scrape's worth of node and pod metrics."""

    nodes: dict[str, MetricsPoint] = field(default_factory=dict)
    pods: dict[NamespacedName, PodMetricsPoint] = field(default_factory=dict)


@dataclass(frozen=True)
class TimeInfo:
    timestamp: datetime
    window: timedelta


class NodeAddressType(enum.Enum):
    HOSTNAME = "Hostname"
    INTERNAL_DNS = "InternalDNS"
    INTERNAL_IP = "InternalIP"
    EXTERNAL_DNS = "ExternalDNS"
    EXTERNAL_IP = "ExternalIP"


@dataclass(frozen=True)
class NodeAddress:
    type: NodeAddressType
    address: str


@dataclass
class Node:
    name: str
    labels: dict[str, str] = field(default_factory=dict)
    addresses: list[NodeAddress] = field(default_factory=list)


@dataclass
class PodMetadata:
    name: str
    namespace: str
    labels: dict[str, str] = field(default_factory=dict)


@dataclass
class ContainerMetrics:
    name: str
    usage: dict[str, Quantity]


@dataclass
class NodeMetrics:
    name: str
    labels: dict[str, str]
    creation_timestamp: datetime
    timestamp: datetime
    window: timedelta
    usage: dict[str, Quantity]


@dataclass
class PodMetrics:
    name: str
    namespace: str
    labels: dict[str, str]
    creation_timestamp: datetime
    timestamp: datetime
    window: timedelta
    containers: list[ContainerMetrics]


def uint64_quantity(value: int, fmt: QuantityFormat, scale: int) -> Quantity:
    """Build a quantity from an unsigned 64-bit value.

    Values above the signed 64-bit maximum lose one decimal digit of precision.
    """
    if not 0 <= value <= _MAX_UINT64:
        raise ValueError(f"value {value} is outside the unsigned 64-bit range")
    if value > _MAX_INT64:
        return Quantity(value // 10, scale + 1, fmt)
    return Quantity(value, scale, fmt)


def resource_usage(
    last: MetricsPoint, prev: MetricsPoint
) -> tuple[dict[str, Quantity], TimeInfo]:
    """Compute CPU rate and memory usage between two points of one series."""
    if last.cumulative_cpu_used < prev.cumulative_cpu_used:
        raise ResourceUsageError("unexpected decrease in cumulative CPU usage value")
    window = last.timestamp - prev.timestamp
    seconds = window.total_seconds()
    if seconds <= 0:
        raise ResourceUsageError("metric points do not span a positive time window")
    cpu_usage = float(last.cumulative_cpu_used - prev.cumulative_cpu_used) / seconds
    usage = {
        RESOURCE_CPU: uint64_quantity(int(cpu_usage), QuantityFormat.DECIMAL_SI, -9),
        RESOURCE_MEMORY: uint64_quantity(last.memory_usage, QuantityFormat.BINARY_SI, 0),
    }
    return usage, TimeInfo(timestamp=last.timestamp, window=window)