from datetime import datetime, timedelta, timezone

import pytest

from kubemetrics.types import (
    RESOURCE_CPU,
    RESOURCE_MEMORY,
    MetricsPoint,
    Quantity,
    QuantityFormat,
    ResourceUsageError,
    TimeInfo,
    resource_usage,
    uint64_quantity,
)

MI_BYTE = 1024 * 1024
CORE_SECOND = 1000 * 1000 * 1000
MAX_INT64 = 2**63 - 1
START = datetime(2024, 1, 1, tzinfo=timezone.utc)


def new_metrics_point(st, ts, cpu, memory):
    return MetricsPoint(
        start_time=st, timestamp=ts, cumulative_cpu_used=cpu, memory_usage=memory
    )


@pytest.mark.parametrize(
    "value, expected",
    [
        (MAX_INT64 + 10, Quantity(MAX_INT64 // 10 + 1, 1)),
        (MAX_INT64 + 20, Quantity(MAX_INT64 // 10 + 2, 1)),
        (MAX_INT64 - 10, Quantity(MAX_INT64 - 10, 0)),
        (MAX_INT64 - 100, Quantity(MAX_INT64 - 100, 0)),
    ],
)
def test_uint64_quantity(value, expected):
    assert uint64_quantity(value, QuantityFormat.DECIMAL_SI, 0) == expected


def test_uint64_quantity_keeps_format():
    q = uint64_quantity(3 * MI_BYTE, QuantityFormat.BINARY_SI, 0)
    assert q == Quantity(3 * MI_BYTE, 0, QuantityFormat.BINARY_SI)


def test_uint64_quantity_rejects_negative():
    with pytest.raises(ValueError):
        uint64_quantity(-1, QuantityFormat.DECIMAL_SI, 0)


def test_quantity_amount():
    assert Quantity(CORE_SECOND, -9).amount == 1


def test_resource_usage_computes_rate_and_memory():
    prev = new_metrics_point(START, START + timedelta(seconds=10), 10 * CORE_SECOND, 2 * MI_BYTE)
    last = new_metrics_point(START, START + timedelta(seconds=20), 20 * CORE_SECOND, 3 * MI_BYTE)
    usage, info = resource_usage(last, prev)
    assert usage == {
        RESOURCE_CPU: Quantity(CORE_SECOND, -9),
        RESOURCE_MEMORY: Quantity(3 * MI_BYTE, 0, QuantityFormat.BINARY_SI),
    }
    assert info == TimeInfo(timestamp=START + timedelta(seconds=20), window=timedelta(seconds=10))


def test_resource_usage_fractional_cores():
    prev = new_metrics_point(START, START + timedelta(seconds=15), 10 * CORE_SECOND, 1 * MI_BYTE)
    last = new_metrics_point(START, START + timedelta(seconds=25), 35 * CORE_SECOND, 2 * MI_BYTE)
    usage, info = resource_usage(last, prev)
    assert usage[RESOURCE_CPU] == Quantity(int(2.5 * CORE_SECOND), -9)
    assert usage[RESOURCE_MEMORY] == Quantity(2 * MI_BYTE, 0, QuantityFormat.BINARY_SI)
    assert info.window == timedelta(seconds=10)


def test_resource_usage_decrease_raises():
    prev = new_metrics_point(START, START + timedelta(seconds=15), 50 * CORE_SECOND, 3 * MI_BYTE)
    last = new_metrics_point(START, START + timedelta(seconds=25), 10 * CORE_SECOND, 5 * MI_BYTE)
    with pytest.raises(ResourceUsageError):
        resource_usage(last, prev)


def test_resource_usage_zero_window_raises():
    point = new_metrics_point(START, START + timedelta(seconds=10), CORE_SECOND, MI_BYTE)
    with pytest.raises(ResourceUsageError):
        resource_usage(point, point)