# kubemetrics

kubemetrics is the storage and scraping core of a cluster metrics server.
For every node and container it keeps the last two scrapes and works out CPU
and memory usage from them. It also runs a periodic scrape loop and provides
the health probes that report whether collection is healthy.

The package has no third-party dependencies.

## Installation

```
pip install kubemetrics
```

To run the test suite:

```
pip install "kubemetrics[test]"
pytest
```

## Modules

### `kubemetrics.types`: the data model

- Points and batches:
  - `MetricsPoint(start_time, timestamp, cumulative_cpu_used, memory_usage)`. CPU is counted in nanocore-seconds and memory in bytes. `start_time` may be `None`.
  - `PodMetricsPoint`
  - `MetricsBatch(nodes, pods)`
  - `NamespacedName(namespace, name)`
- Results:
  - `NodeMetrics`
  - `PodMetrics`
  - `ContainerMetrics`
  - `TimeInfo`
  - `Quantity(value, scale, format)`. It stands for `value * 10**scale`, and `Quantity.amount` returns that as a `Decimal`. The format is a `QuantityFormat`.
- Objects you query with:
  - `Node(name, labels, addresses)`, where the addresses are `NodeAddress` / `NodeAddressType` values.
  - `PodMetadata(name, namespace, labels)`.
- `resource_usage(last, prev)` returns a pair:
  - a dict with `"cpu"` (in nanocores, scale -9) and `"memory"` (in bytes) quantities;
  - a `TimeInfo`.

  It raises `ResourceUsageError` in two cases: cumulative CPU went down, or the two points do not span a positive time window.
- `uint64_quantity(value, fmt, scale)` builds a `Quantity` from an unsigned 64-bit value.
  - Values above the signed 64-bit maximum lose one decimal digit of precision.
  - Values outside the unsigned range raise `ValueError`.

### `kubemetrics.storage`: the stores

- `NodeStorage` and `PodStorage` each keep the last and the previous point for every series.
- `Storage` combines them behind a lock and implements the abstract `MetricsStorage` interface:
  - `store`
  - `ready`
  - `get_node_metrics`
  - `get_pod_metrics`
- These cases are handled:
  - repeated points;
  - points older than the stored previous one;
  - points that fall between previous and last;
  - container restarts;
  - fresh containers.
- A pod is returned only when every one of its containers has a previous point.

### `kubemetrics.buckets`

- `buckets_for_scrape_duration(scrape_timeout)` extends the default histogram buckets (`DEF_BUCKETS`) with buckets around a `timedelta` timeout.

### `kubemetrics.address`

- `PriorityNodeAddressResolver(type_priority)` picks a node's address.
  - It goes by address-type priority first, then by the order in which the node lists its addresses.
  - The default priority is `DEFAULT_ADDRESS_TYPE_PRIORITY`.
  - `node_address` raises `NoAddressError` when nothing matches.

### `kubemetrics.instrumentation`

- In-process metric types: `Gauge`, `GaugeVec` and `Histogram`.
- `POINTS_STORED` is the `metrics_server_storage_points` gauge family. It is labelled by `type` (`node` or `container`), and the stores update it on every `store`.
- `register_storage_metrics(register)` hands it to your registration callable.

### `kubemetrics.health`

- `NamedCheck(name, check)`
- `MetadataInformerSync`, with `metadata_informer_sync_healthz(name, cache_sync_waiter)` to build one. Its `check` raises `HealthCheckError` when any informer reported by the waiter has not synced.

### `kubemetrics.server`

- `Server(nodes, pods, apiserver, storage, scraper, resolution)`:
  - `tick(start_time)` scrapes once, stores the result and records the duration.
  - `run_until(stop_event)` starts the informers and waits for their caches. It then runs the scrape loop every `resolution` while the API server runs.
  - `register_probes(waiter)` installs the readiness, liveness and health checks.
  - The probes:
    - `probe_metric_collection_timely` fails when the last tick started more than 1.5 resolutions ago.
    - `probe_metric_storage_ready` fails while there is nothing to serve.
    - `probe_metric_cache_has_synced` fails until both informers have synced.
- `register_server_metrics(register, resolution)` creates the `metrics_server_manager_tick_duration_seconds` histogram.

## Example

```python
from datetime import datetime, timedelta, timezone

from kubemetrics.storage import Storage
from kubemetrics.types import MetricsBatch, MetricsPoint, Node

store = Storage(timedelta(seconds=60))
start = datetime.now(timezone.utc)
core_second = 1_000_000_000

store.store(MetricsBatch(nodes={
    "node1": MetricsPoint(start, start + timedelta(seconds=10), 10 * core_second, 2 * 1024 * 1024),
}))
store.store(MetricsBatch(nodes={
    "node1": MetricsPoint(start, start + timedelta(seconds=20), 20 * core_second, 3 * 1024 * 1024),
}))

assert store.ready()
(metrics,) = store.get_node_metrics(Node(name="node1"))
print(metrics.window, metrics.usage)
```

Usage becomes available once a second point, newer than the first, has been stored.

There is one exception: a freshly started container is reported after a single scrape. This happens when the time between its start and its measurement meets both of these conditions:

- it is at least 10 seconds;
- it is less than the metric resolution.

## What this package does not do

kubemetrics does not include:

- a client that scrapes kubelets;
- informers that watch the cluster;
- an HTTP API server;
- a command-line program.

`Server` works with objects you supply:

- controllers with `run(stop_event)` and `has_synced()`;
- a scraper with `scrape(timeout)` that returns a `MetricsBatch`;
- an API server with `run(stop_event)`, `add_readyz_checks`, `add_livez_checks` and `add_health_checks`.