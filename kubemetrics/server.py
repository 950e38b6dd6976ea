"""Scrape loop, health probes and serving of the metrics server."""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import Any, Protocol

from kubemetrics.buckets import buckets_for_scrape_duration
from kubemetrics.health import (
    CacheSyncWaiter,
    HealthCheckError,
    NamedCheck,
    metadata_informer_sync_healthz,
)
from kubemetrics.instrumentation import Histogram
from kubemetrics.storage import MetricsStorage
from kubemetrics.types import MetricsBatch

logger = logging.getLogger(__name__)

_SYNC_POLL_INTERVAL = 0.1

# Replaced by register_server_metrics; unregistered until then.
_tick_duration = Histogram("tick_duration_seconds", "")


def register_server_metrics(register: Callable[[Histogram], Any], resolution: timedelta) -> Any:
    """Create the tick-duration histogram and hand it to ``register``."""
    global _tick_duration
    _tick_duration = Histogram(
        "tick_duration_seconds",
        "The total time spent collecting and storing metrics in seconds.",
        buckets_for_scrape_duration(resolution),
        namespace="metrics_server",
        subsystem="manager",
    )
    return register(_tick_duration)


class Controller(Protocol):
    def run(self, stop_event: threading.Event) -> None: ...

    def has_synced(self) -> bool: ...


class Scraper(Protocol):
    def scrape(self, timeout: timedelta) -> MetricsBatch: ...


class APIServer(Protocol):
    def run(self, stop_event: threading.Event) -> Any: ...

    def add_readyz_checks(self, *checks: Any) -> None: ...

    def add_livez_checks(self, delay: float, *checks: Any) -> None: ...

    def add_health_checks(self, *checks: Any) -> None: ...


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _wait_for_sync(stop_event: threading.Event, has_synced: Callable[[], bool]) -> bool:
    while not has_synced():
        if stop_event.wait(_SYNC_POLL_INTERVAL):
            return False
    return True


class Server:
    """Scrapes metrics periodically and serves them through an API server."""

    def __init__(
        self,
        nodes: Controller | None,
        pods: Controller | None,
        apiserver: APIServer | None,
        storage: MetricsStorage,
        scraper: Scraper,
        resolution: timedelta,
    ) -> None:
        self.nodes = nodes
        self.pods = pods
        self.apiserver = apiserver
        self.storage = storage
        self.scraper = scraper
        self.resolution = resolution
        self._tick_lock = threading.Lock()
        self._tick_last_start: datetime | None = None

    def run_until(self, stop_event: threading.Event) -> Any:
        """Start informers and the scrape loop, then serve until ``stop_event``."""
        for controller in (self.nodes, self.pods):
            threading.Thread(target=controller.run, args=(stop_event,), daemon=True).start()

        if not _wait_for_sync(stop_event, self.nodes.has_synced):
            return None
        if not _wait_for_sync(stop_event, self.pods.has_synced):
            return None

        scrape_stop = threading.Event()
        scrape_thread = threading.Thread(
            target=self._run_scrape, args=(scrape_stop,), daemon=True
        )
        scrape_thread.start()
        try:
            return self.apiserver.run(stop_event)
        finally:
            scrape_stop.set()

    def _run_scrape(self, stop_event: threading.Event) -> None:
        interval = self.resolution.total_seconds()
        next_tick = time.monotonic() + interval
        self.tick(_now())
        while not stop_event.wait(max(0.0, next_tick - time.monotonic())):
            self.tick(_now())
            next_tick += interval
            if next_tick < time.monotonic():
                # Missed ticks are dropped rather than run back to back.
                next_tick = time.monotonic() + interval

    def tick(self, start_time: datetime) -> None:
        """Scrape once, store the result and record how long it took."""
        with self._tick_lock:
            self._tick_last_start = start_time

        logger.debug("Scraping metrics")
        data = self.scraper.scrape(self.resolution)

        logger.debug("Storing metrics")
        self.storage.store(data)

        collect_time = _now() - start_time
        _tick_duration.observe(collect_time.total_seconds())
        logger.debug("Scraping cycle complete")

    def register_probes(self, waiter: CacheSyncWaiter) -> None:
        """Install readiness, liveness and health checks on the API server."""
        self.apiserver.add_readyz_checks(self.probe_metric_storage_ready("metric-storage-ready"))
        self.apiserver.add_readyz_checks(
            self.probe_metric_cache_has_synced("metric-informer-sync")
        )
        self.apiserver.add_livez_checks(
            0, self.probe_metric_collection_timely("metric-collection-timely")
        )
        self.apiserver.add_health_checks(
            metadata_informer_sync_healthz("metadata-informer-sync", waiter)
        )

    def probe_metric_collection_timely(self, name: str) -> NamedCheck:
        """Fail when the last tick started longer ago than 1.5 resolutions."""

        def check(_request: Any) -> None:
            with self._tick_lock:
                last_start = self._tick_last_start
            if last_start is None:
                return
            max_wait = self.resolution * 1.5
            waited = _now() - last_start
            if waited > max_wait:
                err = HealthCheckError("metric collection didn't finish on time")
                logger.info(
                    "Failed probe %s: %s (duration=%s, maxDuration=%s)",
                    name,
                    err,
                    waited,
                    max_wait,
                )
                raise err

        return NamedCheck(name, check)

    def probe_metric_storage_ready(self, name: str) -> NamedCheck:
        """Fail while storage has no metrics to serve."""

        def check(_request: Any) -> None:
            if not self.storage.ready():
                err = HealthCheckError("no metrics to serve")
                logger.info("Failed probe %s: %s", name, err)
                raise err

        return NamedCheck(name, check)

    def probe_metric_cache_has_synced(self, name: str) -> NamedCheck:
        """Fail while the node or pod informer cache has not synced."""

        def check(_request: Any) -> None:
            if not self.nodes.has_synced():
                err = HealthCheckError("cache for node informer has not synced")
                logger.info("Failed probe %s: %s", name, err)
                raise err
            if not self.pods.has_synced():
                err = HealthCheckError("cache for pod informer has not synced")
                logger.info("Failed probe %s: %s", name, err)
                raise err

        return NamedCheck(name, check)