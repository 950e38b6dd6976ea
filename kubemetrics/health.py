"""Health checks served on the readyz, livez and healthz endpoints."""

from __future__ import annotations

import threading
from collections.abc import Callable, Hashable, Mapping
from typing import Any, Protocol


class HealthCheckError(Exception):
    """Raised by a health check that does not pass."""


class CacheSyncWaiter(Protocol):
    """Anything that reports, per informer, whether its cache has synced."""

    def wait_for_cache_sync(self, stop_event: threading.Event) -> Mapping[Hashable, bool]:
        """Wait until informers sync or ``stop_event`` is set; report each one."""


class NamedCheck:
    """A health check built from a name and a function that raises on failure."""

    def __init__(self, name: str, check: Callable[[Any], None]) -> None:
        self._name = name
        self._check = check

    @property
    def name(self) -> str:
        return self._name

    def check(self, request: Any) -> None:
        """Run the check; raises when it does not pass."""
        self._check(request)


class MetadataInformerSync:
    """Passes only when every informer of a cache-sync waiter has synced."""

    def __init__(self, name: str, cache_sync_waiter: CacheSyncWaiter) -> None:
        self._name = name
        self._waiter = cache_sync_waiter

    @property
    def name(self) -> str:
        return self._name

    def check(self, request: Any) -> None:
        # A stop event that is already set asks for the state right now.
        stop_event = threading.Event()
        stop_event.set()
        synced = self._waiter.wait_for_cache_sync(stop_event)
        not_started = [str(informer) for informer, started in synced.items() if not started]
        if not_started:
            raise HealthCheckError(
                f"{len(not_started)} informers not started yet: [{' '.join(not_started)}]"
            )


def metadata_informer_sync_healthz(
    name: str, cache_sync_waiter: CacheSyncWaiter
) -> MetadataInformerSync:
    """Return a check that passes only when all informers of the waiter synced."""
    return MetadataInformerSync(name, cache_sync_waiter)