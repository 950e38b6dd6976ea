import threading

import pytest

from kubemetrics.health import (
    HealthCheckError,
    MetadataInformerSync,
    NamedCheck,
    metadata_informer_sync_healthz,
)


class FakeWaiter:
    def __init__(self, result):
        self.result = result
        self.stop_events = []

    def wait_for_cache_sync(self, stop_event):
        self.stop_events.append(stop_event)
        return dict(self.result)


def test_all_synced_passes_and_uses_already_set_stop_event():
    waiter = FakeWaiter({"pods": True, "nodes": True})
    check = metadata_informer_sync_healthz("metadata-informer-sync", waiter)
    assert check.check(None) is None
    assert len(waiter.stop_events) == 1
    assert waiter.stop_events[0].is_set()


def test_not_started_informers_fail_with_count_and_names():
    waiter = FakeWaiter({"pods": False, "nodes": True, "services": False})
    check = metadata_informer_sync_healthz("metadata-informer-sync", waiter)
    with pytest.raises(HealthCheckError) as info:
        check.check(None)
    message = str(info.value)
    assert message.startswith("2 informers not started yet")
    assert "pods" in message
    assert "services" in message
    assert "nodes" not in message


def test_empty_waiter_passes():
    check = MetadataInformerSync("empty", FakeWaiter({}))
    assert check.check(None) is None


def test_metadata_informer_sync_name():
    check = metadata_informer_sync_healthz("metadata-informer-sync", FakeWaiter({}))
    assert check.name == "metadata-informer-sync"


def test_named_check_passes_request_and_keeps_name():
    seen = []
    check = NamedCheck("probe", seen.append)
    check.check("request")
    assert check.name == "probe"
    assert seen == ["request"]


def test_named_check_propagates_failure():
    def fail(_request):
        raise HealthCheckError("no metrics to serve")

    check = NamedCheck("metric-storage-ready", fail)
    with pytest.raises(HealthCheckError, match="no metrics to serve"):
        check.check(None)


def test_check_is_repeatable_with_fresh_stop_events():
    waiter = FakeWaiter({"pods": True})
    check = metadata_informer_sync_healthz("sync", waiter)
    check.check(None)
    check.check(None)
    assert len(waiter.stop_events) == 2
    assert waiter.stop_events[0] is not waiter.stop_events[1]
    assert all(isinstance(e, type(threading.Event())) and e.is_set() for e in waiter.stop_events)