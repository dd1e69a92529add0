"""
Unit tests for the cache-first, network-first and stale-while-revalidate strategies.
"""
import threading

import pytest

from offline_worker.cache.core import (
    Decision,
    PartitionHandle,
    PartitionRole,
    Request,
    Response,
    Strategy,
)
from offline_worker.cache.store import InMemoryCacheStore
from offline_worker.cache.strategies import StrategyEngine
from offline_worker.exceptions import NetworkError, StoreUnavailableError

from conftest import url

STATIC = "doit-static-v3"
DYNAMIC = "doit-dynamic-v3"
PARTITIONS = {PartitionRole.STATIC: STATIC, PartitionRole.DYNAMIC: DYNAMIC}


@pytest.fixture
def engine(store, network):
    engine = StrategyEngine(store, network, PARTITIONS, root_url=url("/doit/"))
    yield engine
    engine.drain(timeout=5)
    engine.shutdown()


def cached(store, partition, target, body=b"cached"):
    handle = store.open(partition)
    store.put(handle, Request(url=target).key, Response(200, body))
    return handle


class BrokenStore(InMemoryCacheStore):
    """Store whose reads and writes all fail."""

    def match(self, handle, key):
        raise StoreUnavailableError("match", "disk I/O error")

    def put(self, handle, key, response):
        raise StoreUnavailableError("put", "quota exceeded")


# =============================================================================
# Cache first
# =============================================================================

class TestCacheFirst:

    def test_hit_never_touches_network(self, engine, store, network):
        target = url("/doit/logo.png")
        handle = cached(store, STATIC, target, b"png")

        response = engine.cache_first(Request(url=target), handle)

        assert response.body == b"png"
        assert network.calls == []

    def test_miss_fetches_and_stores(self, engine, store, network):
        target = url("/doit/logo.png")
        network.serve(target, b"png")
        handle = store.open(STATIC)

        response = engine.cache_first(Request(url=target), handle)

        assert response.body == b"png"
        assert store.match(handle, Request(url=target).key).response.body == b"png"

    def test_offline_miss_returns_503_and_writes_nothing(self, engine, store, network):
        target = url("/logo.png")
        network.offline = True
        handle = store.open(STATIC)

        response = engine.cache_first(Request(url=target), handle)

        assert response.status == 503
        assert response.text == "Resource not available offline"
        assert response.headers["Content-Type"] == "text/plain"
        assert store.keys(handle) == []

    def test_non_ok_response_is_returned_but_not_stored(self, engine, store, network):
        target = url("/doit/missing.png")
        handle = store.open(STATIC)

        response = engine.cache_first(Request(url=target), handle)

        assert response.status == 404
        assert store.keys(handle) == []

    def test_hit_in_other_current_partition(self, engine, store, network):
        target = url("/doit/sounds/rain.mp3")
        cached(store, STATIC, target, b"mp3")

        response = engine.cache_first(Request(url=target), store.open(DYNAMIC))

        assert response.body == b"mp3"
        assert network.calls == []


# =============================================================================
# Network first
# =============================================================================

class TestNetworkFirst:

    def test_success_is_returned_and_stored(self, engine, store, network):
        target = url("/doit/api/tasks")
        network.serve(target, b"fresh")
        handle = cached(store, DYNAMIC, target, b"old")

        response = engine.network_first(Request(url=target), handle)

        assert response.body == b"fresh"
        assert store.match(handle, Request(url=target).key).response.body == b"fresh"

    def test_offline_falls_back_to_store(self, engine, store, network):
        target = url("/doit/api/tasks")
        handle = cached(store, DYNAMIC, target, b"old")
        network.offline = True

        response = engine.network_first(Request(url=target), handle)

        assert response.body == b"old"

    def test_offline_navigation_falls_back_to_root_document(self, engine, store, network):
        cached(store, STATIC, url("/doit/"), b"<html>shell</html>")
        network.offline = True

        request = Request(url=url("/doit/tasks/42"), navigate=True)
        response = engine.network_first(request, store.open(DYNAMIC))

        assert response.body == b"<html>shell</html>"

    def test_offline_non_navigation_does_not_use_root_document(self, engine, store, network):
        cached(store, STATIC, url("/doit/"), b"<html>shell</html>")
        network.offline = True

        response = engine.network_first(Request(url=url("/doit/api/tasks")), store.open(DYNAMIC))

        assert response.status == 503
        assert response.text == "Offline"

    def test_offline_with_nothing_cached_returns_503(self, engine, store, network):
        network.offline = True

        request = Request(url=url("/doit/tasks"), navigate=True)
        response = engine.network_first(request, store.open(DYNAMIC))

        assert response.status == 503
        assert response.text == "Offline"

    def test_non_ok_response_is_not_stored(self, engine, store, network):
        target = url("/doit/api/tasks")
        network.serve(target, b"boom", status=500)
        handle = cached(store, DYNAMIC, target, b"old")

        response = engine.network_first(Request(url=target), handle)

        assert response.status == 500
        assert store.match(handle, Request(url=target).key).response.body == b"old"


# =============================================================================
# Stale while revalidate
# =============================================================================

class TestStaleWhileRevalidate:

    def test_hit_returns_cached_without_waiting(self, engine, store, network):
        target = url("/_next/data/page.json")
        handle = cached(store, DYNAMIC, target, b"stale")
        network.serve(target, b"fresh")
        gate = threading.Event()
        network.gates[target] = gate

        response = engine.stale_while_revalidate(Request(url=target), handle)

        # The refresh is still blocked on the gate
        assert response.body == b"stale"
        gate.set()
        assert engine.drain(timeout=5)
        assert store.match(handle, Request(url=target).key).response.body == b"fresh"

    def test_hit_with_failed_refresh_keeps_entry(self, engine, store, network):
        target = url("/_next/data/page.json")
        handle = cached(store, DYNAMIC, target, b"stale")
        network.offline = True

        response = engine.stale_while_revalidate(Request(url=target), handle)

        assert response.body == b"stale"
        assert engine.drain(timeout=5)
        assert store.match(handle, Request(url=target).key).response.body == b"stale"
        assert network.calls_to(target) == 1

    def test_miss_returns_network_response(self, engine, store, network):
        target = url("/_next/data/page.json")
        network.serve(target, b"fresh")
        handle = store.open(DYNAMIC)

        response = engine.stale_while_revalidate(Request(url=target), handle)

        assert response.body == b"fresh"
        assert engine.drain(timeout=5)
        assert store.match(handle, Request(url=target).key) is not None

    def test_miss_while_offline_raises_network_error(self, engine, store, network):
        network.offline = True

        with pytest.raises(NetworkError):
            engine.stale_while_revalidate(Request(url=url("/_next/data/page.json")), store.open(DYNAMIC))


# =============================================================================
# Dispatch, store failures, stats
# =============================================================================

def test_serve_dispatches_on_decision(engine, store, network):
    target = url("/doit/logo.png")
    cached(store, STATIC, target, b"png")

    response = engine.serve(Request(url=target), Decision(Strategy.CACHE_FIRST, PartitionRole.STATIC))

    assert response.body == b"png"
    assert network.calls == []


def test_serve_refuses_bypass(engine):
    with pytest.raises(ValueError):
        engine.serve(Request(url=url("/x"), method="POST"), Decision(Strategy.BYPASS))


def test_store_failure_is_a_miss(network):
    target = url("/doit/logo.png")
    network.serve(target, b"png")
    engine = StrategyEngine(BrokenStore(), network, PARTITIONS)

    response = engine.cache_first(Request(url=target), PartitionHandle(STATIC))

    assert response.body == b"png"
    assert engine.get_stats()["store_errors"] >= 2
    engine.shutdown()


def test_store_failure_offline_network_first_returns_503(network):
    network.offline = True
    engine = StrategyEngine(BrokenStore(), network, PARTITIONS)

    response = engine.network_first(Request(url=url("/doit/api")), PartitionHandle(DYNAMIC))

    assert response.status == 503
    engine.shutdown()


def test_stats(engine, store, network):
    target = url("/doit/logo.png")
    network.serve(target, b"png")
    handle = store.open(STATIC)

    engine.cache_first(Request(url=target), handle)
    engine.cache_first(Request(url=target), handle)

    stats = engine.get_stats()
    assert stats["hits"] == 1
    assert stats["misses"] == 1
    assert stats["network_responses"] == 1
    assert stats["hit_rate_percent"] == 50.0


def test_serving_does_not_create_partitions(network):
    network.offline = True
    store = InMemoryCacheStore()
    engine = StrategyEngine(store, network, PARTITIONS)

    engine.serve(Request(url=url("/doit/logo.png")), Decision(Strategy.CACHE_FIRST, PartitionRole.STATIC))
    engine.serve(Request(url=url("/doit/api")), Decision(Strategy.NETWORK_FIRST, PartitionRole.DYNAMIC))

    assert store.list_partitions() == set()
    engine.shutdown()


def test_network_response_creates_partition_on_write(engine, store, network):
    target = url("/doit/logo.png")
    network.serve(target, b"png")

    engine.serve(Request(url=target), Decision(Strategy.CACHE_FIRST, PartitionRole.STATIC))

    assert STATIC in store.list_partitions()
    assert DYNAMIC not in store.list_partitions()
