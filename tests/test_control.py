"""
Unit tests for the control channel.
"""
import pytest

from offline_worker.cache.core import Request, Response
from offline_worker.cache.store import InMemoryCacheStore
from offline_worker.control import (
    ClearCache,
    ControlChannel,
    GetVersion,
    SkipWaiting,
    parse_message,
)
from offline_worker.exceptions import InvalidControlMessage, StoreUnavailableError
from offline_worker.lifecycle import LifecycleManager, PartitionNaming, PrecacheManifest

from conftest import ORIGIN, url


@pytest.fixture
def lifecycle(store, network):
    return LifecycleManager(
        store=store,
        network=network,
        naming=PartitionNaming("doit", "v3"),
        manifest=PrecacheManifest(),
        origin=ORIGIN,
    )


@pytest.fixture
def channel(store, lifecycle):
    return ControlChannel(store, lifecycle)


class Port:
    """Collects replies."""

    def __init__(self):
        self.replies = []

    def __call__(self, reply):
        self.replies.append(reply)


def test_parse_message():
    assert parse_message({"type": "SKIP_WAITING"}) == SkipWaiting()
    assert parse_message({"type": "GET_VERSION"}) == GetVersion()
    assert parse_message({"type": "CLEAR_CACHE"}) == ClearCache()


@pytest.mark.parametrize("data", [None, "GET_VERSION", {}, {"type": "RELOAD"}])
def test_parse_rejects_unknown_messages(data):
    with pytest.raises(InvalidControlMessage):
        parse_message(data)


def test_get_version_replies_on_port(channel):
    port = Port()
    reply = channel.dispatch({"type": "GET_VERSION"}, port)
    assert reply == {"version": "doit-cache-v3"}
    assert port.replies == [{"version": "doit-cache-v3"}]


def test_skip_waiting_has_no_reply(channel, lifecycle):
    port = Port()
    assert channel.dispatch({"type": "SKIP_WAITING"}, port) is None
    assert port.replies == []
    assert lifecycle.skip_waiting_requested


def test_unknown_message_is_ignored(channel):
    port = Port()
    assert channel.dispatch({"type": "RELOAD"}, port) is None
    assert port.replies == []


def test_clear_cache_deletes_every_reserved_partition(channel, store):
    handle = store.open("doit-static-v3")
    store.put(handle, Request(url=url("/doit/")).key, Response(200, b"shell"))
    for name in ("doit-dynamic-v3", "doit-static-v2", "doit-user-settings"):
        store.open(name)
    port = Port()

    reply = channel.dispatch({"type": "CLEAR_CACHE"}, port)

    assert reply == {"success": True}
    assert port.replies == [{"success": True}]
    assert store.list_partitions() == {"doit-user-settings"}


def test_clear_cache_then_get_version(channel):
    channel.dispatch({"type": "CLEAR_CACHE"})
    assert channel.dispatch({"type": "GET_VERSION"}) == {"version": "doit-cache-v3"}


def test_clear_cache_reports_failure(network):
    class LockedStore(InMemoryCacheStore):
        def delete_partition(self, name):
            raise StoreUnavailableError("delete_partition", "database is locked")

    store = LockedStore()
    store.open("doit-static-v3")
    lifecycle = LifecycleManager(
        store, network, PartitionNaming("doit", "v3"), PrecacheManifest(), ORIGIN
    )

    reply = ControlChannel(store, lifecycle).dispatch({"type": "CLEAR_CACHE"})

    assert reply["success"] is False
    assert "database is locked" in reply["error"]


def test_clear_cache_removes_current_partitions_with_any_generation_id(network):
    store = InMemoryCacheStore()
    lifecycle = LifecycleManager(
        store, network, PartitionNaming("doit", "2024-10"), PrecacheManifest(), ORIGIN
    )
    lifecycle.install().result(timeout=5)
    assert store.list_partitions() == {"doit-static-2024-10", "doit-dynamic-2024-10"}

    reply = ControlChannel(store, lifecycle).dispatch({"type": "CLEAR_CACHE"})

    assert reply == {"success": True}
    assert store.list_partitions() == set()
    lifecycle.shutdown()
