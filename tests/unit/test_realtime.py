"""
Unit tests for polling subscriptions and the entity registry.
"""

import asyncio

import pytest

from hl_client.errors import UnknownEntityError
from hl_client.realtime import EntityRegistry, RealtimeManager

pytestmark = pytest.mark.timeout(5)


class FakeSource:
    def __init__(self):
        self.rows = {"c1": {"id": "c1", "name": "Acme"}, "c2": {"id": "c2", "name": "Globex"}}
        self.gets = []
        self.finds = []
        self.fail = False

    async def get(self, id):
        self.gets.append(id)
        if self.fail:
            raise ConnectionError("api down")
        return self.rows.get(id)

    async def find(self, filter=None):
        self.finds.append(filter)
        if self.fail:
            raise ConnectionError("api down")
        return [r for r in self.rows.values() if not filter or all(r.get(k) == v for k, v in filter.items())]


@pytest.fixture
def source():
    return FakeSource()


@pytest.fixture
def manager(source):
    mgr = RealtimeManager(EntityRegistry({"Contact": source}), default_interval_ms=10)
    yield mgr
    mgr.shutdown()


async def next_value(queue: asyncio.Queue):
    return await asyncio.wait_for(queue.get(), 1.0)


@pytest.mark.asyncio
async def test_subscribe_by_id_pushes_snapshots(manager, source):
    received = asyncio.Queue()
    sub = manager.subscribe("Contact", received.put_nowait, id="c1")

    assert await next_value(received) == {"id": "c1", "name": "Acme"}
    source.rows["c1"] = {"id": "c1", "name": "Acme Corp"}
    # keep reading until the change shows up
    while (await next_value(received))["name"] != "Acme Corp":
        pass
    assert sub.connected
    assert sub.data["name"] == "Acme Corp"


@pytest.mark.asyncio
async def test_subscribe_with_filter_uses_find(manager, source):
    received = asyncio.Queue()
    manager.subscribe("Contact", received.put_nowait, filter={"name": "Globex"})
    assert await next_value(received) == [{"id": "c2", "name": "Globex"}]
    assert source.finds[0] == {"name": "Globex"}
    assert source.gets == []


def test_unknown_entity_type_raises_synchronously(manager):
    with pytest.raises(UnknownEntityError, match="Unknown entity type: Widget"):
        manager.subscribe("Widget", lambda data: None)
    assert manager.subscription_count == 0


@pytest.mark.asyncio
async def test_unsubscribe_stops_handler(manager):
    received = asyncio.Queue()
    sub = manager.subscribe("Contact", received.put_nowait, id="c1")
    await next_value(received)

    sub.unsubscribe()
    assert not sub.active
    assert manager.subscription_count == 0
    while not received.empty():
        received.get_nowait()
    await asyncio.sleep(0.05)
    assert received.empty()


@pytest.mark.asyncio
async def test_fetch_failure_sets_error_and_recovers(manager, source):
    source.fail = True
    received = asyncio.Queue()
    sub = manager.subscribe("Contact", received.put_nowait, id="c1")
    await asyncio.sleep(0.03)
    assert not sub.connected
    assert isinstance(sub.error, ConnectionError)
    assert received.empty()

    source.fail = False
    await next_value(received)
    assert sub.connected
    assert sub.error is None


@pytest.mark.asyncio
async def test_update_retargets_subscription(manager, source):
    received = asyncio.Queue()
    sub = manager.subscribe("Contact", received.put_nowait, id="c1")
    await next_value(received)

    sub.update(id="c2")
    while not received.empty():
        received.get_nowait()
    assert (await next_value(received))["id"] == "c2"


@pytest.mark.asyncio
async def test_async_and_failing_handlers(manager):
    seen = []

    async def handler(data):
        seen.append(data)
        raise RuntimeError("handler bug")

    sub = manager.subscribe("Contact", handler, id="c1")
    await asyncio.sleep(0.05)
    assert len(seen) >= 2
    assert sub.connected


@pytest.mark.asyncio
async def test_shutdown_closes_all(manager):
    manager.subscribe("Contact", lambda d: None, id="c1")
    manager.subscribe("Contact", lambda d: None)
    assert manager.subscription_count == 2
    manager.shutdown()
    assert manager.subscription_count == 0


def test_registry_register_and_dispose(source):
    registry = EntityRegistry()
    dispose = registry.register("Deal", source)
    assert "Deal" in registry
    assert registry.resolve("Deal") is source
    dispose()
    assert registry.types == []
    with pytest.raises(UnknownEntityError):
        registry.resolve("Deal")
