"""
Unit tests for FeatureFlagCache.
"""

import asyncio

import pytest

from hl_client.flags import FeatureFlagCache, flag_enabled

pytestmark = pytest.mark.timeout(5)

ENDPOINT = "https://ingest.test"


@pytest.fixture
def cache(http):
    return FeatureFlagCache(http, ENDPOINT, lambda: "key-1", lambda: "anon-1")


@pytest.mark.parametrize(
    "value,enabled",
    [
        (True, True),
        ("true", True),
        ("variant-b", True),
        ("", True),
        (False, False),
        ("false", False),
        ("control", False),
        (None, False),
        (1, False),
        ({"a": 1}, False),
    ],
)
def test_flag_enabled(value, enabled):
    assert flag_enabled(value) is enabled


@pytest.mark.asyncio
async def test_load_fetches_with_identity(cache, ingest):
    ingest.flags = {"new-checkout": True, "theme": "dark"}
    assert await cache.load()
    assert cache.loaded

    req = ingest.flag_requests[0]
    assert req.url.params["distinctId"] == "anon-1"
    assert req.headers["authorization"] == "Bearer key-1"

    assert cache.get("theme") == "dark"
    assert cache.is_enabled("new-checkout")
    assert cache.get("missing") is None
    assert set(cache.all()) == {"new-checkout", "theme"}


@pytest.mark.asyncio
async def test_listeners_notified_on_first_load_and_changes(cache, ingest):
    seen = []
    cache.on_change("theme", seen.append)

    ingest.flags = {"theme": "dark"}
    await cache.load()
    await cache.load()  # unchanged, no notification
    ingest.flags = {"theme": "light"}
    await cache.load()
    ingest.flags = {}
    await cache.load()

    assert seen == ["dark", "light", None]


@pytest.mark.asyncio
async def test_disposer_unsubscribes(cache, ingest):
    seen = []
    dispose = cache.on_change("a", seen.append)
    assert cache.listener_count == 1
    dispose()
    dispose()
    assert cache.listener_count == 0

    ingest.flags = {"a": True}
    await cache.load()
    assert seen == []


@pytest.mark.asyncio
async def test_failing_listener_does_not_block_others(cache, ingest):
    seen = []

    def broken(value):
        raise RuntimeError("listener bug")

    cache.on_change("a", broken)
    cache.on_change("a", seen.append)
    ingest.flags = {"a": "on"}
    assert await cache.load()
    assert seen == ["on"]


@pytest.mark.asyncio
async def test_failed_fetch_keeps_cache(cache, ingest):
    ingest.flags = {"a": True}
    await cache.load()

    ingest.flag_status = 500
    ingest.flags = {}
    assert await cache.load() is False
    assert cache.get("a") is True


@pytest.mark.asyncio
async def test_ttl_staleness(http, ingest):
    cache = FeatureFlagCache(http, ENDPOINT, lambda: "k", lambda: "d", ttl_ms=10)
    assert not cache.is_stale()
    await cache.load()
    assert not cache.is_stale()
    await asyncio.sleep(0.03)
    assert cache.is_stale()


def test_no_ttl_never_stale(cache):
    assert not cache.is_stale()


@pytest.mark.asyncio
async def test_clear(cache, ingest):
    ingest.flags = {"a": True}
    await cache.load()
    cache.on_change("a", lambda v: None)
    cache.clear()
    assert cache.all() == {}
    assert cache.listener_count == 0
    assert not cache.loaded
