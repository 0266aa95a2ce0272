"""
Unit tests for client pipeline metrics (light sanity checks).
"""

import pytest
from prometheus_client import REGISTRY

from hl_client.metrics import metrics_registry


def sample(name, labels):
    return REGISTRY.get_sample_value(name, labels) or 0.0


def test_registry_exposes_collectors():
    assert metrics_registry.events_enqueued_total is not None
    assert metrics_registry.delivery_latency_ms is not None


@pytest.mark.asyncio
async def test_client_activity_updates_counters(client, ingest):
    enqueued = sample("hl_events_enqueued_total", {"type": "track"})
    ok = sample("hl_delivery_attempts_total", {"outcome": "ok"})
    rejected = sample("hl_events_dropped_total", {"reason": "rejected"})
    observed = sample("hl_delivery_latency_ms_count", {})

    client.track("a")
    client.track("b")
    await client.flush()
    ingest.statuses = [400]
    client.track("c")
    await client.flush()

    assert sample("hl_events_enqueued_total", {"type": "track"}) == enqueued + 3
    assert sample("hl_delivery_attempts_total", {"outcome": "ok"}) == ok + 1
    assert sample("hl_events_dropped_total", {"reason": "rejected"}) == rejected + 1
    assert sample("hl_delivery_latency_ms_count", {}) == observed + 2
