"""
Client pipeline metrics in the Prometheus global REGISTRY.
Expose them with prometheus_client's HTTP server or your app's /metrics route.
"""

from prometheus_client import Counter, Histogram

EVENTS_ENQUEUED_TOTAL = Counter(
    "hl_events_enqueued_total",
    "Events admitted to the outbound queue",
    ["type"],
)

EVENTS_DROPPED_TOTAL = Counter(
    "hl_events_dropped_total",
    "Events dropped before or during delivery",
    ["reason"],  # sampled | opted_out | queue_full | rejected | retries_exhausted
)

DELIVERY_ATTEMPTS_TOTAL = Counter(
    "hl_delivery_attempts_total",
    "Batch POST attempts by outcome",
    ["outcome"],  # ok | retry | reject
)

DELIVERY_LATENCY_MS = Histogram(
    "hl_delivery_latency_ms",
    "Batch POST latency in milliseconds",
    buckets=[5, 10, 25, 50, 100, 250, 500, 1000, 2500, 5000, 10000, 30000],
)


class MetricsRegistry:
    """Structured access to the client metrics."""

    events_enqueued_total = EVENTS_ENQUEUED_TOTAL
    events_dropped_total = EVENTS_DROPPED_TOTAL
    delivery_attempts_total = DELIVERY_ATTEMPTS_TOTAL
    delivery_latency_ms = DELIVERY_LATENCY_MS


metrics_registry = MetricsRegistry()
