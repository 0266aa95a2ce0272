"""
Unit tests for RetryPolicy and error classification.
"""

import httpx
import pytest

from hl_client.errors import (
    DeliveryError,
    RejectionError,
    UnknownEntityError,
    ValidationError,
    classify_status,
    map_http_error,
)
from hl_client.policy import RetryPolicy, default_retry_classifier


def test_default_schedule_doubles_from_one_second():
    rp = RetryPolicy()
    assert [rp.next_backoff_ms(i) for i in range(3)] == [1000, 2000, 4000]
    assert rp.should_retry(2)
    assert not rp.should_retry(3)


def test_backoff_capped():
    rp = RetryPolicy(initial_backoff_ms=50, max_backoff_ms=200)
    vals = [rp.next_backoff_ms(i) for i in range(6)]
    assert vals[:3] == [50, 100, 200]
    assert all(v <= 200 for v in vals)


def test_backoff_with_jitter():
    """With jitter, values should be 50-100% of calculated."""
    rp = RetryPolicy(initial_backoff_ms=100, jitter=True)
    vals = [rp.next_backoff_ms(0) for _ in range(20)]
    assert all(50 <= v <= 100 for v in vals)


def test_default_retry_classifier():
    assert default_retry_classifier(DeliveryError("HTTP 503", 503))
    assert default_retry_classifier(httpx.ConnectError("refused"))
    assert default_retry_classifier(TimeoutError("socket timeout"))
    assert not default_retry_classifier(RejectionError("HTTP 400", 400))
    assert not default_retry_classifier(ValueError("invalid argument"))


@pytest.mark.parametrize(
    "status,outcome",
    [(200, "ok"), (204, "ok"), (400, "reject"), (404, "reject"), (500, "retry"), (503, "retry")],
)
def test_classify_status(status, outcome):
    assert classify_status(status) == outcome


def test_map_http_error():
    assert isinstance(map_http_error(httpx.Response(422)), RejectionError)
    err = map_http_error(httpx.Response(502))
    assert isinstance(err, DeliveryError) and err.status_code == 502
    assert "timeout" in str(map_http_error(httpx.ReadTimeout("slow")))
    assert "network error" in str(map_http_error(httpx.ConnectError("refused")))

    original = ValidationError("api_key is required")
    assert map_http_error(original) is original


def test_unknown_entity_message():
    assert str(UnknownEntityError("Widget")) == "Unknown entity type: Widget"
