"""
Unit tests for ClientConfig (pydantic-settings).
"""

import pytest
from pydantic import ValidationError

from hl_client.config import DEFAULT_ENDPOINT, ClientConfig, get_config


def test_defaults():
    cfg = ClientConfig()
    assert cfg.api_key is None
    assert cfg.endpoint == DEFAULT_ENDPOINT
    assert cfg.batch_size == 10
    assert cfg.flush_interval == 5000
    assert cfg.sample_rate == 1.0
    assert cfg.max_retries == 3
    assert cfg.retry_base_delay == 1000
    assert cfg.realtime_interval == 5000
    assert cfg.forwarders == []


def test_reads_hl_prefixed_env(monkeypatch):
    monkeypatch.setenv("HL_API_KEY", "hl_env")
    monkeypatch.setenv("HL_BATCH_SIZE", "25")
    monkeypatch.setenv("HL_TAGS", '{"svc": "worker"}')

    cfg = ClientConfig()
    assert cfg.api_key == "hl_env"
    assert cfg.batch_size == 25
    assert cfg.tags == {"svc": "worker"}


def test_get_config_is_cached(monkeypatch):
    monkeypatch.setenv("HL_API_KEY", "first")
    assert get_config() is get_config()
    monkeypatch.setenv("HL_API_KEY", "second")
    assert get_config().api_key == "first"


@pytest.mark.parametrize(
    "field,value",
    [("batch_size", 0), ("sample_rate", 1.5), ("sample_rate", -0.1), ("persistence", "redis")],
)
def test_invalid_values_rejected(field, value):
    with pytest.raises(ValidationError):
        ClientConfig(**{field: value})


def test_assignment_is_validated():
    cfg = ClientConfig(api_key="a")
    cfg.api_key = "b"
    assert cfg.api_key == "b"
    with pytest.raises(ValidationError):
        cfg.batch_size = -1
