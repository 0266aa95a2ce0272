"""
Pytest configuration and fixtures for hl_client.

HTTP is stubbed with httpx.MockTransport; every request lands in
``ingest.requests`` and POST /e bodies are decoded into ``ingest.batches``.
"""

import asyncio
import json
import os
import sys
from typing import Any, Dict, List

import httpx
import pytest
from loguru import logger

from hl_client.client import HeadlessClient
from hl_client.config import get_config
from hl_client.storage import MemoryStorage

# Set policy *before* pytest-asyncio creates any loops
if sys.platform.startswith("win"):
    asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())

ENDPOINT = "https://ingest.test"
API_KEY = "hl_test_key"


class MockIngest:
    """Fake ingest + flags service.

    ``statuses`` is consumed one entry per POST /e; an entry may be an int
    status code or an exception to raise. Once empty every POST returns 200.
    """

    def __init__(self) -> None:
        self.requests: List[httpx.Request] = []
        self.statuses: List[Any] = []
        self.flags: Dict[str, Any] = {}
        self.flag_status = 200

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.path.endswith("/flags"):
            return httpx.Response(self.flag_status, json={"flags": self.flags})
        status = self.statuses.pop(0) if self.statuses else 200
        if isinstance(status, Exception):
            raise status
        return httpx.Response(status, json={"ok": status < 300})

    @property
    def posts(self) -> List[httpx.Request]:
        return [r for r in self.requests if r.method == "POST" and r.url.path.endswith("/e")]

    @property
    def batches(self) -> List[List[Dict[str, Any]]]:
        return [json.loads(r.content)["events"] for r in self.posts]

    @property
    def flag_requests(self) -> List[httpx.Request]:
        return [r for r in self.requests if r.url.path.endswith("/flags")]


class FakeSleep:
    """Records requested delays and yields control without waiting."""

    def __init__(self) -> None:
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        await asyncio.sleep(0)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep HL_* variables from the developer's shell out of tests."""
    for key in list(os.environ):
        if key.startswith("HL_"):
            monkeypatch.delenv(key, raising=False)
    get_config.cache_clear()
    yield
    get_config.cache_clear()


@pytest.fixture
def ingest():
    return MockIngest()


@pytest.fixture
async def http(ingest):
    client = httpx.AsyncClient(transport=httpx.MockTransport(ingest))
    yield client
    await client.aclose()


@pytest.fixture
def fake_sleep():
    return FakeSleep()


@pytest.fixture
def storage():
    return MemoryStorage()


@pytest.fixture
def base_config() -> Dict[str, Any]:
    return {"api_key": API_KEY, "endpoint": ENDPOINT, "persistence": "memory"}


@pytest.fixture
def make_client(http, storage, fake_sleep, base_config):
    """Factory for uninitialized clients wired to the mock transport."""
    def factory(**deps: Any) -> HeadlessClient:
        deps.setdefault("storage", storage)
        deps.setdefault("http", http)
        deps.setdefault("sleep", fake_sleep)
        hl = HeadlessClient(dict(base_config), **deps)
        return hl

    return factory


@pytest.fixture
async def client(make_client):
    hl = make_client()
    await hl.init()
    yield hl
    await hl.shutdown()


@pytest.fixture
def log_messages():
    """Capture loguru output as a list of "LEVEL message" strings."""
    messages: List[str] = []
    handler_id = logger.add(lambda m: messages.append(m.rstrip("\n")), format="{level} {message}")
    yield messages
    logger.remove(handler_id)
