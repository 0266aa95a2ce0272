"""
Event forwarding to third-party analytics services.

Every admitted event is handed to each registered forwarder in addition to
the primary delivery path. Forwarders are isolated from one another and from
the primary queue: a failing forwarder is logged and skipped.

Built-in forwarders buffer events in ``forward()`` and POST them on
``flush()`` (best-effort, with a small retry budget).
"""

from __future__ import annotations

import asyncio
from typing import Any, Callable, Dict, List, Optional, Protocol, runtime_checkable

import httpx
from loguru import logger

from .models import Event


@runtime_checkable
class Forwarder(Protocol):
    """Anything with a ``name`` and a synchronous ``forward(event)``.

    ``flush()`` and ``shutdown()`` coroutines are optional.
    """

    name: str

    def forward(self, event: Event) -> None: ...


class ForwardingManager:
    def __init__(self) -> None:
        self._forwarders: Dict[str, Forwarder] = {}

    def add(self, forwarder: Forwarder) -> Callable[[], None]:
        """Register (or replace by name). Returns a disposer."""
        if forwarder.name in self._forwarders:
            logger.debug(f"Replacing forwarder {forwarder.name!r}")
        self._forwarders[forwarder.name] = forwarder

        def dispose() -> None:
            if self._forwarders.get(forwarder.name) is forwarder:
                del self._forwarders[forwarder.name]

        return dispose

    def remove(self, name: str) -> None:
        self._forwarders.pop(name, None)

    def get_forwarders(self) -> List[Forwarder]:
        return list(self._forwarders.values())

    def forward(self, event: Event) -> None:
        for forwarder in list(self._forwarders.values()):
            try:
                forwarder.forward(event)
            except Exception as exc:
                logger.debug(
                    f"Forwarder {forwarder.name!r} failed (ignored): {type(exc).__name__}: {exc}"
                )

    async def flush(self) -> None:
        await self._fan_out("flush")

    async def shutdown(self) -> None:
        await self._fan_out("shutdown")

    async def _fan_out(self, method: str) -> None:
        for forwarder in list(self._forwarders.values()):
            fn = getattr(forwarder, method, None)
            if fn is None:
                continue
            try:
                result = fn()
                if asyncio.iscoroutine(result):
                    await result
            except Exception as exc:
                logger.debug(
                    f"Forwarder {forwarder.name!r} {method} failed (ignored): "
                    f"{type(exc).__name__}: {exc}"
                )

    def clear(self) -> None:
        self._forwarders.clear()

    def __len__(self) -> int:
        return len(self._forwarders)


class HttpForwarder:
    """Buffers events and POSTs them as one JSON document on ``flush()``."""

    name = "http"

    def __init__(
        self,
        url: str,
        *,
        http: Optional[httpx.AsyncClient] = None,
        timeout: float = 5.0,
        max_retries: int = 3,
        backoff_base: float = 0.5,
    ):
        self.url = url
        self._http = http
        self._owns_http = http is None
        self._timeout = timeout
        self._max_retries = max(1, max_retries)
        self._backoff_base = backoff_base
        self._buffer: List[Event] = []

    @property
    def buffered(self) -> int:
        return len(self._buffer)

    def forward(self, event: Event) -> None:
        if self.accepts(event):
            self._buffer.append(event)

    def accepts(self, event: Event) -> bool:
        return True

    def build_payload(self, events: List[Event]) -> Dict[str, Any]:
        return {"events": [e.to_wire() for e in events]}

    def headers(self) -> Dict[str, str]:
        return {}

    def auth(self) -> Optional[httpx.Auth]:
        return None

    async def flush(self) -> bool:
        if not self._buffer:
            return True
        events, self._buffer = self._buffer, []
        if self._http is None:
            self._http = httpx.AsyncClient(timeout=self._timeout)

        payload = self.build_payload(events)
        for attempt in range(self._max_retries):
            try:
                kwargs: Dict[str, Any] = {"json": payload, "headers": self.headers()}
                auth = self.auth()
                if auth is not None:
                    kwargs["auth"] = auth
                resp = await self._http.post(self.url, **kwargs)
                if resp.status_code < 300:
                    logger.debug(f"{self.name}: forwarded {len(events)} events")
                    return True
                if resp.status_code < 500:
                    logger.warning(f"{self.name}: rejected with HTTP {resp.status_code}")
                    return False
                logger.debug(f"{self.name}: HTTP {resp.status_code} (attempt {attempt + 1})")
            except Exception as exc:
                logger.debug(
                    f"{self.name}: send failed (attempt {attempt + 1}): {type(exc).__name__}: {exc}"
                )
            if attempt < self._max_retries - 1:
                await asyncio.sleep(self._backoff_base * (2**attempt))

        logger.warning(f"{self.name}: dropping {len(events)} events after {self._max_retries} attempts")
        return False

    async def shutdown(self) -> None:
        await self.flush()
        if self._owns_http and self._http is not None:
            await self._http.aclose()
            self._http = None


class WebhookForwarder(HttpForwarder):
    """Generic JSON webhook: ``{"events": [...]}`` in the ingest wire format."""

    name = "webhook"

    def __init__(self, url: str, *, headers: Optional[Dict[str, str]] = None, **kwargs: Any):
        super().__init__(url, **kwargs)
        self._headers = dict(headers or {})

    def headers(self) -> Dict[str, str]:
        return dict(self._headers)


class SegmentForwarder(HttpForwarder):
    """Segment HTTP tracking API (``/v1/batch``)."""

    name = "segment"

    def __init__(self, write_key: str, *, host: str = "https://api.segment.io", **kwargs: Any):
        super().__init__(f"{host.rstrip('/')}/v1/batch", **kwargs)
        self._write_key = write_key

    def auth(self) -> Optional[httpx.Auth]:
        return httpx.BasicAuth(self._write_key, "")

    def accepts(self, event: Event) -> bool:
        return segment_message(event) is not None

    def build_payload(self, events: List[Event]) -> Dict[str, Any]:
        return {"batch": [m for m in (segment_message(e) for e in events) if m is not None]}


class PostHogForwarder(HttpForwarder):
    """PostHog batch capture API (``/batch/``)."""

    name = "posthog"

    def __init__(self, api_key: str, *, host: str = "https://us.i.posthog.com", **kwargs: Any):
        super().__init__(f"{host.rstrip('/')}/batch/", **kwargs)
        self._api_key = api_key

    def accepts(self, event: Event) -> bool:
        return posthog_message(event) is not None

    def build_payload(self, events: List[Event]) -> Dict[str, Any]:
        batch = [m for m in (posthog_message(e) for e in events) if m is not None]
        return {"api_key": self._api_key, "batch": batch}


# ---------- vendor mappings ----------


def segment_message(event: Event) -> Optional[Dict[str, Any]]:
    base: Dict[str, Any] = {
        "anonymousId": event.anonymous_id,
        "timestamp": event.timestamp.isoformat(),
    }
    if event.user_id:
        base["userId"] = event.user_id

    if event.type == "track" and event.event:
        return {**base, "type": "track", "event": event.event, "properties": event.properties or {}}
    if event.type == "page":
        return {**base, "type": "page", "name": event.event, "properties": event.properties or {}}
    if event.type == "identify" and event.user_id:
        return {**base, "type": "identify", "traits": event.traits or {}}
    if event.type == "alias" and event.user_id:
        previous = (event.properties or {}).get("previousId")
        return {**base, "type": "alias", "previousId": previous}
    if event.type == "group" and event.group_id:
        return {**base, "type": "group", "groupId": event.group_id, "traits": event.group_traits or {}}
    if event.type in ("exception", "message"):
        exc = event.exception
        return {
            **base,
            "type": "track",
            "event": "Exception",
            "properties": {
                "type": exc.type if exc else None,
                "value": exc.message if exc else None,
                "level": event.level,
            },
        }
    return None


def posthog_message(event: Event) -> Optional[Dict[str, Any]]:
    base: Dict[str, Any] = {
        "distinct_id": event.distinct_id,
        "timestamp": event.timestamp.isoformat(),
    }
    props = dict(event.properties or {})

    if event.type == "page":
        props.update({"$current_url": event.url, "$pathname": event.path})
        return {**base, "event": "$pageview", "properties": props}
    if event.type == "track" and event.event:
        return {**base, "event": event.event, "properties": props}
    if event.type == "identify" and event.user_id:
        return {**base, "event": "$identify", "properties": {"$set": event.traits or {}}}
    if event.type == "alias" and event.user_id:
        previous = props.get("previousId")
        return {
            **base,
            "distinct_id": previous or event.anonymous_id,
            "event": "$create_alias",
            "properties": {"alias": event.user_id},
        }
    if event.type == "group" and event.group_id:
        return {
            **base,
            "event": "$groupidentify",
            "properties": {
                "$group_type": "company",
                "$group_key": event.group_id,
                "$group_set": event.group_traits or {},
            },
        }
    if event.type in ("exception", "message"):
        exc = event.exception
        return {
            **base,
            "event": "$exception",
            "properties": {
                "$exception_type": exc.type if exc else None,
                "$exception_message": exc.message if exc else None,
                "$exception_level": event.level,
            },
        }
    return None


def create_forwarder(spec: Dict[str, Any], *, http: Optional[httpx.AsyncClient] = None) -> Forwarder:
    """Build a built-in forwarder from a config entry such as
    ``{"type": "segment", "write_key": "..."}``."""
    kind = spec.get("type")
    if kind == "webhook":
        return WebhookForwarder(spec["url"], headers=spec.get("headers"), http=http)
    if kind == "segment":
        return SegmentForwarder(
            spec["write_key"], host=spec.get("host", "https://api.segment.io"), http=http
        )
    if kind == "posthog":
        return PostHogForwarder(
            spec["api_key"], host=spec.get("host", "https://us.i.posthog.com"), http=http
        )
    raise ValueError(f"unknown forwarder type {kind!r}")
