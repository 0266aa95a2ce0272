"""
headless.ly client: analytics, errors, feature flags and realtime polling
behind one outbound delivery path.

Usage:

    async with create_client({"api_key": "hl_xxx"}) as hl:
        hl.track("signup", {"plan": "pro"})
        hl.identify("user_42")
        try:
            risky()
        except Exception as exc:
            hl.capture_exception(exc)

Telemetry calls are synchronous and never raise because of network state;
they enqueue and return. Delivery happens on background tasks owned by the
client, which ``flush()`` and ``shutdown()`` await.
"""

from __future__ import annotations

import asyncio
import platform
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Union
from urllib.parse import urlparse

import httpx
from loguru import logger
from pydantic import ValidationError as PydanticValidationError

from .breadcrumbs import BreadcrumbRing
from .capture import ErrorCapture
from .config import ClientConfig
from .delivery import DeliveryManager, ErrorHook
from .errors import ValidationError
from .flags import FeatureFlagCache, FlagListener, flag_enabled
from .forwarding import Forwarder, ForwardingManager, create_forwarder
from .identity import IdentityStore
from .metrics import EVENTS_DROPPED_TOTAL, EVENTS_ENQUEUED_TOTAL
from .models import Breadcrumb, Event, ExceptionPayload, FlagValue, Severity
from .policy import RetryPolicy
from .queue import EventQueue, QueueItem
from .realtime import EntityRegistry, EntitySource, Handler, RealtimeManager, Subscription
from .sampling import SamplingGate
from .storage import FileStorage, MemoryStorage, Storage
from .utils import event_id

ConfigLike = Union[ClientConfig, Dict[str, Any], None]


def default_user_agent() -> str:
    return f"hl_client (Python {platform.python_version()}; {platform.system()})"


class HeadlessClient:
    def __init__(
        self,
        config: ConfigLike = None,
        *,
        storage: Optional[Storage] = None,
        session_storage: Optional[Storage] = None,
        http: Optional[httpx.AsyncClient] = None,
        entities: Optional[EntityRegistry] = None,
        on_error: Optional[ErrorHook] = None,
        rng: Optional[Callable[[], float]] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._pending_config = config
        self._config: Optional[ClientConfig] = None
        self._endpoint: Optional[str] = None
        self._initialized = False
        self._opted_out = False
        self._tracking_flag = False
        self._pending_consent: Optional[bool] = None

        self._storage = storage
        self._session_storage = session_storage if session_storage is not None else MemoryStorage()
        self._http = http
        self._owns_http = http is None
        self._on_error = on_error
        self._rng = rng
        self._sleep = sleep

        self.identity = IdentityStore(storage, self._session_storage)
        self.breadcrumbs = BreadcrumbRing()
        self.errors = ErrorCapture(self.breadcrumbs)
        self.forwarding = ForwardingManager()
        self.entities = entities if entities is not None else EntityRegistry()
        self.realtime = RealtimeManager(self.entities)

        self._sampler = SamplingGate(1.0, rng)
        self._queue: Optional[EventQueue] = None
        self._delivery: Optional[DeliveryManager] = None
        self._flags: Optional[FeatureFlagCache] = None
        self._pending: Set[asyncio.Task] = set()

    # ---------- lifecycle ----------

    async def init(self, config: ConfigLike = None, **overrides: Any) -> "HeadlessClient":
        """Validate config, wire components, start the flush timer, load flags."""
        if self._initialized:
            logger.warning("hl_client: already initialized, ignoring init()")
            return self

        cfg = self._coerce_config(config if config is not None else self._pending_config, overrides)
        if not cfg.api_key:
            raise ValidationError("api_key is required")

        self._config = cfg
        self._endpoint = cfg.endpoint.rstrip("/")

        storage = self._storage
        if storage is None:
            storage = FileStorage(cfg.storage_path) if cfg.persistence == "file" else MemoryStorage()
        self.identity = IdentityStore(storage, self._session_storage)
        self.identity.init()
        if self._pending_consent is not None:
            # consent recorded before init() goes to the configured storage
            if self._pending_consent:
                self.identity.opt_in()
            else:
                self.identity.opt_out()
            self._pending_consent = None
        self._opted_out = self.identity.opted_out

        self._sampler = SamplingGate(cfg.sample_rate, self._rng)
        self.errors.set_tags(cfg.tags)
        self.realtime.default_interval_ms = cfg.realtime_interval

        if self._http is None:
            self._http = httpx.AsyncClient(timeout=cfg.timeout)
            self._owns_http = True

        self._queue = EventQueue(
            cfg.batch_size,
            cfg.flush_interval / 1000.0,
            max_size=cfg.max_queue_size,
            drop_callback=self._on_queue_drop,
        )
        self._delivery = DeliveryManager(
            self._http,
            self._endpoint,
            self._read_api_key,
            retry_policy=RetryPolicy(
                max_retries=cfg.max_retries, initial_backoff_ms=cfg.retry_base_delay
            ),
            on_error=self._on_error,
            sleep=self._sleep,
        )
        self._flags = FeatureFlagCache(
            self._http,
            self._endpoint,
            self._read_api_key,
            self.identity.get_distinct_id,
            ttl_ms=cfg.flags_ttl,
        )
        for spec in cfg.forwarders:
            self.forwarding.add(create_forwarder(spec, http=self._http))

        self._queue.start(self._flush_queue)
        self._initialized = True
        logger.info(f"hl_client initialized (endpoint={self._endpoint})")

        await self._flags.load()
        return self

    @staticmethod
    def _coerce_config(config: ConfigLike, overrides: Dict[str, Any]) -> ClientConfig:
        try:
            if isinstance(config, ClientConfig):
                if not overrides:
                    return config
                return ClientConfig(**{**config.model_dump(), **overrides})
            return ClientConfig(**{**(config or {}), **overrides})
        except PydanticValidationError as exc:
            raise ValidationError(str(exc)) from exc

    @property
    def initialized(self) -> bool:
        return self._initialized

    @property
    def config(self) -> Optional[ClientConfig]:
        return self._config

    @property
    def endpoint(self) -> Optional[str]:
        return self._endpoint

    async def flush(self) -> None:
        """Deliver everything queued so far (first attempt) and flush forwarders."""
        await self._await_pending()
        await self._flush_queue()
        await self.forwarding.flush()

    async def shutdown(self) -> None:
        """Stop timers and subscriptions, final flush, release the HTTP client."""
        if not self._initialized:
            # reset() may leave an owned HTTP client behind
            await self._release_http()
            return
        assert self._queue is not None and self._delivery is not None
        await self._queue.stop()
        self.realtime.shutdown()
        await self._await_pending()
        await self._flush_queue()
        await self._delivery.close()
        await self.forwarding.flush()
        await self.forwarding.shutdown()
        await self._release_http()
        self._initialized = False
        logger.info("hl_client shut down")

    async def _release_http(self) -> None:
        if self._owns_http and self._http is not None:
            await self._http.aclose()
            self._http = None

    async def __aenter__(self) -> "HeadlessClient":
        if not self._initialized:
            await self.init()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.shutdown()

    def reset(self) -> None:
        """Forget identity and local state; the next init() starts fresh."""
        self.identity.reset()
        self.errors.clear()
        self.breadcrumbs.clear()
        self._opted_out = False
        if self._flags is not None:
            self._flags.clear()
        if self._queue is not None:
            self._queue.clear()
            self._queue.cancel()
        if self._delivery is not None:
            self._delivery.cancel()
        self.forwarding.clear()
        self.realtime.shutdown()
        self._initialized = False
        logger.debug("hl_client reset")

    # ---------- analytics ----------

    def track(self, event: str, properties: Optional[Dict[str, Any]] = None) -> None:
        if not self._admit("track", sampled=True):
            return
        self._enqueue(self._event("track", event=event, properties=properties))
        self.add_breadcrumb(event, category="track", data=properties)

    def page(self, name: Optional[str] = None, properties: Optional[Dict[str, Any]] = None) -> None:
        if not self._admit("page", sampled=True):
            return
        ev = self._event("page", event=name, properties=properties)
        self._enqueue(ev)
        self.add_breadcrumb(name or ev.path or "", category="navigation")

    def identify(self, user_id: str, traits: Optional[Dict[str, Any]] = None) -> None:
        if not user_id:
            logger.warning("identify() called without a user id, ignoring")
            return
        if not self._admit("identify"):
            return
        self.identity.identify(user_id)
        user = dict(self.errors.user or {})
        user.update(traits or {})
        user["id"] = user_id
        self.errors.set_user(user)
        self._enqueue(self._event("identify", traits=traits))

    def alias(self, user_id: str, previous_id: Optional[str] = None) -> None:
        if not self._admit("alias"):
            return
        previous = previous_id or self.identity.anonymous_id
        self._enqueue(
            self._event("alias", user_id=user_id, properties={"previousId": previous})
        )

    def group(self, group_id: str, traits: Optional[Dict[str, Any]] = None) -> None:
        if not self._admit("group"):
            return
        self._enqueue(self._event("group", group_id=group_id, group_traits=traits))

    # ---------- errors ----------

    def capture_exception(
        self,
        error: Any,
        *,
        tags: Optional[Dict[str, str]] = None,
        extra: Optional[Dict[str, Any]] = None,
        stack: Optional[str] = None,
    ) -> str:
        """Queue an exception report. Returns its 32-char hex event id,
        or "" when the client is not accepting events."""
        if not self._admit("exception"):
            return ""
        payload = self.errors.exception_payload(error, tags=tags, extra=extra, stack=stack)
        return self._enqueue_report("exception", "error", payload)

    def capture_message(
        self,
        message: str,
        level: Severity = "info",
        *,
        tags: Optional[Dict[str, str]] = None,
        extra: Optional[Dict[str, Any]] = None,
    ) -> str:
        if not self._admit("message"):
            return ""
        payload = self.errors.message_payload(message, tags=tags, extra=extra)
        return self._enqueue_report("message", level, payload)

    def _enqueue_report(self, kind: str, level: Severity, payload: ExceptionPayload) -> str:
        eid = event_id()
        assert self._config is not None
        self._enqueue(
            self._event(
                kind,
                event_id=eid,
                level=level,
                exception=payload,
                release=self._config.release,
                environment=self._config.environment,
            )
        )
        logger.debug(f"Captured {kind} {eid}: {payload.message}")
        return eid

    # ---------- context ----------

    def set_user(self, user: Optional[Dict[str, Any]]) -> None:
        self.errors.set_user(user)
        if user and user.get("id") and self.identity.initialized:
            self.identity.identify(str(user["id"]))

    def set_tag(self, key: str, value: str) -> None:
        self.errors.set_tag(key, value)

    def set_tags(self, tags: Dict[str, str]) -> None:
        self.errors.set_tags(tags)

    def set_extra(self, key: str, value: Any) -> None:
        self.errors.set_extra(key, value)

    def add_breadcrumb(
        self,
        message: str,
        *,
        category: Optional[str] = None,
        level: Optional[Severity] = None,
        data: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.breadcrumbs.add(Breadcrumb(category=category, message=message, level=level, data=data))

    # ---------- feature flags ----------

    def get_feature_flag(self, key: str) -> Optional[FlagValue]:
        if self._flags is None:
            return None
        if self._flags.is_stale():
            self._spawn(self._flags.load())
        value = self._flags.get(key)
        if value is not None and not self._tracking_flag:
            self._tracking_flag = True
            try:
                self.track(
                    "$feature_flag_called",
                    {"$feature_flag": key, "$feature_flag_response": value},
                )
            finally:
                self._tracking_flag = False
        return value

    def is_feature_enabled(self, key: str) -> bool:
        return flag_enabled(self.get_feature_flag(key))

    def get_all_flags(self) -> Dict[str, FlagValue]:
        if self._flags is None:
            return {}
        return {k: f.value for k, f in self._flags.all().items()}

    async def reload_feature_flags(self) -> bool:
        if self._flags is None:
            return False
        return await self._flags.load()

    def on_flag_change(self, key: str, callback: FlagListener) -> Callable[[], None]:
        """Call ``callback(new_value)`` whenever a reload changes ``key``.
        Returns a disposer."""
        if self._flags is None:
            raise RuntimeError("init() must be called before on_flag_change()")
        return self._flags.on_change(key, callback)

    # ---------- consent ----------

    def opt_out(self) -> None:
        self._opted_out = True
        self.identity.opt_out()
        if not self._initialized:
            self._pending_consent = False

    def opt_in(self) -> None:
        self._opted_out = False
        self.identity.opt_in()
        if not self._initialized:
            self._pending_consent = True

    def has_opted_out(self) -> bool:
        return self._opted_out

    # ---------- identity ----------

    def get_distinct_id(self) -> str:
        return self.identity.get_distinct_id()

    def get_session_id(self) -> str:
        return self.identity.session_id

    # ---------- forwarding ----------

    def add_forwarder(self, forwarder: Forwarder) -> Callable[[], None]:
        return self.forwarding.add(forwarder)

    def remove_forwarder(self, name: str) -> None:
        self.forwarding.remove(name)

    def get_forwarders(self) -> List[Forwarder]:
        return self.forwarding.get_forwarders()

    # ---------- realtime / entities ----------

    def subscribe(
        self,
        entity_type: str,
        handler: Handler,
        *,
        id: Optional[str] = None,
        filter: Optional[Dict[str, Any]] = None,
        interval_ms: Optional[int] = None,
    ) -> Subscription:
        """Poll ``entity_type`` and push full snapshots to ``handler``.

        Raises UnknownEntityError for unregistered types.
        """
        return self.realtime.subscribe(
            entity_type, handler, id=id, filter=filter, interval_ms=interval_ms
        )

    def entity(self, entity_type: str) -> EntitySource:
        """CRUD source for ``entity_type``; raises UnknownEntityError."""
        return self.entities.resolve(entity_type)

    # ---------- queue ----------

    @property
    def queue_size(self) -> int:
        return self._queue.size if self._queue is not None else 0

    # ---------- internals ----------

    def _read_api_key(self) -> str:
        assert self._config is not None
        return self._config.api_key or ""

    def _admit(self, kind: str, *, sampled: bool = False) -> bool:
        if not self._initialized:
            logger.debug(f"hl_client not initialized, dropping {kind}")
            return False
        if self._opted_out:
            EVENTS_DROPPED_TOTAL.labels("opted_out").inc()
            return False
        if sampled and not self._sampler.admit():
            EVENTS_DROPPED_TOTAL.labels("sampled").inc()
            logger.debug(f"Sampled out {kind}")
            return False
        return True

    def _event(self, kind: str, **fields: Any) -> Event:
        assert self._config is not None
        url = self._config.url
        base: Dict[str, Any] = {
            "distinct_id": self.identity.get_distinct_id(),
            "anonymous_id": self.identity.anonymous_id,
            "user_id": self.identity.user_id,
            "session_id": self.identity.session_id,
            "url": url,
            "path": (urlparse(url).path or "/") if url else None,
            "user_agent": self._config.user_agent or default_user_agent(),
        }
        return Event(type=kind, **{**base, **fields})

    def _enqueue(self, event: Event) -> None:
        assert self._queue is not None
        EVENTS_ENQUEUED_TOTAL.labels(event.type).inc()
        due = self._queue.put(event)
        self.forwarding.forward(event)
        if due:
            self._send_due_batch()

    def _send_due_batch(self) -> None:
        """Hand exactly the events queued so far to delivery."""
        assert self._queue is not None and self._delivery is not None
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running event loop, batch waits for the next flush()")
            return
        self._spawn(self._delivery.send(self._queue.drain()))

    async def _flush_queue(self) -> None:
        if self._queue is None or self._delivery is None:
            return
        items = self._queue.drain()
        if items:
            await self._delivery.send(items)

    def _spawn(self, coro: Awaitable[Any]) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # no loop: events wait for the next explicit flush()
            if asyncio.iscoroutine(coro):
                coro.close()
            logger.debug("No running event loop, deferring background work")
            return
        task = loop.create_task(coro)
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _await_pending(self) -> None:
        current = asyncio.current_task()
        while True:
            tasks = [t for t in self._pending if t is not current]
            if not tasks:
                return
            await asyncio.gather(*tasks, return_exceptions=True)

    def _on_queue_drop(self, item: QueueItem) -> None:
        EVENTS_DROPPED_TOTAL.labels("queue_full").inc()


def create_client(config: ConfigLike = None, **deps: Any) -> HeadlessClient:
    """Build a client. Call ``await client.init()`` or use ``async with``."""
    return HeadlessClient(config, **deps)
