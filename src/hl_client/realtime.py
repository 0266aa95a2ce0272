"""
Interval-polled subscriptions to entity state.

Each subscription polls its entity source on its own asyncio task and pushes
the full snapshot (one entity for ``id``, a filtered collection otherwise) to
the handler. There is no diffing. Entity sources are whatever the schema layer
provides, as long as they expose async ``get(id)`` and ``find(filter)``.
"""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Dict, Optional, Protocol, Set, Union

from loguru import logger

from .errors import UnknownEntityError

Handler = Callable[[Any], Union[None, Awaitable[None]]]

_UNSET: Any = object()


class EntitySource(Protocol):
    async def get(self, id: str) -> Any: ...

    async def find(self, filter: Optional[Dict[str, Any]] = None) -> Any: ...


class EntityRegistry:
    """Entity type name -> source."""

    def __init__(self, sources: Optional[Dict[str, EntitySource]] = None):
        self._sources: Dict[str, EntitySource] = dict(sources or {})

    def register(self, entity_type: str, source: EntitySource) -> Callable[[], None]:
        self._sources[entity_type] = source

        def dispose() -> None:
            if self._sources.get(entity_type) is source:
                del self._sources[entity_type]

        return dispose

    def resolve(self, entity_type: str) -> EntitySource:
        try:
            return self._sources[entity_type]
        except KeyError:
            raise UnknownEntityError(entity_type) from None

    def __contains__(self, entity_type: object) -> bool:
        return entity_type in self._sources

    @property
    def types(self) -> list[str]:
        return list(self._sources)


class Subscription:
    """Handle for one polling subscription.

    ``connected`` is True once a fetch has succeeded and False again after a
    failed fetch (the failure is kept in ``error``).
    """

    def __init__(
        self,
        source: EntitySource,
        entity_type: str,
        handler: Handler,
        *,
        id: Optional[str] = None,
        filter: Optional[Dict[str, Any]] = None,
        interval: float = 5.0,
        on_close: Optional[Callable[["Subscription"], None]] = None,
    ):
        if interval <= 0:
            raise ValueError("interval must be > 0")
        self.entity_type = entity_type
        self.id = id
        self.filter = filter
        self.connected = False
        self.error: Optional[Exception] = None
        self.data: Any = None

        self._source = source
        self._handler = handler
        self._interval = interval
        self._on_close = on_close
        self._task: Optional[asyncio.Task] = None
        self._generation = 0
        self._active = False

    @property
    def active(self) -> bool:
        return self._active

    def start(self) -> None:
        self._active = True
        self._generation += 1
        self._task = asyncio.get_running_loop().create_task(self._run(self._generation))

    def unsubscribe(self) -> None:
        """Stop polling. The handler is not called again after this returns."""
        if not self._active:
            return
        self._active = False
        self._generation += 1
        self._cancel()
        self.connected = False
        if self._on_close is not None:
            self._on_close(self)

    def update(self, *, id: Optional[str] = _UNSET, filter: Optional[Dict[str, Any]] = _UNSET) -> None:
        """Retarget the subscription, replacing the polling task."""
        if id is not _UNSET:
            self.id = id
        if filter is not _UNSET:
            self.filter = filter
        self._cancel()
        self.connected = False
        self.error = None
        self.data = None
        if self._active:
            self.start()

    def _cancel(self) -> None:
        if self._task is not None:
            self._task.cancel()
            self._task = None

    async def _run(self, generation: int) -> None:
        while self._current(generation):
            await self._poll(generation)
            await asyncio.sleep(self._interval)

    def _current(self, generation: int) -> bool:
        return self._active and generation == self._generation

    async def _poll(self, generation: int) -> None:
        try:
            if self.id is not None:
                result = await self._source.get(self.id)
            else:
                result = await self._source.find(self.filter)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            if self._current(generation):
                self.error = exc
                self.connected = False
                logger.debug(f"Poll of {self.entity_type} failed: {type(exc).__name__}: {exc}")
            return

        if not self._current(generation):
            return
        self.connected = True
        self.error = None
        self.data = result
        try:
            out = self._handler(result)
            if asyncio.iscoroutine(out):
                await out
        except Exception as exc:
            logger.warning(f"Subscription handler for {self.entity_type} failed: {type(exc).__name__}: {exc}")


class RealtimeManager:
    def __init__(self, registry: EntityRegistry, *, default_interval_ms: int = 5000):
        self._registry = registry
        self.default_interval_ms = default_interval_ms
        self._subs: Set[Subscription] = set()

    def subscribe(
        self,
        entity_type: str,
        handler: Handler,
        *,
        id: Optional[str] = None,
        filter: Optional[Dict[str, Any]] = None,
        interval_ms: Optional[int] = None,
    ) -> Subscription:
        """Start polling ``entity_type``. Raises UnknownEntityError right away
        for unregistered types."""
        source = self._registry.resolve(entity_type)
        interval = (interval_ms or self.default_interval_ms) / 1000.0
        sub = Subscription(
            source,
            entity_type,
            handler,
            id=id,
            filter=filter,
            interval=interval,
            on_close=self._subs.discard,
        )
        self._subs.add(sub)
        sub.start()
        logger.debug(f"Subscribed to {entity_type} (id={id}, every {interval}s)")
        return sub

    @property
    def subscription_count(self) -> int:
        return len(self._subs)

    def shutdown(self) -> None:
        for sub in list(self._subs):
            sub.unsubscribe()
        self._subs.clear()
