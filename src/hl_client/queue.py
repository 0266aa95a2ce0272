from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, List, Optional

from loguru import logger

from .models import Event


@dataclass
class QueueItem:
    """Queued event plus the delivery attempt counter."""

    event: Event
    attempts: int = 0


class EventQueue:
    """FIFO buffer with a size threshold and a recurring flush timer.

    ``put`` reports whether the size threshold was reached; the owner decides
    how to flush. ``start`` runs ``on_tick`` every ``flush_interval`` seconds
    until ``stop``.
    """

    def __init__(
        self,
        batch_size: int = 10,
        flush_interval: float = 5.0,
        *,
        max_size: Optional[int] = None,
        drop_callback: Optional[Callable[[QueueItem], None]] = None,
    ):
        if batch_size <= 0:
            raise ValueError("batch_size must be > 0")
        if flush_interval <= 0:
            raise ValueError("flush_interval must be > 0")
        if max_size is not None and max_size <= 0:
            raise ValueError("max_size must be > 0")

        self._items: List[QueueItem] = []
        self._batch_size = batch_size
        self._flush_interval = flush_interval
        self._max_size = max_size
        self._drop_cb = drop_callback
        self._timer: Optional[asyncio.Task] = None

    @property
    def batch_size(self) -> int:
        return self._batch_size

    @property
    def size(self) -> int:
        return len(self._items)

    def __len__(self) -> int:
        return len(self._items)

    def put(self, event: Event) -> bool:
        """Append to the tail. Returns True when a flush is due."""
        if self._max_size is not None and len(self._items) >= self._max_size:
            oldest = self._items.pop(0)
            logger.debug(f"Queue full ({self._max_size}), dropping oldest event")
            if self._drop_cb:
                self._drop_cb(oldest)
        self._items.append(QueueItem(event))
        return len(self._items) >= self._batch_size

    def drain(self) -> List[QueueItem]:
        """Snapshot and clear in one step."""
        items, self._items = self._items, []
        return items

    def clear(self) -> None:
        self._items = []

    # ---------- timer ----------

    @property
    def running(self) -> bool:
        return self._timer is not None and not self._timer.done()

    def start(self, on_tick: Callable[[], Awaitable[None]]) -> None:
        if self.running:
            return
        self._timer = asyncio.get_running_loop().create_task(self._run(on_tick))

    async def _run(self, on_tick: Callable[[], Awaitable[None]]) -> None:
        while True:
            await asyncio.sleep(self._flush_interval)
            if not self._items:
                continue
            try:
                await on_tick()
            except Exception as exc:
                logger.warning(f"Interval flush failed: {type(exc).__name__}: {exc}")

    def cancel(self) -> None:
        """Cancel the timer without waiting for it."""
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    async def stop(self) -> None:
        if self._timer is None:
            return
        self._timer.cancel()
        try:
            await self._timer
        except asyncio.CancelledError:
            pass
        self._timer = None
