"""
Batch delivery to the ingest endpoint.

POSTs ``{"events": [...]}`` to ``{endpoint}/e`` and classifies the outcome:

- 2xx: delivered, batch discarded
- 4xx: rejected, dropped without retry
- 5xx / network / timeout: retried with exponential backoff on a separate
  timer task, then dropped with a warning once retries are exhausted

A retrying batch is never merged with newer events; it completes on its own.
"""

from __future__ import annotations

import asyncio
from time import monotonic
from typing import Awaitable, Callable, Dict, List, Optional, Set

import httpx
from loguru import logger

from .errors import HeadlessError, RejectionError, classify_status, map_http_error
from .metrics import DELIVERY_ATTEMPTS_TOTAL, DELIVERY_LATENCY_MS, EVENTS_DROPPED_TOTAL
from .policy import RetryPolicy
from .queue import QueueItem

ErrorHook = Callable[[HeadlessError], None]


class DeliveryManager:
    def __init__(
        self,
        http: httpx.AsyncClient,
        endpoint: str,
        api_key: Callable[[], str],
        *,
        retry_policy: Optional[RetryPolicy] = None,
        on_error: Optional[ErrorHook] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._http = http
        self._url = f"{endpoint.rstrip('/')}/e"
        # read on every request so a rotated key applies immediately
        self._api_key = api_key
        self._policy = retry_policy or RetryPolicy()
        self._on_error = on_error
        self._sleep = sleep

        self._pending: Set[asyncio.Task] = set()
        self._waiting: Dict[asyncio.Task, List[QueueItem]] = {}
        self._closed = False

    @property
    def url(self) -> str:
        return self._url

    @property
    def pending_retries(self) -> int:
        return len(self._waiting)

    # ---------- public API ----------

    async def send(self, items: List[QueueItem], *, retry: bool = True) -> bool:
        """One delivery attempt. Returns True when the batch was accepted."""
        if not items:
            return True
        try:
            await self._post(items)
        except RejectionError as exc:
            logger.warning(f"Batch of {len(items)} events rejected ({exc}), not retrying")
            EVENTS_DROPPED_TOTAL.labels("rejected").inc(len(items))
            self._report(exc)
            return False
        except Exception as exc:
            err = map_http_error(exc)
            logger.debug(f"Send failed (attempt {items[0].attempts}): {err}")
            if retry and self._policy.classify_retryable(err):
                self._schedule_retry(items, err)
            else:
                self._drop(items, err)
            return False

        logger.debug(f"Sent {len(items)} events")
        return True

    async def wait_idle(self) -> None:
        """Wait until no delivery or retry task is outstanding."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def close(self) -> None:
        """Cancel retry timers, giving each waiting batch one final attempt."""
        self._closed = True
        waiting = list(self._waiting.items())
        self._waiting.clear()
        for task, _ in waiting:
            task.cancel()
        for task, _ in waiting:
            try:
                await task
            except asyncio.CancelledError:
                pass
        for _, items in waiting:
            await self.send(items, retry=False)
        await self.wait_idle()

    def cancel(self) -> None:
        """Abandon waiting retries. Their batches are discarded."""
        for task in list(self._waiting):
            task.cancel()
        self._waiting.clear()

    # ---------- internals ----------

    async def _post(self, items: List[QueueItem]) -> None:
        body = {"events": [i.event.to_wire() for i in items]}
        headers = {"Authorization": f"Bearer {self._api_key()}"}
        t0 = monotonic()
        try:
            resp = await self._http.post(self._url, json=body, headers=headers)
        except Exception:
            DELIVERY_ATTEMPTS_TOTAL.labels("retry").inc()
            raise
        finally:
            DELIVERY_LATENCY_MS.observe((monotonic() - t0) * 1000.0)

        outcome = classify_status(resp.status_code)
        DELIVERY_ATTEMPTS_TOTAL.labels(outcome).inc()
        if outcome != "ok":
            raise map_http_error(resp)

    def _schedule_retry(self, items: List[QueueItem], err: HeadlessError) -> None:
        attempt = items[0].attempts
        if self._closed or not self._policy.should_retry(attempt):
            self._drop(items, err)
            return

        delay_ms = self._policy.next_backoff_ms(attempt)
        for item in items:
            item.attempts += 1
        logger.debug(f"Retrying {len(items)} events in {delay_ms}ms (retry {attempt + 1})")

        task = asyncio.get_running_loop().create_task(self._retry_after(items, delay_ms / 1000.0))
        self._waiting[task] = items
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _retry_after(self, items: List[QueueItem], delay: float) -> None:
        await self._sleep(delay)
        current = asyncio.current_task()
        if current is not None:
            self._waiting.pop(current, None)
        await self.send(items)

    def _drop(self, items: List[QueueItem], err: HeadlessError) -> None:
        logger.warning(
            f"Dropping batch of {len(items)} events after {items[0].attempts + 1} attempts: {err}"
        )
        EVENTS_DROPPED_TOTAL.labels("retries_exhausted").inc(len(items))
        self._report(err)

    def _report(self, err: HeadlessError) -> None:
        if self._on_error is None:
            return
        try:
            self._on_error(err)
        except Exception as exc:
            logger.debug(f"on_error hook failed (ignored): {type(exc).__name__}: {exc}")
