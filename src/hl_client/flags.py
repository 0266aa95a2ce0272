"""
Feature flag cache with change notification.

Flags are fetched from ``GET {endpoint}/flags`` and cached; reads never touch
the network. Each reload replaces the cache wholesale and notifies the
subscribers of every key whose value changed.
"""

from __future__ import annotations

from time import monotonic
from typing import Any, Callable, Dict, Optional, Set

import httpx
from loguru import logger

from .models import FeatureFlag, FlagValue

FlagListener = Callable[[Optional[FlagValue]], None]

_DISABLED_STRINGS = ("false", "control")


def flag_enabled(value: Any) -> bool:
    """True, "true", or any string other than "false"/"control".

    The empty string counts as enabled.
    """
    if value is True or value == "true":
        return True
    return isinstance(value, str) and value not in _DISABLED_STRINGS


class FeatureFlagCache:
    def __init__(
        self,
        http: httpx.AsyncClient,
        endpoint: str,
        api_key: Callable[[], str],
        distinct_id: Callable[[], str],
        *,
        ttl_ms: Optional[int] = None,
    ):
        self._http = http
        self._url = f"{endpoint.rstrip('/')}/flags"
        self._api_key = api_key
        self._distinct_id = distinct_id
        self._ttl_ms = ttl_ms

        self._flags: Dict[str, FeatureFlag] = {}
        self._listeners: Dict[str, Set[FlagListener]] = {}
        self._fetched_at: Optional[float] = None

    @property
    def loaded(self) -> bool:
        return self._fetched_at is not None

    def is_stale(self) -> bool:
        if not self._ttl_ms or self._fetched_at is None:
            return False
        return (monotonic() - self._fetched_at) * 1000.0 > self._ttl_ms

    # ---------- reads ----------

    def get(self, key: str) -> Optional[FlagValue]:
        flag = self._flags.get(key)
        return flag.value if flag is not None else None

    def is_enabled(self, key: str) -> bool:
        return flag_enabled(self.get(key))

    def all(self) -> Dict[str, FeatureFlag]:
        return dict(self._flags)

    # ---------- subscriptions ----------

    def on_change(self, key: str, callback: FlagListener) -> Callable[[], None]:
        """Register ``callback`` for ``key``. Returns a disposer."""
        self._listeners.setdefault(key, set()).add(callback)

        def dispose() -> None:
            listeners = self._listeners.get(key)
            if listeners is None:
                return
            listeners.discard(callback)
            if not listeners:
                del self._listeners[key]

        return dispose

    @property
    def listener_count(self) -> int:
        return sum(len(v) for v in self._listeners.values())

    # ---------- loading ----------

    async def load(self) -> bool:
        """Fetch all flags. Returns False (cache untouched) on any failure."""
        try:
            resp = await self._http.get(
                self._url,
                params={"distinctId": self._distinct_id()},
                headers={"Authorization": f"Bearer {self._api_key()}"},
            )
            if resp.status_code >= 300:
                logger.debug(f"Flag fetch failed: HTTP {resp.status_code}")
                return False
            data = resp.json()
        except Exception as exc:
            logger.debug(f"Flag fetch failed: {type(exc).__name__}: {exc}")
            return False

        raw = data.get("flags") if isinstance(data, dict) else None
        self._replace(raw or {})
        self._fetched_at = monotonic()
        logger.debug(f"Flags loaded (count: {len(self._flags)})")
        return True

    def _replace(self, raw: Dict[str, Any]) -> None:
        old = {k: f.value for k, f in self._flags.items()}
        self._flags = {k: FeatureFlag(key=k, value=v) for k, v in raw.items() if v is not None}

        changed: Dict[str, Optional[FlagValue]] = {}
        for key, flag in self._flags.items():
            if key not in old or old[key] != flag.value:
                changed[key] = flag.value
        for key in old:
            if key not in self._flags:
                changed[key] = None

        for key, value in changed.items():
            self._notify(key, value)

    def _notify(self, key: str, value: Optional[FlagValue]) -> None:
        for callback in list(self._listeners.get(key, ())):
            try:
                callback(value)
            except Exception as exc:
                logger.warning(f"Flag listener for {key!r} failed: {type(exc).__name__}: {exc}")

    def clear(self) -> None:
        self._flags = {}
        self._listeners = {}
        self._fetched_at = None
