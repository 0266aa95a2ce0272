"""Fixed-capacity breadcrumb trail for exception reports."""

from collections import deque
from typing import Deque, List

from .models import Breadcrumb

MAX_BREADCRUMBS = 100


class BreadcrumbRing:
    """
    Circular buffer of recent breadcrumbs.

    Once full, appending evicts the oldest entry first.
    """

    def __init__(self, capacity: int = MAX_BREADCRUMBS):
        if capacity <= 0:
            raise ValueError("capacity must be > 0")
        self._crumbs: Deque[Breadcrumb] = deque(maxlen=capacity)

    @property
    def capacity(self) -> int:
        return self._crumbs.maxlen  # type: ignore[return-value]

    def __len__(self) -> int:
        return len(self._crumbs)

    def add(self, crumb: Breadcrumb) -> None:
        self._crumbs.append(crumb)

    def snapshot(self) -> List[Breadcrumb]:
        """Copy of the trail, oldest first. Later adds do not affect it."""
        return [c.model_copy(deep=True) for c in self._crumbs]

    def clear(self) -> None:
        self._crumbs.clear()
