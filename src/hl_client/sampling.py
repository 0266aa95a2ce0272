from __future__ import annotations

import random
from typing import Callable, Optional


class SamplingGate:
    """Probabilistic admission: admit iff random() < sample_rate.

    random() is in [0, 1), so a rate of 0 never admits and a rate of 1 always
    admits.
    """

    def __init__(self, sample_rate: float = 1.0, rng: Optional[Callable[[], float]] = None):
        if not 0.0 <= sample_rate <= 1.0:
            raise ValueError("sample_rate must be between 0 and 1")
        self.sample_rate = sample_rate
        self._rng = rng or random.random

    def admit(self) -> bool:
        return self._rng() < self.sample_rate
