from __future__ import annotations

import logging
import math
import time
from collections import defaultdict, deque
from typing import Callable, Deque, Dict, Optional, Tuple

logger = logging.getLogger(__name__)

HOURS_PER_YEAR = 8766.0
MAX_APY = 50.0


def annualize_growth(old_rate: float, new_rate: float, hours: float) -> float:
    """Compound share-price growth over `hours` to a yearly APY in %, clamped to [0, 50]."""
    if old_rate <= 0 or new_rate <= 0 or hours <= 0:
        return 0.0
    growth = new_rate / old_rate
    try:
        apy = (growth ** (HOURS_PER_YEAR / hours) - 1) * 100
    except OverflowError:
        return MAX_APY
    if not math.isfinite(apy):
        return MAX_APY
    return max(0.0, min(MAX_APY, apy))


class ExchangeRateTracker:
    """Share-price samples per asset, used to derive APY once enough history exists.

    Samples older than the window are dropped on every record. An APY is only
    reported when the oldest and newest samples are more than `min_span_hours`
    apart.
    """

    def __init__(self, window_hours: float = 24.0, min_span_hours: float = 1.0, clock: Callable[[], float] = time.time):
        self.window = window_hours * 3600
        self.min_span = min_span_hours * 3600
        self._clock = clock
        self._samples: Dict[str, Deque[Tuple[float, float]]] = defaultdict(deque)

    def record(self, key: str, rate: float) -> None:
        if not math.isfinite(rate) or rate <= 0:
            return
        now = self._clock()
        samples = self._samples[key]
        samples.append((now, rate))
        while samples and now - samples[0][0] > self.window:
            samples.popleft()

    def apy(self, key: str) -> Optional[float]:
        samples = self._samples.get(key)
        if not samples or len(samples) < 2:
            return None
        (t0, r0), (t1, r1) = samples[0], samples[-1]
        if t1 - t0 <= self.min_span:
            return None
        return annualize_growth(r0, r1, (t1 - t0) / 3600)

    def apy_or(self, key: str, default: float) -> float:
        value = self.apy(key)
        return default if value is None else value

    def sample_count(self, key: str) -> int:
        return len(self._samples.get(key, ()))
