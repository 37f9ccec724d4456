from __future__ import annotations

import math
import statistics
import time
from dataclasses import dataclass, field
from typing import List, Optional


@dataclass
class DataSource:
    source: str
    value: float
    confidence: float
    timestamp: float = field(default_factory=time.time)


@dataclass
class ValidatedValue:
    value: float
    confidence: float
    sources: List[DataSource] = field(default_factory=list)


APY_MAX = 100.0
APY_CONSENSUS_THRESHOLD = 0.15
TVL_CONSENSUS_THRESHOLD = 0.2
SINGLE_APY_SOURCE_CONFIDENCE = 0.3
SINGLE_TVL_SOURCE_CONFIDENCE = 0.8
AGE_PENALTY_PER_HOUR = 0.01


def _rank(sources: List[DataSource], now: Optional[float] = None) -> List[DataSource]:
    """Best first: confidence minus a small penalty per hour of age."""
    now = time.time() if now is None else now

    def score(s: DataSource) -> float:
        hours_ago = max(0.0, now - s.timestamp) / 3600.0
        return s.confidence - hours_ago * AGE_PENALTY_PER_HOUR

    return sorted(sources, key=score, reverse=True)


def coefficient_of_variation(values: List[float]) -> float:
    mean = sum(values) / len(values)
    if mean == 0:
        return 0.0
    return statistics.pstdev(values) / mean


def _usable(s: DataSource) -> bool:
    return math.isfinite(s.value) and math.isfinite(s.confidence) and s.confidence > 0


def validate_apy(sources: List[DataSource], now: Optional[float] = None) -> ValidatedValue:
    """Confidence-weighted consensus APY across sources.

    Readings outside (0, 100) are discarded. A single survivor is returned at
    confidence 0.3. With two or more, confidence is 0.9 when they agree within
    15% (coefficient of variation), else 0.6, never above the mean source
    confidence.
    """
    valid = [s for s in sources if _usable(s) and 0 < s.value < APY_MAX]
    if not valid:
        return ValidatedValue(0.0, 0.0, [])
    ranked = _rank(valid, now)
    if len(ranked) == 1:
        return ValidatedValue(ranked[0].value, SINGLE_APY_SOURCE_CONFIDENCE, ranked)

    total_weight = sum(s.confidence for s in ranked)
    weighted = sum(s.value * s.confidence for s in ranked) / total_weight
    cv = coefficient_of_variation([s.value for s in ranked])
    confidence = 0.9 if cv < APY_CONSENSUS_THRESHOLD else 0.6
    confidence = min(confidence, total_weight / len(ranked))
    return ValidatedValue(weighted, confidence, ranked)


def validate_tvl(sources: List[DataSource], now: Optional[float] = None) -> ValidatedValue:
    """Median TVL across sources, with a looser 20% agreement threshold."""
    valid = [s for s in sources if _usable(s) and s.value > 0]
    if not valid:
        return ValidatedValue(0.0, 0.0, [])
    ranked = _rank(valid, now)
    if len(ranked) == 1:
        return ValidatedValue(ranked[0].value, min(SINGLE_TVL_SOURCE_CONFIDENCE, ranked[0].confidence), ranked)

    values = [s.value for s in ranked]
    median = statistics.median(values)
    cv = coefficient_of_variation(values)
    total_weight = sum(s.confidence for s in ranked)
    confidence = 0.8 if cv < TVL_CONSENSUS_THRESHOLD else 0.5
    confidence = min(confidence, total_weight / len(ranked))
    return ValidatedValue(median, confidence, ranked)
