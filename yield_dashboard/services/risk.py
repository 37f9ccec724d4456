from __future__ import annotations

from typing import Literal

Risk = Literal["Low", "Medium", "High"]

_ORDER = {"Low": 0, "Medium": 1, "High": 2}


def assess_risk(apy: float, utilization: float = 0.0, confidence: float = 1.0, base: Risk = "Low") -> Risk:
    """Risk tier from utilization, data confidence and APY; never below `base`."""
    if utilization > 80 or confidence < 0.6:
        tier: Risk = "High"
    elif utilization > 50 or apy > 10:
        tier = "Medium"
    else:
        tier = "Low"
    return tier if _ORDER[tier] >= _ORDER[base] else base
