from __future__ import annotations

import math
from typing import Any, Optional


def parse_number(value: Any) -> Optional[float]:
    """Float from an API field that may arrive as a number or a numeric string.

    Booleans, blanks, garbage and non-finite values give None.
    """
    if value is None or isinstance(value, bool):
        return None
    try:
        f = float(value)
    except (TypeError, ValueError):
        return None
    return f if math.isfinite(f) else None
