from __future__ import annotations

import logging
from typing import Any, Dict

from yield_dashboard.config import get_settings
from yield_dashboard.http import HttpClient
from yield_dashboard.utils.numbers import parse_number

logger = logging.getLogger(__name__)


async def fetch_metrics(http: HttpClient) -> Dict[str, Any]:
    """Official GoGoPool /metrics. APR fields are percentages."""
    resp = await http.get(f"{get_settings().GOGOPOOL_API_URL}/metrics")
    data = resp.json()
    if not isinstance(data, dict):
        raise RuntimeError("unexpected GoGoPool metrics payload")
    return data


async def fetch_prices(http: HttpClient) -> Dict[str, float]:
    resp = await http.get(f"{get_settings().GOGOPOOL_API_URL}/prices")
    data = resp.json() or {}
    prices = {k.lower(): parse_number(v) for k, v in data.items()}
    return {k: v for k, v in prices.items() if v is not None and v > 0}
