from __future__ import annotations

import logging

from yield_dashboard.config import get_settings
from yield_dashboard.http import HttpClient
from yield_dashboard.utils.numbers import parse_number

logger = logging.getLogger(__name__)


async def get_usd_rate(http: HttpClient, symbol: str) -> float:
    """USD exchange rate for one asset symbol. Requires COINAPI_KEY."""
    s = get_settings()
    if not s.COINAPI_KEY:
        raise RuntimeError("CoinAPI key not configured")
    resp = await http.get(
        f"{s.COINAPI_BASE_URL}/exchangerate/{symbol.upper()}/USD",
        headers={"X-CoinAPI-Key": s.COINAPI_KEY},
    )
    rate = parse_number(resp.json().get("rate"))
    if rate is None or rate <= 0:
        raise RuntimeError(f"CoinAPI returned no rate for {symbol}")
    return rate
