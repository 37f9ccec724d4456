from __future__ import annotations

import logging
from typing import Dict, List

from yield_dashboard.config import get_settings
from yield_dashboard.http import HttpClient
from yield_dashboard.utils.numbers import parse_number

logger = logging.getLogger(__name__)

# Dashboard symbol -> CoinGecko coin id
COIN_IDS: Dict[str, str] = {
    "avax": "avalanche-2",
    "eth": "ethereum",
    "btc": "bitcoin",
    "usdc": "usd-coin",
    "usdt": "tether",
    "dai": "dai",
    "link": "chainlink",
    "ggp": "gogopool",
    "qi": "benqi",
    "busd": "binance-usd",
}

SAVAX_COIN_ID = "benqi-liquid-staked-avax"


async def get_prices_usd(http: HttpClient, coin_ids: List[str]) -> Dict[str, float]:
    """Fetch USD prices for given Coingecko coin ids."""
    if not coin_ids:
        return {}
    base = get_settings().COINGECKO_BASE_URL
    url = f"{base}/simple/price"
    params = {"ids": ",".join(coin_ids), "vs_currencies": "usd"}
    resp = await http.get(url, params=params)
    data = resp.json()
    out: Dict[str, float] = {}
    for cid, obj in data.items():
        usd = parse_number(obj.get("usd")) if isinstance(obj, dict) else None
        if usd is not None and usd > 0:
            out[cid] = usd
    return out


async def get_price_change_7d(http: HttpClient, coin_id: str) -> float:
    """7-day price change in percent from /coins/{id}. Raises when the field is missing."""
    base = get_settings().COINGECKO_BASE_URL
    resp = await http.get(
        f"{base}/coins/{coin_id}",
        params={"localization": "false", "tickers": "false", "community_data": "false", "developer_data": "false"},
    )
    change = parse_number((resp.json().get("market_data") or {}).get("price_change_percentage_7d"))
    if change is None:
        raise RuntimeError(f"no 7d change for {coin_id}")
    return change
