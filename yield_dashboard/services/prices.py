from __future__ import annotations

import logging
import time
from typing import Callable, Dict, Iterable, List

from yield_dashboard.clients import coinapi, coingecko
from yield_dashboard.config import get_settings
from yield_dashboard.http import HttpClient
from yield_dashboard.models import TokenPrice

logger = logging.getLogger(__name__)

FALLBACK_PRICES: Dict[str, float] = {
    "avax": 42.50,
    "eth": 3200.0,
    "btc": 67000.0,
    "usdc": 1.00,
    "usdt": 1.00,
    "dai": 1.00,
    "busd": 1.00,
    "link": 15.50,
    "ggp": 0.85,
    "qi": 0.007,
}


class PriceOracle:
    """USD token prices with a per-symbol TTL cache.

    Lookup order: cache, CoinGecko, CoinAPI (when a key is configured), then
    the static fallback table. Never raises. Fallback values are returned but
    not cached so the next call retries the live sources.
    """

    def __init__(self, http: HttpClient, ttl: float | None = None, clock: Callable[[], float] = time.time):
        self.http = http
        self.ttl = ttl if ttl is not None else get_settings().PRICE_CACHE_TTL_SECONDS
        self._clock = clock
        self._cache: Dict[str, TokenPrice] = {}

    def cached(self, symbol: str) -> TokenPrice | None:
        entry = self._cache.get(symbol.lower())
        if entry is None or self._clock() - entry.fetched_at >= self.ttl:
            return None
        return entry

    async def _from_coingecko(self, symbols: List[str]) -> Dict[str, float]:
        ids = {coingecko.COIN_IDS[s]: s for s in symbols if s in coingecko.COIN_IDS}
        if not ids:
            return {}
        try:
            by_id = await coingecko.get_prices_usd(self.http, list(ids))
        except Exception as e:
            logger.warning(f"CoinGecko prices failed for {symbols}: {e}")
            return {}
        return {ids[cid]: price for cid, price in by_id.items() if cid in ids}

    async def _from_coinapi(self, symbols: List[str]) -> Dict[str, float]:
        out: Dict[str, float] = {}
        if not get_settings().COINAPI_KEY:
            return out
        for s in symbols:
            try:
                out[s] = await coinapi.get_usd_rate(self.http, s)
            except Exception as e:
                logger.warning(f"CoinAPI price failed for {s}: {e}")
        return out

    async def get_token_prices(self, symbols: Iterable[str]) -> Dict[str, float]:
        wanted = list(dict.fromkeys(s.lower() for s in symbols))
        out: Dict[str, float] = {}
        missing: List[str] = []
        for s in wanted:
            entry = self.cached(s)
            if entry is not None:
                out[s] = entry.price_usd
            else:
                missing.append(s)
        if not missing:
            return out

        live = await self._from_coingecko(missing)
        still_missing = [s for s in missing if s not in live]
        if still_missing:
            live.update(await self._from_coinapi(still_missing))

        now = self._clock()
        for s, price in live.items():
            self._cache[s] = TokenPrice(symbol=s, price_usd=price, fetched_at=now)
            out[s] = price

        for s in missing:
            if s in out:
                continue
            if s in FALLBACK_PRICES:
                out[s] = FALLBACK_PRICES[s]
                logger.warning(f"Using fallback price for {s}: {FALLBACK_PRICES[s]}")
        return out

    async def get_price(self, symbol: str, default: float = 1.0) -> float:
        prices = await self.get_token_prices([symbol])
        return prices.get(symbol.lower(), default)
