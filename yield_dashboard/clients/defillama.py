from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Callable, Dict, List, Optional

from yield_dashboard.config import get_settings
from yield_dashboard.http import HttpClient
from yield_dashboard.utils.numbers import parse_number

logger = logging.getLogger(__name__)

# Dashboard protocol name -> DefiLlama protocol slug
PROTOCOL_SLUGS: Dict[str, str] = {
    "GoGoPool": "gogopool",
    "BENQI": "benqi",
    "Avant Finance": "avant-finance",
    "Pangolin": "pangolin",
    "Silo Finance": "silo-finance",
}


async def fetch_llama_pools(http: HttpClient, chains: List[str] | None = None, projects: List[str] | None = None) -> List[Dict[str, Any]]:
    """Fetch pools from DefiLlama Yields API and normalize.

    Docs: https://yields.llama.fi/pools
    """
    resp = await http.get(get_settings().DEFILLAMA_YIELDS_URL)
    data = resp.json()
    pools = data.get("data", []) or data.get("pools", []) or []
    wanted_chains = [c.lower() for c in chains] if chains else None
    wanted_projects = [p.lower() for p in projects] if projects else None
    out: List[Dict[str, Any]] = []
    for p in pools:
        project = str(p.get("project") or "unknown").lower()
        if wanted_projects and project not in wanted_projects:
            continue
        chain = str(p.get("chain") or "").lower()
        if wanted_chains and chain not in wanted_chains:
            continue
        out.append(
            {
                "id": str(p.get("pool") or p.get("symbol") or "pool"),
                "project": project,
                "symbol": str(p.get("symbol") or "").upper(),
                "chain": chain,
                "apy": parse_number(p.get("apy")) or 0.0,
                "tvl_usd": parse_number(p.get("tvlUsd")) or 0.0,
            }
        )
    return out


async def fetch_protocol_tvl(http: HttpClient, slug: str, chain: str = "Avalanche") -> float:
    """Current per-chain TVL for a DefiLlama protocol slug."""
    resp = await http.get(f"{get_settings().DEFILLAMA_API_URL}/protocol/{slug}")
    tvls = resp.json().get("currentChainTvls") or {}
    value = parse_number(tvls.get(chain))
    if value is None or value <= 0:
        raise RuntimeError(f"no {chain} TVL for {slug}")
    return value


class LlamaPools:
    """Avalanche pool list shared by all fetchers, refetched at most once per TTL."""

    def __init__(self, http: HttpClient, ttl: float | None = None, clock: Callable[[], float] = time.monotonic):
        self.http = http
        self.ttl = ttl if ttl is not None else get_settings().DEFILLAMA_CACHE_TTL_SECONDS
        self._clock = clock
        self._pools: List[Dict[str, Any]] = []
        self._fetched_at: float | None = None
        self._lock = asyncio.Lock()

    async def pools(self) -> List[Dict[str, Any]]:
        async with self._lock:
            now = self._clock()
            if self._fetched_at is None or now - self._fetched_at > self.ttl:
                self._pools = await fetch_llama_pools(self.http, chains=["avalanche"])
                self._fetched_at = now
                logger.debug(f"DefiLlama pools refreshed: {len(self._pools)}")
            return self._pools

    async def find(self, project: str, symbol: str) -> Optional[Dict[str, Any]]:
        for p in await self.pools():
            if p["project"] == project.lower() and p["symbol"] == symbol.upper():
                return p
        return None


class ReferenceTvl:
    """Monitor hook: DefiLlama Avalanche TVL by dashboard protocol name, cached per TTL."""

    def __init__(self, http: HttpClient, ttl: float | None = None, clock: Callable[[], float] = time.monotonic):
        self.http = http
        self.ttl = ttl if ttl is not None else get_settings().DEFILLAMA_CACHE_TTL_SECONDS
        self._clock = clock
        self._cache: Dict[str, tuple[float, float]] = {}

    async def __call__(self, protocol: str) -> Optional[float]:
        slug = PROTOCOL_SLUGS.get(protocol)
        if slug is None:
            return None
        hit = self._cache.get(slug)
        now = self._clock()
        if hit is not None and now - hit[0] <= self.ttl:
            return hit[1]
        tvl = await fetch_protocol_tvl(self.http, slug)
        self._cache[slug] = (now, tvl)
        return tvl
