from __future__ import annotations

import asyncio
import logging
import math
from dataclasses import dataclass
from typing import List, Optional

from yield_dashboard.clients import coingecko
from yield_dashboard.clients.chain import ChainReader
from yield_dashboard.clients.defillama import LlamaPools
from yield_dashboard.clients.graphql import graphql_query
from yield_dashboard.config import get_settings
from yield_dashboard.http import HttpClient
from yield_dashboard.models import LendingSnapshot, LiquidStakingSnapshot, ProtocolSnapshot
from yield_dashboard.protocols.base import (
    CONFIDENCE_DEFILLAMA,
    CONFIDENCE_DEFILLAMA_TVL,
    CONFIDENCE_FALLBACK,
    CONFIDENCE_ONCHAIN,
    CONFIDENCE_PRICE_HEURISTIC,
    CONFIDENCE_RATE_HISTORY,
    CONFIDENCE_SUBGRAPH,
    ProtocolFetcher,
    source,
    sources_used,
)
from yield_dashboard.services.prices import PriceOracle
from yield_dashboard.services.rate_tracker import ExchangeRateTracker
from yield_dashboard.services.validator import DataSource, validate_apy, validate_tvl

logger = logging.getLogger(__name__)

SAVAX = "0x2b2C81e08f1Af8835a78Bb2A90AE924ACE0eA4bE"

SECONDS_PER_YEAR = 31_536_000
WEEKS_PER_YEAR = 52.18

STAKING_QUERY = "{ liquidStakingPools { apr } }"


@dataclass(frozen=True)
class Market:
    symbol: str
    address: str
    underlying: str
    decimals: int


MARKETS = (
    Market("qiAVAX", "0x5C0401e81Bc07Ca70fAD469b451682c0d747Ef1c", "AVAX", 18),
    Market("qiUSDC", "0x6B35Eb18BCA06bD7d66a428eeb45aC7d200C1e4E", "USDC", 6),
    Market("qisAVAX", "0xF362feA9659cf036792c9cb02f8ff8198E21B4cB", "sAVAX", 18),
)


def rate_per_second_apy(rate_mantissa: int | float) -> float:
    """Compound a per-second rate (scaled 1e18) over a year, in %."""
    r = float(rate_mantissa) / 1e18
    if r <= 0:
        return 0.0
    try:
        return math.expm1(SECONDS_PER_YEAR * math.log1p(r)) * 100
    except OverflowError:
        return 0.0


def annualize_weekly_change(weekly_pct: float) -> float:
    return ((1 + weekly_pct / 100) ** WEEKS_PER_YEAR - 1) * 100


class BenqiFetcher(ProtocolFetcher):
    name = "BENQI"
    slug = "benqi"

    FALLBACKS = {
        "savax.total_pooled": 15_695_117 * 10**18,
        "savax.total_shares": 12_868_046 * 10**18,
        "savax.apy": 5.05,
        "qiAVAX.supply_rate": 1_500_000_000,
        "qiAVAX.borrow_rate": 2_400_000_000,
        "qiAVAX.total_supply": 630_000_000_000_000,
        "qiAVAX.exchange_rate": 220_000_000_000_000_000_000_000_000,
        "qiAVAX.cash": 1_000_000 * 10**18,
        "qiAVAX.borrows": 380_000 * 10**18,
        "qiUSDC.supply_rate": 1_200_000_000,
        "qiUSDC.borrow_rate": 2_000_000_000,
        "qiUSDC.total_supply": 28_100_000_000_000,
        "qiUSDC.exchange_rate": 220_000_000_000_000_000,
        "qiUSDC.cash": 1_890_000_000_000,
        "qiUSDC.borrows": 4_290_000_000_000,
    }

    def __init__(self, http: HttpClient, chain: ChainReader, prices: PriceOracle, tracker: ExchangeRateTracker, llama: LlamaPools):
        self.http = http
        self.chain = chain
        self.prices = prices
        self.tracker = tracker
        self.llama = llama

    async def _subgraph_apr(self) -> Optional[float]:
        s = get_settings()
        url = s.subgraph_url(s.BENQI_SUBGRAPH_ID)
        if not url:
            return None
        data = await graphql_query(self.http, url, STAKING_QUERY)
        pools = data.get("liquidStakingPools") or []
        if not pools or pools[0].get("apr") is None:
            raise RuntimeError("no liquid staking pool in subgraph")
        return float(pools[0]["apr"])

    async def _coingecko_apy(self) -> float:
        return annualize_weekly_change(await coingecko.get_price_change_7d(self.http, coingecko.SAVAX_COIN_ID))

    async def _collect(self, snapshot: ProtocolSnapshot) -> None:
        prices = await self.prices.get_token_prices(["avax", "usdc", "qi"])
        avax = prices.get("avax", 1.0)
        snapshot.prices = prices

        # qisAVAX is priced off the sAVAX exchange rate, so staking goes first
        staking = await self._liquid_staking(snapshot, avax)
        if staking is not None:
            snapshot.positions.append(staking)
        markets = await asyncio.gather(*(self._market(snapshot, m, prices) for m in MARKETS))
        snapshot.positions.extend(m for m in markets if m is not None)

    async def _liquid_staking(self, snapshot: ProtocolSnapshot, avax: float) -> Optional[LiquidStakingSnapshot]:
        pooled_r, shares_r, subgraph_r, gecko_r, llama_r = await asyncio.gather(
            self._read(snapshot, "savax.total_pooled", self.chain.call_uint(SAVAX, "totalPooledAvax()")),
            self._read(snapshot, "savax.total_shares", self.chain.call_uint(SAVAX, "totalShares()")),
            self._read(snapshot, "savax.subgraph_apr", self._subgraph_apr()),
            self._read(snapshot, "savax.coingecko_apy", self._coingecko_apy()),
            self._read(snapshot, "savax.defillama", self.llama.find("benqi-staked-avax", "SAVAX")),
        )
        pooled = (pooled_r.value or 0) / 1e18
        shares = (shares_r.value or 0) / 1e18
        rate = pooled / shares if shares > 0 else 1.0
        if pooled_r.ok and shares_r.ok:
            self.tracker.record("benqi:savax", rate)

        apy_sources: List[DataSource] = []
        tracked = self.tracker.apy("benqi:savax")
        if tracked is not None and tracked > 0:
            apy_sources.append(source("savax-rate-history", tracked, CONFIDENCE_RATE_HISTORY))
        if subgraph_r.ok and subgraph_r.value is not None:
            apy_sources.append(source("benqi-subgraph", subgraph_r.value, CONFIDENCE_SUBGRAPH))
        if gecko_r.ok:
            apy_sources.append(source("coingecko-savax", gecko_r.value, CONFIDENCE_PRICE_HEURISTIC))
        if llama_r.ok and llama_r.value:
            apy_sources.append(source("defillama", llama_r.value["apy"], CONFIDENCE_DEFILLAMA))

        tvl_onchain_conf = CONFIDENCE_ONCHAIN if (pooled_r.ok and shares_r.ok) else CONFIDENCE_FALLBACK
        tvl_sources = [source("savax-onchain", pooled * avax, tvl_onchain_conf)]
        if llama_r.ok and llama_r.value:
            tvl_sources.append(source("defillama", llama_r.value["tvl_usd"], CONFIDENCE_DEFILLAMA_TVL))

        apy = validate_apy(apy_sources)
        if apy.value <= 0:
            apy.value = self.FALLBACKS["savax.apy"]
            apy.confidence = CONFIDENCE_FALLBACK
            snapshot.fallback_fields.append("savax.apy")
        tvl = validate_tvl(tvl_sources)

        return LiquidStakingSnapshot(
            pair="AVAX → sAVAX",
            apy=apy.value,
            tvl_usd=tvl.value,
            exchange_rate=rate,
            total_assets=pooled,
            total_supply=shares,
            confidence=round((apy.confidence + tvl.confidence) / 2, 4),
            sources=sources_used(apy.sources) + [f"tvl:{s}" for s in sources_used(tvl.sources)],
        )

    async def _market(self, snapshot: ProtocolSnapshot, m: Market, prices: dict) -> Optional[LendingSnapshot]:
        names = ("supply_rate", "borrow_rate", "total_supply", "exchange_rate", "cash", "borrows")
        sigs = (
            "supplyRatePerTimestamp()",
            "borrowRatePerTimestamp()",
            "totalSupply()",
            "exchangeRateStored()",
            "getCash()",
            "totalBorrows()",
        )
        results = await asyncio.gather(
            *(self._read(snapshot, f"{m.symbol}.{n}", self.chain.call_uint(m.address, sig)) for n, sig in zip(names, sigs))
        )
        r = {n: res for n, res in zip(names, results)}
        if any(res.value is None for res in results):
            logger.info(f"BENQI {m.symbol}: no data and no fallback, skipping market")
            return None

        scale = 10 ** m.decimals
        if m.underlying == "sAVAX":
            # sAVAX priced through the staking exchange rate
            staking = snapshot.liquid_staking
            price = prices.get("avax", 1.0) * (staking.exchange_rate if staking else 1.0)
        else:
            price = prices.get(m.underlying.lower(), 1.0)

        supplied = r["total_supply"].value * r["exchange_rate"].value / 1e18 / scale
        cash = r["cash"].value / scale
        borrows = r["borrows"].value / scale
        utilization = borrows / (cash + borrows) * 100 if (cash + borrows) > 0 else 0.0
        live = all(res.ok for res in results)
        return LendingSnapshot(
            symbol=m.symbol,
            underlying=m.underlying,
            supply_apy=rate_per_second_apy(r["supply_rate"].value),
            borrow_apy=rate_per_second_apy(r["borrow_rate"].value),
            tvl_usd=supplied * price,
            total_borrows_usd=borrows * price,
            utilization=utilization,
            cash=cash,
            confidence=CONFIDENCE_ONCHAIN if live else CONFIDENCE_FALLBACK,
            sources=["benqi-onchain" if live else "benqi-fallback"],
        )
