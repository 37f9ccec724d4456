from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional

from yield_dashboard.clients import gogopool as gogopool_api
from yield_dashboard.clients.chain import ChainReader
from yield_dashboard.clients.defillama import LlamaPools
from yield_dashboard.http import HttpClient
from yield_dashboard.models import LiquidStakingSnapshot, ProtocolSnapshot, StakingSnapshot
from yield_dashboard.protocols.base import (
    CONFIDENCE_DEFILLAMA,
    CONFIDENCE_DEFILLAMA_TVL,
    CONFIDENCE_FALLBACK,
    CONFIDENCE_OFFICIAL_API,
    CONFIDENCE_ONCHAIN,
    CONFIDENCE_PRICE_HEURISTIC,
    CONFIDENCE_RATE_HISTORY,
    ProtocolFetcher,
    source,
    sources_used,
)
from yield_dashboard.services.prices import PriceOracle
from yield_dashboard.services.rate_tracker import ExchangeRateTracker
from yield_dashboard.services.validator import DataSource, validate_apy, validate_tvl
from yield_dashboard.utils.numbers import parse_number

logger = logging.getLogger(__name__)

GGAVAX = "0xA25EaF2906FA1a3a13EdAc9B9657108Af7B703e3"

# Share of protocol TVL attributed to GGP staking when the API has no figure
GGP_STAKING_TVL_SHARE = 0.15
MINIPOOL_AVAX = 1000

# /metrics has reported the liquid staking APR under several names
APY_FIELDS = ("ggAvaxApy", "stAvaxApy", "stAvaAPR")


def _first_number(data: Dict[str, Any], keys: tuple) -> Optional[float]:
    for k in keys:
        v = parse_number(data.get(k))
        if v is not None and v > 0:
            return v
    return None


class GoGoPoolFetcher(ProtocolFetcher):
    name = "GoGoPool"
    slug = "gogopool"

    FALLBACKS = {
        "ggavax.total_assets": 8_500_000 * 10**18,
        "ggavax.total_supply": 8_200_000 * 10**18,
        "ggavax.apy": 6.85,
        "ggavax.tvl": 362_000_000.0,
        "ggp_staking.apy": 14.2,
    }

    def __init__(self, http: HttpClient, chain: ChainReader, prices: PriceOracle, tracker: ExchangeRateTracker, llama: LlamaPools):
        self.http = http
        self.chain = chain
        self.prices = prices
        self.tracker = tracker
        self.llama = llama

    async def _collect(self, snapshot: ProtocolSnapshot) -> None:
        assets_r, supply_r, metrics_r, api_prices_r, llama_r, prices = await asyncio.gather(
            self._read(snapshot, "ggavax.total_assets", self.chain.call_uint(GGAVAX, "totalAssets()")),
            self._read(snapshot, "ggavax.total_supply", self.chain.call_uint(GGAVAX, "totalSupply()")),
            self._read(snapshot, "metrics", gogopool_api.fetch_metrics(self.http)),
            self._read(snapshot, "prices", gogopool_api.fetch_prices(self.http)),
            self._read(snapshot, "defillama", self.llama.find("gogopool", "GGAVAX")),
            self.prices.get_token_prices(["avax", "ggp"]),
        )
        metrics: Dict[str, Any] = metrics_r.value or {}
        api_prices: Dict[str, float] = api_prices_r.value or {}
        avax = prices.get("avax") or api_prices.get("avax") or 1.0
        ggp = prices.get("ggp") or api_prices.get("ggp") or 0.0
        snapshot.prices = {"avax": avax, "ggp": ggp}

        staking = self._liquid_staking(snapshot, assets_r, supply_r, metrics, llama_r.value, avax)
        snapshot.positions.append(staking)
        snapshot.positions.append(self._ggp_staking(snapshot, metrics, staking.tvl_usd))
        minipool = self._minipools(metrics, avax)
        if minipool is not None:
            snapshot.positions.append(minipool)

    def _liquid_staking(self, snapshot, assets_r, supply_r, metrics, llama_pool, avax) -> LiquidStakingSnapshot:
        assets = assets_r.value / 1e18
        supply = supply_r.value / 1e18
        rate = assets / supply if supply > 0 else 1.0
        onchain = assets_r.ok and supply_r.ok
        if onchain:
            self.tracker.record("gogopool:ggavax", rate)

        apy_sources: List[DataSource] = []
        official = _first_number(metrics, APY_FIELDS)
        if official is not None:
            apy_sources.append(source("gogopool-api", official, CONFIDENCE_OFFICIAL_API))
        if llama_pool:
            apy_sources.append(source("defillama", llama_pool["apy"], CONFIDENCE_DEFILLAMA))
        tracked = self.tracker.apy("gogopool:ggavax")
        if tracked:
            apy_sources.append(source("ggavax-rate-history", tracked, CONFIDENCE_RATE_HISTORY))

        tvl_sources: List[DataSource] = []
        if onchain:
            tvl_sources.append(source("ggavax-onchain", assets * avax, CONFIDENCE_ONCHAIN))
        api_assets = _first_number(metrics, ("ggAvaxTotalAssets",))
        if api_assets is not None:
            tvl_sources.append(source("gogopool-api", api_assets * avax, CONFIDENCE_OFFICIAL_API))
        if llama_pool:
            tvl_sources.append(source("defillama", llama_pool["tvl_usd"], CONFIDENCE_DEFILLAMA_TVL))

        apy = validate_apy(apy_sources)
        if apy.value <= 0:
            apy.value, apy.confidence = self.FALLBACKS["ggavax.apy"], CONFIDENCE_FALLBACK
            snapshot.fallback_fields.append("ggavax.apy")
        tvl = validate_tvl(tvl_sources)
        if tvl.value <= 0:
            tvl.value, tvl.confidence = self.FALLBACKS["ggavax.tvl"], CONFIDENCE_FALLBACK
            snapshot.fallback_fields.append("ggavax.tvl")

        return LiquidStakingSnapshot(
            pair="AVAX → ggAVAX",
            apy=apy.value,
            tvl_usd=tvl.value,
            exchange_rate=rate,
            total_assets=assets,
            total_supply=supply,
            confidence=round((apy.confidence + tvl.confidence) / 2, 4),
            sources=sources_used(apy.sources) + [f"tvl:{s}" for s in sources_used(tvl.sources)],
        )

    def _ggp_staking(self, snapshot: ProtocolSnapshot, metrics: Dict[str, Any], protocol_tvl: float) -> StakingSnapshot:
        apy = _first_number(metrics, ("ggpStakingApy", "ggpApr"))
        live = apy is not None
        if apy is None:
            apy = self.FALLBACKS["ggp_staking.apy"]
            snapshot.fallback_fields.append("ggp_staking.apy")
        return StakingSnapshot(
            name="ggp-staking",
            pair="GGP Staking",
            category="Token Staking",
            apy=apy,
            tvl_usd=protocol_tvl * GGP_STAKING_TVL_SHARE,
            base_risk="Medium",
            confidence=CONFIDENCE_PRICE_HEURISTIC,
            sources=["gogopool-api" if live else "gogopool-fallback"],
            features=["GGP Rewards", "Minipool Collateral", "Protocol Governance"],
        )

    def _minipools(self, metrics: Dict[str, Any], avax: float) -> Optional[StakingSnapshot]:
        active = _first_number(metrics, ("minipoolsActive", "activeMinipools"))
        apy = _first_number(metrics, ("minipoolApr", "minipoolApy"))
        if active is None or apy is None:
            return None
        return StakingSnapshot(
            name="minipool",
            pair="Minipool Validation",
            category="Validator Staking",
            apy=apy,
            tvl_usd=active * MINIPOOL_AVAX * avax,
            base_risk="Medium",
            confidence=CONFIDENCE_OFFICIAL_API,
            sources=["gogopool-api"],
            features=["Validator Rewards", "1000 AVAX Required", "Hardware Operation"],
        )
