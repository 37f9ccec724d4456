from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

from yield_dashboard.clients.chain import ChainReader
from yield_dashboard.models import LendingSnapshot, ProtocolSnapshot
from yield_dashboard.protocols.base import CONFIDENCE_FALLBACK, CONFIDENCE_ONCHAIN, ProtocolFetcher
from yield_dashboard.services.prices import PriceOracle

logger = logging.getLogger(__name__)

SILO_LENS = "0x07b94eB6AaD663c4eaf083fBb52928ff9A15BE47"
GET_SILO_DATA = "getSiloData(address)"
# totalDeposits, totalBorrows, utilization, depositApy, borrowApy (rates scaled 1e18)
SILO_DATA_TYPES = ("uint256", "uint256", "uint256", "uint256", "uint256")
MIN_MARKET_TVL = 50_000.0


@dataclass(frozen=True)
class Silo:
    symbol: str
    address: str
    decimals: int


SILOS = (
    Silo("AVAX", "0xd57E7b53a1572d27A04d9c1De2c4D423C5d95538", 18),
    Silo("USDC", "0xd31a59c85aE9D8edEFeC411D448f90841571b89c", 6),
    Silo("ETH", "0x4D919CEcfD4793c0D47866C8d0a02a0950737589", 18),
    Silo("BTC", "0x69841244C6009C92f15669cE87960082F6beFbE0", 8),
)

# deposits, borrows (token units), deposit APY, borrow APY, utilization (%)
FALLBACK_MARKETS = (
    ("AVAX", 125_000, 89_000, 4.8, 7.2, 71.2),
    ("USDC", 2_100_000, 1_580_000, 3.2, 5.8, 75.2),
)


class SiloFetcher(ProtocolFetcher):
    """Isolated lending markets read through SiloLens.getSiloData."""

    name = "Silo Finance"
    slug = "silo"

    FALLBACKS = {}

    def __init__(self, chain: ChainReader, prices: PriceOracle):
        self.chain = chain
        self.prices = prices

    async def _collect(self, snapshot: ProtocolSnapshot) -> None:
        prices = await self.prices.get_token_prices([s.symbol for s in SILOS])
        snapshot.prices = prices
        markets = await asyncio.gather(*(self._market(snapshot, s, prices) for s in SILOS))
        live = [m for m in markets if m is not None]
        if live:
            snapshot.positions.extend(live)
            return
        logger.warning("Silo: no usable markets, using fallback markets")
        snapshot.fallback_fields.append("markets")
        snapshot.positions.extend(self._fallback_markets(prices))

    async def _market(self, snapshot: ProtocolSnapshot, silo: Silo, prices: Dict[str, float]) -> Optional[LendingSnapshot]:
        r = await self._read(
            snapshot, f"{silo.symbol}.silo_data", self.chain.call(SILO_LENS, GET_SILO_DATA, silo.address, returns=SILO_DATA_TYPES),
        )
        if r.value is None:
            return None
        total_deposits, total_borrows, utilization, deposit_apy, borrow_apy = r.value
        scale = 10 ** silo.decimals
        deposits, borrows = total_deposits / scale, total_borrows / scale
        price = prices.get(silo.symbol.lower(), 1.0)
        tvl = deposits * price
        if tvl <= MIN_MARKET_TVL:
            return None
        return LendingSnapshot(
            symbol=silo.symbol,
            underlying=silo.symbol,
            supply_apy=deposit_apy / 1e18 * 100,
            borrow_apy=borrow_apy / 1e18 * 100,
            tvl_usd=tvl,
            total_borrows_usd=borrows * price,
            utilization=utilization / 1e18 * 100,
            cash=max(0.0, deposits - borrows),
            confidence=CONFIDENCE_ONCHAIN,
            sources=["silo-lens"],
        )

    @staticmethod
    def _fallback_markets(prices: Dict[str, float]) -> List[LendingSnapshot]:
        out: List[LendingSnapshot] = []
        for symbol, deposits, borrows, dep_apy, bor_apy, util in FALLBACK_MARKETS:
            price = prices.get(symbol.lower(), 1.0)
            out.append(
                LendingSnapshot(
                    symbol=symbol,
                    underlying=symbol,
                    supply_apy=dep_apy,
                    borrow_apy=bor_apy,
                    tvl_usd=deposits * price,
                    total_borrows_usd=borrows * price,
                    utilization=util,
                    cash=deposits - borrows,
                    confidence=CONFIDENCE_FALLBACK,
                    sources=["silo-fallback"],
                )
            )
        return out
