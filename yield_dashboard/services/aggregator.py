from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable, List, Optional, Sequence

from yield_dashboard.clients.chain import ChainReader
from yield_dashboard.clients.defillama import LlamaPools
from yield_dashboard.http import HttpClient
from yield_dashboard.models import (
    AggregatedData,
    DexPairSnapshot,
    LendingSnapshot,
    TotalMetrics,
    YieldOpportunity,
    position_apy,
)
from yield_dashboard.protocols.avant import AvantFetcher
from yield_dashboard.protocols.base import ProtocolFetcher
from yield_dashboard.protocols.benqi import BenqiFetcher
from yield_dashboard.protocols.gogopool import GoGoPoolFetcher
from yield_dashboard.protocols.pangolin import PangolinFetcher
from yield_dashboard.protocols.silo import SiloFetcher
from yield_dashboard.services.opportunities import normalize
from yield_dashboard.services.prices import PriceOracle
from yield_dashboard.services.rate_tracker import ExchangeRateTracker

logger = logging.getLogger(__name__)

MIN_MARKET_TVL = 100_000.0


def default_fetchers(http: HttpClient, chain: ChainReader, prices: PriceOracle, tracker: ExchangeRateTracker, llama: LlamaPools) -> List[ProtocolFetcher]:
    return [
        BenqiFetcher(http, chain, prices, tracker, llama),
        GoGoPoolFetcher(http, chain, prices, tracker, llama),
        AvantFetcher(http, chain, prices, tracker),
        PangolinFetcher(http, prices),
        SiloFetcher(chain, prices),
    ]


class Aggregator:
    def __init__(self, fetchers: Sequence[ProtocolFetcher], clock: Callable[[], float] = time.time):
        self.fetchers = list(fetchers)
        self._clock = clock
        self._last_refresh_at: float | None = None

    @property
    def last_refresh_at(self) -> float | None:
        return self._last_refresh_at

    async def fetch_all_protocol_data(self) -> AggregatedData:
        """Run every fetcher concurrently; a failing protocol is left out, never raised."""
        results = await asyncio.gather(*(f.fetch_data() for f in self.fetchers), return_exceptions=True)
        data = AggregatedData(last_updated=self._clock())
        for fetcher, result in zip(self.fetchers, results):
            if isinstance(result, BaseException):
                if isinstance(result, asyncio.CancelledError):
                    raise result
                logger.error(f"{fetcher.name} fetch failed: {result!r}")
                data.failures[fetcher.slug] = str(result) or type(result).__name__
                continue
            data.snapshots[fetcher.slug] = result
        self._last_refresh_at = data.last_updated
        logger.info(f"Fetched {len(data.snapshots)}/{len(self.fetchers)} protocols")
        return data


def format_to_yield_opportunities(data: AggregatedData, min_market_tvl: float = MIN_MARKET_TVL) -> List[YieldOpportunity]:
    """Pure mapping from snapshots to display rows. Duplicate ids keep the first."""
    seen: set[str] = set()
    out: List[YieldOpportunity] = []
    for snapshot in data.snapshots.values():
        for position in snapshot.positions:
            for opp in normalize(snapshot, position, min_market_tvl):
                if opp.id in seen:
                    continue
                seen.add(opp.id)
                out.append(opp)
    return out


def calculate_total_metrics(data: AggregatedData, min_market_tvl: float = MIN_MARKET_TVL) -> TotalMetrics:
    total_tvl = 0.0
    apys: List[float] = []
    for snapshot in data.snapshots.values():
        for p in snapshot.positions:
            if isinstance(p, (LendingSnapshot, DexPairSnapshot)) and p.tvl_usd <= min_market_tvl:
                continue
            total_tvl += p.tvl_usd
            apy = position_apy(p)
            if isinstance(p, LendingSnapshot) and apy <= 0:
                continue
            apys.append(apy)
    return TotalMetrics(
        total_tvl=total_tvl,
        average_apy=sum(apys) / len(apys) if apys else 0.0,
        active_protocols=len(data.snapshots),
    )


SORT_KEYS = {
    "apy": lambda o: o.apy_value,
    "tvl": lambda o: o.tvl_usd,
    "confidence": lambda o: o.confidence,
}


def rank_opportunities(
    opportunities: List[YieldOpportunity],
    category: Optional[str] = None,
    protocol: Optional[str] = None,
    risk: Optional[str] = None,
    min_tvl: float = 0.0,
    sort_by: str = "apy",
    limit: Optional[int] = None,
) -> List[YieldOpportunity]:
    out = list(opportunities)
    if category:
        out = [o for o in out if o.category.lower() == category.lower()]
    if protocol:
        out = [o for o in out if o.protocol.lower() == protocol.lower()]
    if risk:
        out = [o for o in out if o.risk.lower() == risk.lower()]
    if min_tvl > 0:
        out = [o for o in out if o.tvl_usd >= min_tvl]
    out.sort(key=SORT_KEYS[sort_by], reverse=True)
    return out[:limit] if limit else out
