from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List

from pydantic import ValidationError

from yield_dashboard.clients import pangolin as pangolin_api
from yield_dashboard.http import HttpClient
from yield_dashboard.models import DexPairSnapshot, ProtocolSnapshot
from yield_dashboard.protocols.base import (
    CONFIDENCE_ESTIMATE,
    CONFIDENCE_FALLBACK,
    CONFIDENCE_OFFICIAL_API,
    ProtocolFetcher,
    read_or_fallback,
)
from yield_dashboard.services.prices import PriceOracle
from yield_dashboard.utils.numbers import parse_number

logger = logging.getLogger(__name__)

PAIR_MIN_APR, PAIR_MIN_TVL = 5.0, 100_000.0
FARM_MIN_APR, FARM_MIN_TVL = 10.0, 50_000.0

FALLBACK_PAIRS = [
    {"id": "avax-usdc", "token0": {"symbol": "AVAX"}, "token1": {"symbol": "USDC"}, "apr": 12.5, "tvl": 2_400_000, "volume24h": 145_000, "fees24h": 450},
    {"id": "avax-png", "token0": {"symbol": "AVAX"}, "token1": {"symbol": "PNG"}, "apr": 18.7, "tvl": 1_800_000, "volume24h": 89_000, "fees24h": 267},
]
FALLBACK_FARMS = [
    {"id": "avax-usdc", "token0": {"symbol": "AVAX"}, "token1": {"symbol": "USDC"}, "apr": 25.3, "tvl": 1_500_000, "rewardTokens": ["PNG"]},
]


def _symbol(token: Any) -> str:
    if isinstance(token, dict):
        return str(token.get("symbol") or "Unknown")
    return str(token or "Unknown")


def _num(raw: Dict[str, Any], key: str) -> float:
    return parse_number(raw.get(key)) or 0.0


def to_position(raw: Dict[str, Any], is_farm: bool, confidence: float, source_id: str) -> DexPairSnapshot:
    t0, t1 = _symbol(raw.get("token0")), _symbol(raw.get("token1"))
    return DexPairSnapshot(
        pair=f"{t0}-{t1}",
        pool_id=str(raw.get("id") or "") or None,
        token0=t0,
        token1=t1,
        apr=_num(raw, "apr"),
        tvl_usd=_num(raw, "tvl"),
        volume_24h=_num(raw, "volume24h"),
        fees_24h=_num(raw, "fees24h"),
        is_farm=is_farm,
        reward_tokens=[_symbol(t) for t in raw.get("rewardTokens") or []],
        confidence=confidence,
        sources=[source_id],
    )


def to_positions(rows: List[Dict[str, Any]], is_farm: bool, confidence: float, source_id: str) -> List[DexPairSnapshot]:
    out: List[DexPairSnapshot] = []
    for raw in rows:
        try:
            out.append(to_position(raw, is_farm, confidence, source_id))
        except (ValidationError, TypeError, AttributeError) as e:
            logger.warning(f"Pangolin: skipping malformed {source_id} row {raw.get('id')}: {e}")
    return out


def significant(raw: List[Dict[str, Any]], min_apr: float, min_tvl: float) -> List[Dict[str, Any]]:
    return [r for r in raw if isinstance(r, dict) and _num(r, "apr") > min_apr and _num(r, "tvl") > min_tvl]


class PangolinFetcher(ProtocolFetcher):
    """Pangolin DEX pairs and farms: REST first, subgraph second, static list last."""

    name = "Pangolin"
    slug = "pangolin"

    FALLBACKS = {"pairs": [], "farms": []}

    def __init__(self, http: HttpClient, prices: PriceOracle):
        self.http = http
        self.prices = prices

    async def _collect(self, snapshot: ProtocolSnapshot) -> None:
        pairs_r, farms_r, prices = await asyncio.gather(
            self._read(snapshot, "pairs", pangolin_api.fetch_pairs(self.http)),
            self._read(snapshot, "farms", pangolin_api.fetch_farms(self.http)),
            self.prices.get_token_prices(["avax", "usdc"]),
        )
        snapshot.prices = prices
        live = to_positions(significant(pairs_r.value, PAIR_MIN_APR, PAIR_MIN_TVL), False, CONFIDENCE_OFFICIAL_API, "pangolin-api")
        live += to_positions(significant(farms_r.value, FARM_MIN_APR, FARM_MIN_TVL), True, CONFIDENCE_OFFICIAL_API, "pangolin-api")
        if live:
            snapshot.positions.extend(live)
            return

        sub_r = await read_or_fallback("pangolin.subgraph_pairs", pangolin_api.fetch_subgraph_pairs(self.http), [])
        sub_pairs = to_positions(significant(sub_r.value, PAIR_MIN_APR, PAIR_MIN_TVL), False, CONFIDENCE_ESTIMATE, "pangolin-subgraph")
        if sub_pairs:
            snapshot.positions.extend(sub_pairs)
            return

        logger.warning("Pangolin: no live pairs or farms, using static list")
        snapshot.fallback_fields.append("positions")
        snapshot.positions.extend(to_positions(FALLBACK_PAIRS, False, CONFIDENCE_FALLBACK, "pangolin-fallback"))
        snapshot.positions.extend(to_positions(FALLBACK_FARMS, True, CONFIDENCE_FALLBACK, "pangolin-fallback"))
