from __future__ import annotations

import logging
from typing import Any, Dict, List

from yield_dashboard.clients.graphql import graphql_query
from yield_dashboard.config import get_settings
from yield_dashboard.http import HttpClient

logger = logging.getLogger(__name__)

# Latest daily snapshot per pair; dailyVolumeUSD is a 24h figure
PAIR_DAY_QUERY = """
{
  pairDayDatas(first: 20, orderBy: date, orderDirection: desc, where: { reserveUSD_gt: 100000 }) {
    pairAddress
    token0 { symbol }
    token1 { symbol }
    reserveUSD
    dailyVolumeUSD
  }
}
"""


async def fetch_pairs(http: HttpClient) -> List[Dict[str, Any]]:
    resp = await http.get(f"{get_settings().PANGOLIN_API_URL}/v2/pairs")
    data = resp.json()
    return data.get("pairs", []) if isinstance(data, dict) else list(data or [])


async def fetch_farms(http: HttpClient) -> List[Dict[str, Any]]:
    resp = await http.get(f"{get_settings().PANGOLIN_API_URL}/farms")
    data = resp.json()
    return data.get("farms", []) if isinstance(data, dict) else list(data or [])


async def fetch_subgraph_pairs(http: HttpClient) -> List[Dict[str, Any]]:
    """Daily pair data from the Pangolin subgraph, normalized to the REST pair shape."""
    s = get_settings()
    url = s.subgraph_url(s.PANGOLIN_SUBGRAPH_ID)
    if not url:
        raise RuntimeError("THEGRAPH_API_KEY not configured")
    data = await graphql_query(http, url, PAIR_DAY_QUERY)
    out: List[Dict[str, Any]] = []
    seen: set[str] = set()
    for d in data.get("pairDayDatas", []):
        pid = str(d.get("pairAddress") or "")
        if not pid or pid in seen:
            continue
        seen.add(pid)
        tvl = float(d.get("reserveUSD") or 0.0)
        volume = float(d.get("dailyVolumeUSD") or 0.0)
        out.append(
            {
                "id": pid,
                "token0": d.get("token0") or {},
                "token1": d.get("token1") or {},
                "tvl": tvl,
                "volume24h": volume,
                "fees24h": volume * 0.003,
                "apr": fee_apr(volume, tvl),
            }
        )
    return out


def fee_apr(volume_24h: float, tvl: float, fee: float = 0.003) -> float:
    """LP fee APR in % from 24h volume at a flat swap fee."""
    if volume_24h <= 0 or tvl <= 0:
        return 0.0
    return volume_24h * 365 * fee / tvl * 100
