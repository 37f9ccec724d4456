from __future__ import annotations

import logging
from typing import Dict

from yield_dashboard.config import get_settings
from yield_dashboard.http import HttpClient
from yield_dashboard.utils.numbers import parse_number

logger = logging.getLogger(__name__)


async def fetch_vault_apys(http: HttpClient) -> Dict[str, float]:
    """Vault APYs from the Avant metrics API, keyed by vault symbol (savUSD, savBTC)."""
    resp = await http.get(f"{get_settings().AVANT_API_URL}/metrics")
    data = resp.json() or {}
    out: Dict[str, float] = {}
    for vault in ("savUSD", "savBTC"):
        apy = parse_number((data.get(vault) or {}).get("apy"))
        if apy is not None:
            out[vault] = apy
    if not out:
        raise RuntimeError("Avant metrics returned no vault APYs")
    return out
