from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

from yield_dashboard.clients import avant as avant_api
from yield_dashboard.clients.chain import ChainReader
from yield_dashboard.http import HttpClient
from yield_dashboard.models import ProtocolSnapshot, StakingSnapshot
from yield_dashboard.protocols.base import (
    CONFIDENCE_FALLBACK,
    CONFIDENCE_ONCHAIN,
    CONFIDENCE_OFFICIAL_API,
    CONFIDENCE_RATE_HISTORY,
    ProtocolFetcher,
    source,
    sources_used,
)
from yield_dashboard.services.prices import PriceOracle
from yield_dashboard.services.rate_tracker import ExchangeRateTracker
from yield_dashboard.services.validator import DataSource, validate_apy

logger = logging.getLogger(__name__)

AVUSDX = "0xDd1cDFA52E7D8474d434cd016fd346701db6B3B9"
AVUSDX_BASE_APY = 4.50


@dataclass(frozen=True)
class Vault:
    symbol: str
    address: str
    asset: str
    price_symbol: str
    decimals: int
    risk: str
    features: tuple


VAULTS = (
    Vault(
        "savUSD", "0x06d47F3fb376649c3A9Dafe069B3D6E35572219E", "avUSD", "usdc", 18, "Low",
        ("ERC-4626 Vault", "Delta-Neutral Strategy", "1-day Cooldown"),
    ),
    Vault(
        "savBTC", "0x649342c6bff544d82DF1B2bA3C93e0C22cDeBa84", "avBTC", "btc", 8, "Medium",
        ("Bitcoin Yield", "ERC-4626 Vault", "Delta-Neutral Strategy"),
    ),
)


class AvantFetcher(ProtocolFetcher):
    """savUSD and savBTC ERC-4626 vaults plus the avUSDx stable token."""

    name = "Avant Finance"
    slug = "avant"

    FALLBACKS = {
        "savUSD.total_assets": 4_800_000 * 10**18,
        "savUSD.apy": 5.85,
        "savBTC.apy": 9.12,
    }

    def __init__(self, http: HttpClient, chain: ChainReader, prices: PriceOracle, tracker: ExchangeRateTracker):
        self.http = http
        self.chain = chain
        self.prices = prices
        self.tracker = tracker

    async def _collect(self, snapshot: ProtocolSnapshot) -> None:
        prices = await self.prices.get_token_prices([v.price_symbol for v in VAULTS])
        snapshot.prices = prices
        api_r, avusdx_r, *vaults = await asyncio.gather(
            self._read(snapshot, "metrics", avant_api.fetch_vault_apys(self.http)),
            self._read(snapshot, "avUSDx.total_supply", self.chain.call_uint(AVUSDX, "totalSupply()")),
            *(self._vault(snapshot, v, prices.get(v.price_symbol, 1.0)) for v in VAULTS),
        )
        api_apys: Dict[str, float] = api_r.value or {}
        for v, (vault_snapshot, tracked_apy) in zip(VAULTS, vaults):
            if vault_snapshot is None:
                continue
            self._apply_apy(snapshot, v, vault_snapshot, api_apys.get(v.symbol), tracked_apy)
            snapshot.positions.append(vault_snapshot)

        if avusdx_r.value is not None:
            snapshot.positions.append(
                StakingSnapshot(
                    name="avusdx",
                    pair="avUSDx",
                    category="Lending",
                    apy=AVUSDX_BASE_APY,
                    tvl_usd=avusdx_r.value / 1e18,
                    confidence=CONFIDENCE_ONCHAIN,
                    sources=["avusdx-onchain"],
                    features=["Stable Token", "Cross-Chain", "Yield-Bearing"],
                )
            )

    async def _vault(self, snapshot: ProtocolSnapshot, v: Vault, price: float) -> tuple[Optional[StakingSnapshot], Optional[float]]:
        one_share = 10 ** 18
        assets_r, rate_r = await asyncio.gather(
            self._read(snapshot, f"{v.symbol}.total_assets", self.chain.call_uint(v.address, "totalAssets()")),
            self._read(snapshot, f"{v.symbol}.share_price", self.chain.call_uint(v.address, "convertToAssets(uint256)", one_share)),
        )
        if assets_r.value is None:
            logger.info(f"Avant {v.symbol}: vault unreachable and no fallback, skipping")
            return None, None
        if rate_r.ok:
            self.tracker.record(f"avant:{v.symbol.lower()}", rate_r.value / 10 ** v.decimals)
        tvl = assets_r.value / 10 ** v.decimals * price
        return (
            StakingSnapshot(
                name=v.symbol.lower(),
                pair=f"{v.asset} → {v.symbol}",
                category="Yield Farming",
                tvl_usd=tvl,
                base_risk=v.risk,
                confidence=CONFIDENCE_ONCHAIN if assets_r.ok else CONFIDENCE_FALLBACK,
                features=list(v.features),
            ),
            self.tracker.apy(f"avant:{v.symbol.lower()}"),
        )

    def _apply_apy(self, snapshot: ProtocolSnapshot, v: Vault, vault: StakingSnapshot, api_apy: Optional[float], tracked: Optional[float]) -> None:
        sources: List[DataSource] = []
        if api_apy is not None:
            sources.append(source("avant-api", api_apy, CONFIDENCE_OFFICIAL_API))
        if tracked:
            sources.append(source("avant-vault-rate", tracked, CONFIDENCE_RATE_HISTORY))
        result = validate_apy(sources)
        if result.value <= 0:
            vault.apy = self.FALLBACKS[f"{v.symbol}.apy"]
            vault.confidence = min(vault.confidence, CONFIDENCE_FALLBACK)
            vault.sources = ["avant-fallback"]
            snapshot.fallback_fields.append(f"{v.symbol}.apy")
            return
        vault.apy = result.value
        # a lone source validates at 0.3; the vault read itself still counts
        vault.confidence = round((vault.confidence + max(result.confidence, CONFIDENCE_FALLBACK)) / 2, 4)
        vault.sources = sources_used(result.sources)
