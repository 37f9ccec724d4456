from __future__ import annotations

import math
from typing import Dict, List, Optional

from yield_dashboard.models import (
    DexPairSnapshot,
    LendingSnapshot,
    LiquidStakingSnapshot,
    Position,
    ProtocolSnapshot,
    StakingSnapshot,
    YieldOpportunity,
)
from yield_dashboard.services.risk import assess_risk

LIVE_CONFIDENCE = 0.7
MIN_BORROW_APY = 0.1

# Per protocol slug: icon, default url, and per-kind url overrides
PROTOCOL_DISPLAY: Dict[str, Dict[str, str]] = {
    "benqi": {"icon": "🔥", "url": "https://app.benqi.fi/stake", "lending": "https://app.benqi.fi/lending"},
    "gogopool": {"icon": "⚡", "url": "https://www.gogopool.com/stake", "minipool": "https://www.gogopool.com/minipool"},
    "avant": {"icon": "💰", "url": "https://app.avantprotocol.com"},
    "pangolin": {"icon": "🥞", "url": "https://app.pangolin.exchange"},
    "silo": {"icon": "🏛️", "url": "https://app.silo.finance"},
}

POSITION_ICONS = {"savbtc": "₿", "avusdx": "💎"}

LIQUID_STAKING_FEATURES = {
    "benqi": ["Liquid", "No Lock-up", "Validator Rewards"],
    "gogopool": ["Minipool Network", "Decentralized", "Node Operators"],
}


def format_apy(value: Optional[float]) -> str:
    if value is None or not math.isfinite(value):
        return "N/A"
    return f"{max(value, 0.0):.2f}%"


def format_tvl(value: Optional[float]) -> str:
    if value is None or not math.isfinite(value):
        return "N/A"
    return f"${max(value, 0.0) / 1e6:.1f}M"


def _display(snapshot: ProtocolSnapshot) -> Dict[str, str]:
    return PROTOCOL_DISPLAY.get(snapshot.slug, {"icon": "•", "url": "#"})


def _opportunity(snapshot: ProtocolSnapshot, *, id: str, category: str, pair: str, apy: float, tvl: float,
                 risk: str, icon: str | None = None, url: str | None = None, confidence: float,
                 features: List[str]) -> YieldOpportunity:
    display = _display(snapshot)
    return YieldOpportunity(
        id=id,
        protocol=snapshot.protocol,
        category=category,
        pair=pair,
        apy=format_apy(apy),
        tvl=format_tvl(tvl),
        risk=risk,
        icon=icon or display["icon"],
        url=url or display["url"],
        is_live=confidence > LIVE_CONFIDENCE,
        features=features,
        apy_value=apy if math.isfinite(apy) else 0.0,
        tvl_usd=tvl if math.isfinite(tvl) else 0.0,
        confidence=confidence,
    )


def normalize(snapshot: ProtocolSnapshot, position: Position, min_market_tvl: float = 100_000.0) -> List[YieldOpportunity]:
    """Map one protocol position to zero or more display opportunities."""
    slug = snapshot.slug
    display = _display(snapshot)

    if isinstance(position, LiquidStakingSnapshot):
        token = position.pair.split("→")[-1].strip().lower()
        return [
            _opportunity(
                snapshot,
                id=f"{slug}-{token}",
                category="Liquid Staking",
                pair=position.pair,
                apy=position.apy,
                tvl=position.tvl_usd,
                risk=assess_risk(position.apy, confidence=position.confidence),
                confidence=position.confidence,
                features=list(LIQUID_STAKING_FEATURES.get(slug, ["Liquid Staking"])),
            )
        ]

    if isinstance(position, LendingSnapshot):
        if position.tvl_usd <= min_market_tvl:
            return []
        url = display.get("lending")
        utilization = f"{position.utilization:.1f}% Utilization"
        risk = assess_risk(position.supply_apy, position.utilization, position.confidence)
        base_id = f"{slug}-{position.symbol.lower()}"
        out = [
            _opportunity(
                snapshot,
                id=base_id,
                category="Lending",
                pair=f"{position.underlying} (Supply)",
                apy=position.supply_apy,
                tvl=position.tvl_usd,
                risk=risk,
                url=url,
                confidence=position.confidence,
                features=["Lending", utilization, "Stablecoin" if "USD" in position.underlying.upper() else "Volatile Asset"],
            )
        ]
        if position.borrow_apy > MIN_BORROW_APY:
            out.append(
                _opportunity(
                    snapshot,
                    id=f"{base_id}-borrow",
                    category="Borrowing",
                    pair=f"{position.underlying} (Borrow)",
                    apy=position.borrow_apy,
                    tvl=position.total_borrows_usd,
                    risk=assess_risk(position.borrow_apy, position.utilization, position.confidence),
                    url=url,
                    confidence=position.confidence,
                    features=["Borrowing", "Variable Rate", utilization],
                )
            )
        return out

    if isinstance(position, DexPairSnapshot):
        if position.is_farm:
            features = ["Farm", f"Rewards: {', '.join(position.reward_tokens) or 'PNG'}"]
        else:
            features = ["AMM Pool", f"24h Volume ${position.volume_24h / 1e3:,.0f}K"]
        return [
            _opportunity(
                snapshot,
                id=f"{slug}-{(position.pool_id or position.pair).lower()}" + ("-farm" if position.is_farm else ""),
                category="Yield Farming",
                pair=position.pair,
                apy=position.apr,
                tvl=position.tvl_usd,
                risk=assess_risk(position.apr, confidence=position.confidence),
                confidence=position.confidence,
                features=features,
            )
        ]

    if isinstance(position, StakingSnapshot):
        return [
            _opportunity(
                snapshot,
                id=f"{slug}-{position.name}",
                category=position.category,
                pair=position.pair,
                apy=position.apy,
                tvl=position.tvl_usd,
                risk=assess_risk(position.apy, confidence=position.confidence, base=position.base_risk),
                icon=POSITION_ICONS.get(position.name),
                url=display.get(position.name),
                confidence=position.confidence,
                features=list(position.features),
            )
        ]

    return []
