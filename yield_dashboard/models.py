from __future__ import annotations

import math
import time
from typing import Annotated, Dict, List, Literal, Optional, Union

from pydantic import AliasChoices, BaseModel, Field, field_validator


def _finite_non_negative(v: object) -> float:
    try:
        f = float(v)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return 0.0
    if not math.isfinite(f) or f < 0:
        return 0.0
    return f


class TokenPrice(BaseModel):
    symbol: str
    price_usd: float
    fetched_at: float = Field(default_factory=time.time)


class _Position(BaseModel):
    confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    sources: List[str] = Field(default_factory=list)


class LiquidStakingSnapshot(_Position):
    kind: Literal["liquid_staking"] = "liquid_staking"
    pair: str
    apy: float = Field(default=0.0, validation_alias=AliasChoices("apy", "apr"), description="APY in %")
    tvl_usd: float = 0.0
    exchange_rate: float = 1.0
    total_assets: float = 0.0
    total_supply: float = 0.0

    @field_validator("apy", "tvl_usd", "exchange_rate", "total_assets", "total_supply", mode="before")
    @classmethod
    def _clean(cls, v):
        return _finite_non_negative(v)


class LendingSnapshot(_Position):
    kind: Literal["lending"] = "lending"
    symbol: str
    underlying: str
    supply_apy: float = 0.0
    borrow_apy: float = 0.0
    tvl_usd: float = 0.0
    total_borrows_usd: float = 0.0
    utilization: float = 0.0
    cash: float = 0.0

    @field_validator("supply_apy", "borrow_apy", "tvl_usd", "total_borrows_usd", "utilization", "cash", mode="before")
    @classmethod
    def _clean(cls, v):
        return _finite_non_negative(v)


class DexPairSnapshot(_Position):
    kind: Literal["dex_pair"] = "dex_pair"
    pair: str
    pool_id: Optional[str] = Field(default=None, description="Upstream pair or farm id")
    token0: str
    token1: str
    apr: float = 0.0
    tvl_usd: float = 0.0
    volume_24h: float = 0.0
    fees_24h: float = 0.0
    is_farm: bool = False
    reward_tokens: List[str] = Field(default_factory=list)

    @field_validator("apr", "tvl_usd", "volume_24h", "fees_24h", mode="before")
    @classmethod
    def _clean(cls, v):
        return _finite_non_negative(v)


class StakingSnapshot(_Position):
    kind: Literal["staking"] = "staking"
    name: str
    pair: str
    category: str = "Token Staking"
    apy: float = 0.0
    tvl_usd: float = 0.0
    base_risk: Literal["Low", "Medium", "High"] = "Low"
    features: List[str] = Field(default_factory=list)

    @field_validator("apy", "tvl_usd", mode="before")
    @classmethod
    def _clean(cls, v):
        return _finite_non_negative(v)


Position = Annotated[
    Union[LiquidStakingSnapshot, LendingSnapshot, DexPairSnapshot, StakingSnapshot],
    Field(discriminator="kind"),
]


class ProtocolSnapshot(BaseModel):
    protocol: str = Field(..., description="Display name, e.g. 'BENQI'")
    slug: str
    positions: List[Position] = Field(default_factory=list)
    prices: Dict[str, float] = Field(default_factory=dict)
    fetched_at: float = Field(default_factory=time.time)
    fallback_fields: List[str] = Field(default_factory=list)

    @property
    def liquid_staking(self) -> Optional[LiquidStakingSnapshot]:
        for p in self.positions:
            if isinstance(p, LiquidStakingSnapshot):
                return p
        return None

    def headline(self) -> Optional[Position]:
        """Liquid-staking position if present, else the largest by TVL."""
        ls = self.liquid_staking
        if ls is not None:
            return ls
        if not self.positions:
            return None
        return max(self.positions, key=lambda p: p.tvl_usd)


class AggregatedData(BaseModel):
    snapshots: Dict[str, ProtocolSnapshot] = Field(default_factory=dict)
    failures: Dict[str, str] = Field(default_factory=dict)
    last_updated: float = Field(default_factory=time.time)


class YieldOpportunity(BaseModel):
    id: str
    protocol: str
    category: str
    pair: str
    apy: str
    tvl: str
    risk: Literal["Low", "Medium", "High"]
    icon: str
    url: str
    is_live: bool
    features: List[str] = Field(default_factory=list)
    apy_value: float = 0.0
    tvl_usd: float = 0.0
    confidence: float = 0.0


class TotalMetrics(BaseModel):
    total_tvl: float = 0.0
    average_apy: float = 0.0
    active_protocols: int = 0


class DataAlert(BaseModel):
    protocol: str
    metric: Literal["apy", "tvl", "price", "volume"]
    issue: str
    severity: Literal["low", "medium", "high"]
    timestamp: float = Field(default_factory=time.time)
    current_value: float
    expected_range: Optional[List[float]] = None


class DataHealthScore(BaseModel):
    protocol: str
    overall: float
    apy: float
    tvl: float
    timestamp: float = Field(default_factory=time.time)
    alerts: List[DataAlert] = Field(default_factory=list)


class SystemHealth(BaseModel):
    overall_health: float
    protocol_health: Dict[str, float] = Field(default_factory=dict)
    critical_alerts: List[DataAlert] = Field(default_factory=list)
    total_alerts: int = 0


class QualityReport(BaseModel):
    status: Literal["healthy", "degraded", "critical"]
    message: str
    recommendations: List[str] = Field(default_factory=list)


class DashboardState(BaseModel):
    opportunities: List[YieldOpportunity] = Field(default_factory=list)
    is_loading: bool = False
    error: Optional[str] = None
    last_updated: Optional[float] = None
    total_metrics: TotalMetrics = Field(default_factory=TotalMetrics)
    data_quality: Literal["excellent", "good", "fair", "poor"] = "poor"
    system_health: Optional[SystemHealth] = None
    alerts: List[str] = Field(default_factory=list)
    protocol_health: Dict[str, DataHealthScore] = Field(default_factory=dict)


def position_apy(position: Position) -> float:
    """Headline yield of a position: supply APY for lending, APR for DEX pairs."""
    if isinstance(position, LendingSnapshot):
        return position.supply_apy
    if isinstance(position, DexPairSnapshot):
        return position.apr
    return position.apy
