from __future__ import annotations

import logging
import time
from collections import defaultdict, deque
from typing import Awaitable, Callable, Deque, Dict, List, Optional

from yield_dashboard.models import DataAlert, DataHealthScore, ProtocolSnapshot, QualityReport, SystemHealth, position_apy
from yield_dashboard.services.storage import KeyValueStore

logger = logging.getLogger(__name__)

APY_MAX_PLAUSIBLE = 50.0
APY_MIN_PLAUSIBLE = 0.1
APY_MAX_DEVIATION = 0.5
TVL_MIN_PLAUSIBLE = 100_000.0
TVL_MAX_DEVIATION = 0.3

SEVERITY_SCORE = {"high": 30.0, "medium": 70.0, "low": 90.0}

ReferenceTvl = Callable[[str], Awaitable[Optional[float]]]


def baseline_key(protocol: str) -> str:
    return f"historical_apy_{protocol.lower().replace(' ', '_')}"


class DataMonitor:
    """Plausibility checks per protocol plus an alert ring buffer.

    System health is derived from stored alerts only, so it lags the data:
    it recovers as old alerts are evicted or cleared.
    """

    def __init__(
        self,
        store: KeyValueStore,
        reference_tvl: ReferenceTvl | None = None,
        max_alerts: int = 50,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.reference_tvl = reference_tvl
        self._clock = clock
        self._alerts: Deque[DataAlert] = deque(maxlen=max_alerts)

    @property
    def alerts(self) -> List[DataAlert]:
        return list(self._alerts)

    def _alert(self, protocol: str, metric: str, issue: str, severity: str, value: float, expected: List[float] | None = None) -> DataAlert:
        alert = DataAlert(
            protocol=protocol,
            metric=metric,
            issue=issue,
            severity=severity,
            timestamp=self._clock(),
            current_value=value,
            expected_range=expected,
        )
        self._alerts.append(alert)
        log = logger.warning if severity == "high" else logger.info
        log(f"{protocol} {metric} alert ({severity}): {issue}")
        return alert

    async def _previous_apy(self, protocol: str) -> Optional[float]:
        try:
            raw = await self.store.get(baseline_key(protocol))
        except Exception as e:
            logger.warning(f"Baseline read failed for {protocol}: {e}")
            return None
        if raw is None:
            return None
        try:
            return float(raw)
        except ValueError:
            return None

    async def _save_apy(self, protocol: str, apy: float) -> None:
        try:
            await self.store.set(baseline_key(protocol), repr(apy))
        except Exception as e:
            logger.warning(f"Baseline write failed for {protocol}: {e}")

    async def _reference(self, protocol: str) -> Optional[float]:
        if self.reference_tvl is None:
            return None
        try:
            return await self.reference_tvl(protocol)
        except Exception as e:
            logger.warning(f"Reference TVL lookup failed for {protocol}: {e}")
            return None

    async def validate_protocol_metrics(self, snapshot: ProtocolSnapshot) -> DataHealthScore:
        protocol = snapshot.protocol
        alerts: List[DataAlert] = []
        apy_score = 100.0
        tvl_score = 100.0

        headline = snapshot.headline()
        apy = position_apy(headline) if headline is not None else 0.0
        tvl = sum(p.tvl_usd for p in snapshot.positions)

        if apy > APY_MAX_PLAUSIBLE:
            alerts.append(self._alert(protocol, "apy", f"APY {apy:.2f}% exceeds {APY_MAX_PLAUSIBLE:.0f}%", "high", apy, [APY_MIN_PLAUSIBLE, APY_MAX_PLAUSIBLE]))
            apy_score = 30.0
        elif apy < APY_MIN_PLAUSIBLE:
            alerts.append(self._alert(protocol, "apy", f"APY {apy:.2f}% below {APY_MIN_PLAUSIBLE}%", "medium", apy, [APY_MIN_PLAUSIBLE, APY_MAX_PLAUSIBLE]))
            apy_score = 60.0

        previous = await self._previous_apy(protocol)
        if previous and previous > 0:
            deviation = abs(apy - previous) / previous
            if deviation > APY_MAX_DEVIATION:
                alerts.append(
                    self._alert(
                        protocol, "apy", f"APY moved {deviation * 100:.0f}% from previous {previous:.2f}%", "medium", apy,
                        [previous * (1 - APY_MAX_DEVIATION), previous * (1 + APY_MAX_DEVIATION)],
                    )
                )
                apy_score = min(apy_score, 70.0)
        if apy > 0:
            await self._save_apy(protocol, apy)

        if tvl < TVL_MIN_PLAUSIBLE:
            alerts.append(self._alert(protocol, "tvl", f"TVL ${tvl:,.0f} below ${TVL_MIN_PLAUSIBLE:,.0f}", "high", tvl))
            tvl_score = 30.0

        reference = await self._reference(protocol)
        if reference and reference > 0:
            deviation = abs(tvl - reference) / reference
            if deviation > TVL_MAX_DEVIATION:
                alerts.append(
                    self._alert(
                        protocol, "tvl", f"TVL differs {deviation * 100:.0f}% from DefiLlama (${reference / 1e6:.1f}M)", "medium", tvl,
                        [reference * (1 - TVL_MAX_DEVIATION), reference * (1 + TVL_MAX_DEVIATION)],
                    )
                )
                tvl_score = min(tvl_score, 75.0)

        return DataHealthScore(
            protocol=protocol,
            overall=(apy_score + tvl_score) / 2,
            apy=apy_score,
            tvl=tvl_score,
            timestamp=self._clock(),
            alerts=alerts,
        )

    def get_system_health(self) -> SystemHealth:
        per_protocol: Dict[str, List[float]] = defaultdict(list)
        for a in self._alerts:
            per_protocol[a.protocol].append(SEVERITY_SCORE[a.severity])
        scores = {p: sum(v) / len(v) for p, v in per_protocol.items()}
        overall = sum(scores.values()) / len(scores) if scores else 100.0
        return SystemHealth(
            overall_health=overall,
            protocol_health=scores,
            critical_alerts=[a for a in self._alerts if a.severity == "high"],
            total_alerts=len(self._alerts),
        )

    def clear_old_alerts(self, max_age_hours: float = 24) -> int:
        cutoff = self._clock() - max_age_hours * 3600
        kept = [a for a in self._alerts if a.timestamp > cutoff]
        removed = len(self._alerts) - len(kept)
        self._alerts.clear()
        self._alerts.extend(kept)
        return removed

    def get_protocol_alerts(self, protocol: str) -> List[DataAlert]:
        return [a for a in self._alerts if a.protocol == protocol]

    @staticmethod
    def data_quality(overall: float) -> str:
        if overall >= 85:
            return "excellent"
        if overall >= 70:
            return "good"
        if overall >= 50:
            return "fair"
        return "poor"

    def quality_report(self) -> QualityReport:
        health = self.get_system_health()
        if health.overall_health >= 80:
            return QualityReport(status="healthy", message="All protocol data sources are providing validated information")
        if health.overall_health >= 60:
            return QualityReport(
                status="degraded",
                message="Some data inconsistencies detected. Using best available sources.",
                recommendations=[
                    "Cross-referencing multiple data sources",
                    "Monitoring for improved data quality",
                    "Using confidence scores to prioritize reliable data",
                ],
            )
        return QualityReport(
            status="critical",
            message="Significant data quality issues detected. Exercise caution.",
            recommendations=[
                "Verify yields on official protocol websites",
                "Wait for data sources to stabilize",
                "Consider using only high-confidence opportunities",
            ],
        )
