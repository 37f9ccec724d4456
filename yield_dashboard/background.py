from __future__ import annotations

import asyncio
import logging
from typing import Dict, Optional

from yield_dashboard.config import get_settings
from yield_dashboard.models import AggregatedData, DashboardState, DataHealthScore
from yield_dashboard.services.aggregator import Aggregator, calculate_total_metrics, format_to_yield_opportunities
from yield_dashboard.services.monitor import DataMonitor

logger = logging.getLogger(__name__)

ALL_FAILED = "Failed to fetch live protocol data"


class DashboardRefresher:
    """Periodic refresh loop owning the published DashboardState.

    Refreshes are single-flight: a refresh requested while one is running
    awaits that run. Readers always see the last complete state; while a
    cycle is in flight only `is_loading` changes.
    """

    def __init__(self, aggregator: Aggregator, monitor: DataMonitor, interval: float | None = None, min_market_tvl: float | None = None):
        settings = get_settings()
        self.aggregator = aggregator
        self.monitor = monitor
        self.interval = interval if interval is not None else settings.REFRESH_INTERVAL_SECONDS
        self.min_market_tvl = min_market_tvl if min_market_tvl is not None else settings.MIN_MARKET_TVL_USD
        self.state = DashboardState(is_loading=True)
        self.data: Optional[AggregatedData] = None
        self._inflight: Optional[asyncio.Task] = None
        self._task: Optional[asyncio.Task] = None
        self._stopping = asyncio.Event()

    async def start(self) -> None:
        if self._task is None:
            self._stopping.clear()
            self._task = asyncio.create_task(self._run_loop())

    async def stop(self) -> None:
        self._stopping.set()
        if self._task:
            await self._task
            self._task = None

    async def refresh(self) -> DashboardState:
        if self._inflight is None or self._inflight.done():
            self._inflight = asyncio.create_task(self._refresh_once())
        # a cancelled caller must not cancel the shared cycle
        return await asyncio.shield(self._inflight)

    async def _refresh_once(self) -> DashboardState:
        self.state = self.state.model_copy(update={"is_loading": True})
        try:
            data = await self.aggregator.fetch_all_protocol_data()
        except Exception as e:
            logger.exception(f"Aggregation failed: {e}")
            self.state = self.state.model_copy(update={"is_loading": False, "error": ALL_FAILED})
            return self.state

        names = {f.slug: f.name for f in self.aggregator.fetchers}
        alerts = [f"{names.get(slug, slug)} data unavailable" for slug in data.failures]
        if not data.snapshots:
            logger.error("All protocol fetches failed, keeping previous opportunities")
            self.state = self.state.model_copy(update={"is_loading": False, "error": ALL_FAILED, "alerts": alerts})
            return self.state

        self.monitor.clear_old_alerts()
        scores = await asyncio.gather(*(self.monitor.validate_protocol_metrics(s) for s in data.snapshots.values()))
        protocol_health: Dict[str, DataHealthScore] = {s.protocol: s for s in scores}
        overall = sum(s.overall for s in scores) / len(scores)

        self.data = data
        self.state = DashboardState(
            opportunities=format_to_yield_opportunities(data, self.min_market_tvl),
            is_loading=False,
            error=None,
            last_updated=data.last_updated,
            total_metrics=calculate_total_metrics(data, self.min_market_tvl),
            data_quality=self.monitor.data_quality(overall),
            system_health=self.monitor.get_system_health(),
            alerts=alerts,
            protocol_health=protocol_health,
        )
        return self.state

    async def _run_loop(self) -> None:
        logger.info(f"Dashboard refresher started (interval={self.interval}s)")
        while not self._stopping.is_set():
            try:
                state = await self.refresh()
                logger.info(f"Refreshed opportunities: {len(state.opportunities)}")
            except Exception as e:
                logger.exception(f"Refresh iteration failed: {e}")
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                pass
