from __future__ import annotations

import asyncio
import logging
from typing import Dict, List, Optional, Set

from fastapi import FastAPI, HTTPException, Query
from redis.asyncio import Redis

from yield_dashboard.background import DashboardRefresher
from yield_dashboard.clients.chain import ChainReader
from yield_dashboard.clients.defillama import LlamaPools, ReferenceTvl
from yield_dashboard.config import get_settings
from yield_dashboard.http import HttpClient
from yield_dashboard.models import DashboardState, DataAlert, ProtocolSnapshot, TotalMetrics, YieldOpportunity
from yield_dashboard.services.aggregator import Aggregator, default_fetchers, rank_opportunities
from yield_dashboard.services.monitor import DataMonitor
from yield_dashboard.services.prices import PriceOracle
from yield_dashboard.services.rate_tracker import ExchangeRateTracker
from yield_dashboard.services.storage import MemoryStore, RedisStore
from yield_dashboard.utils.logging import setup_logging
from yield_dashboard.utils.loki import loki_log

app = FastAPI(title="Avalanche Yield Dashboard", version="1.0.0")

logger = logging.getLogger(__name__)

SETTINGS = get_settings()


def _refresher() -> DashboardRefresher:
    ref = getattr(app.state, "refresher", None)
    if ref is None:
        raise HTTPException(status_code=503, detail="Service starting")
    return ref


async def _current_state() -> DashboardState:
    ref = _refresher()
    # nothing published yet: join (or start) the first cycle
    if ref.state.last_updated is None and ref.state.error is None:
        return await ref.refresh()
    return ref.state


# Loki pushes in flight; held so the loop does not drop them mid-send.
_loki_tasks: Set[asyncio.Task] = set()


if SETTINGS.ENABLE_LOKI:
    @app.middleware("http")
    async def _loki_logger(request, call_next):
        response = await call_next(request)
        http = getattr(app.state, "http", None)
        if http is not None:
            task = asyncio.create_task(
                loki_log(
                    http,
                    "INFO",
                    "request",
                    extra={
                        "path": str(request.url.path),
                        "method": request.method,
                        "status": response.status_code,
                        "client_ip": request.client.host if request.client else None,
                    },
                )
            )
            _loki_tasks.add(task)
            task.add_done_callback(_loki_tasks.discard)
        return response


@app.on_event("startup")
async def startup_event() -> None:
    settings = get_settings()
    setup_logging(settings.LOG_LEVEL)

    app.state.http = HttpClient(timeout=settings.HTTP_TIMEOUT_SECONDS)
    if settings.ENABLE_REDIS:
        app.state.redis = Redis.from_url(settings.REDIS_URL, decode_responses=False)
        store = RedisStore(app.state.redis)
    else:
        app.state.redis = None
        store = MemoryStore()

    http = app.state.http
    app.state.prices = PriceOracle(http)
    fetchers = default_fetchers(
        http,
        ChainReader(http, settings.AVALANCHE_RPC_URL),
        app.state.prices,
        ExchangeRateTracker(),
        LlamaPools(http),
    )
    monitor = DataMonitor(store, reference_tvl=ReferenceTvl(http), max_alerts=settings.MAX_ALERTS)
    app.state.refresher = DashboardRefresher(Aggregator(fetchers), monitor)
    # first cycle runs inside the loop so startup doesn't hang on external APIs
    await app.state.refresher.start()
    logger.info(f"✅ Yield dashboard started (refresh every {settings.REFRESH_INTERVAL_SECONDS}s)")


@app.on_event("shutdown")
async def shutdown_event() -> None:
    if getattr(app.state, "refresher", None):
        await app.state.refresher.stop()
    if getattr(app.state, "redis", None):
        try:
            await app.state.redis.aclose()
        except Exception as e:
            logger.warning(f"Redis close failed: {e}")
    if getattr(app.state, "http", None):
        await app.state.http.aclose()


@app.get("/health")
async def health():
    ref = getattr(app.state, "refresher", None)
    return {
        "status": "ok",
        "last_updated": ref.state.last_updated if ref else None,
        "is_loading": ref.state.is_loading if ref else True,
    }


@app.get("/api/opportunities", response_model=List[YieldOpportunity])
async def get_opportunities(
    limit: int = Query(50, ge=1, le=200),
    category: Optional[str] = None,
    protocol: Optional[str] = None,
    risk: Optional[str] = Query(None, pattern="^(Low|Medium|High)$"),
    min_tvl: float = Query(0.0, ge=0.0),
    sort_by: str = Query("apy", pattern="^(apy|tvl|confidence)$"),
):
    state = await _current_state()
    return rank_opportunities(
        state.opportunities,
        category=category,
        protocol=protocol,
        risk=risk,
        min_tvl=min_tvl,
        sort_by=sort_by,
        limit=limit,
    )


@app.get("/api/metrics", response_model=TotalMetrics)
async def get_metrics():
    return (await _current_state()).total_metrics


@app.get("/api/protocols", response_model=Dict[str, ProtocolSnapshot])
async def get_protocols():
    await _current_state()
    data = _refresher().data
    return data.snapshots if data else {}


@app.get("/api/data-quality")
async def get_data_quality():
    state = await _current_state()
    monitor = _refresher().monitor
    return {
        "data_quality": state.data_quality,
        "report": monitor.quality_report().model_dump(),
        "system_health": monitor.get_system_health().model_dump(),
        "protocols": {k: v.model_dump() for k, v in state.protocol_health.items()},
    }


@app.get("/api/alerts", response_model=List[DataAlert])
async def get_alerts(protocol: Optional[str] = None):
    monitor = _refresher().monitor
    return monitor.get_protocol_alerts(protocol) if protocol else monitor.alerts


@app.get("/api/dashboard", response_model=DashboardState)
async def get_dashboard():
    return await _current_state()


@app.get("/api/prices")
async def get_prices(symbols: str = Query("avax,eth,btc,usdc", min_length=1)):
    oracle: PriceOracle | None = getattr(app.state, "prices", None)
    if oracle is None:
        raise HTTPException(status_code=503, detail="Service starting")
    wanted = [s.strip() for s in symbols.split(",") if s.strip()]
    return await oracle.get_token_prices(wanted)


@app.post("/api/refresh")
async def post_refresh():
    state = await _refresher().refresh()
    return {
        "opportunities": len(state.opportunities),
        "last_updated": state.last_updated,
        "error": state.error,
        "alerts": state.alerts,
    }
