import pytest
from fastapi.testclient import TestClient

from conftest import FakeFetcher, StaticPrices
from yield_dashboard.background import DashboardRefresher
from yield_dashboard.main import app
from yield_dashboard.models import LendingSnapshot, LiquidStakingSnapshot
from yield_dashboard.services.aggregator import Aggregator
from yield_dashboard.services.monitor import DataMonitor
from yield_dashboard.services.storage import MemoryStore


@pytest.fixture
def benqi():
    return FakeFetcher(
        "BENQI",
        "benqi",
        [
            LiquidStakingSnapshot(pair="AVAX → sAVAX", apy=5.05, tvl_usd=650_000_000, confidence=0.9),
            LendingSnapshot(symbol="qiUSDC", underlying="USDC", supply_apy=3.1, borrow_apy=5.2, tvl_usd=4e6,
                            total_borrows_usd=3e6, utilization=75.0, confidence=0.95),
        ],
    )


@pytest.fixture
def client(clock, benqi):
    fetchers = [benqi, FakeFetcher("Silo Finance", "silo", error=RuntimeError("lens reverted"))]
    app.state.refresher = DashboardRefresher(
        Aggregator(fetchers, clock=clock), DataMonitor(MemoryStore(), clock=clock), interval=60, min_market_tvl=100_000
    )
    app.state.prices = StaticPrices()
    # no context manager: startup hooks (real clients, refresh loop) stay off
    yield TestClient(app)
    app.state.refresher = None
    app.state.prices = None


def test_health(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "ok"


def test_opportunities_sorted_by_apy(client):
    resp = client.get("/api/opportunities")
    assert resp.status_code == 200
    ids = [o["id"] for o in resp.json()]
    assert ids == ["benqi-qiusdc-borrow", "benqi-savax", "benqi-qiusdc"]


def test_opportunities_filters(client):
    by_tvl = client.get("/api/opportunities", params={"sort_by": "tvl", "limit": 1}).json()
    assert [o["id"] for o in by_tvl] == ["benqi-savax"]
    lending = client.get("/api/opportunities", params={"category": "Lending"}).json()
    assert [o["id"] for o in lending] == ["benqi-qiusdc"]
    assert client.get("/api/opportunities", params={"protocol": "Silo Finance"}).json() == []


@pytest.mark.parametrize("params", [{"risk": "Extreme"}, {"sort_by": "name"}, {"limit": 0}])
def test_opportunities_rejects_bad_query(client, params):
    assert client.get("/api/opportunities", params=params).status_code == 422


def test_metrics(client):
    body = client.get("/api/metrics").json()
    assert body["active_protocols"] == 1
    assert body["total_tvl"] == pytest.approx(654_000_000)


def test_protocols(client):
    body = client.get("/api/protocols").json()
    assert list(body) == ["benqi"]
    assert body["benqi"]["positions"][0]["kind"] == "liquid_staking"


def test_dashboard_reports_unavailable_protocol(client):
    body = client.get("/api/dashboard").json()
    assert body["alerts"] == ["Silo Finance data unavailable"]
    assert body["error"] is None
    assert body["is_loading"] is False
    assert len(body["opportunities"]) == 3


def test_data_quality_and_alerts(client):
    body = client.get("/api/data-quality").json()
    assert body["data_quality"] == "excellent"
    assert body["report"]["status"] == "healthy"
    assert set(body["protocols"]) == {"BENQI"}
    assert client.get("/api/alerts").json() == []
    assert client.get("/api/alerts", params={"protocol": "BENQI"}).json() == []


def test_prices(client):
    assert client.get("/api/prices", params={"symbols": "AVAX, usdc"}).json() == {"avax": 40.0, "usdc": 1.0}


def test_manual_refresh(client, benqi):
    client.get("/api/metrics")
    resp = client.post("/api/refresh")
    assert resp.status_code == 200
    assert resp.json()["opportunities"] == 3
    assert benqi.calls == 2


def test_unavailable_before_startup():
    app.state.refresher = None
    client = TestClient(app)
    assert client.get("/api/metrics").status_code == 503
    assert client.get("/health").json()["is_loading"] is True
