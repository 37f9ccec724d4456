import pytest

from yield_dashboard.models import LendingSnapshot, LiquidStakingSnapshot, ProtocolSnapshot
from yield_dashboard.services.monitor import DataMonitor, baseline_key
from yield_dashboard.services.storage import MemoryStore


def staking(protocol="X", apy=5.0, tvl=1_000_000.0, extra=()):
    positions = [LiquidStakingSnapshot(pair="AVAX → xAVAX", apy=apy, tvl_usd=tvl, confidence=0.9)]
    positions.extend(extra)
    return ProtocolSnapshot(protocol=protocol, slug=protocol.lower(), positions=positions)


class BrokenStore:
    async def get(self, key):
        raise ConnectionError("redis down")

    async def set(self, key, value):
        raise ConnectionError("redis down")


@pytest.fixture
def monitor(clock):
    return DataMonitor(MemoryStore(), clock=clock)


@pytest.mark.asyncio
async def test_implausibly_high_apy(monitor):
    score = await monitor.validate_protocol_metrics(staking(apy=120, tvl=1_000_000))
    assert score.apy <= 30
    assert any(a.metric == "apy" and a.severity == "high" for a in score.alerts)


@pytest.mark.asyncio
async def test_implausibly_low_apy(monitor):
    score = await monitor.validate_protocol_metrics(staking(apy=0.05))
    assert score.apy == 60
    assert [a.severity for a in score.alerts] == ["medium"]


@pytest.mark.asyncio
async def test_healthy_snapshot_scores_full(monitor):
    score = await monitor.validate_protocol_metrics(staking(apy=5.0, tvl=5_000_000))
    assert (score.overall, score.apy, score.tvl) == (100, 100, 100)
    assert score.alerts == []


@pytest.mark.asyncio
async def test_low_tvl_is_high_severity(monitor):
    score = await monitor.validate_protocol_metrics(staking(tvl=50_000))
    assert score.tvl == 30
    alert = score.alerts[0]
    assert (alert.metric, alert.severity, alert.expected_range) == ("tvl", "high", None)


@pytest.mark.asyncio
async def test_tvl_sums_all_positions(monitor):
    market = LendingSnapshot(symbol="qiUSDC", underlying="USDC", supply_apy=3.0, tvl_usd=80_000)
    score = await monitor.validate_protocol_metrics(staking(tvl=60_000, extra=[market]))
    assert score.tvl == 100


@pytest.mark.asyncio
async def test_apy_baseline_deviation(monitor):
    await monitor.validate_protocol_metrics(staking(apy=5.0, tvl=5_000_000))
    assert await monitor.store.get(baseline_key("X")) == "5.0"

    score = await monitor.validate_protocol_metrics(staking(apy=10.0, tvl=5_000_000))
    assert score.apy == 70
    alert = score.alerts[0]
    assert alert.severity == "medium"
    assert alert.expected_range == [2.5, 7.5]
    assert await monitor.store.get(baseline_key("X")) == "10.0"


@pytest.mark.asyncio
async def test_small_apy_moves_are_quiet(monitor):
    await monitor.validate_protocol_metrics(staking(apy=5.0, tvl=5_000_000))
    score = await monitor.validate_protocol_metrics(staking(apy=5.5, tvl=5_000_000))
    assert score.alerts == []


@pytest.mark.asyncio
async def test_reference_tvl_deviation(clock):
    async def reference(protocol):
        return 10_000_000.0

    monitor = DataMonitor(MemoryStore(), reference_tvl=reference, clock=clock)
    score = await monitor.validate_protocol_metrics(staking(tvl=5_000_000))
    assert score.tvl == 75
    assert score.alerts[0].expected_range == [7_000_000.0, 13_000_000.0]


@pytest.mark.asyncio
async def test_reference_and_store_failures_do_not_raise(clock):
    async def reference(protocol):
        raise RuntimeError("llama down")

    monitor = DataMonitor(BrokenStore(), reference_tvl=reference, clock=clock)
    score = await monitor.validate_protocol_metrics(staking(tvl=5_000_000))
    assert score.overall == 100


@pytest.mark.asyncio
async def test_system_health_from_alerts(monitor):
    assert monitor.get_system_health().overall_health == 100
    await monitor.validate_protocol_metrics(staking("A", apy=120, tvl=5_000_000))
    await monitor.validate_protocol_metrics(staking("B", apy=0.05, tvl=5_000_000))
    health = monitor.get_system_health()
    assert health.protocol_health == {"A": 30.0, "B": 70.0}
    assert health.overall_health == 50.0
    assert len(health.critical_alerts) == 1
    assert health.total_alerts == 2


@pytest.mark.asyncio
async def test_alert_buffer_is_bounded(clock):
    monitor = DataMonitor(MemoryStore(), max_alerts=3, clock=clock)
    for i in range(5):
        await monitor.validate_protocol_metrics(staking(f"P{i}", apy=120, tvl=5_000_000))
    assert [a.protocol for a in monitor.alerts] == ["P2", "P3", "P4"]


@pytest.mark.asyncio
async def test_clear_old_alerts(monitor, clock):
    await monitor.validate_protocol_metrics(staking("Old", apy=120, tvl=5_000_000))
    clock.advance(25 * 3600)
    await monitor.validate_protocol_metrics(staking("New", apy=120, tvl=5_000_000))
    assert monitor.clear_old_alerts() == 1
    assert [a.protocol for a in monitor.alerts] == ["New"]
    assert monitor.get_protocol_alerts("Old") == []
    assert len(monitor.get_protocol_alerts("New")) == 1


@pytest.mark.parametrize("overall,expected", [(100, "excellent"), (85, "excellent"), (70, "good"), (50, "fair"), (49.9, "poor")])
def test_data_quality(overall, expected):
    assert DataMonitor.data_quality(overall) == expected


@pytest.mark.asyncio
async def test_quality_report_degrades(monitor):
    assert monitor.quality_report().status == "healthy"
    await monitor.validate_protocol_metrics(staking("A", apy=120, tvl=5_000_000))
    report = monitor.quality_report()
    assert report.status == "critical"
    assert report.recommendations
