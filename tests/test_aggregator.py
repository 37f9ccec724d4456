import asyncio

import pytest

from conftest import FakeFetcher
from yield_dashboard.models import (
    AggregatedData,
    DexPairSnapshot,
    LendingSnapshot,
    LiquidStakingSnapshot,
    ProtocolSnapshot,
    StakingSnapshot,
)
from yield_dashboard.services.aggregator import (
    Aggregator,
    calculate_total_metrics,
    format_to_yield_opportunities,
    rank_opportunities,
)
from yield_dashboard.services.opportunities import format_apy, format_tvl


def benqi_and_gogopool():
    return AggregatedData(
        snapshots={
            "benqi": ProtocolSnapshot(
                protocol="BENQI",
                slug="benqi",
                positions=[LiquidStakingSnapshot(pair="AVAX → sAVAX", apy=5.05, tvl_usd=650_000_000, confidence=0.9)],
            ),
            "gogopool": ProtocolSnapshot(
                protocol="GoGoPool",
                slug="gogopool",
                positions=[LiquidStakingSnapshot.model_validate({"pair": "AVAX → ggAVAX", "apr": 6.85, "tvl_usd": 362_000_000, "confidence": 0.9})],
            ),
        }
    )


def test_total_metrics_two_protocols():
    metrics = calculate_total_metrics(benqi_and_gogopool())
    assert metrics.total_tvl == pytest.approx(1_012_000_000)
    assert metrics.active_protocols == 2
    assert metrics.average_apy == pytest.approx((5.05 + 6.85) / 2)


def test_total_metrics_skips_small_markets_and_zero_lending_apy():
    data = benqi_and_gogopool()
    data.snapshots["silo"] = ProtocolSnapshot(
        protocol="Silo Finance",
        slug="silo",
        positions=[
            LendingSnapshot(symbol="ETH", underlying="ETH", supply_apy=3.0, tvl_usd=90_000),
            LendingSnapshot(symbol="USDC", underlying="USDC", supply_apy=0.0, tvl_usd=2_000_000),
        ],
    )
    metrics = calculate_total_metrics(data)
    assert metrics.total_tvl == pytest.approx(1_014_000_000)
    assert metrics.average_apy == pytest.approx((5.05 + 6.85) / 2)
    assert metrics.active_protocols == 3


def test_total_metrics_empty():
    metrics = calculate_total_metrics(AggregatedData())
    assert (metrics.total_tvl, metrics.average_apy, metrics.active_protocols) == (0, 0, 0)


def test_formatting_is_pure_and_idempotent():
    data = benqi_and_gogopool()
    first = format_to_yield_opportunities(data)
    second = format_to_yield_opportunities(data)
    assert [o.model_dump() for o in first] == [o.model_dump() for o in second]
    assert [o.id for o in first] == ["benqi-savax", "gogopool-ggavax"]
    assert first[0].apy == "5.05%"
    assert first[0].tvl == "$650.0M"
    assert first[0].is_live


def test_opportunity_ids_unique():
    market = LendingSnapshot(symbol="qiUSDC", underlying="USDC", supply_apy=3.0, borrow_apy=5.0, tvl_usd=4e6, total_borrows_usd=2e6, utilization=55, confidence=0.95)
    snapshot = ProtocolSnapshot(protocol="BENQI", slug="benqi", positions=[market, market])
    opps = format_to_yield_opportunities(AggregatedData(snapshots={"benqi": snapshot}))
    assert [o.id for o in opps] == ["benqi-qiusdc", "benqi-qiusdc-borrow"]
    assert opps[0].category == "Lending" and opps[1].category == "Borrowing"
    assert opps[0].risk == "Medium"
    assert "Stablecoin" in opps[0].features


def test_small_lending_markets_are_hidden():
    market = LendingSnapshot(symbol="qiBTC", underlying="BTC", supply_apy=1.0, tvl_usd=100_000)
    snapshot = ProtocolSnapshot(protocol="BENQI", slug="benqi", positions=[market])
    assert format_to_yield_opportunities(AggregatedData(snapshots={"benqi": snapshot})) == []


def test_dex_and_staking_positions():
    snapshot = ProtocolSnapshot(
        protocol="Pangolin",
        slug="pangolin",
        positions=[
            DexPairSnapshot(pair="AVAX-USDC", token0="AVAX", token1="USDC", apr=12.5, tvl_usd=2.4e6, volume_24h=145_000, confidence=0.95),
            DexPairSnapshot(pair="AVAX-USDC", token0="AVAX", token1="USDC", apr=25.3, tvl_usd=1.5e6, is_farm=True, reward_tokens=["PNG"], confidence=0.5),
        ],
    )
    avant = ProtocolSnapshot(
        protocol="Avant Finance",
        slug="avant",
        positions=[StakingSnapshot(name="savbtc", pair="avBTC → savBTC", category="Yield Farming", apy=9.1, tvl_usd=3e6, base_risk="Medium", confidence=0.9)],
    )
    opps = format_to_yield_opportunities(AggregatedData(snapshots={"pangolin": snapshot, "avant": avant}))
    by_id = {o.id: o for o in opps}
    assert set(by_id) == {"pangolin-avax-usdc", "pangolin-avax-usdc-farm", "avant-savbtc"}
    farm = by_id["pangolin-avax-usdc-farm"]
    assert farm.risk == "High" and not farm.is_live
    assert "Rewards: PNG" in farm.features
    assert by_id["avant-savbtc"].icon == "₿"
    assert by_id["avant-savbtc"].risk == "Medium"


def test_same_symbol_pairs_keep_distinct_ids():
    snapshot = ProtocolSnapshot(
        protocol="Pangolin",
        slug="pangolin",
        positions=[
            DexPairSnapshot(pair="AVAX-USDC", pool_id="0xAAA", token0="AVAX", token1="USDC", apr=12.0, tvl_usd=2e6, confidence=0.95),
            DexPairSnapshot(pair="AVAX-USDC", pool_id="0xbbb", token0="AVAX", token1="USDC", apr=30.0, tvl_usd=1e6, confidence=0.95),
        ],
    )
    opps = format_to_yield_opportunities(AggregatedData(snapshots={"pangolin": snapshot}))
    assert {o.id: o.apy_value for o in opps} == {"pangolin-0xaaa": 12.0, "pangolin-0xbbb": 30.0}


@pytest.mark.parametrize("value", [None, float("nan"), float("inf")])
def test_missing_numbers_render_as_na(value):
    assert format_apy(value) == "N/A"
    assert format_tvl(value) == "N/A"


def test_rank_opportunities():
    data = benqi_and_gogopool()
    opps = format_to_yield_opportunities(data)
    assert [o.id for o in rank_opportunities(opps)] == ["gogopool-ggavax", "benqi-savax"]
    assert [o.id for o in rank_opportunities(opps, sort_by="tvl", limit=1)] == ["benqi-savax"]
    assert [o.id for o in rank_opportunities(opps, protocol="benqi")] == ["benqi-savax"]
    assert rank_opportunities(opps, min_tvl=1e9) == []
    assert rank_opportunities(opps, category="lending") == []


@pytest.mark.asyncio
async def test_failing_protocol_is_left_out(clock):
    ok = FakeFetcher("BENQI", "benqi", [LiquidStakingSnapshot(pair="AVAX → sAVAX", apy=5.0, tvl_usd=6e8)])
    bad = FakeFetcher("Silo Finance", "silo", error=RuntimeError("lens reverted"))
    aggregator = Aggregator([ok, bad], clock=clock)
    data = await aggregator.fetch_all_protocol_data()
    assert list(data.snapshots) == ["benqi"]
    assert data.failures == {"silo": "lens reverted"}
    assert data.last_updated == clock.now
    assert aggregator.last_refresh_at == clock.now


@pytest.mark.asyncio
async def test_fetchers_run_concurrently(clock):
    fetchers = [FakeFetcher(f"P{i}", f"p{i}", delay=0.05) for i in range(5)]
    loop = asyncio.get_running_loop()
    started = loop.time()
    data = await Aggregator(fetchers, clock=clock).fetch_all_protocol_data()
    assert loop.time() - started < 0.2
    assert len(data.snapshots) == 5


@pytest.mark.asyncio
async def test_all_failing_returns_empty(clock):
    fetchers = [FakeFetcher("A", "a", error=RuntimeError("x")), FakeFetcher("B", "b", error=ValueError())]
    data = await Aggregator(fetchers, clock=clock).fetch_all_protocol_data()
    assert data.snapshots == {}
    assert data.failures == {"a": "x", "b": "ValueError"}
