import httpx
import pytest

from conftest import StubHttp
from yield_dashboard.services.prices import FALLBACK_PRICES, PriceOracle


@pytest.mark.asyncio
async def test_live_prices_keyed_by_lowercase_symbol(clock):
    http = StubHttp({"/simple/price": {"avalanche-2": {"usd": 40.0}, "usd-coin": {"usd": 1.0}}})
    oracle = PriceOracle(http, ttl=30, clock=clock)
    prices = await oracle.get_token_prices(["AVAX", "usdc"])
    assert prices == {"avax": 40.0, "usdc": 1.0}


@pytest.mark.asyncio
async def test_cache_hit_within_ttl_and_refetch_after(clock):
    http = StubHttp({"/simple/price": {"avalanche-2": {"usd": 40.0}}})
    oracle = PriceOracle(http, ttl=30, clock=clock)
    await oracle.get_token_prices(["avax"])
    clock.advance(29)
    assert await oracle.get_token_prices(["avax"]) == {"avax": 40.0}
    assert http.calls_to("/simple/price") == 1

    clock.advance(2)
    http.routes["/simple/price"] = {"avalanche-2": {"usd": 41.0}}
    assert await oracle.get_token_prices(["avax"]) == {"avax": 41.0}
    assert http.calls_to("/simple/price") == 2


@pytest.mark.asyncio
async def test_api_failure_falls_back_to_static_table(clock):
    http = StubHttp({"/simple/price": httpx.ConnectError("down")})
    oracle = PriceOracle(http, ttl=30, clock=clock)
    assert await oracle.get_token_prices(["AVAX"]) == {"avax": 42.5}


@pytest.mark.asyncio
async def test_fallback_values_are_not_cached(clock):
    http = StubHttp({"/simple/price": httpx.ConnectError("down")})
    oracle = PriceOracle(http, ttl=30, clock=clock)
    await oracle.get_token_prices(["avax"])
    await oracle.get_token_prices(["avax"])
    assert http.calls_to("/simple/price") == 2
    assert oracle.cached("avax") is None


@pytest.mark.asyncio
async def test_unknown_symbols_are_omitted(clock):
    oracle = PriceOracle(StubHttp(), ttl=30, clock=clock)
    prices = await oracle.get_token_prices(["doge", "ggp"])
    assert prices == {"ggp": FALLBACK_PRICES["ggp"]}


@pytest.mark.asyncio
async def test_partial_live_response_fills_gaps_from_fallback(clock):
    http = StubHttp({"/simple/price": {"avalanche-2": {"usd": 39.0}}})
    oracle = PriceOracle(http, ttl=30, clock=clock)
    prices = await oracle.get_token_prices(["avax", "btc"])
    assert prices == {"avax": 39.0, "btc": 67000.0}


@pytest.mark.asyncio
async def test_get_price_default_for_unknown(clock):
    oracle = PriceOracle(StubHttp(), ttl=30, clock=clock)
    assert await oracle.get_price("unknown", default=1.0) == 1.0


@pytest.mark.asyncio
async def test_string_prices_are_accepted(clock):
    http = StubHttp({"/simple/price": {"avalanche-2": {"usd": "39.5"}, "usd-coin": {"usd": "n/a"}}})
    oracle = PriceOracle(http, ttl=30, clock=clock)
    prices = await oracle.get_token_prices(["avax", "usdc"])
    assert prices == {"avax": 39.5, "usdc": FALLBACK_PRICES["usdc"]}
