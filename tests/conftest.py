from __future__ import annotations

import asyncio
from typing import Any, Dict, List, Optional

import httpx
import pytest

from yield_dashboard.errors import ChainReadError
from yield_dashboard.protocols.base import ProtocolFetcher


class StubResponse:
    def __init__(self, payload: Any, status_code: int = 200):
        self._payload = payload
        self.status_code = status_code

    def json(self) -> Any:
        return self._payload


class StubHttp:
    """Stands in for HttpClient. Routes match on URL substring, first match wins.

    A route value may be a payload, an exception instance (raised), or a
    callable taking the request params/body and returning a payload.
    Unrouted URLs raise httpx.ConnectError like an unreachable host.
    """

    def __init__(self, routes: Optional[Dict[str, Any]] = None):
        self.routes: Dict[str, Any] = dict(routes or {})
        self.calls: List[tuple] = []

    async def get(self, url: str, params=None, headers=None) -> StubResponse:
        return self._respond("GET", url, params)

    async def post(self, url: str, json=None, headers=None) -> StubResponse:
        return self._respond("POST", url, json)

    async def request(self, method: str, url: str, **kwargs) -> StubResponse:
        return self._respond(method, url, kwargs.get("json") or kwargs.get("params"))

    async def aclose(self) -> None:
        pass

    def calls_to(self, fragment: str) -> int:
        return sum(1 for _, url, _ in self.calls if fragment in url)

    def _respond(self, method: str, url: str, body: Any) -> StubResponse:
        self.calls.append((method, url, body))
        for fragment, value in self.routes.items():
            if fragment not in url:
                continue
            if isinstance(value, Exception):
                raise value
            if callable(value):
                value = value(body)
            return StubResponse(value)
        raise httpx.ConnectError(f"no route for {url}")


class StubChain:
    """Stands in for ChainReader.

    Keys are (contract, signature) or (contract, signature, args); addresses
    are compared lowercase. Values are an int, a list of decoded values, or an
    exception instance.
    """

    def __init__(self, values: Optional[Dict[tuple, Any]] = None):
        self.values: Dict[tuple, Any] = {}
        for key, value in (values or {}).items():
            self.values[self._norm(key)] = value
        self.calls: List[tuple] = []

    @staticmethod
    def _norm(key: tuple) -> tuple:
        contract, signature, *args = key
        args = [a.lower() if isinstance(a, str) else a for a in (args[0] if args else ())]
        return (contract.lower(), signature, *([tuple(args)] if args else []))

    async def call(self, contract: str, signature: str, *args, returns=("uint256",)) -> List[int]:
        self.calls.append((contract, signature, args))
        key_args = self._norm((contract, signature, args))
        key = key_args if key_args in self.values else self._norm((contract, signature))
        value = self.values.get(key)
        if value is None:
            raise ChainReadError(contract, signature.split("(")[0], "execution reverted")
        if isinstance(value, Exception):
            raise value
        words = list(value) if isinstance(value, (list, tuple)) else [value]
        if len(words) != len(returns):
            raise ChainReadError(contract, signature.split("(")[0], "cannot decode")
        return words

    async def call_uint(self, contract: str, signature: str, *args) -> int:
        return (await self.call(contract, signature, *args))[0]


class FakeClock:
    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def http() -> StubHttp:
    return StubHttp()


class StaticPrices:
    """Stands in for PriceOracle with a fixed table."""

    def __init__(self, prices: Optional[Dict[str, float]] = None):
        self.prices = dict(prices or {"avax": 40.0, "usdc": 1.0, "btc": 60000.0, "eth": 3000.0, "ggp": 1.0, "qi": 0.01})

    async def get_token_prices(self, symbols) -> Dict[str, float]:
        return {s.lower(): self.prices[s.lower()] for s in symbols if s.lower() in self.prices}

    async def get_price(self, symbol: str, default: float = 1.0) -> float:
        return self.prices.get(symbol.lower(), default)


@pytest.fixture
def prices() -> StaticPrices:
    return StaticPrices()


class FakeFetcher(ProtocolFetcher):
    def __init__(self, name, slug, positions=(), error=None, delay=0.0):
        self.name = name
        self.slug = slug
        self.positions = list(positions)
        self.error = error
        self.delay = delay
        self.calls = 0

    async def _collect(self, snapshot):
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        snapshot.positions.extend(self.positions)
