"""
Shared fixtures for gateway tests: a controllable clock and a scripted upstream.
"""

import asyncio
from collections import defaultdict
from typing import Any, Dict, List, Optional

import pytest

from shared.errors import TransientFailureError
from shared.retry import Retrier, RetryConfig
from service_market_gateway.app.caching import TTLCache
from service_market_gateway.app.market_data import MarketDataGateway
from service_market_gateway.app.ratelimit import Pacer
from service_market_gateway.app.scheduling import RequestScheduler


class FakeClock:
    """Monotonic clock whose sleeps advance time instantly and are recorded."""

    def __init__(self, start: float = 1000.0):
        self.now = start
        self.sleeps: Dict[str, List[float]] = defaultdict(list)

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    def sleeper(self, name: str):
        async def sleep(seconds: float) -> None:
            self.sleeps[name].append(seconds)
            self.now += seconds
            await asyncio.sleep(0)

        return sleep


def coin(coin_id: str, rank: int = 1, price: float = 100.0) -> Dict[str, Any]:
    return {
        "id": coin_id,
        "symbol": coin_id[:3],
        "name": coin_id.title(),
        "image": f"https://img.example/{coin_id}.png",
        "current_price": price,
        "price_change_percentage_24h": 1.0,
        "market_cap": 1_000_000.0 / rank,
        "market_cap_rank": rank,
        "total_volume": 5000.0,
        "last_updated": "2024-01-01T00:00:00.000Z",
    }


class FakeUpstream:
    """Stands in for CoinGeckoClient; records every attempt with its dispatch time."""

    def __init__(self, clock: FakeClock):
        self.clock = clock
        self.calls: List[Dict[str, Any]] = []
        self.failures: List[Exception] = []
        self.always_fail: Optional[Exception] = None
        self.has_api_key = False
        self.closed = False
        self.gate: Optional[asyncio.Event] = None

    def fail_next(self, count: int, exc: Optional[Exception] = None) -> None:
        self.failures.extend([exc or TransientFailureError("HTTP 503: Service Unavailable")] * count)

    async def _attempt(self, name: str, **kwargs) -> None:
        if self.gate is not None:
            await self.gate.wait()
        self.calls.append({"name": name, "at": self.clock(), **kwargs})
        if self.always_fail is not None:
            raise self.always_fail
        if self.failures:
            raise self.failures.pop(0)

    async def fetch_markets(self, *, vs_currency, per_page=None, ids=None, price_change_percentage="24h"):
        await self._attempt("markets", per_page=per_page, ids=ids)
        if ids is not None:
            return [coin(coin_id, rank) for rank, coin_id in enumerate(ids.split(","), start=1)]
        return [coin(f"coin-{rank}", rank) for rank in range(1, per_page + 1)]

    async def fetch_coin(self, coin_id):
        await self._attempt("coin", coin_id=coin_id)
        return {"id": coin_id, "market_data": {"current_price": {"usd": 1.0}}}

    async def fetch_market_chart(self, coin_id, *, vs_currency, days):
        await self._attempt("market_chart", coin_id=coin_id, days=days)
        return {"prices": [[1700000000000, 10.0], [1700000060000, 10.5]]}

    async def close(self):
        self.closed = True


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def upstream(fake_clock):
    return FakeUpstream(fake_clock)


@pytest.fixture
def make_gateway(fake_clock, upstream):
    """Factory building a gateway wired to the fake clock and upstream."""

    def _build(*, ttl=30.0, min_interval=1.1, max_attempts=3, base_delay=2.0, metrics=None):
        retrier = Retrier(
            RetryConfig(max_attempts=max_attempts, base_delay=base_delay),
            sleep=fake_clock.sleeper("retry"),
        )
        pacer = Pacer(min_interval, clock=fake_clock, sleep=fake_clock.sleeper("pace"))
        scheduler = RequestScheduler(pacer, retrier, metrics=metrics)
        return MarketDataGateway(
            upstream,
            cache=TTLCache(ttl, clock=fake_clock),
            scheduler=scheduler,
            metrics=metrics,
        )

    return _build
