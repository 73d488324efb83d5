"""
Tests for the market data gateway operations.
"""

import asyncio

import pytest

from shared.errors import FetchError, RateLimitedError, TransientFailureError, ValidationError
from shared.metrics import MetricsCollector


@pytest.fixture
def gateway(make_gateway):
    return make_gateway()


class TestCaching:
    """Cache-first behaviour of the domain operations."""

    @pytest.mark.asyncio
    async def test_cache_hit_skips_network(self, gateway, upstream):
        first = await gateway.get_top_coins(5)
        second = await gateway.get_top_coins(5)

        assert first == second
        assert len(upstream.calls) == 1
        assert gateway.get_cache_status() == {"count": 1, "keys": ["top_coins_5"]}

    @pytest.mark.asyncio
    async def test_price_cache_key_ignores_order(self, gateway, upstream):
        """Test the same id set in a different order hits the same entry."""
        await gateway.get_coin_prices({"eth", "btc"})
        await gateway.get_coin_prices(["btc", "eth"])

        assert len(upstream.calls) == 1
        assert upstream.calls[0]["ids"] == "btc,eth"
        assert gateway.get_cache_status()["keys"] == ["prices_btc,eth"]

    @pytest.mark.asyncio
    async def test_empty_id_set_makes_no_calls(self, gateway, upstream):
        assert await gateway.get_coin_prices(set()) == []
        assert upstream.calls == []
        assert gateway.scheduler.queue_length == 0

    @pytest.mark.asyncio
    async def test_stale_entry_is_refetched(self, gateway, upstream, fake_clock):
        await gateway.get_coin_details("bitcoin")
        fake_clock.advance(31)
        await gateway.get_coin_details("bitcoin")

        assert len(upstream.calls) == 2

    @pytest.mark.asyncio
    async def test_clear_cache_forces_refetch(self, gateway, upstream):
        await gateway.get_coin_details("bitcoin")

        assert gateway.clear_cache() == 1
        assert gateway.get_cache_status() == {"count": 0, "keys": []}

        await gateway.get_coin_details("bitcoin")
        assert len(upstream.calls) == 2

    @pytest.mark.asyncio
    async def test_clear_cache_expired_only(self, gateway, fake_clock):
        await gateway.get_coin_details("bitcoin")
        fake_clock.advance(31)
        await gateway.get_coin_details("ethereum")

        assert gateway.clear_cache(expired_only=True) == 1
        assert gateway.get_cache_status()["keys"] == ["details_ethereum"]

    @pytest.mark.asyncio
    async def test_history_is_parsed_and_cached(self, gateway, upstream):
        points = await gateway.get_coin_price_history("bitcoin", "7")

        assert points == [(1700000000000, 10.0), (1700000060000, 10.5)]
        assert upstream.calls[0]["days"] == "7"
        assert gateway.get_cache_status()["keys"] == ["history_bitcoin_7"]


class TestScheduling:
    """Ordering, pacing and coalescing across concurrent callers."""

    @pytest.mark.asyncio
    async def test_concurrent_misses_dispatch_in_fifo_order(self, gateway, upstream):
        await asyncio.gather(
            gateway.get_coin_details("a"),
            gateway.get_coin_details("b"),
            gateway.get_coin_details("c"),
        )

        assert [call["coin_id"] for call in upstream.calls] == ["a", "b", "c"]

    @pytest.mark.asyncio
    async def test_dispatches_respect_min_interval(self, gateway, upstream):
        await asyncio.gather(
            gateway.get_top_coins(3),
            gateway.get_coin_prices(["bitcoin"]),
            gateway.get_coin_details("ethereum"),
            gateway.get_coin_price_history("solana", "30"),
        )

        times = [call["at"] for call in upstream.calls]
        assert len(times) == 4
        assert all(later - earlier >= 1.1 - 1e-9 for earlier, later in zip(times, times[1:]))

    @pytest.mark.asyncio
    async def test_identical_misses_share_one_request(self, gateway, upstream):
        """Test concurrent callers asking for the same key trigger a single upstream call."""
        results = await asyncio.gather(*(gateway.get_coin_prices({"btc", "eth"}) for _ in range(4)))

        assert len(upstream.calls) == 1
        assert all(result == results[0] for result in results)
        assert gateway.get_status()["in_flight"] == 0

    @pytest.mark.asyncio
    async def test_cache_hit_overtakes_queued_miss(self, gateway, upstream):
        await gateway.get_coin_details("warm")
        upstream.calls.clear()

        slow = asyncio.ensure_future(gateway.get_coin_details("cold"))
        await asyncio.sleep(0)
        warm = await gateway.get_coin_details("warm")

        assert warm["id"] == "warm"
        assert not slow.done()
        await slow
        assert [call["coin_id"] for call in upstream.calls] == ["cold"]

    @pytest.mark.asyncio
    async def test_cancelled_sole_caller_skips_queued_request(self, gateway, upstream):
        """Test a queued request nobody waits for any more is never dispatched."""
        upstream.gate = asyncio.Event()
        first = asyncio.ensure_future(gateway.get_coin_details("a"))
        second = asyncio.ensure_future(gateway.get_coin_details("b"))
        for _ in range(3):
            await asyncio.sleep(0)
        assert gateway.scheduler.queue_length == 1

        second.cancel()
        await asyncio.sleep(0)
        upstream.gate.set()
        await first
        with pytest.raises(asyncio.CancelledError):
            await second
        for _ in range(3):
            await asyncio.sleep(0)

        assert [call["coin_id"] for call in upstream.calls] == ["a"]

    @pytest.mark.asyncio
    async def test_cancelled_caller_does_not_abandon_dispatched_request(self, gateway, upstream):
        """Test a request already on the wire is still shared after its only caller leaves."""
        upstream.gate = asyncio.Event()
        first = asyncio.ensure_future(gateway.get_coin_details("bitcoin"))
        for _ in range(3):
            await asyncio.sleep(0)
        assert gateway.scheduler.queue_length == 0

        first.cancel()
        with pytest.raises(asyncio.CancelledError):
            await first
        assert gateway.get_status()["in_flight"] == 1

        second = asyncio.ensure_future(gateway.get_coin_details("bitcoin"))
        await asyncio.sleep(0)
        upstream.gate.set()
        details = await second

        assert details["id"] == "bitcoin"
        assert len(upstream.calls) == 1
        assert gateway.get_cache_status()["keys"] == ["details_bitcoin"]

    @pytest.mark.asyncio
    async def test_queued_request_kept_while_another_caller_waits(self, gateway, upstream):
        upstream.gate = asyncio.Event()
        blocker = asyncio.ensure_future(gateway.get_coin_details("a"))
        leaving = asyncio.ensure_future(gateway.get_coin_details("b"))
        staying = asyncio.ensure_future(gateway.get_coin_details("b"))
        for _ in range(3):
            await asyncio.sleep(0)
        assert gateway.scheduler.queue_length == 1

        leaving.cancel()
        await asyncio.sleep(0)
        upstream.gate.set()
        await blocker

        assert (await staying)["id"] == "b"
        with pytest.raises(asyncio.CancelledError):
            await leaving
        assert [call["coin_id"] for call in upstream.calls] == ["a", "b"]


class TestRetriesAndFallback:
    """Retry policy and degraded mode."""

    @pytest.mark.asyncio
    async def test_fails_twice_then_succeeds(self, gateway, upstream, fake_clock):
        """Test two failures are retried after 2s and 4s and the live payload is returned."""
        upstream.fail_next(1, RateLimitedError())
        upstream.fail_next(1, TransientFailureError())

        coins = await gateway.get_top_coins(5)

        assert len(upstream.calls) == 3
        assert fake_clock.sleeps["retry"] == [2.0, 4.0]
        assert len(coins) == 5
        assert not any(coin.get("degraded") for coin in coins)
        assert gateway.get_cache_status()["keys"] == ["top_coins_5"]

    @pytest.mark.asyncio
    async def test_top_coins_degrade_when_upstream_down(self, gateway, upstream):
        upstream.always_fail = TransientFailureError("HTTP 503: Service Unavailable")

        coins = await gateway.get_top_coins(5)

        assert len(coins) == 5
        assert all(coin["degraded"] is True for coin in coins)
        assert all(coin["total_volume"] == 0 for coin in coins)
        assert [coin["market_cap_rank"] for coin in coins] == [1, 2, 3, 4, 5]
        assert len(upstream.calls) == 3

    @pytest.mark.asyncio
    async def test_fallback_is_not_cached(self, gateway, upstream):
        upstream.always_fail = RateLimitedError()
        await gateway.get_top_coins(5)

        assert gateway.get_cache_status()["count"] == 0

        upstream.always_fail = None
        coins = await gateway.get_top_coins(5)
        assert not any(coin.get("degraded") for coin in coins)

    @pytest.mark.asyncio
    async def test_prices_degrade_per_requested_id(self, gateway, upstream):
        upstream.always_fail = TransientFailureError()

        coins = await gateway.get_coin_prices(["ethereum", "bitcoin", "mystery-coin"])

        assert [coin["id"] for coin in coins] == ["bitcoin", "ethereum", "mystery-coin"]
        assert all(coin["degraded"] for coin in coins)
        assert coins[0]["current_price"] > 0
        assert coins[2]["current_price"] == 0

    @pytest.mark.asyncio
    async def test_details_propagate_exhaustion(self, gateway, upstream):
        upstream.always_fail = TransientFailureError()

        with pytest.raises(FetchError) as exc_info:
            await gateway.get_coin_details("doge")

        assert exc_info.value.code == "EXHAUSTED"
        assert exc_info.value.attempts == 3
        assert gateway.get_status()["last_failure"]["operation"] == "details"

    @pytest.mark.asyncio
    async def test_history_propagates_exhaustion(self, gateway, upstream):
        upstream.always_fail = RateLimitedError()

        with pytest.raises(FetchError):
            await gateway.get_coin_price_history("bitcoin", "max")

    @pytest.mark.asyncio
    async def test_failure_does_not_stall_later_requests(self, gateway, upstream):
        upstream.fail_next(3)

        results = await asyncio.gather(
            gateway.get_coin_details("first"),
            gateway.get_coin_details("second"),
            return_exceptions=True,
        )

        assert isinstance(results[0], FetchError)
        assert results[1]["id"] == "second"

    @pytest.mark.asyncio
    async def test_metrics_record_hits_misses_and_fallbacks(self, make_gateway, upstream):
        metrics = MetricsCollector("gateway")
        gateway = make_gateway(metrics=metrics)

        await gateway.get_coin_details("bitcoin")
        await gateway.get_coin_details("bitcoin")
        upstream.always_fail = TransientFailureError()
        await gateway.get_top_coins(2)

        assert metrics.get_sample("cache_misses_total", operation="details") == 1
        assert metrics.get_sample("cache_hits_total", operation="details") == 1
        assert metrics.get_sample("fallbacks_total", operation="top_coins") == 1


class TestValidation:
    """Input validation happens before any queueing."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("limit", [0, -1, 251, "5", True])
    async def test_rejects_bad_limit(self, gateway, upstream, limit):
        with pytest.raises(ValidationError):
            await gateway.get_top_coins(limit)
        assert upstream.calls == []

    @pytest.mark.asyncio
    async def test_rejects_string_id_collection(self, gateway):
        with pytest.raises(ValidationError):
            await gateway.get_coin_prices("bitcoin")

    @pytest.mark.asyncio
    async def test_rejects_non_string_ids_before_sorting(self, gateway, upstream):
        with pytest.raises(ValidationError):
            await gateway.get_coin_prices(["btc", 1])
        assert upstream.calls == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("coin_id", ["", "bit coin", "../etc", ".", "..", "...", "a" * 101])
    async def test_rejects_bad_coin_id(self, gateway, coin_id):
        with pytest.raises(ValidationError):
            await gateway.get_coin_details(coin_id)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("days", ["week", "-1", "", "1.5"])
    async def test_rejects_bad_range(self, gateway, days):
        with pytest.raises(ValidationError):
            await gateway.get_coin_price_history("bitcoin", days)


@pytest.mark.asyncio
async def test_status_reports_queue_and_cache(gateway):
    status = gateway.get_status()

    assert status == {
        "has_api_key": False,
        "queue_length": 0,
        "is_processing": False,
        "cache_size": 0,
        "in_flight": 0,
        "last_failure": None,
    }


@pytest.mark.asyncio
async def test_aclose_releases_client(gateway, upstream):
    await gateway.aclose()

    assert upstream.closed is True
