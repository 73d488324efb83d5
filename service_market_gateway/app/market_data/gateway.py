"""
Market data gateway: the single access point to the upstream provider.
"""

from __future__ import annotations

import asyncio
import functools
import re
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, TYPE_CHECKING

from shared.config import GatewayConfig
from shared.errors import FetchError, ValidationError
from shared.logging import get_logger
from shared.retry import Retrier, RetryConfig

from ..adapters.coingecko_client import CoinGeckoClient
from ..caching.ttl_cache import TTLCache
from ..ratelimit.pacer import Pacer
from ..scheduling.request_queue import RequestScheduler
from .fallback import FallbackProvider
from .models import PricePoint, parse_price_history

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    import httpx

    from shared.metrics import MetricsCollector


# Dot-only ids would collapse to a parent path segment
_COIN_ID_PATTERN = re.compile(r"^(?!\.+$)[A-Za-z0-9._-]{1,100}$")
_RANGE_PATTERN = re.compile(r"^(?:[0-9]{1,5}|max)$")
MAX_PAGE_SIZE = 250


class MarketDataGateway:
    """Coordinates cache, scheduler and fallback for market data lookups.

    Every operation checks the cache first. A miss is either joined to an
    identical request already waiting in the scheduler or enqueued as a new
    one; the scheduler writes the cache on success. When retries are
    exhausted, top coins and prices degrade to synthetic data while details
    and history raise ``FetchError``.
    """

    def __init__(
        self,
        client: CoinGeckoClient,
        *,
        cache: TTLCache,
        scheduler: RequestScheduler,
        fallback: Optional[FallbackProvider] = None,
        vs_currency: str = "usd",
        metrics: Optional["MetricsCollector"] = None,
    ) -> None:
        self.client = client
        self.cache = cache
        self.scheduler = scheduler
        self.fallback = fallback or FallbackProvider()
        self.vs_currency = vs_currency
        self.metrics = metrics
        self.logger = get_logger("gateway.market_data")
        self._in_flight: Dict[str, "asyncio.Future[Any]"] = {}
        self._waiters: Dict["asyncio.Future[Any]", int] = {}
        self._last_failure: Optional[Dict[str, Any]] = None

    async def get_top_coins(self, limit: int = 100) -> List[dict]:
        """Top ``limit`` coins by market cap, degraded to fallback data on failure."""
        self._validate_limit(limit)
        cache_key = f"top_coins_{limit}"

        async def request() -> Any:
            return await self.client.fetch_markets(vs_currency=self.vs_currency, per_page=limit)

        try:
            return await self._cached("top_coins", cache_key, request)
        except FetchError as exc:
            self._degrade("top_coins", cache_key, exc)
            return self.fallback.top_coins(limit)

    async def get_coin_prices(self, coin_ids: Iterable[str]) -> List[dict]:
        """Market snapshots for a set of ids; the cache key ignores input order."""
        if isinstance(coin_ids, str):
            raise ValidationError("coin_ids must be a collection of ids, not a string")
        requested = list(coin_ids)
        for coin_id in requested:
            self._validate_coin_id(coin_id)
        ids = sorted(set(requested))
        if not ids:
            return []

        joined = ",".join(ids)
        cache_key = f"prices_{joined}"

        async def request() -> Any:
            return await self.client.fetch_markets(
                vs_currency=self.vs_currency,
                ids=joined,
                price_change_percentage="24h,7d",
            )

        try:
            return await self._cached("prices", cache_key, request)
        except FetchError as exc:
            self._degrade("prices", cache_key, exc)
            return self.fallback.prices(ids)

    async def get_coin_details(self, coin_id: str) -> Dict[str, Any]:
        """Full record for one coin. Raises FetchError when retries are exhausted."""
        self._validate_coin_id(coin_id)
        cache_key = f"details_{coin_id}"

        async def request() -> Any:
            return await self.client.fetch_coin(coin_id)

        try:
            return await self._cached("details", cache_key, request)
        except FetchError as exc:
            self._record_failure("details", cache_key, exc)
            raise

    async def get_coin_price_history(self, coin_id: str, days: str) -> List[PricePoint]:
        """``(timestamp_ms, price)`` series. Raises FetchError when retries are exhausted."""
        self._validate_coin_id(coin_id)
        days = str(days)
        if not _RANGE_PATTERN.fullmatch(days):
            raise ValidationError("range must be a number of days or 'max'", details={"range": days})
        cache_key = f"history_{coin_id}_{days}"

        async def request() -> Any:
            payload = await self.client.fetch_market_chart(coin_id, vs_currency=self.vs_currency, days=days)
            return parse_price_history(payload)

        try:
            return await self._cached("history", cache_key, request)
        except FetchError as exc:
            self._record_failure("history", cache_key, exc)
            raise

    def clear_cache(self, *, expired_only: bool = False) -> int:
        """Drop cached payloads and return how many entries were removed."""
        if expired_only:
            removed = self.cache.purge_expired()
        else:
            removed = len(self.cache)
            self.cache.clear()
        self.logger.info("Cache cleared", removed=removed, expired_only=expired_only)
        return removed

    def get_cache_status(self) -> Dict[str, Any]:
        return {"count": len(self.cache), "keys": self.cache.keys()}

    def get_status(self) -> Dict[str, Any]:
        """Operational snapshot for debugging."""
        return {
            "has_api_key": self.client.has_api_key,
            "queue_length": self.scheduler.queue_length,
            "is_processing": self.scheduler.is_processing,
            "cache_size": len(self.cache),
            "in_flight": len(self._in_flight),
            "last_failure": self._last_failure,
        }

    async def aclose(self) -> None:
        """Stop the scheduler and release the HTTP client."""
        await self.scheduler.aclose()
        await self.client.close()

    async def _cached(self, operation: str, cache_key: str, request: Callable[[], Awaitable[Any]]) -> Any:
        cached = self.cache.get(cache_key)
        if cached is not None:
            self.logger.debug("Cache hit", key=cache_key)
            self._count("cache_hits_total", operation)
            return cached
        self._count("cache_misses_total", operation)

        pending = self._in_flight.get(cache_key)
        if pending is None:
            pending = self.scheduler.enqueue(self._store_after(cache_key, request), label=cache_key)
            self._in_flight[cache_key] = pending
            pending.add_done_callback(functools.partial(self._forget, cache_key))
        else:
            self.logger.debug("Joining in-flight request", key=cache_key)

        self._waiters[pending] = self._waiters.get(pending, 0) + 1
        try:
            return await asyncio.shield(pending)
        except asyncio.CancelledError:
            # Last interested caller gone: let the scheduler skip it if still queued
            if self._waiters.get(pending) == 1 and self.scheduler.cancel(pending):
                self.logger.debug("Dropped queued request", key=cache_key)
            raise
        finally:
            remaining = self._waiters.get(pending, 1) - 1
            if remaining:
                self._waiters[pending] = remaining
            else:
                self._waiters.pop(pending, None)

    def _store_after(self, cache_key: str, request: Callable[[], Awaitable[Any]]) -> Callable[[], Awaitable[Any]]:
        async def work() -> Any:
            payload = await request()
            self.cache.put(cache_key, payload)
            return payload

        return work

    def _forget(self, cache_key: str, future: "asyncio.Future[Any]") -> None:
        if self._in_flight.get(cache_key) is future:
            del self._in_flight[cache_key]
        # Every caller may have left before a failure landed
        if not future.cancelled():
            future.exception()

    def _degrade(self, operation: str, cache_key: str, exc: FetchError) -> None:
        self._record_failure(operation, cache_key, exc)
        self.logger.warning("Serving fallback data", operation=operation, key=cache_key)
        if self.metrics:
            self.metrics.increment_counter("fallbacks_total", operation=operation)

    def _record_failure(self, operation: str, cache_key: str, exc: FetchError) -> None:
        self._last_failure = {
            "operation": operation,
            "key": cache_key,
            "code": exc.code,
            "attempts": exc.attempts,
            "error": str(exc.last_exception),
        }
        self.logger.error(
            "Upstream fetch exhausted",
            operation=operation,
            key=cache_key,
            attempts=exc.attempts,
            error=str(exc.last_exception)
        )

    def _count(self, metric: str, operation: str) -> None:
        if self.metrics:
            self.metrics.increment_counter(metric, operation=operation)

    @staticmethod
    def _validate_limit(limit: int) -> None:
        if isinstance(limit, bool) or not isinstance(limit, int) or not 1 <= limit <= MAX_PAGE_SIZE:
            raise ValidationError(
                f"limit must be an integer between 1 and {MAX_PAGE_SIZE}",
                details={"limit": limit}
            )

    @staticmethod
    def _validate_coin_id(coin_id: str) -> None:
        if not isinstance(coin_id, str) or not _COIN_ID_PATTERN.fullmatch(coin_id):
            raise ValidationError(
                "coin id must match pattern [A-Za-z0-9._-]{1,100} and not be dots only",
                details={"id": coin_id}
            )


def create_gateway(
    config: GatewayConfig,
    *,
    metrics: Optional["MetricsCollector"] = None,
    transport: Optional["httpx.AsyncBaseTransport"] = None,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> MarketDataGateway:
    """Wire a gateway from configuration."""
    client = CoinGeckoClient(
        config.upstream_base_url,
        api_key=config.api_key,
        user_agent=config.user_agent,
        timeout=config.request_timeout_seconds,
        transport=transport,
        metrics=metrics,
    )
    retrier = Retrier(
        RetryConfig(
            max_attempts=config.retry_max_attempts,
            base_delay=config.retry_base_delay_seconds,
            max_delay=config.retry_max_delay_seconds,
        ),
        sleep=sleep,
        metrics=metrics,
    )
    scheduler = RequestScheduler(
        Pacer(config.min_request_interval_seconds, sleep=sleep),
        retrier,
        metrics=metrics,
    )
    return MarketDataGateway(
        client,
        cache=TTLCache(config.cache_ttl_seconds),
        scheduler=scheduler,
        vs_currency=config.vs_currency,
        metrics=metrics,
    )
