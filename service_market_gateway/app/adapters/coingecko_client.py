"""
Async HTTP client for the CoinGecko-compatible market data API.
"""

from __future__ import annotations

import time
from typing import Any, Dict, Optional, TYPE_CHECKING

import httpx

from shared.errors import RateLimitedError, TransientFailureError
from shared.logging import get_logger

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector


API_KEY_HEADER = "x-cg-demo-api-key"


class CoinGeckoClient:
    """Performs exactly one upstream attempt per call.

    Retrying and pacing are the scheduler's job; this client only turns the
    HTTP outcome into a payload or a classified failure.
    """

    def __init__(
        self,
        base_url: str,
        *,
        api_key: Optional[str] = None,
        user_agent: str = "MarketDataGateway/1.0",
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        metrics: Optional["MetricsCollector"] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.metrics = metrics
        self.logger = get_logger("gateway.coingecko")

        headers = {"Accept": "application/json", "User-Agent": user_agent}
        if api_key:
            headers[API_KEY_HEADER] = api_key
        else:
            self.logger.warning("No API key configured, using public endpoints")

        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    @property
    def has_api_key(self) -> bool:
        return bool(self.api_key)

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    async def fetch_markets(
        self,
        *,
        vs_currency: str,
        per_page: Optional[int] = None,
        ids: Optional[str] = None,
        price_change_percentage: str = "24h",
    ) -> Any:
        """GET /coins/markets, ranked by market cap descending."""
        params: Dict[str, Any] = {"vs_currency": vs_currency, "order": "market_cap_desc"}
        if ids is not None:
            params["ids"] = ids
        if per_page is not None:
            params["per_page"] = per_page
            params["page"] = 1
        params["sparkline"] = "false"
        params["price_change_percentage"] = price_change_percentage
        return await self.get_json("/coins/markets", params, endpoint="markets")

    async def fetch_coin(self, coin_id: str) -> Any:
        """GET /coins/{id} with market data and without the heavy sections."""
        params = {
            "localization": "false",
            "tickers": "false",
            "market_data": "true",
            "community_data": "false",
            "developer_data": "false",
            "sparkline": "false",
        }
        return await self.get_json(f"/coins/{coin_id}", params, endpoint="coin")

    async def fetch_market_chart(self, coin_id: str, *, vs_currency: str, days: str) -> Any:
        """GET /coins/{id}/market_chart."""
        params = {"vs_currency": vs_currency, "days": days}
        return await self.get_json(f"/coins/{coin_id}/market_chart", params, endpoint="market_chart")

    async def get_json(
        self,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        *,
        endpoint: Optional[str] = None,
    ) -> Any:
        """Issue one GET and decode JSON, classifying every failure."""
        started = time.perf_counter()
        self.logger.info("Making upstream request", path=path, params=params)

        try:
            response = await self._client.get(path, params=params)
        except httpx.TimeoutException as exc:
            self._record("timeout", endpoint or path, started)
            raise TransientFailureError(
                f"Timed out calling {path}",
                details={"path": path, "error": str(exc)}
            ) from exc
        except httpx.HTTPError as exc:
            self._record("network_error", endpoint or path, started)
            raise TransientFailureError(
                f"Network error calling {path}: {exc}",
                details={"path": path, "error": str(exc)}
            ) from exc

        if response.status_code == 429:
            self._record("rate_limited", endpoint or path, started)
            self.logger.warning(
                "Upstream rate limited request",
                path=path,
                retry_after=response.headers.get("Retry-After")
            )
            raise RateLimitedError(details={
                "path": path,
                "status_code": 429,
                "retry_after": response.headers.get("Retry-After"),
            })

        if response.status_code >= 400:
            self._record("http_error", endpoint or path, started)
            self.logger.error(
                "Upstream request failed",
                path=path,
                status_code=response.status_code,
                response=response.text[:500]
            )
            raise TransientFailureError(
                f"HTTP {response.status_code}: {response.reason_phrase}",
                details={"path": path, "status_code": response.status_code}
            )

        try:
            data = response.json()
        except ValueError as exc:
            self._record("invalid_payload", endpoint or path, started)
            raise TransientFailureError(
                f"Invalid JSON from {path}",
                details={"path": path, "status_code": response.status_code}
            ) from exc

        self._record("success", endpoint or path, started)
        self.logger.debug("Upstream request succeeded", path=path)
        return data

    def _record(self, outcome: str, endpoint: str, started: float) -> None:
        if not self.metrics:
            return
        self.metrics.increment_counter("upstream_requests_total", outcome=outcome)
        self.metrics.observe_histogram(
            "upstream_request_duration_seconds",
            time.perf_counter() - started,
            endpoint=endpoint,
        )
