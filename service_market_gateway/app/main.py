"""
Market Data Gateway HTTP service.
"""

from typing import Any, Dict, List, Optional

from fastapi import Depends, Query, Request

from shared.base_service import BaseService
from shared.config import GatewayConfig

from .market_data import MarketDataGateway, create_gateway


def get_gateway(request: Request) -> MarketDataGateway:
    """FastAPI dependency returning the gateway owned by the running service."""
    return request.app.state.gateway_service.gateway


class MarketGatewayService(BaseService):
    """Operational HTTP surface over a single MarketDataGateway instance."""

    def __init__(self, config: Optional[GatewayConfig] = None, gateway: Optional[MarketDataGateway] = None):
        super().__init__("gateway", config)
        self.gateway = gateway or create_gateway(self.config, metrics=self.metrics)

        @self.app.on_event("shutdown")
        async def _shutdown():
            await self.gateway.aclose()

        self._setup_market_routes()
        self._setup_cache_routes()

        # Expose service instance via app state for introspection/testing
        self.app.state.gateway_service = self

    async def _check_dependencies(self) -> Dict[str, str]:
        status = self.gateway.get_status()
        return {
            "upstream": "degraded" if status["last_failure"] else "ok",
            "api_key": "configured" if status["has_api_key"] else "missing",
        }

    def _setup_market_routes(self):
        """Set up market data routes."""

        @self.app.get("/coins/top")
        async def top_coins(
            limit: int = Query(100),
            gateway: MarketDataGateway = Depends(get_gateway),
        ) -> List[Dict[str, Any]]:
            """Top coins by market cap."""
            return await gateway.get_top_coins(limit)

        @self.app.get("/coins/prices")
        async def coin_prices(
            ids: str = Query(""),
            gateway: MarketDataGateway = Depends(get_gateway),
        ) -> List[Dict[str, Any]]:
            """Snapshots for a comma-separated set of coin ids."""
            coin_ids = [part.strip() for part in ids.split(",") if part.strip()]
            return await gateway.get_coin_prices(coin_ids)

        @self.app.get("/coins/{coin_id}")
        async def coin_details(
            coin_id: str,
            gateway: MarketDataGateway = Depends(get_gateway),
        ) -> Dict[str, Any]:
            """Full record for one coin."""
            return await gateway.get_coin_details(coin_id)

        @self.app.get("/coins/{coin_id}/history")
        async def coin_history(
            coin_id: str,
            range: str = Query("7"),
            gateway: MarketDataGateway = Depends(get_gateway),
        ) -> Dict[str, Any]:
            """Price series as [timestamp_ms, price] pairs."""
            points = await gateway.get_coin_price_history(coin_id, range)
            return {
                "id": coin_id,
                "range": range,
                "prices": [[timestamp, price] for timestamp, price in points],
            }

        @self.app.get("/status")
        async def gateway_status(gateway: MarketDataGateway = Depends(get_gateway)) -> Dict[str, Any]:
            """Queue, cache and upstream status."""
            return gateway.get_status()

    def _setup_cache_routes(self):
        """Set up cache management routes."""

        @self.app.get("/cache/status")
        async def cache_status(gateway: MarketDataGateway = Depends(get_gateway)) -> Dict[str, Any]:
            return gateway.get_cache_status()

        @self.app.delete("/cache")
        async def clear_cache(
            expired_only: bool = Query(False),
            gateway: MarketDataGateway = Depends(get_gateway),
        ) -> Dict[str, Any]:
            """Operator-triggered cache invalidation."""
            removed = gateway.clear_cache(expired_only=expired_only)
            self.logger.info("Cache invalidated via API", removed=removed)
            return {"cleared": removed}


def create_app(config: Optional[GatewayConfig] = None, gateway: Optional[MarketDataGateway] = None):
    """Create FastAPI application."""
    service = MarketGatewayService(config, gateway)
    return service.app


if __name__ == "__main__":
    service = MarketGatewayService()
    service.run()
