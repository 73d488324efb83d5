"""
Market data package: gateway operations, snapshot records and fallback data.
"""

from .fallback import FallbackProvider
from .gateway import MarketDataGateway, create_gateway
from .models import CoinSnapshot, PricePoint, parse_price_history

__all__ = [
    "CoinSnapshot",
    "FallbackProvider",
    "MarketDataGateway",
    "PricePoint",
    "create_gateway",
    "parse_price_history",
]
