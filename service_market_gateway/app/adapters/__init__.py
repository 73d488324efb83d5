"""
Adapters package for the market data gateway.

Contains the HTTP client for the upstream market data provider. The
adapter encapsulates:

- Base URL, headers and request shapes
- Classification of failures into the shared error taxonomy

Retries and pacing live in the scheduler, not here.
"""

from .coingecko_client import API_KEY_HEADER, CoinGeckoClient

__all__ = ["API_KEY_HEADER", "CoinGeckoClient"]
