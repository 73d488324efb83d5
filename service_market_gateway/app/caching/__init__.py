"""
Caching package for the market data gateway.

Holds the in-process TTL cache that answers repeated lookups without
touching the upstream provider.
"""

from .ttl_cache import CacheEntry, TTLCache, DEFAULT_TTL_SECONDS

__all__ = ["CacheEntry", "TTLCache", "DEFAULT_TTL_SECONDS"]
