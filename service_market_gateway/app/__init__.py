"""
Market Data Gateway service package.

The gateway fronts a rate-limited market data provider, enforcing:
- Caching: in-process TTL cache consulted before any network activity
- Pacing: minimum spacing between outbound requests
- Serialization: a single FIFO worker, one request in flight at a time
- Retries with exponential backoff, then degraded fallback data

Structure:
- app.main: FastAPI app and routes over the gateway.
- app.adapters: HTTP client for the upstream provider.
- app.caching: TTL cache.
- app.ratelimit: Pacer.
- app.scheduling: FIFO request scheduler.
- app.market_data: Gateway operations, records and fallback data.
"""
