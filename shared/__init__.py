"""
Shared utilities for the Market Data Gateway.

Common building blocks consumed by the gateway service:

- config: Service configuration via pydantic-settings
- logging: Structured logging with request correlation
- metrics: Prometheus metrics helpers
- errors: Canonical error types and responses
- retry: Bounded exponential-backoff retry
- base_service: FastAPI application skeleton (health, metrics, error envelope)

Do not import from service packages into shared/.
"""
