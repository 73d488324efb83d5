"""
Shared configuration management for the Market Data Gateway.
"""

from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="MARKET_GATEWAY_",
        case_sensitive=False,
        extra="ignore"
    )

    # Environment
    env: str = Field(default="local")
    log_level: str = Field(default="info")


class GatewayConfig(BaseConfig):
    """Settings for the market data gateway and its upstream."""

    service_name: str = "gateway"
    host: str = "0.0.0.0"
    port: int = 8000

    # Upstream provider
    upstream_base_url: str = Field(default="https://api.coingecko.com/api/v3")
    api_key: Optional[str] = Field(default=None)
    user_agent: str = Field(default="MarketDataGateway/1.0")
    vs_currency: str = Field(default="usd")
    request_timeout_seconds: float = Field(default=10.0)

    # Cache
    cache_ttl_seconds: float = Field(default=30.0)

    # Pacing, safely under the public 30 calls/min ceiling with a key
    min_request_interval_seconds: float = Field(default=1.1)

    # Retry
    retry_max_attempts: int = Field(default=3)
    retry_base_delay_seconds: float = Field(default=2.0)
    retry_max_delay_seconds: float = Field(default=30.0)

    @field_validator(
        "request_timeout_seconds",
        "cache_ttl_seconds",
        "retry_base_delay_seconds",
        "retry_max_delay_seconds",
    )
    @classmethod
    def _positive(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("must be greater than zero")
        return value

    @field_validator("min_request_interval_seconds")
    @classmethod
    def _non_negative(cls, value: float) -> float:
        if value < 0:
            raise ValueError("must not be negative")
        return value

    @field_validator("retry_max_attempts")
    @classmethod
    def _at_least_one(cls, value: int) -> int:
        if value < 1:
            raise ValueError("must be at least 1")
        return value

    @property
    def has_api_key(self) -> bool:
        return bool(self.api_key)


def get_config(**overrides) -> GatewayConfig:
    """Get gateway configuration, environment first then explicit overrides."""
    return GatewayConfig(**overrides)
