"""
Retry mechanism for resilient upstream calls.
"""

import asyncio
import random
from typing import Any, Awaitable, Callable, Optional, Tuple, Type, TYPE_CHECKING

from shared.errors import FetchError, GatewayException, UpstreamError
from shared.logging import get_logger

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector


class RetryConfig:
    """Configuration for retry behavior."""

    def __init__(self,
                 max_attempts: int = 3,
                 base_delay: float = 2.0,
                 max_delay: float = 30.0,
                 exponential_base: float = 2.0,
                 jitter: bool = False,
                 backoff_strategy: str = "exponential"):
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.exponential_base = exponential_base
        self.jitter = jitter
        self.backoff_strategy = backoff_strategy


def _calculate_delay(attempt: int, config: RetryConfig) -> float:
    """Calculate delay after the given failed attempt (1-based)."""
    if config.backoff_strategy == "exponential":
        delay = config.base_delay * (config.exponential_base ** (attempt - 1))
    elif config.backoff_strategy == "linear":
        delay = config.base_delay * attempt
    elif config.backoff_strategy == "fixed":
        delay = config.base_delay
    else:
        delay = config.base_delay

    delay = min(delay, config.max_delay)

    if config.jitter:
        jitter_amount = delay * 0.1  # 10% jitter
        delay += random.uniform(-jitter_amount, jitter_amount)

    return max(0.0, delay)


class Retrier:
    """Runs a single-attempt coroutine function under a bounded backoff policy.

    Every exception in ``retry_on`` is retried the same way; anything else
    propagates immediately. When the last attempt fails a ``FetchError`` is
    raised carrying the attempt count and the final underlying error.
    """

    def __init__(
        self,
        config: Optional[RetryConfig] = None,
        *,
        retry_on: Tuple[Type[BaseException], ...] = (UpstreamError,),
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        metrics: Optional["MetricsCollector"] = None,
    ):
        self.config = config or RetryConfig()
        self.retry_on = retry_on
        self._sleep = sleep
        self.metrics = metrics
        self.logger = get_logger("gateway.retry")

    async def execute(self, request_fn: Callable[[], Awaitable[Any]], *, label: str = "request") -> Any:
        """Run ``request_fn`` until it succeeds or the attempt budget is spent."""
        max_attempts = self.config.max_attempts

        for attempt in range(1, max_attempts + 1):
            try:
                result = await request_fn()
            except self.retry_on as exc:
                reason = exc.code.lower() if isinstance(exc, GatewayException) else type(exc).__name__

                if attempt >= max_attempts:
                    self.logger.error(
                        "All retry attempts exhausted",
                        label=label,
                        attempt=attempt,
                        max_attempts=max_attempts,
                        error=str(exc)
                    )
                    raise FetchError(
                        f"{label} failed after {max_attempts} attempts",
                        last_exception=exc,
                        attempts=attempt
                    ) from exc

                delay = _calculate_delay(attempt, self.config)
                self.logger.warning(
                    "Retry attempt failed, waiting before next attempt",
                    label=label,
                    attempt=attempt,
                    delay=delay,
                    reason=reason,
                    error=str(exc)
                )
                if self.metrics:
                    self.metrics.increment_counter("upstream_retries_total", reason=reason)

                await self._sleep(delay)
                continue

            if attempt > 1:
                self.logger.info("Retry succeeded", label=label, attempt=attempt)
            return result

        # max_attempts < 1 is rejected by configuration; keep the type checker honest
        raise RuntimeError("Retrier configured with no attempts")
