"""
Request pacer for outbound upstream calls.
"""

import asyncio
import time
from typing import Any, Awaitable, Callable, Optional

from shared.logging import get_logger


class Pacer:
    """Enforces a minimum wall-clock interval between outbound requests.

    Only the scheduler's worker calls ``wait_turn``, so the read-then-write of
    the last request timestamp is never interleaved.
    """

    def __init__(
        self,
        min_interval: float = 1.1,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.min_interval = min_interval
        self._clock = clock
        self._sleep = sleep
        self._last_request_at: Optional[float] = None
        self.logger = get_logger("gateway.pacer")

    @property
    def last_request_at(self) -> Optional[float]:
        return self._last_request_at

    async def wait_turn(self) -> None:
        """Return once min_interval has elapsed since the previous turn."""
        if self._last_request_at is not None:
            wait = self.min_interval - (self._clock() - self._last_request_at)
            if wait > 0:
                self.logger.debug("Pacing outbound request", wait_seconds=round(wait, 3))
                await self._sleep(wait)
        self._last_request_at = self._clock()
