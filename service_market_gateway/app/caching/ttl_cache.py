"""
In-process TTL cache for upstream market data payloads.
"""

import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from shared.logging import get_logger


DEFAULT_TTL_SECONDS = 30.0


@dataclass(frozen=True)
class CacheEntry:
    """A cached payload and the moment it was stored."""

    key: str
    value: Any
    stored_at: float


class TTLCache:
    """Key -> payload store with a fixed time-to-live.

    Staleness is evaluated on read; stale entries stay in memory until they
    are overwritten, purged, or the cache is cleared.
    """

    def __init__(self, ttl: float = DEFAULT_TTL_SECONDS, *, clock: Callable[[], float] = time.monotonic):
        self.ttl = ttl
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        self.logger = get_logger("gateway.cache")

    def get(self, key: str) -> Optional[Any]:
        """Return the cached value if it is still fresh, otherwise None."""
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._clock() - entry.stored_at >= self.ttl:
            return None
        return entry.value

    def put(self, key: str, value: Any) -> None:
        """Create or replace the entry for key."""
        self._entries[key] = CacheEntry(key=key, value=value, stored_at=self._clock())
        self.logger.debug("Cached value", key=key, ttl=self.ttl)

    def clear(self) -> None:
        """Drop every entry."""
        self._entries.clear()

    def purge_expired(self) -> int:
        """Physically drop stale entries and return how many were removed."""
        now = self._clock()
        expired = [key for key, entry in self._entries.items() if now - entry.stored_at >= self.ttl]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def keys(self) -> List[str]:
        return list(self._entries.keys())

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and self.get(key) is not None
