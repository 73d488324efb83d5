"""
Market snapshot records used by the gateway.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple


PricePoint = Tuple[int, float]


@dataclass(frozen=True)
class CoinSnapshot:
    """Structured representation of one coin in a markets listing.

    Upstream payloads are passed through untouched; this record is only
    built when the gateway has to synthesize data itself.
    """

    id: str
    symbol: str
    name: str
    image: str
    current_price: float
    price_change_percentage_24h: float
    market_cap: float
    market_cap_rank: int
    total_volume: float
    last_updated: str
    degraded: bool = False

    def to_dict(self) -> Dict[str, Any]:
        """Serialize the snapshot to the provider's JSON field names."""
        payload: Dict[str, Any] = {
            "id": self.id,
            "symbol": self.symbol,
            "name": self.name,
            "image": self.image,
            "current_price": self.current_price,
            "price_change_percentage_24h": self.price_change_percentage_24h,
            "market_cap": self.market_cap,
            "market_cap_rank": self.market_cap_rank,
            "total_volume": self.total_volume,
            "last_updated": self.last_updated,
        }
        if self.degraded:
            payload["degraded"] = True
        return payload


def parse_price_history(payload: Any) -> List[PricePoint]:
    """Extract ``(timestamp_ms, price)`` pairs from a market_chart payload."""
    if not isinstance(payload, dict):
        return []

    points: List[PricePoint] = []
    for row in payload.get("prices") or []:
        point = _price_point(row)
        if point is not None:
            points.append(point)
    return points


def _price_point(row: Any) -> Optional[PricePoint]:
    if not isinstance(row, (list, tuple)) or len(row) < 2:
        return None
    try:
        return int(row[0]), float(row[1])
    except (TypeError, ValueError):
        return None
