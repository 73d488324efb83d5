"""
Degraded-mode data served when the upstream cannot be reached.
"""

from datetime import datetime, timezone
from typing import Callable, Dict, Iterable, List, NamedTuple

from .models import CoinSnapshot


PLACEHOLDER_IMAGE = "/placeholder/32/32.jpg"


class _Reference(NamedTuple):
    symbol: str
    name: str
    price: float
    change_24h: float
    market_cap: float


# Static reference figures, ordered by market cap.
REFERENCE_COINS: Dict[str, _Reference] = {
    "bitcoin": _Reference("btc", "Bitcoin", 43000.0, 2.5, 850_000_000_000.0),
    "ethereum": _Reference("eth", "Ethereum", 2600.0, -1.2, 320_000_000_000.0),
    "tether": _Reference("usdt", "Tether", 1.0, 0.0, 95_000_000_000.0),
    "binancecoin": _Reference("bnb", "BNB", 300.0, 0.8, 45_000_000_000.0),
    "solana": _Reference("sol", "Solana", 100.0, 1.5, 43_000_000_000.0),
    "ripple": _Reference("xrp", "XRP", 0.6, -0.4, 32_000_000_000.0),
    "usd-coin": _Reference("usdc", "USDC", 1.0, 0.0, 28_000_000_000.0),
    "cardano": _Reference("ada", "Cardano", 0.5, -0.9, 17_000_000_000.0),
    "dogecoin": _Reference("doge", "Dogecoin", 0.08, 0.3, 11_000_000_000.0),
    "tron": _Reference("trx", "TRON", 0.1, 0.2, 9_000_000_000.0),
}


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class FallbackProvider:
    """Builds synthetic, clearly flagged snapshots.

    Output is deterministic for a given input apart from ``last_updated``;
    volumes are always zero and every record carries ``degraded=True``.
    """

    def __init__(self, *, now: Callable[[], datetime] = _utc_now):
        self._now = now

    def top_coins(self, limit: int) -> List[dict]:
        """Return exactly ``limit`` records ranked by market cap."""
        stamp = self._timestamp()
        records: List[dict] = []
        for rank, coin_id in enumerate(list(REFERENCE_COINS)[:limit], start=1):
            records.append(self._known(coin_id, rank, stamp).to_dict())

        for rank in range(len(records) + 1, limit + 1):
            records.append(self._unknown(f"unranked-{rank}", rank, stamp).to_dict())
        return records

    def prices(self, coin_ids: Iterable[str]) -> List[dict]:
        """Return one record per requested id, in the given order."""
        stamp = self._timestamp()
        records: List[dict] = []
        for index, coin_id in enumerate(coin_ids, start=1):
            if coin_id in REFERENCE_COINS:
                snapshot = self._known(coin_id, index, stamp)
            else:
                snapshot = self._unknown(coin_id, 0, stamp)
            records.append(snapshot.to_dict())
        return records

    def _timestamp(self) -> str:
        return self._now().isoformat(timespec="milliseconds").replace("+00:00", "Z")

    @staticmethod
    def _known(coin_id: str, rank: int, stamp: str) -> CoinSnapshot:
        ref = REFERENCE_COINS[coin_id]
        return CoinSnapshot(
            id=coin_id,
            symbol=ref.symbol,
            name=ref.name,
            image=PLACEHOLDER_IMAGE,
            current_price=ref.price,
            price_change_percentage_24h=ref.change_24h,
            market_cap=ref.market_cap,
            market_cap_rank=rank,
            total_volume=0.0,
            last_updated=stamp,
            degraded=True,
        )

    @staticmethod
    def _unknown(coin_id: str, rank: int, stamp: str) -> CoinSnapshot:
        return CoinSnapshot(
            id=coin_id,
            symbol=coin_id[:3],
            name=coin_id.replace("-", " ").title(),
            image=PLACEHOLDER_IMAGE,
            current_price=0.0,
            price_change_percentage_24h=0.0,
            market_cap=0.0,
            market_cap_rank=rank,
            total_volume=0.0,
            last_updated=stamp,
            degraded=True,
        )
