"""Read-only interface to the reference data a simulation consumes."""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime

from copysim.models import LeaderboardEntry, MarketSnapshot, OrderbookSnapshot, PriceTick, Trade

LEADERBOARD_METRICS = {
    "realized_pnl": "realized_pnl",
    "total_pnl": "total_pnl",
    "roi": "roi_percent",
    "volume": "volume",
}


class MarketDataSource(ABC):
    """
    Everything the engine reads, fetched once per run before any trial starts.

    Implementations raise MissingMarketMetadata from market_snapshot for
    unknown markets and DataSourceError for I/O failures.
    """

    name: str = "market-data"

    @abstractmethod
    def leaderboard(self, metric: str, limit: int) -> list[LeaderboardEntry]:
        ...

    @abstractmethod
    def trades_since(self, window_start: datetime) -> list[Trade]:
        ...

    @abstractmethod
    def market_snapshot(self, condition_id: str) -> MarketSnapshot:
        ...

    def list_followed_wallets(self, metric: str, limit: int) -> list[str]:
        return [entry.wallet_address for entry in self.leaderboard(metric, limit)]

    def price_history(self, token_id: str, start: datetime, end: datetime) -> list[PriceTick]:
        return []

    def orderbook_history(
        self, token_id: str, start: datetime, end: datetime
    ) -> list[OrderbookSnapshot]:
        return []


def metric_attribute(metric: str) -> str:
    try:
        return LEADERBOARD_METRICS[metric]
    except KeyError:
        raise ValueError(
            f"Unknown leaderboard metric '{metric}'; expected one of {sorted(LEADERBOARD_METRICS)}"
        ) from None
