"""In-memory market data, for embedding the engine and for tests."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Iterable, Optional

from copysim.data.sources.base import MarketDataSource, metric_attribute
from copysim.models import LeaderboardEntry, MarketSnapshot, OrderbookSnapshot, PriceTick, Trade
from copysim.utils.exceptions import MissingMarketMetadata


def _utc(ts: datetime) -> datetime:
    return ts.replace(tzinfo=timezone.utc) if ts.tzinfo is None else ts


class InMemoryMarketData(MarketDataSource):
    name = "memory"

    def __init__(
        self,
        trades: Iterable[Trade] = (),
        markets: Iterable[MarketSnapshot] = (),
        leaderboard: Iterable[LeaderboardEntry] = (),
        price_ticks: Iterable[PriceTick] = (),
        orderbooks: Iterable[OrderbookSnapshot] = (),
    ) -> None:
        self.trades = list(trades)
        self.markets = {m.condition_id: m for m in markets}
        self.entries = list(leaderboard)
        self.price_ticks = list(price_ticks)
        self.orderbooks = list(orderbooks)

    def leaderboard(self, metric: str, limit: int) -> list[LeaderboardEntry]:
        attribute = metric_attribute(metric)
        ranked = sorted(self.entries, key=lambda e: getattr(e, attribute), reverse=True)
        return [
            entry.model_copy(update={"rank": idx + 1})
            for idx, entry in enumerate(ranked[:limit])
        ]

    def trades_since(self, window_start: datetime) -> list[Trade]:
        start = _utc(window_start)
        return sorted(
            (t for t in self.trades if t.timestamp >= start),
            key=lambda t: t.timestamp,
        )

    def market_snapshot(self, condition_id: str) -> MarketSnapshot:
        snapshot: Optional[MarketSnapshot] = self.markets.get(condition_id)
        if snapshot is None:
            raise MissingMarketMetadata(condition_id)
        return snapshot

    def price_history(self, token_id: str, start: datetime, end: datetime) -> list[PriceTick]:
        start, end = _utc(start), _utc(end)
        return sorted(
            (t for t in self.price_ticks if t.token_id == token_id and start <= t.timestamp <= end),
            key=lambda t: t.timestamp,
        )

    def orderbook_history(
        self, token_id: str, start: datetime, end: datetime
    ) -> list[OrderbookSnapshot]:
        start, end = _utc(start), _utc(end)
        return sorted(
            (b for b in self.orderbooks if b.token_id == token_id and start <= b.timestamp <= end),
            key=lambda b: b.timestamp,
        )
