"""
Reference Cache - Market metadata, wallet volumes and price/book histories,
fetched once before the first trial and read-only afterwards.
"""
from __future__ import annotations

from bisect import bisect_right
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from types import MappingProxyType
from typing import Mapping, Optional, Sequence

from loguru import logger

from config.settings import SimulationSettings
from copysim.data.sources.base import MarketDataSource
from copysim.models import MarketSnapshot, OrderbookSnapshot, Trade
from copysim.utils.exceptions import MissingMarketMetadata

# Ticks older than the window still answer "price at or before" for early trades
PRICE_LOOKBACK = timedelta(days=1)


@dataclass(frozen=True)
class _Series:
    timestamps: tuple[float, ...]
    values: tuple

    def at_or_before(self, ts: datetime):
        idx = bisect_right(self.timestamps, ts.timestamp())
        if idx == 0:
            return None
        return self.values[idx - 1]


@dataclass(frozen=True)
class ReferenceCache:
    markets: Mapping[str, MarketSnapshot]
    wallet_volumes: Mapping[str, float]
    default_daily_volume: float
    prices: Mapping[str, _Series] = field(default_factory=dict)
    orderbooks: Mapping[str, _Series] = field(default_factory=dict)
    missing_markets: tuple[str, ...] = ()

    def market(self, condition_id: str) -> Optional[MarketSnapshot]:
        return self.markets.get(condition_id)

    def daily_volume(self, condition_id: str) -> float:
        snapshot = self.markets.get(condition_id)
        if snapshot is None or not snapshot.daily_volume:
            return self.default_daily_volume
        return snapshot.daily_volume

    def price_at_time(self, token_id: str, ts: datetime) -> Optional[float]:
        series = self.prices.get(token_id)
        return series.at_or_before(ts) if series else None

    def orderbook_at_or_before(self, token_id: str, ts: datetime) -> Optional[OrderbookSnapshot]:
        series = self.orderbooks.get(token_id)
        return series.at_or_before(ts) if series else None


def default_snapshot(condition_id: str, settings: SimulationSettings, title: Optional[str] = None) -> MarketSnapshot:
    """Conservative stand-in for a market the data source does not know."""
    return MarketSnapshot(
        condition_id=condition_id,
        title=title,
        daily_volume=settings.default_daily_volume,
        is_closed=False,
        last_price_primary=settings.default_mid_price,
    )


def wallet_volumes(trades: Sequence[Trade]) -> dict[str, float]:
    volumes: dict[str, float] = {}
    for trade in trades:
        volumes[trade.wallet_address] = volumes.get(trade.wallet_address, 0.0) + trade.notional
    return volumes


def build_reference_cache(
    source: MarketDataSource,
    trades: Sequence[Trade],
    window_start: datetime,
    window_end: datetime,
    max_delay_sec: float,
    fetch_orderbooks: bool,
    settings: SimulationSettings,
) -> ReferenceCache:
    """
    Pre-fetch everything the trial loop will look up.

    Args:
        source: Data source to read from
        trades: Followed trades in the window
        window_start: Start of the lookback window
        window_end: End of the lookback window
        max_delay_sec: Largest entry delay a trial can draw
        fetch_orderbooks: Whether to load orderbook histories
        settings: Simulation tunables (defaults for missing metadata)

    Returns:
        Read-only ReferenceCache
    """
    markets: dict[str, MarketSnapshot] = {}
    missing: list[str] = []
    titles = {t.condition_id: t.market_title for t in trades if t.market_title}

    for condition_id in sorted({t.condition_id for t in trades}):
        try:
            snapshot = source.market_snapshot(condition_id)
            if snapshot.title is None and condition_id in titles:
                snapshot = snapshot.model_copy(update={"title": titles[condition_id]})
            markets[condition_id] = snapshot
        except MissingMarketMetadata as e:
            logger.warning(f"{e}; assuming open market at mid {settings.default_mid_price}")
            markets[condition_id] = default_snapshot(condition_id, settings, titles.get(condition_id))
            missing.append(condition_id)

    history_start = window_start - PRICE_LOOKBACK
    history_end = window_end + timedelta(seconds=max_delay_sec)

    prices: dict[str, _Series] = {}
    orderbooks: dict[str, _Series] = {}
    for token_id in sorted({t.token_id for t in trades}):
        ticks = source.price_history(token_id, history_start, history_end)
        if ticks:
            ticks = sorted(ticks, key=lambda t: t.timestamp)
            prices[token_id] = _Series(
                timestamps=tuple(t.timestamp.timestamp() for t in ticks),
                values=tuple(t.price for t in ticks),
            )

        if fetch_orderbooks:
            books = source.orderbook_history(token_id, history_start, history_end)
            if books:
                books = sorted(books, key=lambda b: b.timestamp)
                orderbooks[token_id] = _Series(
                    timestamps=tuple(b.timestamp.timestamp() for b in books),
                    values=tuple(books),
                )

    logger.info(
        f"Reference cache built: {len(markets)} markets ({len(missing)} missing), "
        f"{len(prices)} price series, {len(orderbooks)} orderbook series"
    )

    return ReferenceCache(
        markets=MappingProxyType(markets),
        wallet_volumes=MappingProxyType(wallet_volumes(trades)),
        default_daily_volume=settings.default_daily_volume,
        prices=MappingProxyType(prices),
        orderbooks=MappingProxyType(orderbooks),
        missing_markets=tuple(missing),
    )
