"""
Portfolio - Lot-averaged position accounting for a single trial.
"""
from dataclasses import dataclass, field
from typing import Mapping

from copysim.models import MarketSnapshot

PositionKey = tuple[str, str]

DUST_SHARES = 0.001


@dataclass
class Position:
    condition_id: str
    outcome: str
    size: float = 0.0
    avg_price: float = 0.0

    @property
    def cost_basis(self) -> float:
        return self.size * self.avg_price


@dataclass(frozen=True)
class SellResult:
    shares_sold: float
    proceeds: float
    realized_pnl: float
    cost_basis_released: float


@dataclass
class Portfolio:
    """
    Cash plus positions keyed by (condition_id, outcome).

    Realized PnL is booked on sells against the position's average price and
    attributed to a calendar date and a market. Unrealized PnL is booked once,
    by mark_to_market, at the end of a trial.
    """

    starting_cash: float
    cash: float = field(init=False)
    positions: dict[PositionKey, Position] = field(default_factory=dict)
    realized_pnl: float = 0.0
    unrealized_pnl: float = 0.0
    daily_pnl: dict[str, float] = field(default_factory=dict)
    market_pnl: dict[str, float] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.cash = self.starting_cash

    def held(self, condition_id: str, outcome: str) -> float:
        position = self.positions.get((condition_id, outcome))
        return position.size if position else 0.0

    def buy(self, condition_id: str, outcome: str, shares: float, price: float) -> Position:
        """
        Add shares to a position, re-averaging its entry price.

        Args:
            condition_id: Market
            outcome: Outcome the shares pay out on
            shares: Number of shares bought (> 0)
            price: Fill price per share

        Returns:
            The updated position
        """
        if shares <= 0:
            raise ValueError(f"shares must be positive, got {shares}")

        key = (condition_id, outcome)
        position = self.positions.get(key)
        if position is None:
            position = Position(condition_id=condition_id, outcome=outcome)
            self.positions[key] = position

        new_size = position.size + shares
        position.avg_price = (position.avg_price * position.size + price * shares) / new_size
        position.size = new_size
        self.cash -= shares * price
        return position

    def sell(
        self,
        condition_id: str,
        outcome: str,
        shares: float,
        price: float,
        trade_date: str,
    ) -> SellResult:
        """
        Reduce a position, never below zero.

        Args:
            condition_id: Market
            outcome: Outcome being sold
            shares: Shares requested; clipped to the held size
            price: Fill price per share
            trade_date: ISO date the realized PnL is attributed to

        Returns:
            SellResult with shares actually sold and realized PnL
        """
        position = self.positions.get((condition_id, outcome))
        if position is None or position.size <= 0 or shares <= 0:
            return SellResult(shares_sold=0.0, proceeds=0.0, realized_pnl=0.0, cost_basis_released=0.0)

        sold = min(shares, position.size)
        pnl = (price - position.avg_price) * sold
        proceeds = sold * price
        released = sold * position.avg_price

        position.size -= sold
        if position.size < 0:
            position.size = 0.0
        self.cash += proceeds

        self.realized_pnl += pnl
        self.daily_pnl[trade_date] = self.daily_pnl.get(trade_date, 0.0) + pnl
        self.market_pnl[condition_id] = self.market_pnl.get(condition_id, 0.0) + pnl

        return SellResult(
            shares_sold=sold,
            proceeds=proceeds,
            realized_pnl=pnl,
            cost_basis_released=released,
        )

    def mark_to_market(self, markets: Mapping[str, MarketSnapshot], default_price: float) -> float:
        """
        Value residual positions at their exit price and book unrealized PnL.

        Args:
            markets: Snapshot per condition_id
            default_price: Primary-outcome price when a market has none

        Returns:
            Unrealized PnL across all residual positions
        """
        unrealized = 0.0
        for (condition_id, outcome), position in self.positions.items():
            if position.size <= DUST_SHARES:
                continue

            snapshot = markets.get(condition_id)
            exit_price = exit_price_for(outcome, snapshot, default_price)
            pnl = (exit_price - position.avg_price) * position.size

            unrealized += pnl
            self.market_pnl[condition_id] = self.market_pnl.get(condition_id, 0.0) + pnl

        self.unrealized_pnl = unrealized
        return unrealized

    @property
    def total_pnl(self) -> float:
        return self.realized_pnl + self.unrealized_pnl


def exit_price_for(outcome: str, snapshot: MarketSnapshot | None, default_price: float) -> float:
    """Settlement value when resolved, otherwise the last known price for the outcome."""
    if snapshot is None:
        return default_price

    if snapshot.is_settled:
        return 1.0 if outcome.upper() == snapshot.winning_outcome.upper() else 0.0

    primary_price = (
        snapshot.last_price_primary if snapshot.last_price_primary is not None else default_price
    )
    if snapshot.is_primary(outcome):
        return primary_price
    return 1.0 - primary_price
