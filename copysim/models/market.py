from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator

from copysim.models.trade import Side


def _as_utc(v: datetime) -> datetime:
    if v.tzinfo is None:
        return v.replace(tzinfo=timezone.utc)
    return v.astimezone(timezone.utc)


class MarketSnapshot(BaseModel):
    """Reference data for one market, read once per simulation run."""

    model_config = {"from_attributes": True, "frozen": True}

    condition_id: str
    title: Optional[str] = None
    outcomes: list[str] = Field(default_factory=lambda: ["Yes", "No"])
    daily_volume: Optional[float] = Field(default=None, ge=0.0)
    is_closed: bool = False
    winning_outcome: Optional[str] = None
    last_price_primary: Optional[float] = Field(default=None, ge=0.0, le=1.0)

    @property
    def is_settled(self) -> bool:
        return self.is_closed and bool(self.winning_outcome)

    def is_primary(self, outcome: str) -> bool:
        if not self.outcomes:
            return outcome.upper() == "YES"
        return outcome.upper() == self.outcomes[0].upper()

    def to_db_dict(self) -> dict[str, Any]:
        return {
            "condition_id": self.condition_id,
            "title": self.title,
            "outcomes": self.outcomes,
            "daily_volume": self.daily_volume,
            "is_closed": self.is_closed,
            "winning_outcome": self.winning_outcome,
            "last_price_primary": self.last_price_primary,
        }


class LiquidityContext(BaseModel):
    """Depth available to one side of the book, in USD."""

    model_config = {"frozen": True}

    near_depth: float = Field(ge=0.0)
    wide_depth: float = Field(ge=0.0)
    spread_bps: float = Field(ge=0.0)


class OrderbookSnapshot(BaseModel):
    model_config = {"from_attributes": True, "frozen": True}

    token_id: str
    timestamp: datetime
    best_bid: float = Field(ge=0.0, le=1.0)
    best_ask: float = Field(ge=0.0, le=1.0)
    mid_price: float = Field(ge=0.0, le=1.0)
    spread_bps: float = Field(ge=0.0)
    bid_depth_100bps: float = Field(default=0.0, ge=0.0)
    ask_depth_100bps: float = Field(default=0.0, ge=0.0)
    bid_depth_500bps: float = Field(default=0.0, ge=0.0)
    ask_depth_500bps: float = Field(default=0.0, ge=0.0)

    @field_validator("timestamp")
    @classmethod
    def ensure_utc(cls, v: datetime) -> datetime:
        return _as_utc(v)

    def liquidity_for(self, side: Side) -> LiquidityContext:
        # A buyer walks the asks, a seller walks the bids
        if side == "BUY":
            return LiquidityContext(
                near_depth=self.ask_depth_100bps,
                wide_depth=self.ask_depth_500bps,
                spread_bps=self.spread_bps,
            )
        return LiquidityContext(
            near_depth=self.bid_depth_100bps,
            wide_depth=self.bid_depth_500bps,
            spread_bps=self.spread_bps,
        )


class PriceTick(BaseModel):
    model_config = {"from_attributes": True, "frozen": True}

    token_id: str
    timestamp: datetime
    price: float = Field(ge=0.0, le=1.0)

    @field_validator("timestamp")
    @classmethod
    def ensure_utc(cls, v: datetime) -> datetime:
        return _as_utc(v)


class LeaderboardEntry(BaseModel):
    model_config = {"from_attributes": True}

    rank: int
    wallet_address: str
    realized_pnl: float = 0.0
    total_pnl: float = 0.0
    volume: float = 0.0
    trade_count: int = 0
    win_rate: float = 0.0
    roi_percent: float = 0.0
