from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Literal, Mapping, Optional

from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from copysim.models.money import Currency, Money
from copysim.models.trade import Side, Trade
from copysim.models.market import LeaderboardEntry
from copysim.utils.exceptions import InvalidConfiguration

SizingRule = Literal["equal", "proportional"]

MIN_BANKROLL = 10.0
MAX_BANKROLL = 100_000.0


class SimulationConfig(BaseModel):
    model_config = {"from_attributes": True, "frozen": True, "extra": "forbid"}

    bankroll: Money = Field(default_factory=lambda: Money(amount=100.0))
    entry_delay_sec: float = Field(default=60.0, ge=0, le=3600)
    delay_variance_sec: float = Field(default=30.0, ge=0, le=300)
    sizing_rule: SizingRule = "equal"
    max_exposure_pct: float = Field(default=10.0, ge=1, le=100)
    min_trade_usd: float = Field(default=10.0, ge=0, le=10_000)
    use_actual_orderbook: bool = True
    market_impact_enabled: bool = True
    num_simulations: int = Field(default=1000, ge=1, le=5000)
    window_days: int = Field(default=7, ge=1, le=30)
    seed: Optional[int] = Field(default=None, ge=0)
    max_workers: int = Field(default=1, ge=1, le=32)
    timeout_seconds: Optional[float] = Field(default=None, gt=0)
    include_audit_log: bool = True

    @field_validator("bankroll", mode="before")
    @classmethod
    def coerce_bankroll(cls, v: Any) -> Any:
        # Bare numbers are USD; a dict keeps amount errors under bankroll.amount
        if isinstance(v, (int, float)) and not isinstance(v, bool):
            return {"amount": float(v)}
        return v

    @field_validator("bankroll")
    @classmethod
    def validate_bankroll_range(cls, v: Money) -> Money:
        if not MIN_BANKROLL <= v.amount <= MAX_BANKROLL:
            raise ValueError(
                f"bankroll must be between {MIN_BANKROLL:,.0f} and {MAX_BANKROLL:,.0f} "
                f"{v.currency}, got {v.amount:,.2f}"
            )
        return v


def validate_config(payload: Mapping[str, Any]) -> SimulationConfig:
    """Build a SimulationConfig, reporting every violation at once."""
    try:
        return SimulationConfig.model_validate(dict(payload))
    except ValidationError as exc:
        errors = []
        for err in exc.errors():
            location = ".".join(str(part) for part in err["loc"]) or "config"
            errors.append(f"{location}: {err['msg']}")
        raise InvalidConfiguration(errors) from exc


def validate_bankroll(bankroll: Any) -> Money:
    """
    Apply the SimulationConfig bankroll rules to a standalone value.

    Accepts a Money, a bare USD number or an amount/currency mapping.

    Raises:
        InvalidConfiguration: Negative, out of range or malformed bankroll
    """
    return validate_config({"bankroll": bankroll}).bankroll


class SimulatedFill(BaseModel):
    """One hypothetical copy of a followed trade, kept for audit."""

    model_config = {"from_attributes": True}

    trade: Trade
    side: Side
    simulated_entry_time: datetime
    intended_price: float
    reference_price: float
    fill_price: float
    price_movement: float
    slippage_bps: float
    market_impact_bps: float
    shares: float
    size_usd: float
    fill_ratio: float = Field(ge=0.0, le=1.0)
    partial_fill: bool
    realized_pnl: float = 0.0


@dataclass
class TrialResult:
    """Outcome of one Monte Carlo trial. Never shared across trials."""

    final_pnl: float
    realized_pnl: float
    unrealized_pnl: float
    daily_pnl: dict[str, float] = field(default_factory=dict)
    market_pnl: dict[str, float] = field(default_factory=dict)
    market_fills: dict[str, int] = field(default_factory=dict)
    fills: list[SimulatedFill] = field(default_factory=list)
    fill_count: int = 0
    skipped_count: int = 0


class PercentileLadder(BaseModel):
    p5: float
    p25: float
    median: float
    p75: float
    p95: float

    @model_validator(mode="after")
    def check_monotonic(self) -> "PercentileLadder":
        ladder = [self.p5, self.p25, self.median, self.p75, self.p95]
        if any(lo > hi for lo, hi in zip(ladder, ladder[1:])):
            raise ValueError(f"percentiles must be non-decreasing, got {ladder}")
        return self


class SimulationResults(BaseModel):
    percentiles: PercentileLadder
    mean: float
    std_dev: float = Field(ge=0.0)
    sharpe_ratio: float


class DailyPnl(BaseModel):
    date: str
    pnl_median: float
    pnl_p5: float
    pnl_p95: float
    pnl_mean: float


class MarketContribution(BaseModel):
    condition_id: str
    market: str
    pnl_contribution: float
    trade_count: float


class SimulationLogEntry(BaseModel):
    step: int
    type: Literal["setup", "trade", "summary"]
    description: str
    details: dict[str, Any] = Field(default_factory=dict)
    calculation: str = ""
    timestamp: Optional[datetime] = None


class SimulationReport(BaseModel):
    model_config = {"from_attributes": True}

    config: SimulationConfig
    currency: Currency
    seed: int
    trials_completed: int
    results: SimulationResults
    daily_breakdown: list[DailyPnl]
    market_contributions: list[MarketContribution]
    traders_followed: list[str]
    window_start: datetime
    window_end: datetime
    disclaimer: str
    sample_fills: list[SimulatedFill] = Field(default_factory=list)
    missing_markets: list[str] = Field(default_factory=list)
    audit_log: Optional[list[SimulationLogEntry]] = None

    def to_json(self) -> str:
        return self.model_dump_json(indent=2)

    @classmethod
    def from_json(cls, raw: str) -> "SimulationReport":
        return cls.model_validate_json(raw)


class QuickEstimate(BaseModel):
    currency: Currency
    low: float
    mid: float
    high: float
    average_roi_percent: float
    friction_factor: float
    top_traders: list[LeaderboardEntry]
    disclaimer: str
