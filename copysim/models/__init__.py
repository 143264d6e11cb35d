from copysim.models.money import Money, Currency
from copysim.models.trade import Trade, Side
from copysim.models.market import (
    MarketSnapshot,
    LiquidityContext,
    OrderbookSnapshot,
    PriceTick,
    LeaderboardEntry,
)
from copysim.models.simulation import (
    SimulationConfig,
    SizingRule,
    validate_config,
    validate_bankroll,
    SimulatedFill,
    TrialResult,
    PercentileLadder,
    SimulationResults,
    DailyPnl,
    MarketContribution,
    SimulationLogEntry,
    SimulationReport,
    QuickEstimate,
)

__all__ = [
    "Money",
    "Currency",
    "Trade",
    "Side",
    "MarketSnapshot",
    "LiquidityContext",
    "OrderbookSnapshot",
    "PriceTick",
    "LeaderboardEntry",
    "SimulationConfig",
    "SizingRule",
    "validate_config",
    "validate_bankroll",
    "SimulatedFill",
    "TrialResult",
    "PercentileLadder",
    "SimulationResults",
    "DailyPnl",
    "MarketContribution",
    "SimulationLogEntry",
    "SimulationReport",
    "QuickEstimate",
]
