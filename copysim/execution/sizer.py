"""
Position Sizer - Turns a followed trade into a simulated position size.
"""
from typing import Mapping

from config.settings import SimulationSettings
from copysim.models import SizingRule, Trade


class PositionSizer:
    """
    Sizes copy orders under one of two rules.

    - equal: the same slice of bankroll for every followed trade, capped
    - proportional: the trade's share of its trader's in-window notional,
      applied to that trader's slice of the bankroll
    """

    def __init__(
        self,
        sizing_rule: SizingRule,
        bankroll_usd: float,
        num_traders: int,
        num_trades: int,
        wallet_volumes: Mapping[str, float],
        min_trade_usd: float,
        settings: SimulationSettings,
    ):
        """
        Initialize sizer for one simulation run.

        Args:
            sizing_rule: "equal" or "proportional"
            bankroll_usd: Starting bankroll in USD
            num_traders: Number of followed wallets
            num_trades: Number of followed trades in the window
            wallet_volumes: Total in-window notional per wallet
            min_trade_usd: Trades below this notional are not copied
            settings: Simulation tunables
        """
        if num_traders < 1:
            raise ValueError(f"num_traders must be at least 1, got {num_traders}")

        self.sizing_rule = sizing_rule
        self.wallet_volumes = wallet_volumes
        self.min_trade_usd = min_trade_usd
        self.allocation_per_trader = bankroll_usd / num_traders

        per_trade = bankroll_usd / max(1, num_trades)
        self.equal_slice = min(per_trade, settings.equal_max_position_usd)

    def size(self, trade: Trade) -> float:
        """
        Requested position size in USD for a followed trade.

        Returns 0.0 for trades that should not be copied.
        """
        notional = trade.notional
        if notional < self.min_trade_usd or notional <= 0:
            return 0.0

        if self.sizing_rule == "equal":
            return self.equal_slice

        trader_volume = self.wallet_volumes.get(trade.wallet_address, 0.0)
        if trader_volume <= 0:
            return 0.0

        share = notional / trader_volume
        return max(0.0, min(self.allocation_per_trader, share * self.allocation_per_trader))
