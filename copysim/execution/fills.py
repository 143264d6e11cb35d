"""
Fill Model - Prices a hypothetical copy order against available liquidity.
"""
import math
from dataclasses import dataclass
from typing import Optional

from copysim.models import LiquidityContext, Side

MIN_SHARE_PRICE = 0.001
MAX_SHARE_PRICE = 0.999

# Without a book: sqrt(notional / 100) * 10 bps, never above 50 bps
BLIND_SLIPPAGE_CAP_BPS = 50.0
# Per unit of (notional / near-touch depth) once the order walks the book
DEPTH_SLIPPAGE_BPS = 100.0
# Orders larger than the wider tier
EXHAUSTED_BOOK_SLIPPAGE_BPS = 500.0
IMPACT_SCALE_BPS = 100.0
FILLED_THRESHOLD = 0.95


@dataclass(frozen=True)
class FillResult:
    avg_price: float
    slippage_bps: float
    impact_bps: float
    fill_ratio: float

    @property
    def filled(self) -> bool:
        return self.fill_ratio >= FILLED_THRESHOLD

    @property
    def partial_fill(self) -> bool:
        return not self.filled


def clamp_price(price: float) -> float:
    return max(MIN_SHARE_PRICE, min(MAX_SHARE_PRICE, price))


def calculate_fill(
    side: Side,
    notional_usd: float,
    reference_price: float,
    liquidity: Optional[LiquidityContext] = None,
    market_impact_enabled: bool = False,
    daily_volume: float = 0.0,
) -> FillResult:
    """
    Compute a realistic fill for a copy order.

    Args:
        side: BUY pays above the reference price, SELL receives below it
        notional_usd: Requested order size in USD
        reference_price: Price observed at the simulated entry time
        liquidity: Book depth for the order's side, if a snapshot exists
        market_impact_enabled: Add square-root impact on top of book slippage
        daily_volume: Market's daily volume in USD, for the impact term

    Returns:
        FillResult with average price, slippage, impact and fill ratio
    """
    if notional_usd < 0:
        raise ValueError(f"notional_usd must be non-negative, got {notional_usd}")

    fill_ratio = 1.0

    if liquidity is None:
        slippage_bps = min(BLIND_SLIPPAGE_CAP_BPS, math.sqrt(notional_usd / 100) * 10)
    else:
        slippage_bps = liquidity.spread_bps / 2

        if notional_usd > liquidity.near_depth:
            if notional_usd > liquidity.wide_depth:
                fill_ratio = min(1.0, liquidity.wide_depth / notional_usd)
                slippage_bps = EXHAUSTED_BOOK_SLIPPAGE_BPS
            elif liquidity.near_depth > 0:
                depth_ratio = notional_usd / liquidity.near_depth
                slippage_bps = min(
                    EXHAUSTED_BOOK_SLIPPAGE_BPS,
                    slippage_bps + depth_ratio * DEPTH_SLIPPAGE_BPS,
                )
            else:
                slippage_bps = EXHAUSTED_BOOK_SLIPPAGE_BPS

    impact_bps = 0.0
    if market_impact_enabled and daily_volume > 0:
        impact_bps = math.sqrt(notional_usd / daily_volume) * IMPACT_SCALE_BPS
        slippage_bps += impact_bps

    direction = 1 if side == "BUY" else -1
    avg_price = clamp_price(reference_price * (1 + direction * slippage_bps / 10_000))

    return FillResult(
        avg_price=avg_price,
        slippage_bps=slippage_bps,
        impact_bps=impact_bps,
        fill_ratio=fill_ratio,
    )
