"""
Trial Runner - One full pass over the followed trades.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Sequence

import numpy as np

from copysim.execution import ExposureLimiter, FillResult, Portfolio, PositionSizer, calculate_fill
from copysim.models import LiquidityContext, SimulatedFill, SimulationConfig, Trade, TrialResult
from copysim.simulation.cache import ReferenceCache
from copysim.simulation.delay import DelayModel, EntryQuote


@dataclass(frozen=True)
class TrialContext:
    """Inputs shared read-only by every trial of a run."""

    trades: Sequence[Trade]
    config: SimulationConfig
    cache: ReferenceCache
    bankroll_usd: float
    sizer: PositionSizer
    delay_model: DelayModel
    min_position_usd: float
    default_price: float
    sample_fill_limit: int


def run_trial(context: TrialContext, rng: np.random.Generator) -> TrialResult:
    """
    Replay the trade sequence once with fresh portfolio state.

    Pure function of the context and the generator: no I/O, nothing outside
    the returned TrialResult is modified.
    """
    config = context.config
    cache = context.cache
    portfolio = Portfolio(starting_cash=context.bankroll_usd)
    limiter = ExposureLimiter(context.bankroll_usd, config.max_exposure_pct)

    fills: list[SimulatedFill] = []
    market_fills: dict[str, int] = {}
    fill_count = 0
    skipped = 0

    for trade in context.trades:
        quote = context.delay_model.sample(trade, rng, cache)

        requested_usd = context.sizer.size(trade)
        if requested_usd <= 0:
            skipped += 1
            continue

        liquidity = _liquidity_at_entry(context, trade, quote)
        daily_volume = cache.daily_volume(trade.condition_id)

        if trade.side == "BUY":
            size_usd = limiter.trim(trade.condition_id, requested_usd)
            if size_usd < context.min_position_usd:
                skipped += 1
                continue

            fill = calculate_fill(
                "BUY",
                size_usd,
                quote.reference_price,
                liquidity,
                config.market_impact_enabled,
                daily_volume,
            )
            filled_usd = size_usd * fill.fill_ratio
            if filled_usd <= 0:
                skipped += 1
                continue

            shares = filled_usd / fill.avg_price
            portfolio.buy(trade.condition_id, trade.outcome, shares, fill.avg_price)
            limiter.add(trade.condition_id, filled_usd)
            realized = 0.0
        else:
            if portfolio.held(trade.condition_id, trade.outcome) <= 0:
                skipped += 1
                continue
            if requested_usd < context.min_position_usd:
                skipped += 1
                continue

            fill = calculate_fill(
                "SELL",
                requested_usd,
                quote.reference_price,
                liquidity,
                config.market_impact_enabled,
                daily_volume,
            )
            requested_shares = requested_usd * fill.fill_ratio / fill.avg_price
            sale = portfolio.sell(
                trade.condition_id,
                trade.outcome,
                requested_shares,
                fill.avg_price,
                trade.trade_date,
            )
            if sale.shares_sold <= 0:
                skipped += 1
                continue

            limiter.release(trade.condition_id, sale.cost_basis_released)
            shares = sale.shares_sold
            filled_usd = sale.proceeds
            realized = sale.realized_pnl

        fill_count += 1
        market_fills[trade.condition_id] = market_fills.get(trade.condition_id, 0) + 1
        if len(fills) < context.sample_fill_limit:
            fills.append(_fill_record(trade, quote, fill, shares, filled_usd, realized))

    unrealized = portfolio.mark_to_market(cache.markets, context.default_price)

    return TrialResult(
        final_pnl=portfolio.total_pnl,
        realized_pnl=portfolio.realized_pnl,
        unrealized_pnl=unrealized,
        daily_pnl=dict(portfolio.daily_pnl),
        market_pnl=dict(portfolio.market_pnl),
        market_fills=market_fills,
        fills=fills,
        fill_count=fill_count,
        skipped_count=skipped,
    )


def _liquidity_at_entry(
    context: TrialContext, trade: Trade, quote: EntryQuote
) -> Optional[LiquidityContext]:
    if not context.config.use_actual_orderbook:
        return None
    book = context.cache.orderbook_at_or_before(trade.token_id, quote.entry_time)
    if book is None:
        return None
    return book.liquidity_for(trade.side)


def _fill_record(
    trade: Trade,
    quote: EntryQuote,
    fill: FillResult,
    shares: float,
    filled_usd: float,
    realized: float,
) -> SimulatedFill:
    return SimulatedFill(
        trade=trade,
        side=trade.side,
        simulated_entry_time=quote.entry_time,
        intended_price=trade.price,
        reference_price=quote.reference_price,
        fill_price=fill.avg_price,
        price_movement=quote.reference_price - trade.price,
        slippage_bps=fill.slippage_bps,
        market_impact_bps=fill.impact_bps,
        shares=shares,
        size_usd=filled_usd,
        fill_ratio=fill.fill_ratio,
        partial_fill=fill.partial_fill,
        realized_pnl=realized,
    )
