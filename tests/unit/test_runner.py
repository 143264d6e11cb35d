from datetime import timedelta

import numpy as np
import pytest

from copysim.data.sources.memory import InMemoryMarketData
from copysim.execution import PositionSizer
from copysim.models import MarketSnapshot, SimulationConfig
from copysim.simulation.cache import build_reference_cache
from copysim.simulation.delay import DelayModel
from copysim.simulation.runner import TrialContext, run_trial


@pytest.fixture
def build_context(sim_settings, as_of):
    def _build(trades, markets, **overrides):
        config = SimulationConfig(**{"seed": 1, "num_simulations": 10, **overrides})
        source = InMemoryMarketData(trades=trades, markets=markets)
        cache = build_reference_cache(
            source,
            trades,
            as_of - timedelta(days=config.window_days),
            as_of,
            config.entry_delay_sec + config.delay_variance_sec,
            config.use_actual_orderbook,
            sim_settings,
        )
        bankroll = config.bankroll.amount
        return TrialContext(
            trades=tuple(sorted(trades, key=lambda t: t.timestamp)),
            config=config,
            cache=cache,
            bankroll_usd=bankroll,
            sizer=PositionSizer(
                config.sizing_rule,
                bankroll,
                len({t.wallet_address for t in trades}),
                len(trades),
                cache.wallet_volumes,
                config.min_trade_usd,
                sim_settings,
            ),
            delay_model=DelayModel(config.entry_delay_sec, config.delay_variance_sec, sim_settings.drift_bound),
            min_position_usd=sim_settings.min_position_usd,
            default_price=sim_settings.default_mid_price,
            sample_fill_limit=sim_settings.sample_fill_limit,
        )

    return _build


def test_winning_buy_is_profitable(build_context, make_trade, settled_market):
    context = build_context([make_trade()], [settled_market])
    result = run_trial(context, np.random.default_rng(0))

    assert result.fill_count == 1
    assert result.realized_pnl == 0.0
    assert result.final_pnl == pytest.approx(result.unrealized_pnl)
    assert result.final_pnl > 0
    fill = result.fills[0]
    # 10% exposure cap on a 100 bankroll
    assert fill.size_usd == pytest.approx(10.0)
    assert result.final_pnl == pytest.approx((1 / fill.fill_price - 1) * fill.size_usd)


def test_sell_without_position_is_skipped(build_context, make_trade, settled_market):
    context = build_context([make_trade(side="SELL")], [settled_market])
    result = run_trial(context, np.random.default_rng(0))
    assert result.fill_count == 0
    assert result.skipped_count == 1
    assert result.final_pnl == 0.0


def test_round_trip_realizes_pnl(build_context, make_trade):
    market = MarketSnapshot(condition_id="cond_1", last_price_primary=0.6, daily_volume=50_000.0)
    trades = [
        make_trade(side="BUY", price=0.40, minutes_ago=120),
        make_trade(side="SELL", price=0.60, minutes_ago=30),
    ]
    context = build_context(trades, [market], market_impact_enabled=False)
    result = run_trial(context, np.random.default_rng(5))

    assert result.fill_count == 2
    assert result.realized_pnl > 0
    assert list(result.daily_pnl) == [trades[1].trade_date]
    assert result.market_fills == {"cond_1": 2}
    assert result.fills[1].realized_pnl == pytest.approx(result.realized_pnl)


def test_exposure_cap_limits_repeated_buys(build_context, make_trade, settled_market):
    trades = [make_trade(minutes_ago=m) for m in (300, 200, 100)]
    context = build_context(trades, [settled_market], max_exposure_pct=15.0)
    result = run_trial(context, np.random.default_rng(0))

    spent = sum(f.size_usd for f in result.fills)
    assert spent == pytest.approx(15.0)
    assert result.fill_count == 1
    assert result.skipped_count == 2


def test_small_trades_are_skipped(build_context, make_trade, settled_market):
    context = build_context([make_trade(usdc_size=5.0)], [settled_market])
    result = run_trial(context, np.random.default_rng(0))
    assert result.fill_count == 0
    assert result.skipped_count == 1


def test_same_generator_seed_same_result(build_context, make_trade, settled_market):
    trades = [make_trade(minutes_ago=m) for m in (300, 200)]
    context = build_context(trades, [settled_market])
    a = run_trial(context, np.random.default_rng(9))
    b = run_trial(context, np.random.default_rng(9))
    assert a.final_pnl == b.final_pnl
    assert [f.fill_price for f in a.fills] == [f.fill_price for f in b.fills]


def test_sample_fills_are_capped(build_context, make_trade, sim_settings):
    market = MarketSnapshot(condition_id="cond_1", last_price_primary=0.5)
    trades = [make_trade(minutes_ago=m, usdc_size=20.0) for m in range(1, 41)]
    context = build_context(trades, [market], max_exposure_pct=100.0, bankroll=10_000.0)
    result = run_trial(context, np.random.default_rng(0))
    assert result.fill_count == 40
    assert len(result.fills) == sim_settings.sample_fill_limit
