import threading
from unittest.mock import patch

import pytest

from copysim.data.sources.memory import InMemoryMarketData
from copysim.models import MarketSnapshot, Money, SimulationReport
from copysim.simulation.monte_carlo import MonteCarloSimulator
from copysim.utils.exceptions import InsufficientData, InvalidConfiguration, SimulationCancelled


@pytest.fixture
def simulator(winning_source, settings, as_of):
    return MonteCarloSimulator(winning_source, settings, clock=lambda: as_of)


@pytest.fixture
def busy_source(make_trade, leaderboard_entry, settled_market):
    """Two traders, three markets, buys and sells."""
    open_market = MarketSnapshot(
        condition_id="cond_2", title="Open market", daily_volume=20_000.0, last_price_primary=0.3
    )
    trades = [
        make_trade(minutes_ago=600),
        make_trade(wallet="0xbbb", condition_id="cond_2", price=0.50, minutes_ago=500),
        make_trade(wallet="0xbbb", condition_id="cond_2", side="SELL", price=0.45, minutes_ago=200),
        make_trade(wallet="0xbbb", condition_id="cond_3", outcome="No", price=0.30, minutes_ago=100),
        make_trade(wallet="0xccc", condition_id="cond_9", minutes_ago=50),
    ]
    return InMemoryMarketData(
        trades=trades,
        markets=[settled_market, open_market],
        leaderboard=[leaderboard_entry("0xaaa", rank=1), leaderboard_entry("0xbbb", rank=2, realized_pnl=500.0)],
    )


def test_winning_scenario_every_trial_profitable(simulator):
    """One $50 BUY at 0.40 on a market the held outcome won."""
    report = simulator.run_simulation(
        {"bankroll": 100, "entry_delay_sec": 60, "delay_variance_sec": 30,
         "sizing_rule": "equal", "num_simulations": 500, "seed": 11}
    )

    assert report.trials_completed == 500
    assert report.results.percentiles.p5 > 0

    # Position capped at 10% of bankroll, fill never better than 1% under the trader
    max_position = report.config.bankroll.amount * report.config.max_exposure_pct / 100
    best_case = (1 / (0.40 * 0.99) - 1) * max_position
    spread = next(e for e in report.audit_log if "minPnl" in e.details).details
    assert spread["minPnl"] > 0
    assert spread["maxPnl"] <= best_case + 1e-9
    assert all(0 < f.size_usd <= max_position + 1e-9 for f in report.sample_fills)


def test_percentiles_non_decreasing(busy_source, settings, as_of):
    report = MonteCarloSimulator(busy_source, settings).run_simulation(
        {"num_simulations": 200, "seed": 3}, as_of=as_of
    )
    ladder = report.results.percentiles
    assert ladder.p5 <= ladder.p25 <= ladder.median <= ladder.p75 <= ladder.p95
    for day in report.daily_breakdown:
        assert day.pnl_p5 <= day.pnl_median <= day.pnl_p95


def test_same_seed_same_report(busy_source, settings, as_of):
    simulator = MonteCarloSimulator(busy_source, settings, clock=lambda: as_of)
    config = {"num_simulations": 100, "seed": 42}
    assert simulator.run_simulation(config).to_json() == simulator.run_simulation(config).to_json()


def test_threaded_run_matches_sequential(busy_source, settings, as_of):
    simulator = MonteCarloSimulator(busy_source, settings, clock=lambda: as_of)
    sequential = simulator.run_simulation({"num_simulations": 100, "seed": 42})
    threaded = simulator.run_simulation({"num_simulations": 100, "seed": 42, "max_workers": 4})

    assert threaded.results == sequential.results
    assert threaded.daily_breakdown == sequential.daily_breakdown
    assert threaded.market_contributions == sequential.market_contributions
    assert threaded.sample_fills == sequential.sample_fills


def test_different_seeds_differ(busy_source, settings, as_of):
    simulator = MonteCarloSimulator(busy_source, settings, clock=lambda: as_of)
    a = simulator.run_simulation({"num_simulations": 50, "seed": 1})
    b = simulator.run_simulation({"num_simulations": 50, "seed": 2})
    assert a.results.mean != b.results.mean


def test_seed_recorded_when_omitted(simulator):
    report = simulator.run_simulation({"num_simulations": 5})
    assert report.seed >= 0
    replay = simulator.run_simulation({"num_simulations": 5, "seed": report.seed})
    assert replay.results == report.results


def test_no_trades_in_window_runs_no_trials(settings, as_of, leaderboard_entry, make_trade):
    source = InMemoryMarketData(
        trades=[make_trade(minutes_ago=60 * 24 * 30)],
        leaderboard=[leaderboard_entry("0xaaa")],
    )
    simulator = MonteCarloSimulator(source, settings, clock=lambda: as_of)

    with patch("copysim.simulation.monte_carlo.run_trial") as mock_trial:
        with pytest.raises(InsufficientData):
            simulator.run_simulation({"num_simulations": 10})
        mock_trial.assert_not_called()


def test_trades_from_unfollowed_wallets_ignored(settings, as_of, leaderboard_entry, make_trade):
    source = InMemoryMarketData(
        trades=[make_trade(wallet="0xzzz")],
        leaderboard=[leaderboard_entry("0xaaa")],
    )
    with pytest.raises(InsufficientData):
        MonteCarloSimulator(source, settings, clock=lambda: as_of).run_simulation({})


def test_empty_leaderboard_is_insufficient(settings, as_of, make_trade):
    source = InMemoryMarketData(trades=[make_trade()])
    with pytest.raises(InsufficientData, match="no followed wallets"):
        MonteCarloSimulator(source, settings, clock=lambda: as_of).run_simulation({})


def test_invalid_config_collects_every_error(simulator):
    with pytest.raises(InvalidConfiguration) as excinfo:
        simulator.run_simulation({"bankroll": 5, "num_simulations": 0, "window_days": 90})
    assert len(excinfo.value.errors) == 3


def test_request_limit_from_settings(winning_source, settings, as_of):
    settings.simulation.max_simulations_per_request = 10
    simulator = MonteCarloSimulator(winning_source, settings, clock=lambda: as_of)
    with pytest.raises(InvalidConfiguration, match="per-request"):
        simulator.run_simulation({"num_simulations": 11})


def test_market_impact_never_reduces_slippage(simulator):
    on = simulator.run_simulation({"num_simulations": 20, "seed": 5, "market_impact_enabled": True})
    off = simulator.run_simulation({"num_simulations": 20, "seed": 5, "market_impact_enabled": False})
    assert on.sample_fills[0].slippage_bps >= off.sample_fills[0].slippage_bps
    assert on.results.mean <= off.results.mean


def test_report_json_round_trip(busy_source, settings, as_of):
    report = MonteCarloSimulator(busy_source, settings).run_simulation(
        {"num_simulations": 50, "seed": 8}, as_of=as_of
    )
    restored = SimulationReport.from_json(report.to_json())

    assert restored.seed == report.seed
    assert restored.results.mean == pytest.approx(report.results.mean, abs=1e-6)
    assert restored.results.percentiles.median == pytest.approx(report.results.percentiles.median, abs=1e-6)
    assert [m.pnl_contribution for m in restored.market_contributions] == pytest.approx(
        [m.pnl_contribution for m in report.market_contributions], abs=1e-6
    )
    assert restored.window_end == report.window_end


def test_missing_market_metadata_uses_defaults(busy_source, settings, as_of):
    report = MonteCarloSimulator(busy_source, settings).run_simulation(
        {"num_simulations": 20, "seed": 1}, as_of=as_of
    )
    # cond_3 is traded but unknown; cond_9 belongs to an unfollowed wallet
    assert report.missing_markets == ["cond_3"]
    assert "0xccc" not in report.traders_followed


def test_market_contributions_ranked(busy_source, settings, as_of):
    report = MonteCarloSimulator(busy_source, settings).run_simulation(
        {"num_simulations": 50, "seed": 4}, as_of=as_of
    )
    contributions = [m.pnl_contribution for m in report.market_contributions]
    assert contributions == sorted(contributions, reverse=True)
    by_id = {m.condition_id: m for m in report.market_contributions}
    assert by_id["cond_1"].market == "Will it rain in London on Friday?"
    assert by_id["cond_2"].trade_count == pytest.approx(2.0)


def test_gbp_bankroll_reported_in_gbp(simulator):
    usd = simulator.run_simulation({"bankroll": 127.0, "num_simulations": 20, "seed": 6})
    gbp = simulator.run_simulation(
        {"bankroll": {"amount": 100.0, "currency": "GBP"}, "num_simulations": 20, "seed": 6}
    )
    assert gbp.currency == "GBP"
    assert gbp.results.mean * 1.27 == pytest.approx(usd.results.mean)


def test_audit_log_optional(simulator):
    with_log = simulator.run_simulation({"num_simulations": 5, "seed": 1})
    without = simulator.run_simulation({"num_simulations": 5, "seed": 1, "include_audit_log": False})

    assert without.audit_log is None
    steps = [entry.step for entry in with_log.audit_log]
    assert steps == list(range(1, len(steps) + 1))
    assert {entry.type for entry in with_log.audit_log} == {"setup", "trade", "summary"}


def test_disclaimer_reflects_config(simulator):
    report = simulator.run_simulation({"num_simulations": 5, "seed": 1, "use_actual_orderbook": False})
    assert "HYPOTHETICAL SIMULATION ONLY" in report.disclaimer
    assert "Estimated from trade size" in report.disclaimer
    assert "NOT financial advice" in report.disclaimer


def test_stop_event_cancels_run(simulator):
    stop = threading.Event()
    stop.set()
    with pytest.raises(SimulationCancelled) as excinfo:
        simulator.run_simulation({"num_simulations": 50}, stop_event=stop)
    assert excinfo.value.completed == 0


def test_stop_event_cancels_threaded_run(simulator):
    stop = threading.Event()
    stop.set()
    with pytest.raises(SimulationCancelled):
        simulator.run_simulation({"num_simulations": 50, "max_workers": 4}, stop_event=stop)


def test_timeout_cancels_run(simulator):
    with pytest.raises(SimulationCancelled, match="timeout"):
        simulator.run_simulation({"num_simulations": 50, "timeout_seconds": 1e-9})


def test_quick_estimate(winning_source, settings, leaderboard_entry):
    winning_source.entries = [
        leaderboard_entry("0xaaa", roi_percent=10.0),
        leaderboard_entry("0xbbb", roi_percent=30.0),
    ]
    estimate = MonteCarloSimulator(winning_source, settings).quick_estimate(100.0)

    assert estimate.mid == pytest.approx(100 * 0.20 * 0.6)
    assert estimate.low == pytest.approx(100 * 0.10 * 0.6 * 0.5)
    assert estimate.high == pytest.approx(100 * 0.30 * 0.6 * 0.8)
    assert estimate.low <= estimate.mid <= estimate.high
    assert "40% friction" in estimate.disclaimer


def test_quick_estimate_keeps_bands_ordered(winning_source, settings, leaderboard_entry):
    winning_source.entries = [leaderboard_entry("0xaaa", roi_percent=-40.0)]
    estimate = MonteCarloSimulator(winning_source, settings).quick_estimate(Money(amount=50.0, currency="GBP"))
    assert estimate.currency == "GBP"
    assert estimate.low <= estimate.mid <= estimate.high


def test_quick_estimate_needs_leaderboard(settings):
    with pytest.raises(InsufficientData):
        MonteCarloSimulator(InMemoryMarketData(), settings).quick_estimate()


def test_quick_estimate_rejects_negative_bankroll(winning_source, settings, leaderboard_entry):
    winning_source.entries = [leaderboard_entry("0xaaa", roi_percent=10.0)]
    with pytest.raises(InvalidConfiguration) as excinfo:
        MonteCarloSimulator(winning_source, settings).quick_estimate(-50.0)
    assert any(err.startswith("bankroll.amount") for err in excinfo.value.errors)


@pytest.mark.parametrize("bankroll", [Money(amount=1e12), Money(amount=5.0, currency="GBP"), 100_001])
def test_quick_estimate_rejects_out_of_range_bankroll(winning_source, settings, leaderboard_entry, bankroll):
    winning_source.entries = [leaderboard_entry("0xaaa", roi_percent=10.0)]
    with pytest.raises(InvalidConfiguration) as excinfo:
        MonteCarloSimulator(winning_source, settings).quick_estimate(bankroll)
    assert "bankroll must be between" in str(excinfo.value)
