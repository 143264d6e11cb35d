from datetime import datetime, timedelta, timezone

import pytest

from config.settings import DatabaseSettings, FxSettings, Settings, SimulationSettings
from copysim.data.sources.memory import InMemoryMarketData
from copysim.models import LeaderboardEntry, MarketSnapshot, Trade

AS_OF = datetime(2026, 3, 8, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def as_of():
    """Fixed end of the lookback window."""
    return AS_OF


@pytest.fixture
def sim_settings():
    """Simulation tunables at their documented defaults."""
    return SimulationSettings.model_construct(
        default_bankroll=100.0,
        default_currency="USD",
        default_num_simulations=1000,
        max_simulations_per_request=5000,
        default_timeout_seconds=120.0,
        follow_metric="realized_pnl",
        follow_limit=10,
        drift_bound=0.01,
        equal_max_position_usd=50.0,
        min_position_usd=1.0,
        default_daily_volume=100_000.0,
        default_mid_price=0.5,
        friction_factor=0.6,
        estimate_low_damper=0.5,
        estimate_high_damper=0.8,
        sample_fill_limit=20,
        top_markets=10,
    )


@pytest.fixture
def settings(sim_settings, tmp_path):
    """Full settings tree pointing at a temp data directory."""
    return Settings.model_construct(
        log_level="INFO",
        simulation=sim_settings,
        fx=FxSettings.model_construct(gbp_usd_rate=1.27),
        database=DatabaseSettings.model_construct(db_dir=tmp_path / "db"),
    )


@pytest.fixture
def make_trade():
    """Factory for followed trades, minutes before AS_OF."""

    def _make(
        wallet="0xaaa",
        condition_id="cond_1",
        side="BUY",
        outcome="Yes",
        price=0.40,
        usdc_size=50.0,
        minutes_ago=60,
        token_id=None,
        title=None,
    ):
        return Trade(
            wallet_address=wallet,
            condition_id=condition_id,
            token_id=token_id or f"{condition_id}_{outcome.lower()}",
            side=side,
            outcome=outcome,
            size=usdc_size / price,
            price=price,
            usdc_size=usdc_size,
            timestamp=AS_OF - timedelta(minutes=minutes_ago),
            market_title=title,
        )

    return _make


@pytest.fixture
def leaderboard_entry():
    def _make(wallet, rank=1, realized_pnl=1000.0, roi_percent=20.0):
        return LeaderboardEntry(
            rank=rank,
            wallet_address=wallet,
            realized_pnl=realized_pnl,
            total_pnl=realized_pnl,
            volume=10_000.0,
            trade_count=50,
            win_rate=0.6,
            roi_percent=roi_percent,
        )

    return _make


@pytest.fixture
def settled_market():
    """Market cond_1, resolved in favour of Yes."""
    return MarketSnapshot(
        condition_id="cond_1",
        title="Will it rain in London on Friday?",
        daily_volume=50_000.0,
        is_closed=True,
        winning_outcome="Yes",
        last_price_primary=1.0,
    )


@pytest.fixture
def winning_source(make_trade, leaderboard_entry, settled_market):
    """One followed wallet, one $50 BUY at 0.40 on a market it won."""
    return InMemoryMarketData(
        trades=[make_trade()],
        markets=[settled_market],
        leaderboard=[leaderboard_entry("0xaaa")],
    )
