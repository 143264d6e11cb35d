from datetime import timedelta

import numpy as np
import pytest

from copysim.models import PriceTick
from copysim.simulation.cache import ReferenceCache, _Series
from copysim.simulation.delay import DelayModel


@pytest.fixture
def empty_cache():
    return ReferenceCache(markets={}, wallet_volumes={}, default_daily_volume=100_000.0)


def test_delay_within_bounds(make_trade, empty_cache):
    model = DelayModel(mean_delay_sec=60, variance_sec=30, drift_bound=0.01)
    rng = np.random.default_rng(7)
    trade = make_trade()

    for _ in range(200):
        quote = model.sample(trade, rng, empty_cache)
        assert 30 <= quote.delay_seconds <= 90
        assert quote.entry_time == trade.timestamp + timedelta(seconds=quote.delay_seconds)


def test_delay_is_floored_at_zero(make_trade, empty_cache):
    model = DelayModel(mean_delay_sec=5, variance_sec=300, drift_bound=0.01)
    rng = np.random.default_rng(1)
    trade = make_trade()

    delays = [model.sample(trade, rng, empty_cache).delay_seconds for _ in range(200)]
    assert min(delays) == 0.0
    assert all(d >= 0 for d in delays)


def test_drift_bounded_without_history(make_trade, empty_cache):
    model = DelayModel(mean_delay_sec=60, variance_sec=30, drift_bound=0.01)
    rng = np.random.default_rng(3)
    trade = make_trade(price=0.40)

    for _ in range(200):
        quote = model.sample(trade, rng, empty_cache)
        assert not quote.from_history
        assert 0.40 * 0.99 <= quote.reference_price <= 0.40 * 1.01


def test_historical_price_used_when_cached(make_trade):
    trade = make_trade(price=0.40, token_id="tok")
    tick = PriceTick(token_id="tok", timestamp=trade.timestamp, price=0.55)
    cache = ReferenceCache(
        markets={},
        wallet_volumes={},
        default_daily_volume=100_000.0,
        prices={"tok": _Series((tick.timestamp.timestamp(),), (tick.price,))},
    )
    model = DelayModel(mean_delay_sec=60, variance_sec=30, drift_bound=0.01)

    quote = model.sample(trade, np.random.default_rng(0), cache)
    assert quote.from_history
    assert quote.reference_price == pytest.approx(0.55)


def test_same_seed_same_quotes(make_trade, empty_cache):
    model = DelayModel(mean_delay_sec=60, variance_sec=30, drift_bound=0.01)
    trade = make_trade()
    a = [model.sample(trade, np.random.default_rng(42), empty_cache) for _ in range(3)]
    b = [model.sample(trade, np.random.default_rng(42), empty_cache) for _ in range(3)]
    assert a == b


def test_negative_variance_rejected():
    with pytest.raises(ValueError):
        DelayModel(mean_delay_sec=60, variance_sec=-1, drift_bound=0.01)
