"""
Delay Model - When the copy lands and what the price is by then.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta

import numpy as np

from copysim.execution.fills import clamp_price
from copysim.models import Trade
from copysim.simulation.cache import ReferenceCache


@dataclass(frozen=True)
class EntryQuote:
    entry_time: datetime
    delay_seconds: float
    reference_price: float
    from_history: bool


class DelayModel:
    """
    Randomized entry delay plus a reference price at entry.

    The delay is mean +/- uniform(variance), floored at zero. The price is the
    last recorded tick at or before entry; without ticks, the original trade
    price drifts by up to +/- drift_bound.
    """

    def __init__(self, mean_delay_sec: float, variance_sec: float, drift_bound: float):
        if variance_sec < 0 or drift_bound < 0:
            raise ValueError("variance_sec and drift_bound must be non-negative")
        self.mean_delay_sec = mean_delay_sec
        self.variance_sec = variance_sec
        self.drift_bound = drift_bound

    @property
    def max_delay_sec(self) -> float:
        return self.mean_delay_sec + self.variance_sec

    def sample(self, trade: Trade, rng: np.random.Generator, cache: ReferenceCache) -> EntryQuote:
        # Both draws happen every time so a trial consumes the stream identically
        offset = rng.uniform(-self.variance_sec, self.variance_sec)
        drift = rng.uniform(-self.drift_bound, self.drift_bound)

        delay = max(0.0, self.mean_delay_sec + float(offset))
        entry_time = trade.timestamp + timedelta(seconds=delay)

        historical = cache.price_at_time(trade.token_id, entry_time)
        if historical is not None:
            return EntryQuote(
                entry_time=entry_time,
                delay_seconds=delay,
                reference_price=clamp_price(historical),
                from_history=True,
            )

        return EntryQuote(
            entry_time=entry_time,
            delay_seconds=delay,
            reference_price=clamp_price(trade.price * (1 + float(drift))),
            from_history=False,
        )
