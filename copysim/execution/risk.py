"""
Exposure Limiter - Enforces the per-market exposure cap inside a trial.
"""
from loguru import logger


class ExposureLimiter:
    """
    Tracks cost basis held per market and trims orders to the cap.

    Exposure grows with the USD actually spent on buys and shrinks by the
    cost basis of shares sold. One limiter per trial.
    """

    def __init__(self, bankroll_usd: float, max_exposure_pct: float):
        """
        Initialize limiter with the cap.

        Args:
            bankroll_usd: Starting bankroll in USD
            max_exposure_pct: Cap per market, in percent of bankroll
        """
        self.max_exposure_usd = bankroll_usd * (max_exposure_pct / 100)
        self._exposure: dict[str, float] = {}

    def exposure(self, condition_id: str) -> float:
        return self._exposure.get(condition_id, 0.0)

    def headroom(self, condition_id: str) -> float:
        return max(0.0, self.max_exposure_usd - self.exposure(condition_id))

    def trim(self, condition_id: str, requested_usd: float) -> float:
        """
        Cut a requested buy down to the remaining headroom.

        Args:
            condition_id: Market the order goes to
            requested_usd: Size the sizer asked for

        Returns:
            Allowed size in USD, possibly 0.0
        """
        allowed = min(requested_usd, self.headroom(condition_id))
        if allowed < requested_usd:
            logger.trace(
                f"Exposure cap on {condition_id}: ${requested_usd:.2f} -> ${allowed:.2f} "
                f"(cap ${self.max_exposure_usd:.2f})"
            )
        return allowed

    def add(self, condition_id: str, amount_usd: float) -> None:
        self._exposure[condition_id] = self.exposure(condition_id) + amount_usd

    def release(self, condition_id: str, cost_basis_usd: float) -> None:
        self._exposure[condition_id] = max(0.0, self.exposure(condition_id) - cost_basis_usd)
