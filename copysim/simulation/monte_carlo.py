"""
Monte Carlo Simulator - Runs many randomized copy-trading trials and
aggregates them into a SimulationReport.

Phases: setup (validate, load, pre-fetch) -> run (independent trials, one
seeded substream each) -> aggregate (distribution statistics) -> report.
"""
from __future__ import annotations

import threading
import time
from concurrent.futures import FIRST_EXCEPTION, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Mapping, Optional, Union

import numpy as np
from loguru import logger

from config.settings import Settings, get_settings
from copysim.data.sources.base import MarketDataSource
from copysim.execution import PositionSizer
from copysim.models import (
    DailyPnl,
    MarketContribution,
    Money,
    QuickEstimate,
    SimulationConfig,
    SimulationLogEntry,
    SimulationReport,
    Trade,
    TrialResult,
    validate_bankroll,
    validate_config,
)
from copysim.simulation.cache import ReferenceCache, build_reference_cache
from copysim.simulation.delay import DelayModel
from copysim.simulation.runner import TrialContext, run_trial
from copysim.simulation.statistics import percentile, sorted_array, summarize
from copysim.utils.exceptions import InsufficientData, InvalidConfiguration, SimulationCancelled

DISCLAIMER_TEMPLATE = """HYPOTHETICAL SIMULATION ONLY. These results are based on {trials} Monte Carlo simulations with the following assumptions:
- Entry delay: {delay:g}s ± {variance:g}s random variance
- Slippage: {slippage}
- Market impact: {impact}
- Sizing: {sizing}
- Max exposure: {exposure:g}% per market

Past performance does not guarantee future results. This is NOT financial advice."""


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class _RunPlan:
    config: SimulationConfig
    bankroll_usd: float
    followed: list[str]
    trades: list[Trade]
    total_trades_in_window: int
    cache: ReferenceCache
    window_start: datetime
    window_end: datetime


class _AuditLog:
    def __init__(self, enabled: bool) -> None:
        self.enabled = enabled
        self.entries: list[SimulationLogEntry] = []

    def add(
        self,
        entry_type: str,
        description: str,
        details: Optional[dict[str, Any]] = None,
        calculation: str = "",
        timestamp: Optional[datetime] = None,
    ) -> None:
        if not self.enabled:
            return
        self.entries.append(
            SimulationLogEntry(
                step=len(self.entries) + 1,
                type=entry_type,
                description=description,
                details=details or {},
                calculation=calculation,
                timestamp=timestamp,
            )
        )


class MonteCarloSimulator:
    """
    Copy-trading Monte Carlo engine.

    All reads from the data source happen in the setup phase; trials only
    touch the in-memory ReferenceCache, so they may run on a thread pool.
    """

    def __init__(
        self,
        source: MarketDataSource,
        settings: Optional[Settings] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """
        Initialize simulator.

        Args:
            source: Where followed wallets, trades and market data come from
            settings: Application settings (defaults to get_settings())
            clock: Returns "now"; the lookback window ends here (defaults to UTC wall clock)
        """
        self.source = source
        self.settings = settings or get_settings()
        self.clock = clock or _utcnow

    # ------------------------------------------------------------------ API

    def run_simulation(
        self,
        config: Union[SimulationConfig, Mapping[str, Any]],
        *,
        stop_event: Optional[threading.Event] = None,
        as_of: Optional[datetime] = None,
    ) -> SimulationReport:
        """
        Run the full Monte Carlo simulation.

        Args:
            config: Validated config, or a raw mapping to validate
            stop_event: Set from another thread to cancel between trials
            as_of: End of the lookback window (defaults to the clock)

        Returns:
            SimulationReport

        Raises:
            InvalidConfiguration: Out-of-range inputs, before anything runs
            InsufficientData: No followed wallets or no followed trades
            SimulationCancelled: Stop event set or timeout reached
        """
        started = time.monotonic()
        audit = _AuditLog(enabled=True)

        plan = self._setup(config, as_of, audit)
        config = plan.config
        audit.enabled = config.include_audit_log

        seed = config.seed if config.seed is not None else _fresh_seed()
        audit.add(
            "setup",
            f"Starting Monte Carlo simulation with {config.num_simulations} iterations",
            {
                "iterations": config.num_simulations,
                "randomSeed": seed,
                "method": "PCG64, one SeedSequence substream per trial",
                "workers": config.max_workers,
            },
            f"Running {config.num_simulations} simulations with random entry delays and price variations",
        )

        timeout = config.timeout_seconds or self.settings.simulation.default_timeout_seconds
        deadline = started + timeout if timeout else None

        results = self._run_trials(plan, seed, stop_event, deadline)
        report = self._aggregate(plan, seed, results, audit)

        logger.info(
            f"Simulation complete in {time.monotonic() - started:.2f}s: "
            f"median {report.results.percentiles.median:+.2f} {report.currency}, "
            f"sharpe {report.results.sharpe_ratio:.3f}"
        )
        return report

    def quick_estimate(self, bankroll: Union[Money, float, None] = None) -> QuickEstimate:
        """
        Instant approximation from followed traders' historical ROI.

        No Monte Carlo: ROI (min, mean, max) of the followed wallets times the
        friction factor, with dampers on the low and high ends.

        Raises:
            InvalidConfiguration: Bankroll is negative or outside the allowed range
            InsufficientData: Leaderboard is empty
        """
        sim = self.settings.simulation
        if bankroll is None:
            bankroll = {"amount": sim.default_bankroll, "currency": sim.default_currency}
        bankroll = validate_bankroll(bankroll)

        entries = self.source.leaderboard(sim.follow_metric, sim.follow_limit)
        if not entries:
            raise InsufficientData("leaderboard is empty; no trader ROI to extrapolate from")

        rois = [e.roi_percent for e in entries]
        avg_roi = sum(rois) / len(rois)
        friction = sim.friction_factor

        mid = bankroll.amount * (avg_roi / 100) * friction
        low = bankroll.amount * (min(rois) / 100) * friction * sim.estimate_low_damper
        high = bankroll.amount * (max(rois) / 100) * friction * sim.estimate_high_damper

        logger.info(f"Quick estimate from {len(entries)} traders, avg ROI {avg_roi:.1f}%")

        return QuickEstimate(
            currency=bankroll.currency,
            low=min(low, mid),
            mid=mid,
            high=max(high, mid),
            average_roi_percent=avg_roi,
            friction_factor=friction,
            top_traders=entries,
            disclaimer=(
                f"Quick estimate based on top trader ROI ({avg_roi:.1f}% avg) with "
                f"{(1 - friction) * 100:.0f}% friction adjustment. "
                "Run full simulation for accurate results."
            ),
        )

    # ---------------------------------------------------------------- setup

    def _setup(
        self,
        config: Union[SimulationConfig, Mapping[str, Any]],
        as_of: Optional[datetime],
        audit: _AuditLog,
    ) -> _RunPlan:
        if not isinstance(config, SimulationConfig):
            config = validate_config(config)

        sim = self.settings.simulation
        if config.num_simulations > sim.max_simulations_per_request:
            raise InvalidConfiguration(
                [
                    f"num_simulations: {config.num_simulations} exceeds the per-request "
                    f"limit of {sim.max_simulations_per_request}"
                ]
            )

        rate = self.settings.fx.gbp_usd_rate
        bankroll_usd = config.bankroll.to_usd(rate)
        window_end = as_of or self.clock()
        if window_end.tzinfo is None:
            window_end = window_end.replace(tzinfo=timezone.utc)
        window_start = window_end - timedelta(days=config.window_days)

        logger.info(
            f"Setting up simulation: bankroll {config.bankroll} "
            f"(${bankroll_usd:,.2f}), {config.num_simulations} trials, "
            f"{config.window_days}d window"
        )
        audit.add(
            "setup",
            "Initializing simulation parameters",
            {
                "bankroll": config.bankroll.amount,
                "currency": config.bankroll.currency,
                "bankrollUsd": bankroll_usd,
                "entryDelaySec": config.entry_delay_sec,
                "delayVarianceSec": config.delay_variance_sec,
                "sizingRule": config.sizing_rule,
                "maxExposurePct": config.max_exposure_pct,
                "minTradeUsd": config.min_trade_usd,
                "useActualOrderbook": config.use_actual_orderbook,
                "marketImpactEnabled": config.market_impact_enabled,
                "numSimulations": config.num_simulations,
                "windowDays": config.window_days,
            },
            (
                f"Initial capital: {config.bankroll} = ${bankroll_usd:.2f}"
                if config.bankroll.currency == "USD"
                else f"Initial capital: {config.bankroll} × {rate} (GBP/USD rate) = ${bankroll_usd:.2f}"
            ),
        )

        followed = self.source.list_followed_wallets(sim.follow_metric, sim.follow_limit)
        if not followed:
            raise InsufficientData(f"no followed wallets on the '{sim.follow_metric}' leaderboard")
        audit.add(
            "setup",
            f"Loaded {len(followed)} top traders to follow",
            {"traderCount": len(followed)},
            f"Following top {len(followed)} traders ranked by {sim.follow_metric}",
        )

        window_trades = [
            t for t in self.source.trades_since(window_start) if t.timestamp <= window_end
        ]
        followed_set = set(followed)
        trades = sorted(
            (t for t in window_trades if t.wallet_address in followed_set),
            key=lambda t: t.timestamp,
        )
        if not trades:
            raise InsufficientData(
                f"no trades from {len(followed)} followed wallets in the "
                f"{config.window_days}-day window ({len(window_trades)} trades in total)"
            )

        coverage = len(trades) / len(window_trades) * 100
        audit.add(
            "setup",
            f"Loaded historical trade data for {config.window_days}-day window",
            {
                "totalTradesInWindow": len(window_trades),
                "tradesFromTopTraders": len(trades),
                "windowStartDate": window_start.isoformat(),
                "windowEndDate": window_end.isoformat(),
            },
            f"{len(trades)} trades from top traders / {len(window_trades)} total trades = "
            f"{coverage:.1f}% coverage",
        )
        logger.info(f"Loaded {len(trades)} followed trades from {len(followed)} wallets")

        cache = build_reference_cache(
            self.source,
            trades,
            window_start=window_start,
            window_end=window_end,
            max_delay_sec=config.entry_delay_sec + config.delay_variance_sec,
            fetch_orderbooks=config.use_actual_orderbook,
            settings=sim,
        )
        if cache.missing_markets:
            audit.add(
                "setup",
                f"{len(cache.missing_markets)} markets had no metadata; using defaults",
                {
                    "missingMarkets": list(cache.missing_markets),
                    "assumedDailyVolume": sim.default_daily_volume,
                    "assumedMidPrice": sim.default_mid_price,
                },
            )

        return _RunPlan(
            config=config,
            bankroll_usd=bankroll_usd,
            followed=followed,
            trades=trades,
            total_trades_in_window=len(window_trades),
            cache=cache,
            window_start=window_start,
            window_end=window_end,
        )

    # ------------------------------------------------------------------ run

    def _trial_context(self, plan: _RunPlan) -> TrialContext:
        sim = self.settings.simulation
        config = plan.config
        sizer = PositionSizer(
            sizing_rule=config.sizing_rule,
            bankroll_usd=plan.bankroll_usd,
            num_traders=len(plan.followed),
            num_trades=len(plan.trades),
            wallet_volumes=plan.cache.wallet_volumes,
            min_trade_usd=config.min_trade_usd,
            settings=sim,
        )
        return TrialContext(
            trades=tuple(plan.trades),
            config=config,
            cache=plan.cache,
            bankroll_usd=plan.bankroll_usd,
            sizer=sizer,
            delay_model=DelayModel(config.entry_delay_sec, config.delay_variance_sec, sim.drift_bound),
            min_position_usd=sim.min_position_usd,
            default_price=sim.default_mid_price,
            sample_fill_limit=sim.sample_fill_limit,
        )

    def _run_trials(
        self,
        plan: _RunPlan,
        seed: int,
        stop_event: Optional[threading.Event],
        deadline: Optional[float],
    ) -> list[TrialResult]:
        context = self._trial_context(plan)
        n = plan.config.num_simulations
        streams = np.random.SeedSequence(seed).spawn(n)

        if plan.config.max_workers <= 1:
            results: list[TrialResult] = []
            for i, stream in enumerate(streams):
                _check_cancelled(stop_event, deadline, completed=i)
                results.append(run_trial(context, np.random.default_rng(stream)))
                logger.debug(f"Trial {i} finished: {results[-1].final_pnl:+.4f}")
            return results

        return self._run_trials_threaded(context, streams, stop_event, deadline, plan.config.max_workers)

    def _run_trials_threaded(
        self,
        context: TrialContext,
        streams: list[np.random.SeedSequence],
        stop_event: Optional[threading.Event],
        deadline: Optional[float],
        max_workers: int,
    ) -> list[TrialResult]:
        halt = threading.Event()

        def _trial(stream: np.random.SeedSequence) -> TrialResult:
            if halt.is_set():
                raise SimulationCancelled("run halted")
            _check_cancelled(stop_event, None, completed=0)
            return run_trial(context, np.random.default_rng(stream))

        logger.debug(f"Dispatching {len(streams)} trials to {max_workers} workers")
        with ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="copysim-trial") as pool:
            futures: list[Future] = [pool.submit(_trial, stream) for stream in streams]
            pending = set(futures)
            try:
                while pending:
                    remaining = None if deadline is None else max(0.0, deadline - time.monotonic())
                    done, pending = wait(pending, timeout=remaining, return_when=FIRST_EXCEPTION)
                    for future in done:
                        error = future.exception()
                        if error is not None:
                            if isinstance(error, SimulationCancelled):
                                raise SimulationCancelled(
                                    error.reason, completed=sum(f.done() for f in futures)
                                ) from error
                            raise error
                    if pending and deadline is not None and time.monotonic() >= deadline:
                        raise SimulationCancelled(
                            "timeout reached", completed=len(futures) - len(pending)
                        )
            except BaseException:
                halt.set()
                for future in pending:
                    future.cancel()
                raise

        return [future.result() for future in futures]

    # ------------------------------------------------------------ aggregate

    def _aggregate(
        self,
        plan: _RunPlan,
        seed: int,
        results: list[TrialResult],
        audit: _AuditLog,
    ) -> SimulationReport:
        config = plan.config
        sim = self.settings.simulation
        currency = config.bankroll.currency
        rate = self.settings.fx.gbp_usd_rate
        n = len(results)

        def to_ccy(amount_usd: float) -> float:
            return Money.convert_from_usd(amount_usd, currency, rate)

        finals = [to_ccy(r.final_pnl) for r in results]
        summary = summarize(finals)
        ladder = summary.percentiles

        audit.add(
            "summary",
            "Calculating distribution statistics from simulation results",
            {
                "simulationsCompleted": n,
                "minPnl": min(finals),
                "maxPnl": max(finals),
                "avgPnl": summary.mean,
                "stdDev": summary.std_dev,
            },
            f"Mean = Σ(PnL) / N = {summary.mean:.2f}, "
            f"StdDev = √(Σ(PnL - Mean)² / N) = {summary.std_dev:.2f}",
        )
        audit.add(
            "summary",
            "Computing percentile distribution",
            {
                "p5": ladder.p5,
                "p25": ladder.p25,
                "p50_median": ladder.median,
                "p75": ladder.p75,
                "p95": ladder.p95,
            },
            f"5th percentile = {ladder.p5:.2f} (worst case), Median = {ladder.median:.2f} (typical), "
            f"95th percentile = {ladder.p95:.2f} (best case)",
        )
        audit.add(
            "summary",
            "Calculating risk-adjusted return (Sharpe Ratio)",
            {
                "avgReturn": summary.mean,
                "stdDev": summary.std_dev,
                "sharpeRatio": summary.sharpe_ratio,
                "riskFreeRate": 0,
            },
            f"Sharpe Ratio = (Mean Return - Risk-Free Rate) / StdDev = "
            f"({summary.mean:.2f} - 0) / {summary.std_dev:.2f} = {summary.sharpe_ratio:.3f}",
        )

        daily_breakdown = _daily_breakdown(results, to_ccy)
        contributions = self._market_contributions(plan, results, to_ccy, sim.top_markets)

        if contributions:
            top = contributions[0]
            audit.add(
                "summary",
                "Top contributing markets to P&L",
                {
                    "topMarket": top.market,
                    "topMarketPnl": top.pnl_contribution,
                    "uniqueMarketsTraded": len({m for r in results for m in r.market_pnl}),
                },
                f"Best market contributed {top.pnl_contribution:.2f} {currency} on average",
            )

        sample_fills = list(results[0].fills) if results else []
        if sample_fills:
            sample = sample_fills[0]
            audit.add(
                "trade",
                "Sample trade execution breakdown (from first simulation)",
                {
                    "originalTradePrice": sample.intended_price,
                    "actualEntryPrice": sample.fill_price,
                    "priceMovement": sample.price_movement,
                    "slippageBps": sample.slippage_bps,
                    "positionSizeUsd": sample.size_usd,
                    "partialFill": sample.partial_fill,
                    "marketImpactBps": sample.market_impact_bps,
                },
                f"Entry delay caused price movement of {sample.price_movement * 100:.2f}%, "
                f"slippage of {sample.slippage_bps:.1f}bps = {sample.slippage_bps / 100:.2f}%",
                timestamp=sample.simulated_entry_time,
            )

        return SimulationReport(
            config=config,
            currency=currency,
            seed=seed,
            trials_completed=n,
            results=summary,
            daily_breakdown=daily_breakdown,
            market_contributions=contributions,
            traders_followed=list(plan.followed),
            window_start=plan.window_start,
            window_end=plan.window_end,
            disclaimer=_disclaimer(config),
            sample_fills=sample_fills,
            missing_markets=list(plan.cache.missing_markets),
            audit_log=audit.entries if config.include_audit_log else None,
        )

    def _market_contributions(
        self,
        plan: _RunPlan,
        results: list[TrialResult],
        to_ccy: Callable[[float], float],
        top_k: int,
    ) -> list[MarketContribution]:
        n = len(results)
        totals: dict[str, float] = {}
        fills: dict[str, int] = {}
        for result in results:
            for condition_id, pnl in result.market_pnl.items():
                totals[condition_id] = totals.get(condition_id, 0.0) + pnl
            for condition_id, count in result.market_fills.items():
                fills[condition_id] = fills.get(condition_id, 0) + count

        # Trials without the market contribute zero to its mean
        ranked = sorted(
            ((to_ccy(total / n), condition_id) for condition_id, total in totals.items()),
            key=lambda item: (-item[0], item[1]),
        )

        contributions = []
        for contribution, condition_id in ranked[:top_k]:
            snapshot = plan.cache.market(condition_id)
            title = snapshot.title if snapshot and snapshot.title else f"{condition_id[:16]}..."
            contributions.append(
                MarketContribution(
                    condition_id=condition_id,
                    market=title,
                    pnl_contribution=contribution,
                    trade_count=fills.get(condition_id, 0) / n,
                )
            )
        return contributions


def _daily_breakdown(
    results: list[TrialResult], to_ccy: Callable[[float], float]
) -> list[DailyPnl]:
    by_date: dict[str, list[float]] = {}
    for result in results:
        for date, pnl in result.daily_pnl.items():
            by_date.setdefault(date, []).append(to_ccy(pnl))

    breakdown = []
    for date in sorted(by_date):
        values = sorted_array(by_date[date])
        breakdown.append(
            DailyPnl(
                date=date,
                pnl_median=percentile(values, 0.5),
                pnl_p5=percentile(values, 0.05),
                pnl_p95=percentile(values, 0.95),
                pnl_mean=float(np.mean(values)),
            )
        )
    return breakdown


def _check_cancelled(
    stop_event: Optional[threading.Event], deadline: Optional[float], completed: int
) -> None:
    if stop_event is not None and stop_event.is_set():
        raise SimulationCancelled("stop requested", completed=completed)
    if deadline is not None and time.monotonic() >= deadline:
        raise SimulationCancelled("timeout reached", completed=completed)


def _fresh_seed() -> int:
    return int(np.random.SeedSequence().generate_state(1)[0])


def _disclaimer(config: SimulationConfig) -> str:
    return DISCLAIMER_TEMPLATE.format(
        trials=config.num_simulations,
        delay=config.entry_delay_sec,
        variance=config.delay_variance_sec,
        slippage=(
            "Based on actual orderbook depth"
            if config.use_actual_orderbook
            else "Estimated from trade size"
        ),
        impact="Square-root model enabled" if config.market_impact_enabled else "Disabled",
        sizing=(
            "Equal weight per trade"
            if config.sizing_rule == "equal"
            else "Proportional to trader size"
        ),
        exposure=config.max_exposure_pct,
    )
