import json
from pathlib import Path
from typing import Optional

import typer
from loguru import logger

from config.settings import get_settings
from copysim.utils.logging import setup_logging
from copysim.utils.exceptions import CopySimError, DataSourceError, InsufficientData
from copysim.data.storage.sqlite_client import SQLiteClient
from copysim.models import (
    LeaderboardEntry,
    MarketSnapshot,
    Money,
    OrderbookSnapshot,
    PriceTick,
    SimulationReport,
    Trade,
    validate_bankroll,
    validate_config,
)
from copysim.simulation.monte_carlo import MonteCarloSimulator

app = typer.Typer(no_args_is_help=True)


def _open_store() -> SQLiteClient:
    settings = get_settings()
    if not settings.database.sqlite_path.exists():
        raise DataSourceError(
            f"{settings.database.sqlite_path} not found (run 'init' first)", "sqlite"
        )
    return SQLiteClient(settings.database.sqlite_path)


@app.command()
def init() -> None:
    """Create the data directory and the SQLite schema."""
    try:
        settings = get_settings()
        setup_logging(settings.log_level, settings.database.log_dir)

        settings.database.db_dir.mkdir(parents=True, exist_ok=True)
        settings.database.log_dir.mkdir(parents=True, exist_ok=True)
        typer.echo(f"Created directory: {settings.database.db_dir}")
        typer.echo(f"Created directory: {settings.database.log_dir}")

        with SQLiteClient(settings.database.sqlite_path) as sqlite_client:
            sqlite_client.initialize_schema()
            typer.echo("Initialized SQLite schema")

        typer.echo("copysim initialized successfully")
        logger.info("copysim directories and database initialized")

    except Exception as e:
        typer.echo(f"Initialization failed: {e}", err=True)
        raise typer.Exit(code=1)


@app.command()
def status() -> None:
    """Show configuration and what the local store holds."""
    try:
        settings = get_settings()
        setup_logging(settings.log_level, settings.database.log_dir)
        sim = settings.simulation

        typer.echo("copysim Status")
        typer.echo("=" * 50)
        typer.echo(f"Database directory: {settings.database.db_dir}")
        typer.echo(f"SQLite path: {settings.database.sqlite_path}")
        typer.echo("")

        typer.echo(f"Default bankroll: {Money(amount=sim.default_bankroll, currency=sim.default_currency)}")
        typer.echo(f"Default simulations: {sim.default_num_simulations} (max {sim.max_simulations_per_request})")
        typer.echo(f"Following: top {sim.follow_limit} by {sim.follow_metric}")
        typer.echo(f"GBP/USD rate: {settings.fx.gbp_usd_rate}")
        typer.echo(f"Friction factor: {sim.friction_factor}")
        typer.echo("")

        sqlite_exists = settings.database.sqlite_path.exists()
        typer.echo(f"SQLite: {'EXISTS' if sqlite_exists else 'NOT FOUND'}")

        if sqlite_exists:
            with SQLiteClient(settings.database.sqlite_path) as sqlite_client:
                for table, count in sqlite_client.table_counts().items():
                    typer.echo(f"  {table}: {count}")

        logger.info("Status check completed")

    except CopySimError as e:
        typer.echo(f"Status check failed: {e}", err=True)
        raise typer.Exit(code=1)


@app.command()
def load(
    path: Path = typer.Argument(..., help="JSON file with trades, markets, leaderboard, price_ticks, orderbooks"),
) -> None:
    """Import reference data from a JSON file into the local store."""
    try:
        settings = get_settings()
        setup_logging(settings.log_level, settings.database.log_dir)

        payload = json.loads(path.read_text())

        with _open_store() as store:
            store.initialize_schema()
            # All or nothing: a bad row anywhere leaves the store untouched
            with store.transaction():
                for raw in payload.get("markets", []):
                    store.upsert_market(MarketSnapshot(**raw))
                store.upsert_leaderboard(LeaderboardEntry(**raw) for raw in payload.get("leaderboard", []))
                n_trades = store.insert_trades(Trade(**raw) for raw in payload.get("trades", []))
                n_ticks = store.insert_price_ticks(PriceTick(**raw) for raw in payload.get("price_ticks", []))
                n_books = store.insert_orderbooks(OrderbookSnapshot(**raw) for raw in payload.get("orderbooks", []))

        typer.echo(
            f"Loaded {n_trades} trades, {len(payload.get('markets', []))} markets, "
            f"{len(payload.get('leaderboard', []))} leaderboard entries, "
            f"{n_ticks} price ticks, {n_books} orderbook snapshots"
        )

    except CopySimError as e:
        typer.echo(f"Load failed: {e}", err=True)
        raise typer.Exit(code=1)
    except (OSError, ValueError) as e:
        typer.echo(f"Could not read {path}: {e}", err=True)
        raise typer.Exit(code=1)


@app.command()
def simulate(
    bankroll: Optional[float] = typer.Option(None, help="Starting capital (defaults to settings)"),
    currency: Optional[str] = typer.Option(None, help="USD or GBP"),
    delay: float = typer.Option(60.0, help="Mean entry delay in seconds"),
    variance: float = typer.Option(30.0, help="Entry delay variance in seconds"),
    sizing: str = typer.Option("equal", help="equal or proportional"),
    max_exposure: float = typer.Option(10.0, help="Max exposure per market, percent of bankroll"),
    min_trade: float = typer.Option(10.0, help="Ignore followed trades below this USD size"),
    orderbook: bool = typer.Option(True, "--orderbook/--no-orderbook", help="Use recorded orderbook depth"),
    impact: bool = typer.Option(True, "--impact/--no-impact", help="Apply square-root market impact"),
    simulations: Optional[int] = typer.Option(None, "--simulations", "-n", help="Number of Monte Carlo trials"),
    window_days: int = typer.Option(7, help="Lookback window in days"),
    seed: Optional[int] = typer.Option(None, help="Seed for a reproducible run"),
    workers: int = typer.Option(1, help="Worker threads"),
    timeout: Optional[float] = typer.Option(None, help="Wall-clock limit in seconds"),
    audit: bool = typer.Option(False, "--audit/--no-audit", help="Print the audit log"),
    output: Optional[Path] = typer.Option(None, help="Write the full report as JSON"),
) -> None:
    """Run a Monte Carlo copy-trading simulation over the local store."""
    try:
        settings = get_settings()
        setup_logging(settings.log_level, settings.database.log_dir)
        sim = settings.simulation

        config = validate_config({
            "bankroll": {
                "amount": bankroll if bankroll is not None else sim.default_bankroll,
                "currency": (currency or sim.default_currency).upper(),
            },
            "entry_delay_sec": delay,
            "delay_variance_sec": variance,
            "sizing_rule": sizing,
            "max_exposure_pct": max_exposure,
            "min_trade_usd": min_trade,
            "use_actual_orderbook": orderbook,
            "market_impact_enabled": impact,
            "num_simulations": simulations if simulations is not None else sim.default_num_simulations,
            "window_days": window_days,
            "seed": seed,
            "max_workers": workers,
            "timeout_seconds": timeout,
        })

        with _open_store() as store:
            report = MonteCarloSimulator(store, settings).run_simulation(config)

        _print_report(report, show_audit=audit)

        if output is not None:
            output.write_text(report.to_json())
            typer.echo(f"\nReport written to {output}")

    except InsufficientData as e:
        typer.echo(f"{e}", err=True)
        raise typer.Exit(code=1)
    except CopySimError as e:
        typer.echo(f"Simulation failed: {e}", err=True)
        raise typer.Exit(code=1)


@app.command()
def estimate(
    bankroll: Optional[float] = typer.Option(None, help="Starting capital (defaults to settings)"),
    currency: Optional[str] = typer.Option(None, help="USD or GBP"),
) -> None:
    """Instant low/mid/high estimate from followed traders' ROI."""
    try:
        settings = get_settings()
        setup_logging(settings.log_level, settings.database.log_dir)
        sim = settings.simulation

        money = validate_bankroll({
            "amount": bankroll if bankroll is not None else sim.default_bankroll,
            "currency": (currency or sim.default_currency).upper(),
        })

        with _open_store() as store:
            result = MonteCarloSimulator(store, settings).quick_estimate(money)

        typer.echo(f"\nQuick Estimate for {money}")
        typer.echo("=" * 60)
        typer.echo(f"{'Low':<10} | {'Mid':<10} | {'High':<10}")
        typer.echo(f"{result.low:<+10.2f} | {result.mid:<+10.2f} | {result.high:<+10.2f}")
        typer.echo("")
        typer.echo(f"Average trader ROI: {result.average_roi_percent:.1f}%")
        typer.echo(result.disclaimer)

    except CopySimError as e:
        typer.echo(f"Estimate failed: {e}", err=True)
        raise typer.Exit(code=1)


def _print_report(report: SimulationReport, show_audit: bool = False) -> None:
    ladder = report.results.percentiles
    ccy = report.currency

    typer.echo(f"\nSimulation Results ({report.trials_completed} trials, seed {report.seed})")
    typer.echo("=" * 80)
    typer.echo(
        f"Window: {report.window_start:%Y-%m-%d %H:%M} -> {report.window_end:%Y-%m-%d %H:%M} UTC, "
        f"following {len(report.traders_followed)} traders"
    )
    typer.echo("")
    typer.echo(f"{'P5':<10} | {'P25':<10} | {'Median':<10} | {'P75':<10} | {'P95':<10}")
    typer.echo(
        f"{ladder.p5:<+10.2f} | {ladder.p25:<+10.2f} | {ladder.median:<+10.2f} | "
        f"{ladder.p75:<+10.2f} | {ladder.p95:<+10.2f}"
    )
    typer.echo("")
    typer.echo(f"Mean PnL: {report.results.mean:+.2f} {ccy}")
    typer.echo(f"Std dev: {report.results.std_dev:.2f} {ccy}")
    typer.echo(f"Sharpe-like ratio: {report.results.sharpe_ratio:.3f}")

    if report.daily_breakdown:
        typer.echo("\nDaily PnL:")
        typer.echo("=" * 80)
        typer.echo(f"{'Date':<12} | {'P5':<10} | {'Median':<10} | {'P95':<10} | {'Mean':<10}")
        for day in report.daily_breakdown:
            typer.echo(
                f"{day.date:<12} | {day.pnl_p5:<+10.2f} | {day.pnl_median:<+10.2f} | "
                f"{day.pnl_p95:<+10.2f} | {day.pnl_mean:<+10.2f}"
            )

    if report.market_contributions:
        typer.echo("\nTop Markets:")
        typer.echo("=" * 80)
        typer.echo(f"{'Market':<50} | {'PnL':<10} | {'Fills':<8}")
        for m in report.market_contributions:
            title = m.market[:47] + "..." if len(m.market) > 50 else m.market
            typer.echo(f"{title:<50} | {m.pnl_contribution:<+10.2f} | {m.trade_count:<8.1f}")

    if report.missing_markets:
        typer.echo(f"\n{len(report.missing_markets)} markets had no metadata; defaults were assumed")

    if show_audit and report.audit_log:
        typer.echo("\nAudit Log:")
        typer.echo("=" * 80)
        for entry in report.audit_log:
            typer.echo(f"[{entry.step}] {entry.type.upper()}: {entry.description}")
            if entry.calculation:
                typer.echo(f"    {entry.calculation}")

    typer.echo("")
    typer.echo(report.disclaimer)


if __name__ == "__main__":
    app()
