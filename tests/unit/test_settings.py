from pathlib import Path

from config.settings import DatabaseSettings, FxSettings, Settings, SimulationSettings, get_settings


def test_simulation_settings_defaults() -> None:
    sim = SimulationSettings()
    assert sim.default_bankroll == 100.0
    assert sim.default_num_simulations == 1000
    assert sim.max_simulations_per_request == 5000
    assert sim.follow_metric == "realized_pnl"
    assert sim.follow_limit == 10
    assert sim.drift_bound == 0.01
    assert sim.equal_max_position_usd == 50.0
    assert sim.default_daily_volume == 100_000.0
    assert sim.default_mid_price == 0.5
    assert sim.friction_factor == 0.6
    assert sim.estimate_low_damper == 0.5
    assert sim.estimate_high_damper == 0.8
    assert sim.top_markets == 10


def test_fx_settings_defaults() -> None:
    assert FxSettings().gbp_usd_rate == 1.27


def test_database_settings_defaults() -> None:
    db = DatabaseSettings()
    assert db.db_dir == Path("db")
    assert db.sqlite_path == Path("db/copysim.db")
    assert db.log_dir == Path("db/logs")


def test_database_settings_computed_paths(monkeypatch) -> None:
    monkeypatch.setenv("DB_DIR", "custom")
    db = DatabaseSettings()
    assert db.sqlite_path == Path("custom/copysim.db")


def test_settings_read_environment(monkeypatch) -> None:
    monkeypatch.setenv("FRICTION_FACTOR", "0.75")
    monkeypatch.setenv("GBP_USD_RATE", "1.3")
    monkeypatch.setenv("LOG_LEVEL", "DEBUG")
    settings = Settings()
    assert settings.simulation.friction_factor == 0.75
    assert settings.fx.gbp_usd_rate == 1.3
    assert settings.log_level == "DEBUG"


def test_get_settings_is_cached() -> None:
    get_settings.cache_clear()
    assert get_settings() is get_settings()
    get_settings.cache_clear()
