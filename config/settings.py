from pathlib import Path
from functools import lru_cache

from pydantic import Field, computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict


class SimulationSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="")

    # Defaults applied to requests that omit a field
    default_bankroll: float = Field(default=100.0, alias="DEFAULT_BANKROLL")
    default_currency: str = Field(default="USD", alias="DEFAULT_CURRENCY")
    default_num_simulations: int = Field(default=1000, alias="DEFAULT_NUM_SIMULATIONS")
    max_simulations_per_request: int = Field(default=5000, alias="MAX_SIMULATIONS_PER_REQUEST")
    default_timeout_seconds: float = Field(default=120.0, alias="SIMULATION_TIMEOUT_SECONDS")

    # Who gets followed
    follow_metric: str = Field(default="realized_pnl", alias="FOLLOW_METRIC")
    follow_limit: int = Field(default=10, alias="FOLLOW_LIMIT")

    # Tunable frictions
    drift_bound: float = Field(default=0.01, alias="DRIFT_BOUND")
    equal_max_position_usd: float = Field(default=50.0, alias="EQUAL_MAX_POSITION_USD")
    min_position_usd: float = Field(default=1.0, alias="MIN_POSITION_USD")
    default_daily_volume: float = Field(default=100_000.0, alias="DEFAULT_DAILY_VOLUME")
    default_mid_price: float = Field(default=0.5, alias="DEFAULT_MID_PRICE")

    # Quick estimate
    friction_factor: float = Field(default=0.6, alias="FRICTION_FACTOR")
    estimate_low_damper: float = Field(default=0.5, alias="ESTIMATE_LOW_DAMPER")
    estimate_high_damper: float = Field(default=0.8, alias="ESTIMATE_HIGH_DAMPER")

    # Report shape
    sample_fill_limit: int = Field(default=20, alias="SAMPLE_FILL_LIMIT")
    top_markets: int = Field(default=10, alias="TOP_MARKETS")


class FxSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="")

    gbp_usd_rate: float = Field(default=1.27, alias="GBP_USD_RATE")


class DatabaseSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="")

    db_dir: Path = Field(default=Path("db"), alias="DB_DIR")

    @computed_field
    @property
    def sqlite_path(self) -> Path:
        return self.db_dir / "copysim.db"

    @computed_field
    @property
    def log_dir(self) -> Path:
        return self.db_dir / "logs"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    simulation: SimulationSettings = Field(default_factory=SimulationSettings)
    fx: FxSettings = Field(default_factory=FxSettings)
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)


@lru_cache
def get_settings() -> Settings:
    return Settings()
