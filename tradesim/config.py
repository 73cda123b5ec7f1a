"""Application configuration via environment variables."""

from pathlib import Path
from pydantic_settings import BaseSettings

PROJECT_ROOT = Path(__file__).resolve().parent.parent


class Settings(BaseSettings):
    database_url: str = f"sqlite:///{PROJECT_ROOT / 'tradesim.db'}"
    log_level: str = "INFO"
    cors_origins: list[str] = ["http://localhost:5173"]  # Vite dev server

    # Auth
    jwt_secret: str = "change-me-in-production"
    jwt_algorithm: str = "HS256"
    jwt_expire_minutes: int = 1440  # 24 hours
    require_auth: bool = False  # False lets guests create runs

    # Engine
    default_bar_interval: str = "1h"
    max_backtest_bars: int = 8784  # one year of hourly bars
    backtest_warmup_bars: int = 50  # lookback fed to the prediction model
    simulation_tick_interval: str = "1m"
    prediction_ttl_minutes: int = 15
    prediction_horizon_minutes: int = 60
    model_version: str = "momentum-v1"

    # Simulated fees
    fee_percent: float = 0.1
    min_fee: float = 0.01
    max_fee: float = 100.0

    # Run validation bounds
    min_starting_capital: float = 100.0
    max_starting_capital: float = 1_000_000.0

    # Market data
    hyperliquid_base_url: str | None = None  # None = SDK default (mainnet)

    model_config = {"env_prefix": "SIM_", "env_file": ".env"}


settings = Settings()
