"""Shared constants and defaults for runs, bars and predictions."""

RUN_MODES = ["simulation", "backtest"]
TRADE_SIDES = ["buy", "sell"]
TRADE_REASONS = ["ai_signal", "stop_loss", "take_profit", "manual"]
PREDICTED_DIRECTIONS = ["up", "down", "hold"]

# Intervals accepted by the history endpoint
HISTORY_INTERVALS = ["1h", "4h", "1d"]

# Intervals accepted for backtest bars and live tick scheduling
VALID_INTERVALS = ["1m", "5m", "15m", "30m", "1h", "2h", "4h", "8h", "1d"]

INTERVAL_SECONDS: dict[str, int] = {
    "1m": 60,
    "5m": 300,
    "15m": 900,
    "30m": 1800,
    "1h": 3600,
    "2h": 7200,
    "4h": 14400,
    "8h": 28800,
    "1d": 86400,
}

# Prediction horizon bounds (minutes) for the predictions endpoint
MIN_HORIZON_MINUTES = 5
MAX_HORIZON_MINUTES = 1440

# Asset symbols are 2-10 alphanumeric characters
ASSET_SYMBOL_PATTERN = r"^[A-Za-z0-9]{2,10}$"

MAX_PAGE_SIZE = 100
