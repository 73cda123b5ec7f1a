"""Database models."""

from tradesim.models.trading_run import TradingRun, OpenRun, CompletedRun
from tradesim.models.trade import Trade
from tradesim.models.prediction import Prediction
from tradesim.models.user import User

__all__ = [
    "TradingRun",
    "OpenRun",
    "CompletedRun",
    "Trade",
    "Prediction",
    "User",
]
