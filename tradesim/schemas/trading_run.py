"""Pydantic schemas for the runs, trades and backtest APIs."""

from datetime import date, datetime
from typing import Literal

from pydantic import BaseModel, Field, field_validator

from tradesim.utils.constants import ASSET_SYMBOL_PATTERN, VALID_INTERVALS
from tradesim.utils.timeutils import ensure_utc


class RiskParameters(BaseModel):
    """Risk-rule configuration carried by every run."""

    stop_loss_fraction: float = Field(default=0.05, gt=0, lt=1)
    take_profit_fraction: float = Field(default=0.10, gt=0)
    confidence_threshold: float = Field(default=0.6, ge=0, le=1)
    max_position_fraction: float = Field(default=0.25, gt=0, le=1)

    model_config = {"frozen": True}


def _normalize_asset(value: str) -> str:
    return value.strip().upper()


def _validate_interval(value: str | None) -> str | None:
    if value is None:
        return None
    if value not in VALID_INTERVALS:
        allowed = ", ".join(VALID_INTERVALS)
        raise ValueError(f"must be one of: {allowed}")
    return value


class RunCreate(BaseModel):
    mode: Literal["simulation", "backtest"]
    asset: str = Field(pattern=ASSET_SYMBOL_PATTERN)
    starting_capital: float = Field(gt=0)
    risk_parameters: RiskParameters = Field(default_factory=RiskParameters)
    time_period_start: datetime | None = None
    time_period_end: datetime | None = None
    bar_interval: str | None = None

    @field_validator("asset")
    @classmethod
    def _upper_asset(cls, value: str) -> str:
        return _normalize_asset(value)

    @field_validator("bar_interval")
    @classmethod
    def _check_interval(cls, value: str | None) -> str | None:
        return _validate_interval(value)


class BacktestRequest(BaseModel):
    asset: str = Field(pattern=ASSET_SYMBOL_PATTERN)
    start_date: datetime
    end_date: datetime
    starting_capital: float = Field(gt=0)
    risk_parameters: RiskParameters = Field(default_factory=RiskParameters)
    bar_interval: str | None = None

    @field_validator("asset")
    @classmethod
    def _upper_asset(cls, value: str) -> str:
        return _normalize_asset(value)

    @field_validator("bar_interval")
    @classmethod
    def _check_interval(cls, value: str | None) -> str | None:
        return _validate_interval(value)

    def to_run_create(self) -> RunCreate:
        return RunCreate(
            mode="backtest",
            asset=self.asset,
            starting_capital=self.starting_capital,
            risk_parameters=self.risk_parameters,
            time_period_start=self.start_date,
            time_period_end=self.end_date,
            bar_interval=self.bar_interval,
        )


class RunFinalize(BaseModel):
    session_end: datetime | None = None  # None = now
    final_capital: float | None = Field(default=None, ge=0)  # None = ledger at current quote


class TradingRunRead(BaseModel):
    id: str
    owner_id: int | None
    mode: str
    asset: str
    status: Literal["open", "completed"]
    starting_capital: float
    final_capital: float | None
    total_trades: int
    winning_trades: int
    win_rate: float | None
    total_return: float | None
    max_drawdown: float | None
    session_start: datetime
    session_end: datetime | None
    time_period_start: datetime | None
    time_period_end: datetime | None
    bar_interval: str
    model_version: str
    parameters: RiskParameters

    model_config = {"from_attributes": True}

    @field_validator("session_start", "session_end", "time_period_start", "time_period_end")
    @classmethod
    def _as_utc(cls, value: datetime | None) -> datetime | None:
        return ensure_utc(value)


class TradingRunList(BaseModel):
    runs: list[TradingRunRead]
    total: int


class TradeRead(BaseModel):
    id: str
    run_id: str
    side: str
    asset: str
    quantity: float
    price: float
    gross_value: float
    fee: float
    net_value: float
    portfolio_value_before: float
    portfolio_value_after: float
    profit_loss: float | None
    trade_reason: str
    ai_confidence: float
    market_price: float
    execution_time: datetime

    model_config = {"from_attributes": True}

    @field_validator("execution_time")
    @classmethod
    def _as_utc(cls, value: datetime) -> datetime:
        return ensure_utc(value)


class TradeList(BaseModel):
    trades: list[TradeRead]
    total: int


class TimelinePointRead(BaseModel):
    day: date
    portfolio_value: float
    trades: int


class PerformanceRead(BaseModel):
    total_trades: int
    winning_trades: int
    losing_trades: int
    win_rate: float | None
    total_return: float | None
    annualized_return: float | None
    max_drawdown: float
    sharpe_ratio: float | None
    total_realized_pnl: float
    average_win: float
    average_loss: float
    profit_factor: float | None
    average_trade_size: float
    best_trade: float | None
    worst_trade: float | None
    average_trade_return: float
    capital_curve: list[float]
    timeline: list[TimelinePointRead]


class TradingRunDetail(TradingRunRead):
    performance: PerformanceRead
