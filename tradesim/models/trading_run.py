"""TradingRun model — one simulation or backtest session."""

import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from sqlmodel import SQLModel, Field, Column
from sqlalchemy import JSON

from tradesim.schemas.trading_run import RiskParameters
from tradesim.utils.timeutils import ensure_utc


@dataclass(frozen=True)
class OpenRun:
    """Run still accepting ticks. No summary metrics exist yet."""


@dataclass(frozen=True)
class CompletedRun:
    session_end: datetime
    final_capital: float
    win_rate: float | None
    total_return: float
    max_drawdown: float


RunOutcome = OpenRun | CompletedRun


class TradingRun(SQLModel, table=True):
    __tablename__ = "trading_run"

    id: str = Field(default_factory=lambda: uuid.uuid4().hex, primary_key=True)
    owner_id: int | None = Field(default=None, foreign_key="user.id", index=True)
    mode: str  # "simulation" or "backtest"
    asset: str = Field(index=True)
    starting_capital: float
    final_capital: float | None = None

    # Updated by the engine as trades execute
    total_trades: int = 0
    winning_trades: int = 0

    # Written once at finalization
    win_rate: float | None = None
    total_return: float | None = None
    max_drawdown: float | None = None

    session_start: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    session_end: datetime | None = None
    time_period_start: datetime | None = None
    time_period_end: datetime | None = None
    bar_interval: str = "1h"
    model_version: str
    parameters: dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON))
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def risk_parameters(self) -> RiskParameters:
        return RiskParameters.model_validate(self.parameters or {})

    @property
    def is_open(self) -> bool:
        return self.session_end is None and self.final_capital is None

    @property
    def status(self) -> str:
        return "open" if self.is_open else "completed"

    def outcome(self) -> RunOutcome:
        if self.is_open:
            return OpenRun()
        return CompletedRun(
            session_end=ensure_utc(self.session_end),
            final_capital=self.final_capital,
            win_rate=self.win_rate,
            total_return=self.total_return,
            max_drawdown=self.max_drawdown,
        )
