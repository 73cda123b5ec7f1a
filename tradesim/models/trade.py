"""Trade model — append-only record of every executed buy or sell."""

import uuid
from datetime import datetime, timezone
from sqlmodel import SQLModel, Field


class Trade(SQLModel, table=True):
    __tablename__ = "trade"

    id: str = Field(default_factory=lambda: uuid.uuid4().hex, primary_key=True)
    run_id: str = Field(foreign_key="trading_run.id", index=True)
    side: str  # "buy" or "sell"
    asset: str
    quantity: float
    price: float
    gross_value: float  # quantity * price
    fee: float = 0.0
    net_value: float  # buy: cash spent (gross + fee); sell: proceeds (gross - fee)
    portfolio_value_before: float
    portfolio_value_after: float
    profit_loss: float | None = None  # realized, sells only
    trade_reason: str  # "ai_signal", "stop_loss", "take_profit", "manual"
    ai_confidence: float = 0.0
    market_price: float
    execution_time: datetime
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def is_winner(self) -> bool:
        return self.profit_loss is not None and self.profit_loss > 0
