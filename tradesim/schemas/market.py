"""Pydantic schemas for the market data and predictions APIs."""

from datetime import datetime

import pandas as pd
from pydantic import BaseModel


class QuoteRead(BaseModel):
    asset: str
    price: float
    volume_24h: float
    price_change_24h: float
    timestamp: datetime
    source: str

    model_config = {"from_attributes": True}


class OHLCPoint(BaseModel):
    timestamp: datetime
    open: float
    high: float
    low: float
    close: float
    volume: float


class MarketRead(BaseModel):
    quote: QuoteRead
    history: list[OHLCPoint]


class HistoryRead(BaseModel):
    asset: str
    interval: str
    points: list[OHLCPoint]


class PredictionRead(BaseModel):
    asset: str
    current_price: float
    predicted_price: float
    predicted_direction: str
    confidence: float
    horizon_minutes: int
    model_version: str
    generated_at: datetime


def ohlc_points(history: pd.DataFrame) -> list[OHLCPoint]:
    """Convert an OHLCV frame (timestamp index, ascending) to response points."""
    return [
        OHLCPoint(
            timestamp=ts.to_pydatetime(),
            open=float(row.open),
            high=float(row.high),
            low=float(row.low),
            close=float(row.close),
            volume=float(row.volume),
        )
        for ts, row in history.iterrows()
    ]
