"""Deterministic fake providers shared by the test modules."""

import math
from datetime import datetime, timedelta, timezone

import pandas as pd

from tradesim.services.market_data import MarketQuote, normalize_ohlc
from tradesim.services.predictions import PredictionSignal
from tradesim.utils.errors import NotFoundError, UpstreamUnavailable

HISTORY_START = datetime(2024, 1, 1, tzinfo=timezone.utc)
HISTORY_BARS = 240


def wave_closes(n: int = HISTORY_BARS) -> list[float]:
    """Deterministic oscillating price path with a slight upward drift."""
    return [100.0 + 10.0 * math.sin(i / 6.0) + 0.05 * i for i in range(n)]


def make_history(closes: list[float], start: datetime = HISTORY_START) -> pd.DataFrame:
    index = pd.DatetimeIndex(
        [start + timedelta(hours=i) for i in range(len(closes))], name="timestamp"
    )
    df = pd.DataFrame(
        {
            "open": [closes[max(i - 1, 0)] for i in range(len(closes))],
            "high": [c * 1.01 for c in closes],
            "low": [c * 0.99 for c in closes],
            "close": closes,
            "volume": [1000.0 + i for i in range(len(closes))],
        },
        index=index,
    )
    return normalize_ohlc(df)


class FakeMarketData:
    """MarketDataProvider over a fixed hourly bar series."""

    def __init__(self, closes: list[float] | None = None, assets=("BTC", "ETH")):
        self.history = make_history(closes or wave_closes())
        self.assets = set(assets)
        self.fail = False
        self.quote_price: float | None = None
        self.history_calls = 0

    def _check(self, asset: str):
        if self.fail:
            raise UpstreamUnavailable("fake market down")
        if asset.upper() not in self.assets:
            raise NotFoundError(f"Unknown asset '{asset}'")

    async def get_quote(self, asset: str) -> MarketQuote:
        self._check(asset)
        price = self.quote_price or float(self.history["close"].iloc[-1])
        return MarketQuote(
            asset=asset,
            price=price,
            volume_24h=float(self.history["volume"].tail(24).sum()),
            price_change_24h=0.0,
            timestamp=datetime.now(timezone.utc),
            source="fake",
        )

    async def get_market(self, asset: str):
        quote = await self.get_quote(asset)
        return quote, self.history.tail(24)

    async def get_history(self, asset, start, end, interval="1h") -> pd.DataFrame:
        self._check(asset)
        self.history_calls += 1
        h = self.history
        return h.loc[(h.index >= pd.Timestamp(start)) & (h.index <= pd.Timestamp(end))]


class ScriptedModel:
    """Predicts 'up' after a rising bar and 'down' after a falling one."""

    version = "scripted-v1"

    def __init__(self, confidence: float = 0.9):
        self.confidence = confidence
        self.calls = 0

    def predict(self, asset, history, horizon_minutes, as_of) -> PredictionSignal:
        self.calls += 1
        closes = history["close"].tolist()
        if len(closes) < 2:
            raise UpstreamUnavailable("not enough history")
        rising = closes[-1] >= closes[-2]
        return PredictionSignal(
            asset=asset,
            current_price=closes[-1],
            predicted_price=closes[-1] * (1.01 if rising else 0.99),
            direction="up" if rising else "down",
            confidence=self.confidence,
            horizon_minutes=horizon_minutes,
            model_version=self.version,
            generated_at=as_of,
        )


