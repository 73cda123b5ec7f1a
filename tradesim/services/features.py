"""Stateless technical features for the prediction model.

All functions are pure computation over a close-price array: no I/O, no
database access.
"""

from dataclasses import dataclass, asdict

import numpy as np


# ---------------------------------------------------------------------------
# Indicator helpers
# ---------------------------------------------------------------------------

def compute_rsi(values: np.ndarray, period: int = 14) -> float:
    """Compute current Wilder RSI. Returns NaN if insufficient data."""
    n = len(values)
    if n < period + 2:
        return float("nan")

    deltas = np.diff(values)
    gains = np.maximum(deltas, 0.0)
    losses = np.maximum(-deltas, 0.0)

    avg_gain = float(np.mean(gains[:period]))
    avg_loss = float(np.mean(losses[:period]))

    for i in range(period, len(deltas)):
        avg_gain = (avg_gain * (period - 1) + gains[i]) / period
        avg_loss = (avg_loss * (period - 1) + losses[i]) / period

    if avg_loss == 0:
        # Flat series: neither overbought nor oversold
        return 50.0 if avg_gain == 0 else 100.0
    rs = avg_gain / avg_loss
    return 100.0 - 100.0 / (1.0 + rs)


def compute_ema(values: np.ndarray, period: int) -> float:
    """Exponential moving average seeded with the first value."""
    if len(values) == 0:
        return 0.0
    k = 2.0 / (period + 1)
    ema = float(values[0])
    for v in values[1:]:
        ema = float(v) * k + ema * (1 - k)
    return ema


def compute_macd(values: np.ndarray, fast: int = 12, slow: int = 26) -> float:
    """MACD line (fast EMA - slow EMA). 0 until `slow` points exist."""
    if len(values) < slow:
        return 0.0
    return compute_ema(values, fast) - compute_ema(values, slow)


def moving_average(values: np.ndarray, period: int) -> float:
    """Simple moving average, or the last value when history is short."""
    if len(values) == 0:
        return 0.0
    if len(values) < period:
        return float(values[-1])
    return float(np.mean(values[-period:]))


def bollinger_position(values: np.ndarray, period: int = 20, width: float = 2.0) -> float:
    """Where the last value sits inside the Bollinger band, clipped to [-1, 1]."""
    if len(values) < period:
        return 0.0
    window = values[-period:]
    std = float(np.std(window, ddof=1))
    if std == 0 or np.isnan(std):
        return 0.0
    pos = (float(values[-1]) - float(np.mean(window))) / (width * std)
    return float(np.clip(pos, -1.0, 1.0))


# ---------------------------------------------------------------------------
# Feature vector
# ---------------------------------------------------------------------------

@dataclass
class FeatureSet:
    """Inputs handed to the prediction model for one point in time."""
    current_price: float
    price_change_24h: float  # fraction
    rsi: float
    macd: float  # normalized by price
    trend: float  # fast MA / slow MA - 1
    bollinger: float

    def to_dict(self) -> dict:
        return asdict(self)


def compute_features(closes: np.ndarray, bars_per_day: int = 24) -> FeatureSet:
    """Compute every model feature from a close-price array (oldest first)."""
    closes = np.asarray(closes, dtype=float)
    price = float(closes[-1])

    lookback = min(bars_per_day, len(closes) - 1)
    if lookback > 0 and closes[-1 - lookback] > 0:
        change = price / float(closes[-1 - lookback]) - 1.0
    else:
        change = 0.0

    rsi = compute_rsi(closes)
    if np.isnan(rsi):
        rsi = 50.0  # neutral when history is short

    slow_ma = moving_average(closes, 30)
    trend = moving_average(closes, 10) / slow_ma - 1.0 if slow_ma > 0 else 0.0

    return FeatureSet(
        current_price=price,
        price_change_24h=change,
        rsi=rsi,
        macd=compute_macd(closes) / price if price > 0 else 0.0,
        trend=trend,
        bollinger=bollinger_position(closes),
    )
