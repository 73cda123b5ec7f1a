"""AI prediction provider and signal cache.

The model is deterministic: identical price history always yields the same
signal, which backtest reproducibility relies on. Signals younger than the
freshness window are reused instead of regenerated.
"""

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Protocol

import numpy as np
import pandas as pd
from sqlmodel import Session, select

from tradesim.services.features import compute_features
from tradesim.services.market_data import MarketDataProvider
from tradesim.utils.constants import INTERVAL_SECONDS
from tradesim.utils.errors import TradingError, UpstreamUnavailable
from tradesim.utils.timeutils import ensure_utc, utcnow

logger = logging.getLogger(__name__)

# Predicted moves inside +/- this percentage are reported as "hold"
DIRECTION_DEAD_BAND_PCT = 0.5


@dataclass(frozen=True)
class PredictionSignal:
    asset: str
    current_price: float
    predicted_price: float
    direction: str  # "up", "down", "hold"
    confidence: float  # 0-1
    horizon_minutes: int
    model_version: str
    generated_at: datetime
    features: dict = field(default_factory=dict, compare=False)

    def age(self, as_of: datetime) -> timedelta:
        return ensure_utc(as_of) - ensure_utc(self.generated_at)

    def is_fresh(self, as_of: datetime, ttl: timedelta) -> bool:
        # A signal generated "after" as_of (backtest rewind) is never reused
        age = self.age(as_of)
        return timedelta(0) <= age < ttl


class PredictionModel(Protocol):
    version: str

    def predict(
        self, asset: str, history: pd.DataFrame, horizon_minutes: int, as_of: datetime
    ) -> PredictionSignal: ...


class MomentumModel:
    """Feature-weighted directional model over recent closes.

    Combines trend, MACD, RSI and Bollinger position into a score in [-1, 1];
    the score scales the predicted move and its magnitude sets confidence.
    """

    def __init__(self, version: str = "momentum-v1", bars_per_day: int = 24):
        self.version = version
        self.bars_per_day = bars_per_day

    def score(self, closes: np.ndarray) -> tuple[float, dict]:
        f = compute_features(closes, bars_per_day=self.bars_per_day)

        if f.rsi > 70:
            rsi_term = -(f.rsi - 70) / 30  # overbought
        elif f.rsi < 30:
            rsi_term = (30 - f.rsi) / 30  # oversold
        else:
            rsi_term = (f.rsi - 50) / 20

        raw = (
            0.35 * math.tanh(f.trend * 50)
            + 0.25 * math.tanh(f.macd * 100)
            + 0.20 * rsi_term
            + 0.10 * math.tanh(f.price_change_24h * 20)
            - 0.10 * f.bollinger
        )
        return float(np.clip(raw, -1.0, 1.0)), f.to_dict()

    def predict(
        self, asset: str, history: pd.DataFrame, horizon_minutes: int, as_of: datetime
    ) -> PredictionSignal:
        closes = history["close"].to_numpy(dtype=float) if not history.empty else np.array([])
        if len(closes) < 2:
            raise UpstreamUnavailable(f"Not enough price history to predict {asset}")

        score, features = self.score(closes)
        price = float(closes[-1])
        expected_move = score * 0.02 * math.sqrt(horizon_minutes / 60)
        predicted_price = price * (1 + expected_move)

        change_pct = expected_move * 100
        if change_pct > DIRECTION_DEAD_BAND_PCT:
            direction = "up"
        elif change_pct < -DIRECTION_DEAD_BAND_PCT:
            direction = "down"
        else:
            direction = "hold"

        return PredictionSignal(
            asset=asset,
            current_price=price,
            predicted_price=predicted_price,
            direction=direction,
            confidence=float(np.clip(0.5 + 0.45 * abs(score), 0.01, 0.99)),
            horizon_minutes=horizon_minutes,
            model_version=self.version,
            generated_at=ensure_utc(as_of),
            features=features,
        )


# ---------------------------------------------------------------------------
# Signal stores
# ---------------------------------------------------------------------------

class PredictionStore(Protocol):
    def latest(self, asset: str, horizon_minutes: int) -> PredictionSignal | None: ...

    def save(self, signal: PredictionSignal) -> None: ...


class MemoryPredictionStore:
    """Per-engine cache for backtests; nothing outlives the run."""

    def __init__(self):
        self._signals: dict[tuple[str, int], PredictionSignal] = {}

    def latest(self, asset: str, horizon_minutes: int) -> PredictionSignal | None:
        return self._signals.get((asset, horizon_minutes))

    def save(self, signal: PredictionSignal) -> None:
        self._signals[(signal.asset, signal.horizon_minutes)] = signal


class SqlPredictionStore:
    """Signals persisted in the prediction table, shared across ticks and requests."""

    def __init__(self, db_engine):
        self.db_engine = db_engine

    def latest(self, asset: str, horizon_minutes: int) -> PredictionSignal | None:
        from tradesim.models.prediction import Prediction

        with Session(self.db_engine) as session:
            row = session.exec(
                select(Prediction)
                .where(Prediction.asset == asset, Prediction.horizon_minutes == horizon_minutes)
                .order_by(Prediction.created_at.desc())
            ).first()
        if row is None:
            return None
        return PredictionSignal(
            asset=row.asset,
            current_price=row.current_price,
            predicted_price=row.predicted_price,
            direction=row.predicted_direction,
            confidence=row.confidence,
            horizon_minutes=row.horizon_minutes,
            model_version=row.model_version,
            generated_at=ensure_utc(row.created_at),
            features=row.features or {},
        )

    def save(self, signal: PredictionSignal) -> None:
        from tradesim.models.prediction import Prediction

        with Session(self.db_engine) as session:
            session.add(Prediction(
                asset=signal.asset,
                model_version=signal.model_version,
                horizon_minutes=signal.horizon_minutes,
                current_price=signal.current_price,
                predicted_price=signal.predicted_price,
                predicted_direction=signal.direction,
                confidence=signal.confidence,
                features=signal.features,
                created_at=signal.generated_at,
            ))
            session.commit()


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------

class PredictionService:
    """Returns a fresh-enough signal for an asset, generating one when needed."""

    def __init__(
        self,
        model: PredictionModel,
        market: MarketDataProvider,
        store: PredictionStore,
        ttl_minutes: int = 15,
        lookback_bars: int = 50,
        interval: str = "1h",
    ):
        self.model = model
        self.market = market
        self.store = store
        self.ttl = timedelta(minutes=ttl_minutes)
        self.lookback_bars = lookback_bars
        self.interval = interval

    @property
    def model_version(self) -> str:
        return self.model.version

    def with_store(self, store: PredictionStore) -> "PredictionService":
        """Same model and market, different cache (e.g. per-backtest memory)."""
        return PredictionService(
            self.model, self.market, store,
            ttl_minutes=int(self.ttl.total_seconds() // 60),
            lookback_bars=self.lookback_bars,
            interval=self.interval,
        )

    async def get_signal(
        self,
        asset: str,
        horizon_minutes: int,
        as_of: datetime | None = None,
        history: pd.DataFrame | None = None,
        force_new: bool = False,
    ) -> PredictionSignal:
        as_of = ensure_utc(as_of) or utcnow()

        if not force_new:
            cached = self.store.latest(asset, horizon_minutes)
            if cached is not None and cached.is_fresh(as_of, self.ttl):
                return cached

        if history is None:
            span = timedelta(seconds=INTERVAL_SECONDS.get(self.interval, 3600) * self.lookback_bars)
            history = await self.market.get_history(asset, as_of - span, as_of, self.interval)

        try:
            signal = self.model.predict(asset, history.tail(self.lookback_bars), horizon_minutes, as_of)
        except TradingError:
            raise
        except Exception as e:
            logger.error(f"Prediction model {self.model.version} failed for {asset}: {e}", exc_info=True)
            raise UpstreamUnavailable("Prediction model unavailable") from e

        self.store.save(signal)
        return signal
