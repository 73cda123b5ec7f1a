"""Explicitly constructed collaborators shared by the API, scheduler and CLI."""

import asyncio
import logging
from dataclasses import dataclass, field

from sqlalchemy.engine import Engine
from sqlmodel import Session

from tradesim.config import Settings
from tradesim.engine.events import EventBus
from tradesim.engine.simulator import FeeSchedule
from tradesim.services.market_data import HyperliquidMarketData, MarketDataProvider
from tradesim.services.predictions import MomentumModel, PredictionService, SqlPredictionStore
from tradesim.utils.constants import INTERVAL_SECONDS

logger = logging.getLogger(__name__)


class RunLocks:
    """One asyncio.Lock per run: at most one in-flight operation mutates a run's ledger."""

    def __init__(self):
        self._locks: dict[str, asyncio.Lock] = {}

    def get(self, run_id: str) -> asyncio.Lock:
        lock = self._locks.get(run_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[run_id] = lock
        return lock

    def discard(self, run_id: str):
        self._locks.pop(run_id, None)

    def __len__(self) -> int:
        return len(self._locks)


@dataclass
class Services:
    config: Settings
    db_engine: Engine
    market: MarketDataProvider
    predictions: PredictionService
    events: EventBus = field(default_factory=EventBus)
    locks: RunLocks = field(default_factory=RunLocks)

    @property
    def fees(self) -> FeeSchedule:
        return FeeSchedule(
            fee_percent=self.config.fee_percent,
            min_fee=self.config.min_fee,
            max_fee=self.config.max_fee,
        )

    def session(self) -> Session:
        return Session(self.db_engine)


def build_services(config: Settings, db_engine: Engine | None = None) -> Services:
    """Wire the production collaborators from settings."""
    if db_engine is None:
        from tradesim.database import engine as db_engine

    market = HyperliquidMarketData(base_url=config.hyperliquid_base_url)
    bars_per_day = 86400 // INTERVAL_SECONDS[config.default_bar_interval]
    predictions = PredictionService(
        model=MomentumModel(version=config.model_version, bars_per_day=bars_per_day),
        market=market,
        store=SqlPredictionStore(db_engine),
        ttl_minutes=config.prediction_ttl_minutes,
        lookback_bars=config.backtest_warmup_bars,
        interval=config.default_bar_interval,
    )
    logger.info(
        f"Services ready: model={config.model_version} interval={config.default_bar_interval} "
        f"fee={config.fee_percent}%"
    )
    return Services(config=config, db_engine=db_engine, market=market, predictions=predictions)
