"""Shared fixtures: a throwaway SQLite database and deterministic fake providers."""

import os
import tempfile

# Must be set before tradesim.config is imported anywhere
_DB_DIR = tempfile.mkdtemp(prefix="tradesim-tests-")
os.environ["SIM_DATABASE_URL"] = f"sqlite:///{os.path.join(_DB_DIR, 'test.db')}"
os.environ["SIM_LOG_LEVEL"] = "WARNING"

import pytest
from sqlmodel import SQLModel, Session

from tradesim.config import Settings
from tradesim.database import engine
from tradesim.services.container import Services
from tradesim.services.predictions import MemoryPredictionStore, PredictionService

from tests.fakes import FakeMarketData, ScriptedModel


@pytest.fixture(autouse=True)
def fresh_db():
    import tradesim.models  # noqa: F401

    SQLModel.metadata.drop_all(engine)
    SQLModel.metadata.create_all(engine)
    yield


@pytest.fixture
def session():
    with Session(engine) as s:
        yield s


@pytest.fixture
def config():
    return Settings()


@pytest.fixture
def market():
    return FakeMarketData()


@pytest.fixture
def model():
    return ScriptedModel()


@pytest.fixture
def services(config, market, model):
    predictions = PredictionService(
        model=model,
        market=market,
        store=MemoryPredictionStore(),
        ttl_minutes=config.prediction_ttl_minutes,
        lookback_bars=config.backtest_warmup_bars,
        interval="1h",
    )
    return Services(config=config, db_engine=engine, market=market, predictions=predictions)
