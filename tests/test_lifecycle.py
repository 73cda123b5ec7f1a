"""Tests for run creation, trade recording, finalization and the run jobs."""

import asyncio
from datetime import timedelta

import pytest
from sqlmodel import Session, select

from tradesim.database import engine
from tradesim.engine.lifecycle import RunLifecycleManager
from tradesim.engine.runner import execute_backtest, finalize_run, run_simulation_tick
from tradesim.models.trade import Trade
from tradesim.models.trading_run import CompletedRun, OpenRun, TradingRun
from tradesim.schemas.trading_run import RiskParameters, RunCreate
from tradesim.utils.errors import AlreadyCompleted, NotFoundError, ValidationError
from tradesim.utils.timeutils import utcnow

from tests.fakes import HISTORY_START, make_history


def _backtest_request(**overrides) -> RunCreate:
    payload = dict(
        mode="backtest",
        asset="btc",
        starting_capital=10_000,
        time_period_start=HISTORY_START + timedelta(hours=60),
        time_period_end=HISTORY_START + timedelta(hours=200),
    )
    payload.update(overrides)
    return RunCreate(**payload)


def _trade(run_id: str, side: str, pnl: float | None, value_after: float, hours: int) -> Trade:
    return Trade(
        run_id=run_id,
        side=side,
        asset="BTC",
        quantity=1.0,
        price=100.0,
        gross_value=100.0,
        fee=0.1,
        net_value=100.1 if side == "buy" else 99.9,
        portfolio_value_before=value_after,
        portfolio_value_after=value_after,
        profit_loss=pnl,
        trade_reason="ai_signal",
        ai_confidence=0.9,
        market_price=100.0,
        execution_time=HISTORY_START + timedelta(hours=hours),
    )


# ---------------------------------------------------------------------------
# 1. Create
# ---------------------------------------------------------------------------

class TestCreate:
    def test_simulation_run_starts_open(self, session, config):
        run = RunLifecycleManager(session, config).create(
            RunCreate(mode="simulation", asset="eth", starting_capital=5_000)
        )
        assert run.asset == "ETH"
        assert run.is_open
        assert run.status == "open"
        assert run.outcome() == OpenRun()
        assert run.total_trades == 0
        assert run.time_period_start is None
        assert run.model_version == config.model_version
        assert run.risk_parameters == RiskParameters()

    def test_backtest_window_must_be_ordered(self, session, config):
        request = _backtest_request(
            time_period_start=HISTORY_START + timedelta(days=5),
            time_period_end=HISTORY_START,
        )
        with pytest.raises(ValidationError):
            RunLifecycleManager(session, config).create(request)
        assert session.exec(select(TradingRun)).all() == []

    def test_backtest_requires_window(self, session, config):
        with pytest.raises(ValidationError):
            RunLifecycleManager(session, config).create(
                RunCreate(mode="backtest", asset="BTC", starting_capital=10_000)
            )

    def test_backtest_window_must_be_in_past(self, session, config):
        request = _backtest_request(
            time_period_start=utcnow() - timedelta(days=1),
            time_period_end=utcnow() + timedelta(days=1),
        )
        with pytest.raises(ValidationError):
            RunLifecycleManager(session, config).create(request)

    def test_backtest_bar_limit(self, session, config):
        config.max_backtest_bars = 24
        request = _backtest_request(
            time_period_start=HISTORY_START,
            time_period_end=HISTORY_START + timedelta(hours=25),
        )
        with pytest.raises(ValidationError, match="limit is 24"):
            RunLifecycleManager(session, config).create(request)

    def test_simulation_rejects_window(self, session, config):
        request = RunCreate(
            mode="simulation",
            asset="BTC",
            starting_capital=10_000,
            time_period_start=HISTORY_START,
        )
        with pytest.raises(ValidationError):
            RunLifecycleManager(session, config).create(request)

    @pytest.mark.parametrize("capital", [50, 2_000_000])
    def test_capital_bounds(self, session, config, capital):
        with pytest.raises(ValidationError):
            RunLifecycleManager(session, config).create(
                RunCreate(mode="simulation", asset="BTC", starting_capital=capital)
            )


# ---------------------------------------------------------------------------
# 2. Record and finalize
# ---------------------------------------------------------------------------

class TestFinalize:
    def _open_run(self, session, config) -> TradingRun:
        return RunLifecycleManager(session, config).create(
            RunCreate(mode="simulation", asset="BTC", starting_capital=1_000)
        )

    def test_record_trades_updates_counters(self, session, config):
        lifecycle = RunLifecycleManager(session, config)
        run = self._open_run(session, config)
        lifecycle.record_trades(run, [
            _trade(run.id, "buy", None, 999.9, 1),
            _trade(run.id, "sell", 5.0, 1_004.8, 2),
        ])
        assert run.total_trades == 2
        assert run.winning_trades == 1

    def test_finalize_writes_metrics(self, session, config):
        lifecycle = RunLifecycleManager(session, config)
        run = self._open_run(session, config)
        lifecycle.record_trades(run, [
            _trade(run.id, "buy", None, 999.9, 1),
            _trade(run.id, "sell", 5.0, 1_004.8, 2),
        ])

        run = lifecycle.finalize(run, None, final_capital=1_004.8)

        assert run.status == "completed"
        assert run.final_capital == pytest.approx(1_004.8)
        assert run.total_return == pytest.approx(0.48)
        assert run.win_rate == pytest.approx(50.0)
        assert run.max_drawdown <= 0
        assert isinstance(run.outcome(), CompletedRun)

    def test_finalize_twice_rejected(self, session, config):
        lifecycle = RunLifecycleManager(session, config)
        run = lifecycle.finalize(self._open_run(session, config), None, final_capital=1_000)
        first_end = run.session_end

        with pytest.raises(AlreadyCompleted):
            lifecycle.finalize(run, None, final_capital=5)
        assert run.final_capital == 1_000
        assert run.session_end == first_end

    def test_session_end_must_follow_start(self, session, config):
        lifecycle = RunLifecycleManager(session, config)
        run = self._open_run(session, config)
        with pytest.raises(ValidationError):
            lifecycle.finalize(run, run.session_start - timedelta(seconds=1), final_capital=1_000)
        assert run.is_open

    def test_no_trades_gives_null_win_rate(self, session, config):
        lifecycle = RunLifecycleManager(session, config)
        run = lifecycle.finalize(self._open_run(session, config), None, final_capital=1_000)
        assert run.win_rate is None
        assert run.total_return == 0.0
        assert run.max_drawdown == 0.0

    def test_list_trades_newest_first(self, session, config):
        lifecycle = RunLifecycleManager(session, config)
        run = self._open_run(session, config)
        lifecycle.record_trades(run, [_trade(run.id, "buy", None, 1_000, h) for h in (3, 1, 2)])

        trades, total = lifecycle.list_trades(run.id, limit=2)
        assert total == 3
        assert [t.execution_time.hour for t in trades] == [3, 2]

    def test_unknown_run(self, session, config):
        with pytest.raises(NotFoundError):
            RunLifecycleManager(session, config).get("missing")


# ---------------------------------------------------------------------------
# 3. Run jobs
# ---------------------------------------------------------------------------

class TestRunJobs:
    @pytest.mark.asyncio
    async def test_execute_backtest_completes_run(self, services):
        with Session(engine) as session:
            run = RunLifecycleManager(session, services.config).create(_backtest_request())

        run = await execute_backtest(run.id, services)

        assert run.status == "completed"
        assert run.final_capital > 0
        assert run.session_end > run.session_start
        with Session(engine) as session:
            stored = session.exec(select(Trade).where(Trade.run_id == run.id)).all()
        assert len(stored) == run.total_trades
        assert run.total_trades > 0
        assert len(services.locks) == 0

    @pytest.mark.asyncio
    async def test_simulation_tick_persists_trade(self, services, market):
        with Session(engine) as session:
            run = RunLifecycleManager(session, services.config).create(
                RunCreate(mode="simulation", asset="BTC", starting_capital=10_000)
            )

        # Steadily rising bars up to now, so the scripted model says "up"
        market.history = make_history(
            [100.0 + i for i in range(240)], start=utcnow() - timedelta(hours=239)
        )
        await run_simulation_tick(run.id, services)

        with Session(engine) as session:
            lifecycle = RunLifecycleManager(session, services.config)
            run = lifecycle.get(run.id)
            trades = lifecycle.trades_for(run.id)
        assert run.total_trades == 1
        assert [t.side for t in trades] == ["buy"]
        assert trades[0].price == pytest.approx(339.0)

    @pytest.mark.asyncio
    async def test_finalize_values_open_position_at_quote(self, services, market):
        with Session(engine) as session:
            lifecycle = RunLifecycleManager(session, services.config)
            run = lifecycle.create(RunCreate(mode="simulation", asset="BTC", starting_capital=1_000))
            lifecycle.record_trades(run, [_trade(run.id, "buy", None, 999.9, 1)])

        market.quote_price = 110.0
        run = await finalize_run(run.id, services)
        # cash 1000 - 100.1, plus 1 unit at 110
        assert run.final_capital == pytest.approx(1_009.9)

    @pytest.mark.asyncio
    async def test_finalize_completed_run_rejected(self, services):
        with Session(engine) as session:
            run = RunLifecycleManager(session, services.config).create(
                RunCreate(mode="simulation", asset="BTC", starting_capital=1_000)
            )
        await finalize_run(run.id, services, final_capital=1_000)
        with pytest.raises(AlreadyCompleted):
            await finalize_run(run.id, services, final_capital=1_000)


# ---------------------------------------------------------------------------
# 4. Per-run serialization
# ---------------------------------------------------------------------------

def _open_simulation(services, market) -> TradingRun:
    # Steadily rising bars up to now, so the scripted model says "up"
    market.history = make_history(
        [100.0 + i for i in range(240)], start=utcnow() - timedelta(hours=239)
    )
    with Session(engine) as session:
        return RunLifecycleManager(session, services.config).create(
            RunCreate(mode="simulation", asset="BTC", starting_capital=10_000)
        )


class TestRunSerialization:
    @pytest.mark.asyncio
    async def test_tick_skipped_while_run_is_busy(self, services, market, model):
        run = _open_simulation(services, market)

        async with services.locks.get(run.id):
            await run_simulation_tick(run.id, services)

        assert model.calls == 0
        with Session(engine) as session:
            assert RunLifecycleManager(session).trades_for(run.id) == []

    @pytest.mark.asyncio
    async def test_finalize_waits_for_in_flight_tick(self, services, market):
        run = _open_simulation(services, market)
        entered = asyncio.Event()
        release = asyncio.Event()
        quote = market.get_quote

        async def slow_quote(asset):
            entered.set()
            await release.wait()
            return await quote(asset)

        market.get_quote = slow_quote
        tick = asyncio.create_task(run_simulation_tick(run.id, services))
        await entered.wait()

        finalize = asyncio.create_task(finalize_run(run.id, services, final_capital=10_000))
        for _ in range(5):
            await asyncio.sleep(0)
        assert not finalize.done()

        release.set()
        await tick
        completed = await finalize

        # The tick committed in full before the run closed
        assert completed.status == "completed"
        assert completed.total_trades == 1
        with Session(engine) as session:
            trades = RunLifecycleManager(session).trades_for(run.id)
        assert [t.side for t in trades] == ["buy"]

    @pytest.mark.asyncio
    async def test_tick_after_finalize_never_applies(self, services, market, model):
        run = _open_simulation(services, market)

        await finalize_run(run.id, services, final_capital=10_000)
        await run_simulation_tick(run.id, services)

        assert model.calls == 0
        with Session(engine) as session:
            run = RunLifecycleManager(session).get(run.id)
            assert run.total_trades == 0
            assert RunLifecycleManager(session).trades_for(run.id) == []
