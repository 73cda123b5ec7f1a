"""Run execution jobs.

These are the functions the scheduler and the API call. They orchestrate:
load run -> rebuild ledger -> engine ticks -> persist trades -> finalize.
Every job holds the run's lock, so a finalize request waits for an in-flight
tick to commit instead of interleaving with it.
"""

import logging
from datetime import timedelta

from tradesim.engine.events import RunEvent
from tradesim.engine.ledger import PortfolioLedger
from tradesim.engine.lifecycle import RunLifecycleManager
from tradesim.engine.simulator import SimulationEngine
from tradesim.models.trading_run import TradingRun
from tradesim.services.container import Services
from tradesim.services.predictions import MemoryPredictionStore, PredictionService
from tradesim.utils.errors import AlreadyCompleted, TradingError
from tradesim.utils.timeutils import ensure_utc, utcnow

logger = logging.getLogger(__name__)


def build_engine(
    run: TradingRun,
    services: Services,
    ledger: PortfolioLedger,
    predictions: PredictionService | None = None,
) -> SimulationEngine:
    return SimulationEngine(
        run_id=run.id,
        asset=run.asset,
        params=run.risk_parameters,
        ledger=ledger,
        market=services.market,
        predictions=predictions or services.predictions,
        fees=services.fees,
        events=services.events,
        horizon_minutes=services.config.prediction_horizon_minutes,
    )


def _publish_completed(services: Services, run: TradingRun):
    services.events.publish(RunEvent(
        run_id=run.id,
        type="completed",
        data={
            "final_capital": run.final_capital,
            "total_return": run.total_return,
            "win_rate": run.win_rate,
            "max_drawdown": run.max_drawdown,
            "total_trades": run.total_trades,
        },
    ))


# ---------------------------------------------------------------------------
# Backtest
# ---------------------------------------------------------------------------

async def execute_backtest(run_id: str, services: Services) -> TradingRun:
    """Replay a backtest run's window to completion and finalize it."""
    async with services.locks.get(run_id):
        with services.session() as session:
            run = RunLifecycleManager(session, services.config).get(run_id)
            if not run.is_open:
                return run
            if run.mode != "backtest":
                raise TradingError(f"Run '{run_id}' is not a backtest")

        # Fresh in-memory signal cache: backtests never read live predictions
        engine = build_engine(
            run,
            services,
            ledger=PortfolioLedger(run.starting_capital),
            predictions=services.predictions.with_store(MemoryPredictionStore()),
        )
        trades = await engine.run_backtest(
            run.time_period_start,
            run.time_period_end,
            interval=run.bar_interval,
            warmup_bars=services.config.backtest_warmup_bars,
            max_bars=services.config.max_backtest_bars,
        )

        if engine.last_price is not None:
            final_capital = engine.ledger.total_value(engine.last_price)
        else:
            final_capital = engine.ledger.cash

        with services.session() as session:
            lifecycle = RunLifecycleManager(session, services.config)
            run = lifecycle.get(run_id)
            lifecycle.record_trades(run, trades)
            # Short windows can finish within the clock's resolution
            session_end = max(utcnow(), ensure_utc(run.session_start) + timedelta(microseconds=1))
            run = lifecycle.finalize(run, session_end, final_capital)

    logger.info(
        f"[run_{run_id}] Backtest done: {engine.ticks_processed} ticks, "
        f"{engine.ticks_skipped} skipped, {len(trades)} trades"
    )
    _publish_completed(services, run)
    services.locks.discard(run_id)
    return run


async def run_backtest_job(run_id: str, services: Services):
    """Scheduler entry point: failures are logged, the run stays open."""
    try:
        await execute_backtest(run_id, services)
    except TradingError as e:
        logger.error(f"[run_{run_id}] Backtest failed: {e.message}")
    except Exception as e:
        logger.error(f"[run_{run_id}] Backtest crashed: {e}", exc_info=True)


# ---------------------------------------------------------------------------
# Live simulation
# ---------------------------------------------------------------------------

async def run_simulation_tick(run_id: str, services: Services):
    """Process one live tick, skipping if a prior tick is still in flight."""
    lock = services.locks.get(run_id)
    if lock.locked():
        logger.warning(f"[run_{run_id}] Skipping overlapping tick")
        return

    async with lock:
        with services.session() as session:
            lifecycle = RunLifecycleManager(session, services.config)
            run = session.get(TradingRun, run_id)
            if run is None or not run.is_open:
                return
            ledger = lifecycle.ledger_for(run)

        engine = build_engine(run, services, ledger)
        try:
            trade = await engine.run_live_tick()
        except Exception as e:
            logger.error(f"[run_{run_id}] Tick failed: {e}", exc_info=True)
            return

        if trade is None:
            return

        with services.session() as session:
            lifecycle = RunLifecycleManager(session, services.config)
            try:
                lifecycle.record_trades(lifecycle.get(run_id), [trade])
            except AlreadyCompleted:
                logger.warning(f"[run_{run_id}] Run completed mid-tick, trade dropped")


async def finalize_run(
    run_id: str,
    services: Services,
    session_end=None,
    final_capital: float | None = None,
) -> TradingRun:
    """Finalize a run under its lock.

    Without `final_capital` the ledger is valued at the current quote (or
    as plain cash when flat).
    """
    async with services.locks.get(run_id):
        with services.session() as session:
            lifecycle = RunLifecycleManager(session, services.config)
            run = lifecycle.get(run_id)
            if not run.is_open:
                raise AlreadyCompleted(f"Run '{run_id}' is already completed")

            if final_capital is None:
                ledger = lifecycle.ledger_for(run)
                if ledger.quantity > 0:
                    quote = await services.market.get_quote(run.asset)
                    final_capital = ledger.total_value(quote.price)
                else:
                    final_capital = ledger.cash

            run = lifecycle.finalize(run, session_end, final_capital)

    _publish_completed(services, run)
    services.locks.discard(run_id)
    return run
