"""Run lifecycle — creates, records and finalizes TradingRun rows.

The only writer of trading_run and trade. Validation happens before anything
is added to the session, so a rejected request leaves no trace.
"""

import logging
from datetime import datetime, timedelta
from typing import Callable, Sequence

from sqlalchemy import func
from sqlmodel import Session, select

from tradesim.config import Settings, settings as default_settings
from tradesim.engine import analytics
from tradesim.engine.ledger import PortfolioLedger
from tradesim.models.trade import Trade
from tradesim.models.trading_run import TradingRun
from tradesim.schemas.trading_run import RunCreate
from tradesim.utils.constants import INTERVAL_SECONDS
from tradesim.utils.errors import AlreadyCompleted, NotFoundError, ValidationError
from tradesim.utils.timeutils import ensure_utc, utcnow

logger = logging.getLogger(__name__)


class RunLifecycleManager:
    def __init__(
        self,
        session: Session,
        config: Settings | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.session = session
        self.config = config or default_settings
        self.clock = clock

    # -----------------------------------------------------------------------
    # Create
    # -----------------------------------------------------------------------

    def create(
        self,
        request: RunCreate,
        owner_id: int | None = None,
        model_version: str | None = None,
    ) -> TradingRun:
        """Validate mode-specific fields and persist a new open run."""
        self._validate_capital(request.starting_capital)
        interval = request.bar_interval or self.config.default_bar_interval

        if request.mode == "backtest":
            start, end = self._validate_window(
                request.time_period_start, request.time_period_end, interval
            )
        else:
            if request.time_period_start is not None or request.time_period_end is not None:
                raise ValidationError("Simulation runs do not take a time period")
            start = end = None

        run = TradingRun(
            owner_id=owner_id,
            mode=request.mode,
            asset=request.asset,
            starting_capital=request.starting_capital,
            session_start=self.clock(),
            time_period_start=start,
            time_period_end=end,
            bar_interval=interval,
            model_version=model_version or self.config.model_version,
            parameters=request.risk_parameters.model_dump(),
        )
        self.session.add(run)
        self.session.commit()
        self.session.refresh(run)
        logger.info(
            f"[run_{run.id}] Created {run.mode} run for {run.asset} "
            f"with {run.starting_capital:.2f} capital"
        )
        return run

    def _validate_capital(self, capital: float):
        low, high = self.config.min_starting_capital, self.config.max_starting_capital
        if not low <= capital <= high:
            raise ValidationError(f"starting_capital must be between {low:g} and {high:g}")

    def _validate_window(
        self,
        start: datetime | None,
        end: datetime | None,
        interval: str,
    ) -> tuple[datetime, datetime]:
        if start is None or end is None:
            raise ValidationError("Backtest runs require time_period_start and time_period_end")
        start, end = ensure_utc(start), ensure_utc(end)
        if start >= end:
            raise ValidationError("time_period_start must be before time_period_end")
        if end > self.clock():
            raise ValidationError("Backtest window must be in the past")

        bars = (end - start) / timedelta(seconds=INTERVAL_SECONDS[interval])
        if bars > self.config.max_backtest_bars:
            raise ValidationError(
                f"Backtest window spans {int(bars)} {interval} bars, "
                f"limit is {self.config.max_backtest_bars}"
            )
        return start, end

    # -----------------------------------------------------------------------
    # Queries
    # -----------------------------------------------------------------------

    def get(self, run_id: str) -> TradingRun:
        run = self.session.get(TradingRun, run_id)
        if run is None:
            raise NotFoundError(f"Run '{run_id}' not found")
        return run

    def list_runs(
        self,
        owner_id: int | None = None,
        mode: str | None = None,
        asset: str | None = None,
        active_only: bool = False,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[TradingRun], int]:
        """Runs owned by `owner_id`, or guest runs when it is None. Newest first."""
        stmt = select(TradingRun)
        if owner_id is not None:
            stmt = stmt.where(TradingRun.owner_id == owner_id)
        else:
            stmt = stmt.where(TradingRun.owner_id == None)  # noqa: E711
        if mode is not None:
            stmt = stmt.where(TradingRun.mode == mode)
        if asset is not None:
            stmt = stmt.where(TradingRun.asset == asset.upper())
        if active_only:
            stmt = stmt.where(TradingRun.session_end == None)  # noqa: E711

        total = self.session.exec(select(func.count()).select_from(stmt.subquery())).one()
        rows = self.session.exec(
            stmt.order_by(TradingRun.session_start.desc()).offset(offset).limit(limit)
        ).all()
        return list(rows), total

    def open_simulation_runs(self) -> list[TradingRun]:
        return list(self.session.exec(
            select(TradingRun).where(
                TradingRun.mode == "simulation",
                TradingRun.session_end == None,  # noqa: E711
            )
        ).all())

    def trades_for(self, run_id: str) -> list[Trade]:
        """All trades of a run in execution order."""
        return list(self.session.exec(
            select(Trade)
            .where(Trade.run_id == run_id)
            .order_by(Trade.execution_time, Trade.created_at)
        ).all())

    def list_trades(self, run_id: str, limit: int = 50, offset: int = 0) -> tuple[list[Trade], int]:
        """One page of trades, newest first, plus the run's trade count."""
        total = self.session.exec(
            select(func.count()).select_from(Trade).where(Trade.run_id == run_id)
        ).one()
        rows = self.session.exec(
            select(Trade)
            .where(Trade.run_id == run_id)
            .order_by(Trade.execution_time.desc(), Trade.created_at.desc())
            .offset(offset)
            .limit(limit)
        ).all()
        return list(rows), total

    def ledger_for(self, run: TradingRun) -> PortfolioLedger:
        return PortfolioLedger.replay(run.starting_capital, self.trades_for(run.id))

    def performance(self, run: TradingRun) -> analytics.PerformanceSummary:
        return analytics.summarize(
            run.starting_capital,
            self.trades_for(run.id),
            run.final_capital,
            *self._period(run),
        )

    def _period(
        self, run: TradingRun, session_end: datetime | None = None
    ) -> tuple[datetime | None, datetime | None]:
        """Market time a run covers: the backtest window, or the live session."""
        if run.mode == "backtest":
            return ensure_utc(run.time_period_start), ensure_utc(run.time_period_end)
        end = ensure_utc(session_end or run.session_end) or self.clock()
        return ensure_utc(run.session_start), end

    # -----------------------------------------------------------------------
    # Mutations
    # -----------------------------------------------------------------------

    def record_trades(self, run: TradingRun, trades: Sequence[Trade]) -> TradingRun:
        """Append executed trades and bump the run's counters in one commit."""
        if not trades:
            return run
        if not run.is_open:
            raise AlreadyCompleted(f"Run '{run.id}' is already completed")

        for trade in trades:
            self.session.add(trade)
            run.total_trades += 1
            if trade.is_winner:
                run.winning_trades += 1
        self.session.add(run)
        self.session.commit()
        self.session.refresh(run)
        return run

    def finalize(
        self,
        run: TradingRun,
        session_end: datetime | None,
        final_capital: float,
    ) -> TradingRun:
        """Close an open run and write back its performance metrics."""
        if not run.is_open:
            raise AlreadyCompleted(f"Run '{run.id}' is already completed")
        if final_capital is None or final_capital < 0:
            raise ValidationError("final_capital must be non-negative")

        session_end = ensure_utc(session_end) or self.clock()
        if session_end <= ensure_utc(run.session_start):
            raise ValidationError("session_end must be after session_start")

        summary = analytics.summarize(
            run.starting_capital,
            self.trades_for(run.id),
            final_capital,
            *self._period(run, session_end),
        )

        run.session_end = session_end
        run.final_capital = final_capital
        run.total_trades = summary.total_trades
        run.winning_trades = summary.winning_trades
        run.win_rate = summary.win_rate
        run.total_return = summary.total_return
        run.max_drawdown = summary.max_drawdown
        self.session.add(run)
        self.session.commit()
        self.session.refresh(run)

        win_rate = f"{run.win_rate:.1f}%" if run.win_rate is not None else "n/a"
        logger.info(
            f"[run_{run.id}] Completed: final={run.final_capital:.2f} "
            f"return={run.total_return:.2f}% win_rate={win_rate} "
            f"max_dd={run.max_drawdown:.2f}% trades={run.total_trades}"
        )
        return run

    def discard(self, run: TradingRun):
        """Delete an open run that never executed a trade."""
        if run.total_trades or not run.is_open:
            raise ValidationError("Only empty open runs can be discarded")
        self.session.delete(run)
        self.session.commit()
        logger.info(f"[run_{run.id}] Discarded")
