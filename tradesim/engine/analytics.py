"""Performance analytics over a run's trades and capital curve.

Read-only folds: nothing here mutates trades or ledger state.
"""

from dataclasses import dataclass, field, asdict
from datetime import date, datetime, timedelta
from typing import Sequence

import numpy as np
import pandas as pd

from tradesim.utils.timeutils import ensure_utc


@dataclass
class TimelinePoint:
    """Portfolio value at the close of one UTC day."""
    day: date
    portfolio_value: float
    trades: int


@dataclass
class PerformanceSummary:
    total_trades: int
    winning_trades: int
    losing_trades: int
    win_rate: float | None
    total_return: float | None
    annualized_return: float | None
    max_drawdown: float
    sharpe_ratio: float | None
    total_realized_pnl: float
    average_win: float
    average_loss: float
    profit_factor: float | None
    average_trade_size: float
    best_trade: float | None
    worst_trade: float | None
    average_trade_return: float
    capital_curve: list[float] = field(default_factory=list)
    timeline: list[TimelinePoint] = field(default_factory=list)

    def to_dict(self) -> dict:
        return asdict(self)


def win_rate(total_trades: int, winning_trades: int) -> float | None:
    """Winning share of executed trades in percent; None without trades."""
    if total_trades <= 0:
        return None
    return winning_trades / total_trades * 100


def total_return(starting_capital: float, final_capital: float) -> float:
    return (final_capital - starting_capital) / starting_capital * 100


def capital_curve(starting_capital: float, trades: Sequence) -> list[float]:
    """Portfolio value after each trade, seeded with the starting capital."""
    return [float(starting_capital)] + [float(t.portfolio_value_after) for t in trades]


def max_drawdown(curve: Sequence[float]) -> float:
    """Most negative decline from the running peak, in percent (<= 0)."""
    s = pd.Series(curve, dtype=float).dropna()
    if s.empty:
        return 0.0
    peak = s.cummax()
    dd = (s - peak) / peak
    worst = float(dd.min()) * 100
    # -0.0 reads badly in API output
    return min(worst, 0.0) + 0.0


def annualized_return(starting_capital: float, final_capital: float, days: float) -> float | None:
    """Compound annual growth in percent. None for periods shorter than a day."""
    if days < 1 or starting_capital <= 0 or final_capital < 0:
        return None
    try:
        return ((final_capital / starting_capital) ** (365 / days) - 1) * 100
    except OverflowError:
        return None


def trade_returns(trades: Sequence) -> np.ndarray:
    """Realized P/L of each closing trade as a percent of its gross value."""
    return np.array(
        [
            t.profit_loss / t.gross_value * 100
            for t in trades
            if t.profit_loss is not None and t.gross_value > 0
        ],
        dtype=float,
    )


def sharpe_ratio(returns: np.ndarray) -> float | None:
    """Per-trade Sharpe: mean over population std of trade returns.

    Not annualized and no risk-free rate. A zero spread divides by 1.
    """
    if returns.size == 0:
        return None
    std = float(returns.std())
    return float(returns.mean()) / (std if std > 0 else 1.0)


def daily_timeline(
    starting_capital: float,
    trades: Sequence,
    start: datetime | None = None,
    end: datetime | None = None,
) -> list[TimelinePoint]:
    """One point per UTC day in [start, end] with the closing portfolio value.

    Days without trades carry the previous value forward. Without a period the
    span of the trades themselves is used.
    """
    times = [ensure_utc(t.execution_time) for t in trades]
    start = ensure_utc(start) or (times[0] if times else None)
    end = ensure_utc(end) or (times[-1] if times else start)
    if start is None:
        return []

    by_day: dict[date, tuple[float, int]] = {}
    for trade, ts in zip(trades, times):
        _, count = by_day.get(ts.date(), (0.0, 0))
        by_day[ts.date()] = (float(trade.portfolio_value_after), count + 1)

    points = []
    value = float(starting_capital)
    day, last_day = start.date(), max(end, start).date()
    while day <= last_day:
        count = 0
        if day in by_day:
            value, count = by_day[day]
        points.append(TimelinePoint(day=day, portfolio_value=value, trades=count))
        day += timedelta(days=1)
    return points


def summarize(
    starting_capital: float,
    trades: Sequence,
    final_capital: float | None = None,
    period_start: datetime | None = None,
    period_end: datetime | None = None,
) -> PerformanceSummary:
    """Compute all run metrics from trades in execution order.

    `final_capital` is None for an in-progress run, in which case
    total_return and annualized_return are left undefined. The period bounds
    the timeline and the annualization.
    """
    realized = np.array(
        [t.profit_loss for t in trades if t.profit_loss is not None], dtype=float
    )
    wins = realized[realized > 0]
    losses = realized[realized < 0]

    gross_profit = float(wins.sum()) if wins.size else 0.0
    gross_loss = float(-losses.sum()) if losses.size else 0.0
    if gross_loss > 0:
        profit_factor = gross_profit / gross_loss
    else:
        profit_factor = None  # undefined without a losing trade

    sizes = [t.gross_value for t in trades]
    curve = capital_curve(starting_capital, trades)

    annualized = None
    if final_capital is not None and period_start is not None and period_end is not None:
        days = (ensure_utc(period_end) - ensure_utc(period_start)) / timedelta(days=1)
        annualized = annualized_return(starting_capital, final_capital, days)

    return PerformanceSummary(
        total_trades=len(trades),
        winning_trades=int(wins.size),
        losing_trades=int(losses.size),
        win_rate=win_rate(len(trades), int(wins.size)),
        total_return=(
            total_return(starting_capital, final_capital) if final_capital is not None else None
        ),
        annualized_return=annualized,
        max_drawdown=max_drawdown(curve),
        sharpe_ratio=sharpe_ratio(trade_returns(trades)),
        total_realized_pnl=float(realized.sum()) if realized.size else 0.0,
        average_win=float(wins.mean()) if wins.size else 0.0,
        average_loss=float(losses.mean()) if losses.size else 0.0,
        profit_factor=profit_factor,
        average_trade_size=float(np.mean(sizes)) if sizes else 0.0,
        best_trade=float(realized.max()) if realized.size else None,
        worst_trade=float(realized.min()) if realized.size else None,
        average_trade_return=float(realized.mean()) if realized.size else 0.0,
        capital_curve=curve,
        timeline=daily_timeline(starting_capital, trades, period_start, period_end),
    )
