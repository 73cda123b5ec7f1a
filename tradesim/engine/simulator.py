"""Simulation engine — drives the tick loop for one run.

Per tick: price -> prediction signal -> decision policy -> ledger -> trade
record. A market or prediction failure skips the whole tick as a hold;
ledger rejections are logged and treated as a hold too. The engine builds
Trade rows but never persists them; the lifecycle manager owns the database.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta

import pandas as pd

from tradesim.engine.events import EventBus, RunEvent
from tradesim.engine.ledger import PortfolioLedger
from tradesim.engine.policy import Decision, decide
from tradesim.models.trade import Trade
from tradesim.schemas.trading_run import RiskParameters
from tradesim.services.market_data import MarketDataProvider
from tradesim.services.predictions import PredictionService, PredictionSignal
from tradesim.utils.constants import INTERVAL_SECONDS
from tradesim.utils.errors import LedgerError, UpstreamUnavailable, ValidationError
from tradesim.utils.timeutils import ensure_utc

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FeeSchedule:
    """Simulated exchange fee: a percentage of gross value, clamped."""
    fee_percent: float = 0.1
    min_fee: float = 0.01
    max_fee: float = 100.0

    @property
    def rate(self) -> float:
        return self.fee_percent / 100.0

    def fee_for(self, gross_value: float) -> float:
        if self.fee_percent <= 0:
            return 0.0
        return max(self.min_fee, min(gross_value * self.rate, self.max_fee))


@dataclass(frozen=True)
class MarketTick:
    timestamp: datetime
    price: float
    volume: float = 0.0
    # Trailing bars (inclusive) for the model; None means fetch on demand
    history: pd.DataFrame | None = field(default=None, compare=False)


class SimulationEngine:
    def __init__(
        self,
        run_id: str,
        asset: str,
        params: RiskParameters,
        ledger: PortfolioLedger,
        market: MarketDataProvider,
        predictions: PredictionService,
        fees: FeeSchedule | None = None,
        events: EventBus | None = None,
        horizon_minutes: int = 60,
    ):
        self.run_id = run_id
        self.asset = asset
        self.params = params
        self.ledger = ledger
        self.market = market
        self.predictions = predictions
        self.fees = fees or FeeSchedule()
        self.events = events
        self.horizon_minutes = horizon_minutes
        self.trades: list[Trade] = []
        self.last_price: float | None = None
        self.ticks_processed = 0
        self.ticks_skipped = 0

    @property
    def tag(self) -> str:
        return f"[run_{self.run_id}]"

    # -----------------------------------------------------------------------
    # Tick processing
    # -----------------------------------------------------------------------

    async def process_tick(self, tick: MarketTick) -> Trade | None:
        """Obtain a signal for the tick, then decide and execute."""
        self.last_price = tick.price
        try:
            signal = await self.predictions.get_signal(
                self.asset,
                self.horizon_minutes,
                as_of=tick.timestamp,
                history=tick.history,
            )
        except UpstreamUnavailable as e:
            self._skip(tick.timestamp, f"prediction unavailable: {e.message}")
            return None
        return self.execute(tick, signal)

    def execute(self, tick: MarketTick, signal: PredictionSignal | None) -> Trade | None:
        """Decide and apply one action. No awaits: the tick is applied atomically."""
        self.ticks_processed += 1
        self.last_price = tick.price

        decision = decide(
            self.ledger.snapshot(), signal, self.params, tick.price,
            fee_rate=self.fees.rate,
            fee_for=self.fees.fee_for,
        )
        if decision.is_hold:
            self._publish("tick", {
                "timestamp": ensure_utc(tick.timestamp).isoformat(),
                "price": tick.price,
                "action": "hold",
                "direction": signal.direction if signal else None,
                "confidence": signal.confidence if signal else None,
                "portfolio_value": self.ledger.total_value(tick.price),
            })
            return None

        return self._apply(tick, decision)

    def _apply(self, tick: MarketTick, decision: Decision) -> Trade | None:
        price = tick.price
        value_before = self.ledger.total_value(price)
        fee = self.fees.fee_for(decision.quantity * price)

        try:
            if decision.action == "buy":
                fill = self.ledger.apply_buy(decision.quantity, price, fee)
            else:
                fill = self.ledger.apply_sell(decision.quantity, price, fee)
        except LedgerError as e:
            # Policy sizing should make this impossible
            logger.error(f"{self.tag} Ledger rejected {decision.action} {decision.quantity}: {e}")
            self._skip(tick.timestamp, f"ledger rejected {decision.action}")
            return None

        trade = Trade(
            run_id=self.run_id,
            side=decision.action,
            asset=self.asset,
            quantity=fill.quantity,
            price=price,
            gross_value=fill.gross_value,
            fee=fill.fee,
            net_value=fill.net_value,
            portfolio_value_before=value_before,
            portfolio_value_after=self.ledger.total_value(price),
            profit_loss=fill.realized_pnl,
            trade_reason=decision.reason or "ai_signal",
            ai_confidence=decision.confidence,
            market_price=price,
            execution_time=ensure_utc(tick.timestamp),
        )
        self.trades.append(trade)

        pnl = f" pnl={fill.realized_pnl:.2f}" if fill.realized_pnl is not None else ""
        logger.info(
            f"{self.tag} {decision.action.upper()} {fill.quantity:.8f} {self.asset} @ {price:.2f} "
            f"({trade.trade_reason}){pnl}"
        )
        self._publish("trade", {
            "trade_id": trade.id,
            "side": trade.side,
            "quantity": trade.quantity,
            "price": trade.price,
            "reason": trade.trade_reason,
            "profit_loss": trade.profit_loss,
            "portfolio_value": trade.portfolio_value_after,
        })
        return trade

    # -----------------------------------------------------------------------
    # Tick sources
    # -----------------------------------------------------------------------

    async def run_live_tick(self) -> Trade | None:
        """Process one live tick from the current market quote."""
        try:
            quote = await self.market.get_quote(self.asset)
        except UpstreamUnavailable as e:
            self._skip(None, f"market data unavailable: {e.message}")
            return None
        tick = MarketTick(timestamp=quote.timestamp, price=quote.price, volume=quote.volume_24h)
        return await self.process_tick(tick)

    async def run_backtest(
        self,
        start: datetime,
        end: datetime,
        interval: str = "1h",
        warmup_bars: int = 50,
        max_bars: int | None = None,
    ) -> list[Trade]:
        """Replay historical bars in [start, end] as ticks, oldest first."""
        if interval not in INTERVAL_SECONDS:
            raise ValidationError(f"Unsupported bar interval '{interval}'")
        start, end = ensure_utc(start), ensure_utc(end)
        bar = timedelta(seconds=INTERVAL_SECONDS[interval])

        history = await self.market.get_history(
            self.asset, start - bar * warmup_bars, end, interval
        )
        first = int(history.index.searchsorted(pd.Timestamp(start)))
        last = len(history)
        if max_bars is not None:
            last = min(last, first + max_bars)

        logger.info(
            f"{self.tag} Backtest {self.asset} {start:%Y-%m-%d %H:%M} -> {end:%Y-%m-%d %H:%M} "
            f"({last - first} bars of {interval})"
        )

        for i in range(first, last):
            row = history.iloc[i]
            tick = MarketTick(
                timestamp=history.index[i].to_pydatetime(),
                price=float(row["close"]),
                volume=float(row["volume"]),
                history=history.iloc[max(0, i - warmup_bars):i + 1],
            )
            await self.process_tick(tick)

        return self.trades

    # -----------------------------------------------------------------------
    # Helpers
    # -----------------------------------------------------------------------

    def _skip(self, timestamp: datetime | None, reason: str):
        self.ticks_skipped += 1
        logger.warning(f"{self.tag} Skipping tick: {reason}")
        self._publish("skipped", {
            "timestamp": ensure_utc(timestamp).isoformat() if timestamp else None,
            "reason": reason,
        })

    def _publish(self, event_type: str, data: dict):
        if self.events is not None:
            self.events.publish(RunEvent(run_id=self.run_id, type=event_type, data=data))
