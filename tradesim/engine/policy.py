"""Decision policy: (position, signal, risk parameters, price) -> action.

Pure computation with no hidden state, so identical inputs always produce
the identical decision. Backtest determinism depends on this.
"""

from dataclasses import dataclass
from typing import Callable

from tradesim.engine.ledger import PositionSnapshot
from tradesim.schemas.trading_run import RiskParameters
from tradesim.services.predictions import PredictionSignal


@dataclass(frozen=True)
class Decision:
    action: str  # "buy", "sell", "hold"
    quantity: float = 0.0
    reason: str | None = None  # "ai_signal", "stop_loss", "take_profit"
    confidence: float = 0.0

    @property
    def is_hold(self) -> bool:
        return self.action == "hold"


HOLD = Decision(action="hold")


def evaluate_exit(
    position: PositionSnapshot,
    params: RiskParameters,
    price: float,
) -> str | None:
    """Return the risk exit that trips at `price`, take-profit first."""
    if not position.is_open:
        return None
    ret = position.return_at(price)
    if ret >= params.take_profit_fraction:
        return "take_profit"
    if ret <= -params.stop_loss_fraction:
        return "stop_loss"
    return None


def size_entry(
    position: PositionSnapshot,
    params: RiskParameters,
    price: float,
    fee_rate: float = 0.0,
    fee_for: Callable[[float], float] | None = None,
) -> float:
    """Quantity to buy: the position budget net of the fee it will be charged.

    `fee_for` maps a gross value to its fee. When it clamps (a minimum or
    maximum fee), the proportional estimate is cut back so that
    gross + fee_for(gross) stays within the budget.
    """
    budget = min(params.max_position_fraction * position.total_value(price), position.cash)
    if budget <= 0 or price <= 0:
        return 0.0
    gross = budget / (1.0 + fee_rate)
    if fee_for is not None:
        # fee_for is non-decreasing, so the smaller gross keeps the same fee or less
        gross = min(gross, budget - fee_for(gross))
    if gross <= 0:
        return 0.0
    return gross / price


def decide(
    position: PositionSnapshot,
    signal: PredictionSignal | None,
    params: RiskParameters,
    price: float,
    fee_rate: float = 0.0,
    fee_for: Callable[[float], float] | None = None,
) -> Decision:
    """Map the current state to one action.

    Risk exits run before the AI signal is consulted. A missing signal can
    still trigger a risk exit but never an entry.
    """
    confidence = signal.confidence if signal else 0.0

    exit_reason = evaluate_exit(position, params, price)
    if exit_reason:
        return Decision(
            action="sell",
            quantity=position.quantity,
            reason=exit_reason,
            confidence=confidence,
        )

    if signal is None or signal.confidence < params.confidence_threshold:
        return HOLD

    if not position.is_open and signal.direction == "up":
        quantity = size_entry(position, params, price, fee_rate, fee_for)
        if quantity <= 0:
            return HOLD
        return Decision(action="buy", quantity=quantity, reason="ai_signal", confidence=confidence)

    if position.is_open and signal.direction == "down":
        return Decision(
            action="sell",
            quantity=position.quantity,
            reason="ai_signal",
            confidence=confidence,
        )

    return HOLD
