"""Portfolio ledger — authoritative cash/position bookkeeping for one run.

Average-cost accounting: one weighted-average entry price covers every open
buy, so partial sells never need lot matching. All operations are pure
computation over the ledger's own state; no I/O.
"""

from dataclasses import dataclass
from typing import Iterable

from tradesim.utils.errors import InsufficientFunds, InsufficientPosition

# Absorbs float dust when a buy spends (almost) all available cash
_CASH_TOLERANCE = 1e-9


@dataclass(frozen=True)
class PositionSnapshot:
    """Read-only view of ledger state handed to the decision policy."""
    quantity: float
    average_entry_price: float
    cash: float

    @property
    def is_open(self) -> bool:
        return self.quantity > 0

    def total_value(self, price: float) -> float:
        return self.cash + self.quantity * price

    def return_at(self, price: float) -> float:
        """Mark-to-market return of the open position as a fraction."""
        if not self.is_open or self.average_entry_price <= 0:
            return 0.0
        return (price - self.average_entry_price) / self.average_entry_price


@dataclass(frozen=True)
class Fill:
    """Result of applying one trade to the ledger."""
    quantity: float
    price: float
    fee: float
    gross_value: float
    net_value: float
    realized_pnl: float | None = None


class PortfolioLedger:
    def __init__(self, starting_capital: float):
        if starting_capital <= 0:
            raise ValueError("starting_capital must be positive")
        self.starting_capital = starting_capital
        self.cash = float(starting_capital)
        self.quantity = 0.0
        self.average_entry_price = 0.0
        self.realized_pnl = 0.0

    @classmethod
    def replay(cls, starting_capital: float, trades: Iterable) -> "PortfolioLedger":
        """Rebuild ledger state from a run's executed trades, oldest first."""
        ledger = cls(starting_capital)
        for trade in trades:
            if trade.side == "buy":
                ledger.apply_buy(trade.quantity, trade.price, trade.fee)
            else:
                ledger.apply_sell(trade.quantity, trade.price, trade.fee)
        return ledger

    def snapshot(self) -> PositionSnapshot:
        return PositionSnapshot(
            quantity=self.quantity,
            average_entry_price=self.average_entry_price,
            cash=self.cash,
        )

    def apply_buy(self, quantity: float, price: float, fee: float = 0.0) -> Fill:
        if quantity <= 0 or price <= 0 or fee < 0:
            raise ValueError(f"Invalid buy: quantity={quantity} price={price} fee={fee}")

        gross = quantity * price
        cost = gross + fee
        if cost > self.cash + _CASH_TOLERANCE:
            raise InsufficientFunds(
                f"Buy of {quantity} @ {price} costs {cost:.8f}, cash is {self.cash:.8f}"
            )

        new_quantity = self.quantity + quantity
        self.average_entry_price = (
            self.quantity * self.average_entry_price + quantity * price
        ) / new_quantity
        self.quantity = new_quantity
        self.cash = max(self.cash - cost, 0.0)

        return Fill(quantity=quantity, price=price, fee=fee, gross_value=gross, net_value=cost)

    def apply_sell(self, quantity: float, price: float, fee: float = 0.0) -> Fill:
        if quantity <= 0 or price <= 0 or fee < 0:
            raise ValueError(f"Invalid sell: quantity={quantity} price={price} fee={fee}")
        if quantity > self.quantity:
            raise InsufficientPosition(
                f"Sell of {quantity} exceeds held quantity {self.quantity}"
            )

        gross = quantity * price
        proceeds = gross - fee
        pnl = quantity * (price - self.average_entry_price) - fee
        if self.cash + proceeds < -_CASH_TOLERANCE:
            raise InsufficientFunds(f"Sell fee {fee} exceeds cash plus proceeds")

        self.quantity -= quantity
        self.cash += proceeds
        self.realized_pnl += pnl
        if self.quantity == 0:
            self.average_entry_price = 0.0

        return Fill(
            quantity=quantity,
            price=price,
            fee=fee,
            gross_value=gross,
            net_value=proceeds,
            realized_pnl=pnl,
        )

    def mark_to_market(self, price: float) -> float:
        """Unrealized P/L of the open position at `price`."""
        return self.quantity * (price - self.average_entry_price)

    def total_value(self, price: float) -> float:
        return self.cash + self.quantity * price
