"""Ledger models — per-user finances, balance deltas, and transactions.

All monetary values use Decimal for exact arithmetic. No floats in finance.

Invariants enforced by these models:
- tradie_amount + commission == payment_amount for every payment split
- every finance accumulator is non-negative
- balances only change through signed deltas applied by the store
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, replace
from datetime import datetime
from decimal import Decimal
from typing import Optional


ZERO = Decimal("0")


class FinanceField(str, enum.Enum):
    """Accumulators held under a profile's ``finances`` sub-object."""
    ON_HOLD = "onHoldBalance"
    AVAILABLE = "availableBalance"
    TOTAL_EARNINGS = "totalEarnings"
    TOTAL_COMMISSION_PAID = "totalCommissionPaid"


_ATTRS: dict[FinanceField, str] = {
    FinanceField.ON_HOLD: "on_hold_balance",
    FinanceField.AVAILABLE: "available_balance",
    FinanceField.TOTAL_EARNINGS: "total_earnings",
    FinanceField.TOTAL_COMMISSION_PAID: "total_commission_paid",
}


class TransactionType(str, enum.Enum):
    PAYMENT = "payment"
    WITHDRAWAL = "withdrawal"


class TransactionStatus(str, enum.Enum):
    ON_HOLD = "onHold"
    COMPLETED = "completed"
    PENDING = "pending"


@dataclass(frozen=True)
class Finances:
    """A user's balance accumulators. Immutable; use ``apply`` for deltas."""
    on_hold_balance: Decimal = ZERO
    available_balance: Decimal = ZERO
    total_earnings: Decimal = ZERO
    total_commission_paid: Decimal = ZERO

    def get(self, name: FinanceField) -> Decimal:
        return getattr(self, _ATTRS[name])

    def apply(self, name: FinanceField, delta: Decimal) -> Finances:
        """Return a copy with ``delta`` added to one accumulator.

        Raises ValueError if the result would be negative.
        """
        result = self.get(name) + delta
        if result < ZERO:
            raise ValueError(
                f"{name.value} would become negative "
                f"({self.get(name)} + {delta} = {result})"
            )
        return replace(self, **{_ATTRS[name]: result})


@dataclass(frozen=True)
class BalanceDelta:
    """A signed change to one accumulator of one user's finances."""
    uid: str
    field: FinanceField
    amount: Decimal


@dataclass(frozen=True)
class PaymentSplit:
    """How a client payment divides between the tradie and the platform.

    Invariant: tradie_amount + commission == payment_amount
    """
    payment_amount: Decimal
    commission: Decimal
    tradie_amount: Decimal
    rate: Decimal

    def __post_init__(self) -> None:
        if self.tradie_amount + self.commission != self.payment_amount:
            raise ValueError(
                f"Split does not balance: tradie_amount ({self.tradie_amount}) + "
                f"commission ({self.commission}) != payment_amount "
                f"({self.payment_amount})"
            )


@dataclass(frozen=True)
class Transaction:
    """One money movement. Immutable apart from the status field, which
    the store advances (onHold → completed) by replacing the record.
    """
    transaction_id: str
    tradie_uid: str
    type: TransactionType
    amount: Decimal
    status: TransactionStatus
    created_utc: datetime
    job_id: Optional[str] = None
    job_title: str = ""
    commission: Decimal = ZERO
    method: Optional[str] = None
