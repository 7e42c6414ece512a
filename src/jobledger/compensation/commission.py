"""Commission calculator — splits a client payment into tradie and platform shares.

The formula is fully deterministic:

    commission = round(payment_amount × rate, 2dp)   (ROUND_HALF_UP)
    tradie_amount = payment_amount − commission

The tradie amount is derived by subtraction, never by a second rounding,
so tradie_amount + commission == payment_amount holds exactly.
"""

from __future__ import annotations

from decimal import Decimal, ROUND_HALF_UP

from jobledger.errors import ValidationError
from jobledger.models.ledger import PaymentSplit
from jobledger.policy.resolver import PolicyResolver


CENTS = Decimal("0.01")


def to_money(value: Decimal) -> Decimal:
    """Quantize a Decimal to two places, half-up."""
    return value.quantize(CENTS, rounding=ROUND_HALF_UP)


class CommissionCalculator:
    """Computes the payment split for a job.

    Usage:
        calculator = CommissionCalculator(resolver)
        split = calculator.split(Decimal("150.00"))
        # split.commission == Decimal("22.50")
        # split.tradie_amount == Decimal("127.50")
    """

    def __init__(self, resolver: PolicyResolver) -> None:
        self._resolver = resolver

    def split(self, payment_amount: Decimal) -> PaymentSplit:
        if payment_amount <= Decimal("0"):
            raise ValidationError("Payment amount must be positive")
        rate = self._resolver.commission_rate()
        amount = to_money(payment_amount)
        commission = to_money(amount * rate)
        return PaymentSplit(
            payment_amount=amount,
            commission=commission,
            tradie_amount=amount - commission,
            rate=rate,
        )
