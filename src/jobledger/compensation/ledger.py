"""Escrow ledger — plans balance deltas and transactions for payment events.

The ledger never reads a balance and writes it back. Every movement is
expressed as signed BalanceDelta values that the store applies inside
its atomic commit, so several jobs for the same tradie can settle
concurrently without lost updates.

Payment hold (BookingConfirmed → PaymentComplete):
    onHoldBalance       += tradie_amount
    totalEarnings       += tradie_amount
    totalCommissionPaid += commission
    + one payment transaction, status onHold

Payment release (InProgress → Completed):
    onHoldBalance    -= tradie_amount
    availableBalance += tradie_amount
    + payment transaction status → completed

Withdrawal:
    availableBalance -= amount
    + one withdrawal transaction, status pending

The ledger is pure computation. The store applies the result; the
service layer decides when.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Iterable, Optional
from uuid import uuid4

from jobledger.compensation.commission import CommissionCalculator, to_money
from jobledger.errors import ValidationError
from jobledger.models.job import Job, JobStatus
from jobledger.models.ledger import (
    ZERO,
    BalanceDelta,
    FinanceField,
    PaymentSplit,
    Transaction,
    TransactionStatus,
    TransactionType,
)


_HELD_STATES = frozenset({JobStatus.PAYMENT_COMPLETE, JobStatus.IN_PROGRESS})


class EscrowLedger:
    """Plans ledger mutations for the payment-related job transitions.

    Usage:
        ledger = EscrowLedger(CommissionCalculator(resolver))
        split, deltas, tx = ledger.hold_payment(job, now=now)
        deltas = ledger.release_payment(job)
    """

    def __init__(self, calculator: CommissionCalculator) -> None:
        self._calculator = calculator

    def hold_payment(
        self,
        job: Job,
        now: datetime,
        transaction_id: Optional[str] = None,
    ) -> tuple[PaymentSplit, list[BalanceDelta], Transaction]:
        """Plan the escrow hold for a job's accepted quote."""
        if job.quote is None:
            raise ValidationError(f"{job.job_id}: no accepted quote to pay")
        if job.payment_amount is not None:
            raise ValidationError(f"{job.job_id}: payment already recorded")

        split = self._calculator.split(job.quote.total)
        deltas = [
            BalanceDelta(job.tradie_uid, FinanceField.ON_HOLD, split.tradie_amount),
            BalanceDelta(job.tradie_uid, FinanceField.TOTAL_EARNINGS, split.tradie_amount),
            BalanceDelta(job.tradie_uid, FinanceField.TOTAL_COMMISSION_PAID, split.commission),
        ]
        transaction = Transaction(
            transaction_id=transaction_id or f"tx_{uuid4().hex[:12]}",
            tradie_uid=job.tradie_uid,
            type=TransactionType.PAYMENT,
            amount=split.tradie_amount,
            status=TransactionStatus.ON_HOLD,
            created_utc=now,
            job_id=job.job_id,
            job_title=job.title or "Job",
            commission=split.commission,
        )
        return split, deltas, transaction

    def release_payment(self, job: Job) -> list[BalanceDelta]:
        """Plan moving a job's tradie amount from on-hold to available."""
        if job.tradie_amount is None:
            raise ValidationError(f"{job.job_id}: no payment recorded to release")
        amount = job.tradie_amount
        return [
            BalanceDelta(job.tradie_uid, FinanceField.ON_HOLD, -amount),
            BalanceDelta(job.tradie_uid, FinanceField.AVAILABLE, amount),
        ]

    def plan_withdrawal(
        self,
        uid: str,
        amount: object,
        method: str,
        allowed_methods: Iterable[str],
        now: datetime,
        transaction_id: Optional[str] = None,
    ) -> tuple[list[BalanceDelta], Transaction]:
        """Plan a withdrawal from available balance.

        The sufficiency check happens in the store's commit, where the
        delta would drive availableBalance negative.
        """
        try:
            value = to_money(Decimal(str(amount)))
        except (InvalidOperation, ValueError):
            raise ValidationError("Please enter a valid amount") from None
        if not value.is_finite() or value <= ZERO:
            raise ValidationError("Please enter a valid amount")
        if method not in tuple(allowed_methods):
            raise ValidationError(f"Unsupported withdrawal method: {method}")

        transaction = Transaction(
            transaction_id=transaction_id or f"tx_{uuid4().hex[:12]}",
            tradie_uid=uid,
            type=TransactionType.WITHDRAWAL,
            amount=-value,
            status=TransactionStatus.PENDING,
            created_utc=now,
            method=method,
        )
        return [BalanceDelta(uid, FinanceField.AVAILABLE, -value)], transaction

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    @staticmethod
    def is_held(job: Job) -> bool:
        """True if the job's tradie amount currently sits in onHoldBalance.

        A dispute freezes funds where they are: a job disputed before
        completion keeps its amount on hold.
        """
        if job.tradie_amount is None:
            return False
        if job.status in _HELD_STATES:
            return True
        return job.status == JobStatus.DISPUTE and job.completed_utc is None

    @staticmethod
    def is_released(job: Job) -> bool:
        """True if the job's tradie amount has moved to availableBalance."""
        return job.tradie_amount is not None and job.completed_utc is not None

    @classmethod
    def expected_on_hold(cls, jobs: Iterable[Job], tradie_uid: str) -> Decimal:
        return sum(
            (j.tradie_amount for j in jobs
             if j.tradie_uid == tradie_uid and cls.is_held(j)),
            ZERO,
        )

    @classmethod
    def expected_available(
        cls,
        jobs: Iterable[Job],
        transactions: Iterable[Transaction],
        tradie_uid: str,
    ) -> Decimal:
        released = sum(
            (j.tradie_amount for j in jobs
             if j.tradie_uid == tradie_uid and cls.is_released(j)),
            ZERO,
        )
        withdrawn = sum(
            (t.amount for t in transactions
             if t.tradie_uid == tradie_uid and t.type == TransactionType.WITHDRAWAL),
            ZERO,
        )
        return released + withdrawn
