"""Invariant checks over marketplace config and stored records.

Each check returns a list of human-readable violations (empty = OK).
They read only; nothing is repaired.
"""

from __future__ import annotations

from jobledger.compensation.ledger import EscrowLedger
from jobledger.models.job import PAID_STATES, ActorRole, JobStatus
from jobledger.models.ledger import ZERO, FinanceField, TransactionStatus, TransactionType
from jobledger.persistence.store import DocumentStore
from jobledger.policy.resolver import PolicyResolver


def check_config(resolver: PolicyResolver) -> list[str]:
    """Rules the marketplace params must satisfy beyond structural validity."""
    errors: list[str] = []
    rate = resolver.commission_rate()
    if rate != ZERO and rate.as_tuple().exponent < -4:
        errors.append(f"commission rate has excess precision: {rate}")
    if resolver.auto_advance_delay() < 0:
        errors.append("auto-advance delay must be >= 0")
    if resolver.max_info_photos() < 1:
        errors.append("max_info_photos must be >= 1")
    prefix, suffix_length = resolver.invoice_format()
    if not prefix:
        errors.append("invoice prefix must not be empty")
    if suffix_length < 1:
        errors.append("invoice suffix length must be >= 1")
    policy = resolver.calendar_policy()
    starts = [policy.slot_start_hours[s] for s in policy.time_slots]
    if starts != sorted(set(starts)):
        errors.append("calendar slots must start at strictly increasing hours")
    if starts and not starts[-1] < policy.day_end_hour <= 24:
        errors.append("calendar day_end_hour must follow the last slot start")
    if policy.lookahead_days < 1:
        errors.append("calendar lookahead_days must be >= 1")
    return errors


def check_store(store: DocumentStore) -> list[str]:
    """Cross-record consistency of jobs, ledger and reviews."""
    errors: list[str] = []
    jobs = store.jobs()
    transactions = store.transactions()

    payments: dict[str, list] = {}
    for tx in transactions:
        if tx.type == TransactionType.PAYMENT:
            payments.setdefault(tx.job_id, []).append(tx)

    for job in jobs:
        has_payment = job.payment_amount is not None
        if has_payment:
            if job.commission is None or job.tradie_amount is None:
                errors.append(f"{job.job_id}: partial payment snapshot")
            elif job.tradie_amount + job.commission != job.payment_amount:
                errors.append(
                    f"{job.job_id}: tradie_amount + commission != payment_amount "
                    f"({job.tradie_amount} + {job.commission} != {job.payment_amount})"
                )
        if job.status in PAID_STATES and not has_payment:
            errors.append(f"{job.job_id}: {job.status.value} without a payment snapshot")

        job_payments = payments.get(job.job_id, [])
        if has_payment:
            if len(job_payments) != 1:
                errors.append(
                    f"{job.job_id}: expected 1 payment transaction, found {len(job_payments)}"
                )
            else:
                expected = (
                    TransactionStatus.COMPLETED if job.completed_utc is not None
                    else TransactionStatus.ON_HOLD
                )
                if job_payments[0].status != expected:
                    errors.append(
                        f"{job.job_id}: payment transaction is "
                        f"{job_payments[0].status.value}, expected {expected.value}"
                    )
        elif job_payments:
            errors.append(f"{job.job_id}: payment transaction without a paid job")

        if job.archived:
            if not job.invoice_id:
                errors.append(f"{job.job_id}: archived without an invoice ID")
            if job.status != JobStatus.COMPLETED:
                errors.append(f"{job.job_id}: archived while {job.status.value}")

    tradies = {j.tradie_uid for j in jobs} | {t.tradie_uid for t in transactions}
    for uid in sorted(tradies):
        finances = store.finances(uid)
        for name in FinanceField:
            if finances.get(name) < ZERO:
                errors.append(f"{uid}: {name.value} is negative")
        expected_hold = EscrowLedger.expected_on_hold(jobs, uid)
        if finances.on_hold_balance != expected_hold:
            errors.append(
                f"{uid}: onHoldBalance {finances.on_hold_balance} != {expected_hold}"
            )
        expected_available = EscrowLedger.expected_available(jobs, transactions, uid)
        if finances.available_balance != expected_available:
            errors.append(
                f"{uid}: availableBalance {finances.available_balance} "
                f"!= {expected_available}"
            )

    by_id = {j.job_id: j for j in jobs}
    for review in store.reviews():
        job = by_id.get(review.job_id)
        if job is None:
            errors.append(f"{review.job_id}: review by {review.reviewer_uid} for unknown job")
            continue
        role = job.role_of(review.reviewer_uid)
        if role is None:
            errors.append(f"{job.job_id}: review by non-party {review.reviewer_uid}")
        elif not (job.client_reviewed if role == ActorRole.CLIENT else job.tradie_reviewed):
            errors.append(
                f"{job.job_id}: review by {review.reviewer_uid} but {role.value} flag unset"
            )
    return errors
