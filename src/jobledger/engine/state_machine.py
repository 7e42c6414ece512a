"""Job state machine — the single source of truth for job transitions.

Transitions are fail-closed: any (action, status, actor) combination not
in the table is rejected. Actor checks live here, not in callers, so no
write path can bypass them.

The machine is pure. ``plan()`` takes the current job and returns a
TransitionPlan: the updated job copy plus every side effect (ledger
deltas, transaction writes, calendar hold) that must commit in the same
atomic batch. Applying the plan is the store's job; deciding when is the
service's.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Mapping, Optional
from uuid import uuid4

from jobledger.calendar import is_slot_available
from jobledger.compensation.commission import CommissionCalculator, to_money
from jobledger.compensation.ledger import EscrowLedger
from jobledger.engine import validation
from jobledger.errors import InvalidTransitionError, ValidationError
from jobledger.models.job import (
    ActorRole,
    Advert,
    Booking,
    Job,
    JobAction,
    JobSource,
    JobStatus,
    Party,
    Quote,
    ServiceLocation,
)
from jobledger.models.ledger import BalanceDelta, PaymentSplit, Transaction
from jobledger.policy.resolver import PolicyResolver


SYSTEM_ACTOR = "system"


@dataclass(frozen=True)
class TransitionRule:
    """One row of the transition table."""
    sources: frozenset[JobStatus]
    actor: ActorRole
    target: JobStatus
    stamp: Optional[str] = None  # Job attribute set to the transition time


_CANCELLABLE = frozenset({
    JobStatus.PENDING,
    JobStatus.TRADIE_ACCEPTED,
    JobStatus.ACCEPTED,
    JobStatus.INFO_REQUESTED,
    JobStatus.INFO_PROVIDED,
    JobStatus.QUOTE_PROVIDED,
    JobStatus.QUOTE_ACCEPTED,
    JobStatus.BOOKING_REQUESTED,
    JobStatus.BOOKING_CONFIRMED,
})

DISPUTABLE = frozenset({
    JobStatus.PAYMENT_COMPLETE,
    JobStatus.IN_PROGRESS,
    JobStatus.COMPLETED,
})


_TRANSITIONS: dict[JobAction, TransitionRule] = {
    JobAction.APPROVE: TransitionRule(
        frozenset({JobStatus.TRADIE_ACCEPTED}),
        ActorRole.CLIENT, JobStatus.PENDING, "approved_utc",
    ),
    JobAction.DECLINE: TransitionRule(
        frozenset({
            JobStatus.TRADIE_ACCEPTED,
            JobStatus.PENDING,
            JobStatus.INFO_PROVIDED,
        }),
        ActorRole.TRADIE, JobStatus.DECLINED, "declined_utc",
    ),
    JobAction.ACCEPT: TransitionRule(
        frozenset({JobStatus.PENDING}),
        ActorRole.TRADIE, JobStatus.ACCEPTED, "accepted_utc",
    ),
    JobAction.REQUEST_INFO: TransitionRule(
        frozenset({JobStatus.ACCEPTED}),
        ActorRole.TRADIE, JobStatus.INFO_REQUESTED, "info_requested_utc",
    ),
    JobAction.SUBMIT_QUOTE: TransitionRule(
        frozenset({JobStatus.ACCEPTED, JobStatus.INFO_PROVIDED}),
        ActorRole.TRADIE, JobStatus.QUOTE_PROVIDED, "quoted_utc",
    ),
    JobAction.SUBMIT_INFO: TransitionRule(
        frozenset({JobStatus.INFO_REQUESTED}),
        ActorRole.CLIENT, JobStatus.INFO_PROVIDED, "info_provided_utc",
    ),
    JobAction.ACCEPT_QUOTE: TransitionRule(
        frozenset({JobStatus.QUOTE_PROVIDED}),
        ActorRole.CLIENT, JobStatus.QUOTE_ACCEPTED, "quote_accepted_utc",
    ),
    JobAction.DECLINE_QUOTE: TransitionRule(
        frozenset({JobStatus.QUOTE_PROVIDED}),
        ActorRole.CLIENT, JobStatus.QUOTE_DECLINED, "quote_declined_utc",
    ),
    JobAction.SUBMIT_BOOKING: TransitionRule(
        frozenset({JobStatus.QUOTE_ACCEPTED}),
        ActorRole.CLIENT, JobStatus.BOOKING_REQUESTED, "booking_requested_utc",
    ),
    JobAction.CONFIRM_BOOKING: TransitionRule(
        frozenset({JobStatus.BOOKING_REQUESTED}),
        ActorRole.TRADIE, JobStatus.BOOKING_CONFIRMED, "booking_confirmed_utc",
    ),
    JobAction.PAY: TransitionRule(
        frozenset({JobStatus.BOOKING_CONFIRMED}),
        ActorRole.CLIENT, JobStatus.PAYMENT_COMPLETE, "payment_completed_utc",
    ),
    JobAction.START_WORK: TransitionRule(
        frozenset({JobStatus.PAYMENT_COMPLETE}),
        ActorRole.SYSTEM, JobStatus.IN_PROGRESS, "started_utc",
    ),
    JobAction.COMPLETE: TransitionRule(
        frozenset({JobStatus.IN_PROGRESS}),
        ActorRole.CLIENT, JobStatus.COMPLETED, "completed_utc",
    ),
    JobAction.CANCEL: TransitionRule(
        _CANCELLABLE, ActorRole.EITHER, JobStatus.CANCELLED, "cancelled_utc",
    ),
    JobAction.DISPUTE: TransitionRule(
        DISPUTABLE, ActorRole.EITHER, JobStatus.DISPUTE, "cancelled_utc",
    ),
}

# Actions whose target ends negotiation without work: private payloads go.
_CLEARS_PRIVATE_PAYLOADS = frozenset({
    JobAction.DECLINE,
    JobAction.DECLINE_QUOTE,
    JobAction.COMPLETE,
    JobAction.CANCEL,
})


@dataclass(frozen=True)
class CalendarHold:
    """Mark a tradie's calendar slot as taken by a job."""
    tradie_uid: str
    date_key: str
    time_slot: str
    job_id: str


@dataclass(frozen=True)
class TransitionPlan:
    """Everything one transition writes. Committed as a single batch.

    ``job`` is the updated copy; ``expected_status``/``expected_version``
    are the optimistic-concurrency precondition the store checks.
    """
    action: JobAction
    job: Job
    expected_status: JobStatus
    expected_version: int
    ledger_deltas: tuple[BalanceDelta, ...] = ()
    new_transaction: Optional[Transaction] = None
    settle_payment_for: Optional[str] = None
    calendar_hold: Optional[CalendarHold] = None
    split: Optional[PaymentSplit] = None

    @property
    def previous_status(self) -> JobStatus:
        return self.expected_status

    @property
    def target_status(self) -> JobStatus:
        return self.job.status


class JobStateMachine:
    """Validates and plans job lifecycle transitions.

    Usage:
        machine = JobStateMachine(resolver)
        job = machine.new_request(client, tradie, "Fix leaky tap", ...)
        plan = machine.plan(job, tradie.uid, JobAction.ACCEPT)
    """

    def __init__(
        self,
        resolver: PolicyResolver,
        ledger: Optional[EscrowLedger] = None,
    ) -> None:
        self._resolver = resolver
        self._ledger = ledger or EscrowLedger(CommissionCalculator(resolver))

    # ------------------------------------------------------------------
    # Table queries
    # ------------------------------------------------------------------

    @staticmethod
    def rule(action: JobAction) -> TransitionRule:
        rule = _TRANSITIONS.get(action)
        if rule is None:
            raise InvalidTransitionError(f"Unknown action: {action}")
        return rule

    @staticmethod
    def valid_actions(status: JobStatus) -> set[JobAction]:
        """Return the actions the table allows from ``status``."""
        return {a for a, r in _TRANSITIONS.items() if status in r.sources}

    @staticmethod
    def validate_transition(
        job: Job, actor_uid: str, action: JobAction,
    ) -> list[str]:
        """Check status and actor for an action. Returns errors (empty = OK)."""
        if job.archived:
            return [f"{job.job_id}: job is archived and read-only"]

        rule = _TRANSITIONS.get(action)
        if rule is None:
            return [f"Unknown action: {action}"]

        if job.status not in rule.sources:
            allowed = ", ".join(
                sorted(a.value for a in JobStateMachine.valid_actions(job.status))
            )
            return [
                f"Invalid job transition: {action.value} from {job.status.value}. "
                f"Allowed from {job.status.value}: [{allowed}]"
            ]

        if not JobStateMachine._actor_allowed(job, actor_uid, rule.actor):
            return [
                f"{job.job_id}: {actor_uid} may not {action.value} "
                f"(requires {rule.actor.value})"
            ]
        return []

    @staticmethod
    def _actor_allowed(job: Job, actor_uid: str, required: ActorRole) -> bool:
        if required == ActorRole.CLIENT:
            return actor_uid == job.client_uid
        if required == ActorRole.TRADIE:
            return actor_uid == job.tradie_uid
        if required == ActorRole.EITHER:
            return job.is_party(actor_uid)
        return actor_uid == SYSTEM_ACTOR

    # ------------------------------------------------------------------
    # Job creation
    # ------------------------------------------------------------------

    def new_request(
        self,
        client: Party,
        tradie: Party,
        title: Any,
        description: Any = "",
        estimated_hours: Any = 2,
        hourly_rate: Any = None,
        urgency: str = "standard",
        job_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Job:
        """Build a new job in Pending from a client's direct request."""
        if now is None:
            now = datetime.now(timezone.utc)
        title = validation.require_text(title, "Title")
        if client.uid == tradie.uid:
            raise ValidationError("Cannot request a job from yourself")
        hours = validation.parse_estimated_hours(
            estimated_hours, self._resolver.min_estimated_hours(),
        )
        rate = (
            validation.parse_positive(hourly_rate, "Hourly rate")
            if hourly_rate is not None else Decimal("0")
        )
        budget = (
            validation.priced_total(rate, hours)
            if hourly_rate is not None else to_money(rate)
        )

        return Job(
            job_id=job_id or f"job_{uuid4().hex[:12]}",
            client_uid=client.uid,
            tradie_uid=tradie.uid,
            title=title,
            description=validation.optional_text(description),
            budget=f"{self._resolver.currency_symbol()}{budget:.2f}",
            hourly_rate=rate if hourly_rate is not None else None,
            estimated_hours=hours,
            urgency=urgency or "standard",
            client_name=client.display_name or "Client",
            tradie_name=tradie.display_name,
            source=JobSource.DIRECT,
            status=JobStatus.PENDING,
            created_utc=now,
        )

    def new_from_advert(
        self,
        advert: Advert,
        tradie: Party,
        job_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Job:
        """Build a job in TradieAccepted from a job-board advert."""
        if now is None:
            now = datetime.now(timezone.utc)
        if advert.client_uid == tradie.uid:
            raise ValidationError("Cannot accept your own advert")
        return Job(
            job_id=job_id or f"job_{uuid4().hex[:12]}",
            client_uid=advert.client_uid,
            tradie_uid=tradie.uid,
            title=advert.title,
            description=advert.description,
            budget=advert.budget,
            client_name=advert.client_name or "Client",
            tradie_name=tradie.display_name or "Tradie",
            source=JobSource.JOB_BOARD,
            status=JobStatus.TRADIE_ACCEPTED,
            created_utc=now,
            accepted_utc=now,
        )

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def plan(
        self,
        job: Job,
        actor_uid: str,
        action: JobAction,
        payload: Optional[Mapping[str, Any]] = None,
        now: Optional[datetime] = None,
        tradie_calendar: Optional[Mapping[str, Any]] = None,
    ) -> TransitionPlan:
        """Validate an action against the job and plan its effects.

        Raises InvalidTransitionError for a wrong status or actor and
        ValidationError for a bad payload. The input job is not mutated.
        """
        errors = self.validate_transition(job, actor_uid, action)
        if errors:
            raise InvalidTransitionError("; ".join(errors))

        if now is None:
            now = datetime.now(timezone.utc)
        payload = payload or {}
        rule = _TRANSITIONS[action]
        updated = copy.deepcopy(job)

        deltas: tuple[BalanceDelta, ...] = ()
        transaction: Optional[Transaction] = None
        settle: Optional[str] = None
        hold: Optional[CalendarHold] = None
        split: Optional[PaymentSplit] = None

        if action == JobAction.DECLINE:
            updated.decline_reason = validation.require_text(
                payload.get("reason"), "Decline reason",
            )

        elif action == JobAction.SUBMIT_INFO:
            photos = validation.normalise_photos(
                payload.get("photos"), self._resolver.max_info_photos(),
            )
            description = validation.optional_text(payload.get("description"))
            if not photos and not description:
                raise ValidationError("Add a note or photo before submitting")
            updated.info_photos = photos or None
            updated.info_description = description or None

        elif action == JobAction.SUBMIT_QUOTE:
            updated.quote = self._build_quote(payload)

        elif action == JobAction.SUBMIT_BOOKING:
            updated.booking, updated.service_location = self._build_booking(
                job, payload, tradie_calendar,
            )

        elif action == JobAction.CONFIRM_BOOKING:
            hold = self._plan_calendar_hold(job, tradie_calendar)

        elif action == JobAction.PAY:
            split, hold_deltas, transaction = self._ledger.hold_payment(job, now)
            deltas = tuple(hold_deltas)
            updated.payment_amount = split.payment_amount
            updated.commission = split.commission
            updated.tradie_amount = split.tradie_amount

        elif action == JobAction.COMPLETE:
            deltas = tuple(self._ledger.release_payment(job))
            settle = job.job_id
            updated.awaiting_review = True
            updated.client_reviewed = False
            updated.tradie_reviewed = False

        elif action in (JobAction.CANCEL, JobAction.DISPUTE):
            updated.cancel_reason = validation.require_text(
                payload.get("reason"), "Reason",
            )
            updated.cancelled_by = actor_uid

        if action in _CLEARS_PRIVATE_PAYLOADS:
            updated.info_photos = None
            updated.info_description = None
            updated.service_location = None

        updated.status = rule.target
        if rule.stamp:
            setattr(updated, rule.stamp, now)

        return TransitionPlan(
            action=action,
            job=updated,
            expected_status=job.status,
            expected_version=job.version,
            ledger_deltas=deltas,
            new_transaction=transaction,
            settle_payment_for=settle,
            calendar_hold=hold,
            split=split,
        )

    # ------------------------------------------------------------------
    # Payload builders
    # ------------------------------------------------------------------

    def _build_quote(self, payload: Mapping[str, Any]) -> Quote:
        rate = validation.parse_positive(payload.get("hourly_rate"), "Hourly rate")
        hours = validation.parse_estimated_hours(
            payload.get("estimated_hours"), self._resolver.min_estimated_hours(),
        )
        return Quote(
            hourly_rate=rate,
            estimated_hours=hours,
            total=validation.priced_total(rate, hours),
            notes=validation.optional_text(payload.get("notes")),
        )

    def _build_booking(
        self,
        job: Job,
        payload: Mapping[str, Any],
        tradie_calendar: Optional[Mapping[str, Any]],
    ) -> tuple[Booking, ServiceLocation]:
        address = validation.require_text(payload.get("address"), "Address")
        phone = validation.require_text(payload.get("phone"), "Phone")
        date_key = validation.validate_date_key(payload.get("date"))
        slot = validation.validate_time_slot(
            payload.get("time_slot"), self._resolver.calendar_policy().time_slots,
        )
        email = validation.optional_text(payload.get("email"))

        if tradie_calendar and not is_slot_available(
            tradie_calendar, date_key, slot, job.job_id,
        ):
            raise ValidationError(
                f"The tradie is unavailable on {date_key} ({slot})"
            )
        return (
            Booking(date=date_key, time_slot=slot),
            ServiceLocation(address=address, phone=phone, email=email),
        )

    def _plan_calendar_hold(
        self, job: Job, tradie_calendar: Optional[Mapping[str, Any]],
    ) -> CalendarHold:
        if job.booking is None:
            raise ValidationError(f"{job.job_id}: no booking to confirm")
        booking = job.booking
        entry = None
        if tradie_calendar:
            day = tradie_calendar.get(booking.date)
            if isinstance(day, dict):
                entry = day.get(booking.time_slot)
        if entry and entry.get("reason") == "job" and entry.get("jobId") != job.job_id:
            raise ValidationError(
                f"Slot {booking.date} ({booking.time_slot}) is already booked "
                f"for another job"
            )
        return CalendarHold(
            tradie_uid=job.tradie_uid,
            date_key=booking.date,
            time_slot=booking.time_slot,
            job_id=job.job_id,
        )
