"""Job service — the facade every caller goes through.

It orchestrates the subsystems:
- Job creation (direct request, job-board advert acceptance)
- Lifecycle transitions (planned by the state machine)
- Escrow ledger movements (planned by the escrow ledger, applied as deltas)
- Reviews and archival (review gate)
- Cancellation, disputes and post-archival reports (dispute handler)
- Withdrawals from available balance
- Pending-action counts and progress projections

Every write follows the same path: read the job, plan the transition,
turn the plan into one write batch, commit it atomically. A commit that
loses an optimistic-concurrency race is replanned once against fresh
state. Audit events are appended after the commit; an audit failure
cannot undo a committed change and is reported as a warning on the
result instead.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Callable, Optional, Union
from uuid import uuid4

from jobledger.calendar import SlotRef, next_available_slot
from jobledger.compensation.commission import CommissionCalculator
from jobledger.compensation.ledger import EscrowLedger
from jobledger.disputes.handler import DisputeHandler, ReportPlan
from jobledger.engine import validation
from jobledger.engine.state_machine import SYSTEM_ACTOR, JobStateMachine, TransitionPlan
from jobledger.errors import ConcurrencyConflictError, InvalidTransitionError, ValidationError
from jobledger.models.job import ActorRole, Advert, Job, JobAction, JobStatus, Party
from jobledger.models.ledger import Finances, Transaction
from jobledger.models.profile import Profile
from jobledger.notifications.pending import (
    StepState,
    count_pending_actions,
    job_progress,
    pending_jobs,
)
from jobledger.persistence.event_log import EventKind, EventLog, EventRecord
from jobledger.persistence.store import DocumentStore, WriteBatch
from jobledger.policy.resolver import PolicyResolver
from jobledger.review.gate import ReviewGate, ReviewPlan
from jobledger.scheduling import Scheduler, TimerScheduler

logger = logging.getLogger(__name__)

EventListener = Callable[[EventRecord], None]

_ACTION_EVENT_KINDS: dict[JobAction, EventKind] = {
    JobAction.CANCEL: EventKind.JOB_CANCELLED,
    JobAction.DISPUTE: EventKind.DISPUTE_OPENED,
}

# Actions that read the tradie's work calendar while planning.
_CALENDAR_ACTIONS = frozenset({JobAction.SUBMIT_BOOKING, JobAction.CONFIRM_BOOKING})


@dataclass(frozen=True)
class TransitionResult:
    """Outcome of a committed job action."""
    job: Job
    events: tuple[EventRecord, ...] = ()
    warning: Optional[str] = None


@dataclass(frozen=True)
class WithdrawalResult:
    transaction: Transaction
    finances: Finances
    events: tuple[EventRecord, ...] = ()
    warning: Optional[str] = None


@dataclass
class _PendingEvent:
    kind: EventKind
    actor_id: str
    payload: dict[str, Any] = field(default_factory=dict)


class JobService:
    """Job lifecycle and escrow ledger facade.

    Usage:
        resolver = PolicyResolver.from_config_dir(config_dir)
        service = JobService(resolver)

        service.register_profile("c1", "Casey", "client")
        service.register_profile("t1", "Tam", "tradie", hourly_rate="40")
        result = service.request_job(
            service.party("c1"), service.party("t1"), "Fix leaky tap",
            estimated_hours=2,
        )
        job_id = result.job.job_id
        service.accept(job_id, "t1")
        service.submit_quote(job_id, "t1", hourly_rate="50", estimated_hours=3)
        ...

    Persistence (optional):
        service = JobService(resolver, store=DocumentStore(path), event_log=log)
    """

    def __init__(
        self,
        resolver: PolicyResolver,
        store: Optional[DocumentStore] = None,
        event_log: Optional[EventLog] = None,
        scheduler: Optional[Scheduler] = None,
        machine: Optional[JobStateMachine] = None,
        review_gate: Optional[ReviewGate] = None,
    ) -> None:
        self._resolver = resolver
        self._ledger = EscrowLedger(CommissionCalculator(resolver))
        self._machine = machine or JobStateMachine(resolver, self._ledger)
        self._gate = review_gate or ReviewGate(resolver)
        self._disputes = DisputeHandler(self._machine)
        self._store = store if store is not None else DocumentStore()
        self._event_log = event_log
        self._scheduler = scheduler if scheduler is not None else TimerScheduler()
        self._listeners: list[EventListener] = []

        # Initialise counter from persisted log to avoid ID collision on restart
        self._event_counter = event_log.count if event_log is not None else 0
        self._event_lock = threading.Lock()

        # Set when an audit append fails after a durable commit. Stored
        # state is correct; the event log is missing records.
        self._audit_degraded: bool = False

    @property
    def store(self) -> DocumentStore:
        return self._store

    def add_listener(self, listener: EventListener) -> None:
        """Register a callback that receives every recorded event."""
        self._listeners.append(listener)

    # ------------------------------------------------------------------
    # Profiles
    # ------------------------------------------------------------------

    def register_profile(
        self,
        uid: str,
        display_name: str,
        role: str,
        hourly_rate: Any = None,
    ) -> Profile:
        """Create or update a profile. Finances and calendar are preserved."""
        uid = validation.require_text(uid, "User ID")
        if role not in (ActorRole.CLIENT.value, ActorRole.TRADIE.value):
            raise ValidationError(f"Role must be client or tradie, got {role!r}")
        rate = (
            validation.parse_positive(hourly_rate, "Hourly rate")
            if hourly_rate is not None else None
        )
        profile = self._store.get_profile(uid) or Profile(uid=uid, display_name="", role=role)
        profile.display_name = validation.optional_text(display_name)
        profile.role = role
        profile.hourly_rate = rate

        self._store.commit(self._store.batch().put_profile(profile))
        self._emit([_PendingEvent(
            EventKind.PROFILE_REGISTERED, uid, {"uid": uid, "role": role},
        )])
        return self._store.get_profile(uid)

    def party(self, uid: str) -> Party:
        """Build a Party from a registered profile."""
        profile = self._store.get_profile(uid)
        if profile is None:
            raise ValidationError(f"Unknown user: {uid}")
        return Party(uid=profile.uid, display_name=profile.display_name, role=profile.role)

    def get_profile(self, uid: str) -> Optional[Profile]:
        return self._store.get_profile(uid)

    def finances(self, uid: str) -> Finances:
        return self._store.finances(uid)

    # ------------------------------------------------------------------
    # Job creation
    # ------------------------------------------------------------------

    def request_job(
        self,
        client: Party,
        tradie: Party,
        title: Any,
        description: Any = "",
        estimated_hours: Any = 2,
        hourly_rate: Any = None,
        urgency: str = "standard",
        now: Optional[datetime] = None,
    ) -> TransitionResult:
        """Create a job in Pending from a client's direct request.

        When no hourly rate is given the tradie's profile rate is used.
        """
        if hourly_rate is None:
            profile = self._store.get_profile(tradie.uid)
            if profile is not None:
                hourly_rate = profile.hourly_rate
        job = self._machine.new_request(
            client, tradie, title,
            description=description,
            estimated_hours=estimated_hours,
            hourly_rate=hourly_rate,
            urgency=urgency,
            now=now,
        )
        self._store.commit(self._store.batch().create_job(job))
        logger.info("Job %s requested by %s from %s", job.job_id, client.uid, tradie.uid)
        events, warning = self._emit([_PendingEvent(
            EventKind.JOB_CREATED, client.uid,
            {"job_id": job.job_id, "status": job.status.value, "source": job.source.value},
        )])
        return TransitionResult(self._store.get_job(job.job_id), events, warning)

    def post_advert(
        self,
        client: Party,
        title: Any,
        description: Any = "",
        budget: Any = "",
        now: Optional[datetime] = None,
    ) -> Advert:
        if now is None:
            now = datetime.now(timezone.utc)
        advert = Advert(
            advert_id=f"adv_{uuid4().hex[:12]}",
            client_uid=client.uid,
            title=validation.require_text(title, "Title"),
            description=validation.optional_text(description),
            budget=validation.optional_text(budget),
            client_name=client.display_name,
            created_utc=now,
        )
        self._store.commit(self._store.batch().put_advert(advert))
        self._emit([_PendingEvent(
            EventKind.ADVERT_POSTED, client.uid, {"advert_id": advert.advert_id},
        )])
        return advert

    def hide_advert(self, tradie_uid: str, advert_id: str) -> None:
        """Hide an advert from one tradie's job board."""
        if self._store.get_advert(advert_id) is None:
            raise ValidationError(f"Advert not found: {advert_id}")
        self._store.commit(self._store.batch().hide_advert(tradie_uid, advert_id))
        self._emit([_PendingEvent(
            EventKind.ADVERT_HIDDEN, tradie_uid, {"advert_id": advert_id},
        )])

    def list_adverts(self, viewer_uid: Optional[str] = None) -> list[Advert]:
        """Adverts newest first, minus any the viewer has hidden."""
        hidden = self._store.hidden_adverts(viewer_uid) if viewer_uid else set()
        adverts = [a for a in self._store.adverts() if a.advert_id not in hidden]
        epoch = datetime.min.replace(tzinfo=timezone.utc)
        return sorted(adverts, key=lambda a: a.created_utc or epoch, reverse=True)

    def accept_advert(
        self,
        tradie: Party,
        advert_id: str,
        now: Optional[datetime] = None,
    ) -> TransitionResult:
        """Turn an advert into a TradieAccepted job and remove it from the board.

        Only one tradie can win an advert. A loser's retry finds the
        advert gone and raises InvalidTransitionError.
        """
        for attempt in (1, 2):
            advert = self._store.get_advert(advert_id)
            if advert is None:
                raise InvalidTransitionError(f"Advert no longer available: {advert_id}")
            job = self._machine.new_from_advert(advert, tradie, now=now)
            batch = self._store.batch().create_job(job).delete_advert(advert_id)
            try:
                self._store.commit(batch)
                break
            except ConcurrencyConflictError:
                if attempt == 2:
                    raise
                logger.info("Advert %s changed during accept; retrying", advert_id)

        events, warning = self._emit([_PendingEvent(
            EventKind.JOB_CREATED, tradie.uid,
            {
                "job_id": job.job_id,
                "status": job.status.value,
                "source": job.source.value,
                "advert_id": advert_id,
            },
        )])
        return TransitionResult(self._store.get_job(job.job_id), events, warning)

    # ------------------------------------------------------------------
    # Lifecycle transitions
    # ------------------------------------------------------------------

    def act(
        self,
        job_id: str,
        actor_uid: str,
        action: JobAction,
        payload: Optional[dict[str, Any]] = None,
        now: Optional[datetime] = None,
    ) -> TransitionResult:
        """Apply any table action. The named methods below wrap this."""
        action = JobAction(action)
        if action == JobAction.START_WORK and actor_uid == SYSTEM_ACTOR:
            return self.start_work(job_id, now=now)
        if action == JobAction.PAY:
            return self.pay(job_id, actor_uid, now=now)
        return self._transition(job_id, actor_uid, action, payload, now)

    def approve(self, job_id: str, client_uid: str, now: Optional[datetime] = None) -> TransitionResult:
        return self._transition(job_id, client_uid, JobAction.APPROVE, None, now)

    def decline(
        self, job_id: str, tradie_uid: str, reason: Any, now: Optional[datetime] = None,
    ) -> TransitionResult:
        return self._transition(job_id, tradie_uid, JobAction.DECLINE, {"reason": reason}, now)

    def accept(self, job_id: str, tradie_uid: str, now: Optional[datetime] = None) -> TransitionResult:
        return self._transition(job_id, tradie_uid, JobAction.ACCEPT, None, now)

    def request_info(
        self, job_id: str, tradie_uid: str, now: Optional[datetime] = None,
    ) -> TransitionResult:
        return self._transition(job_id, tradie_uid, JobAction.REQUEST_INFO, None, now)

    def submit_info(
        self,
        job_id: str,
        client_uid: str,
        photos: Optional[list[str]] = None,
        description: Any = "",
        now: Optional[datetime] = None,
    ) -> TransitionResult:
        payload = {"photos": photos, "description": description}
        return self._transition(job_id, client_uid, JobAction.SUBMIT_INFO, payload, now)

    def submit_quote(
        self,
        job_id: str,
        tradie_uid: str,
        hourly_rate: Any,
        estimated_hours: Any,
        notes: Any = "",
        now: Optional[datetime] = None,
    ) -> TransitionResult:
        payload = {
            "hourly_rate": hourly_rate,
            "estimated_hours": estimated_hours,
            "notes": notes,
        }
        return self._transition(job_id, tradie_uid, JobAction.SUBMIT_QUOTE, payload, now)

    def accept_quote(
        self, job_id: str, client_uid: str, now: Optional[datetime] = None,
    ) -> TransitionResult:
        return self._transition(job_id, client_uid, JobAction.ACCEPT_QUOTE, None, now)

    def decline_quote(
        self, job_id: str, client_uid: str, now: Optional[datetime] = None,
    ) -> TransitionResult:
        return self._transition(job_id, client_uid, JobAction.DECLINE_QUOTE, None, now)

    def submit_booking(
        self,
        job_id: str,
        client_uid: str,
        address: Any,
        phone: Any,
        date: Any,
        time_slot: Any,
        email: Any = "",
        now: Optional[datetime] = None,
    ) -> TransitionResult:
        payload = {
            "address": address,
            "phone": phone,
            "email": email,
            "date": date,
            "time_slot": time_slot,
        }
        return self._transition(job_id, client_uid, JobAction.SUBMIT_BOOKING, payload, now)

    def confirm_booking(
        self, job_id: str, tradie_uid: str, now: Optional[datetime] = None,
    ) -> TransitionResult:
        return self._transition(job_id, tradie_uid, JobAction.CONFIRM_BOOKING, None, now)

    def pay(self, job_id: str, client_uid: str, now: Optional[datetime] = None) -> TransitionResult:
        """Record a successful charge and escrow the tradie's share.

        Schedules the automatic advance to InProgress.
        """
        result = self._transition(job_id, client_uid, JobAction.PAY, None, now)
        self._scheduler.schedule(
            self._resolver.auto_advance_delay(),
            lambda: self._auto_advance(job_id),
        )
        return result

    def start_work(self, job_id: str, now: Optional[datetime] = None) -> TransitionResult:
        """Advance PaymentComplete → InProgress. A no-op if already InProgress."""
        job = self._store.get_job(job_id)
        if job.status == JobStatus.IN_PROGRESS:
            return TransitionResult(job)
        try:
            return self._transition(job_id, SYSTEM_ACTOR, JobAction.START_WORK, None, now)
        except InvalidTransitionError:
            job = self._store.get_job(job_id)
            if job.status == JobStatus.IN_PROGRESS:
                return TransitionResult(job)
            raise

    def complete(self, job_id: str, client_uid: str, now: Optional[datetime] = None) -> TransitionResult:
        """Mark work complete and release the escrowed amount to the tradie."""
        return self._transition(job_id, client_uid, JobAction.COMPLETE, None, now)

    # ------------------------------------------------------------------
    # Reviews, cancellation, disputes
    # ------------------------------------------------------------------

    def submit_review(
        self,
        job_id: str,
        reviewer_uid: str,
        rating: Any,
        comment: Any = "",
        now: Optional[datetime] = None,
    ) -> TransitionResult:
        """Record one party's review. The second review archives the job."""
        profile = self._store.get_profile(reviewer_uid)
        reviewer_name = profile.display_name if profile is not None else ""

        def _plan(job: Job) -> ReviewPlan:
            return self._gate.plan_review(
                job, reviewer_uid, rating, comment,
                reviewer_name=reviewer_name, now=now,
            )

        plan = self._commit_with_retry(job_id, _plan, self._review_batch)

        pending = [_PendingEvent(
            EventKind.REVIEW_SUBMITTED, reviewer_uid,
            {
                "job_id": job_id,
                "reviewer_role": plan.review.reviewer_role.value,
                "rating": plan.review.rating,
            },
        )]
        if plan.archives:
            logger.info("Job %s archived with invoice %s", job_id, plan.job.invoice_id)
            pending.append(_PendingEvent(
                EventKind.JOB_ARCHIVED, reviewer_uid,
                {"job_id": job_id, "invoice_id": plan.job.invoice_id},
            ))
        events, warning = self._emit(pending)
        return TransitionResult(self._store.get_job(job_id), events, warning)

    def cancel_or_dispute(
        self,
        job_id: str,
        actor_uid: str,
        reason: Any,
        now: Optional[datetime] = None,
    ) -> TransitionResult:
        """Cancel, dispute, or report a job depending on how far it has got."""

        def _plan(job: Job) -> Union[TransitionPlan, ReportPlan]:
            return self._disputes.plan(job, actor_uid, reason, now=now)

        plan = self._commit_with_retry(job_id, _plan, self._batch_for)

        if isinstance(plan, ReportPlan):
            pending = [_PendingEvent(
                EventKind.JOB_REPORTED, actor_uid,
                {"job_id": job_id, "reason": plan.report.reason},
            )]
        else:
            pending = self._transition_events(plan, actor_uid)
        events, warning = self._emit(pending)
        return TransitionResult(self._store.get_job(job_id), events, warning)

    # ------------------------------------------------------------------
    # Withdrawals
    # ------------------------------------------------------------------

    def withdraw(
        self,
        tradie_uid: str,
        amount: Any,
        method: str = "stripe",
        now: Optional[datetime] = None,
    ) -> WithdrawalResult:
        """Move funds out of available balance into a pending withdrawal.

        Raises ValidationError("Insufficient available balance") if the
        balance at commit time does not cover the amount.
        """
        if now is None:
            now = datetime.now(timezone.utc)
        deltas, transaction = self._ledger.plan_withdrawal(
            tradie_uid, amount, method, self._resolver.withdrawal_methods(), now,
        )
        batch = self._store.batch()
        for delta in deltas:
            batch.apply_delta(delta)
        batch.add_transaction(transaction)
        self._store.commit(batch)

        events, warning = self._emit([_PendingEvent(
            EventKind.WITHDRAWAL_REQUESTED, tradie_uid,
            {
                "transaction_id": transaction.transaction_id,
                "amount": str(-transaction.amount),
                "method": method,
            },
        )])
        return WithdrawalResult(transaction, self._store.finances(tradie_uid), events, warning)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_job(self, job_id: str) -> Job:
        return self._store.get_job(job_id)

    def jobs_for_user(self, uid: str) -> list[Job]:
        return self._store.jobs_for_party(uid)

    def transactions_for_user(self, uid: str) -> list[Transaction]:
        return self._store.transactions_for_user(uid)

    def pending_action_count(self, uid: str, role: Union[ActorRole, str]) -> int:
        return count_pending_actions(self._store.jobs_for_party(uid), uid, ActorRole(role))

    def pending_jobs(self, uid: str, role: Union[ActorRole, str]) -> list[Job]:
        return pending_jobs(self._store.jobs_for_party(uid), uid, ActorRole(role))

    def job_progress(self, job_id: str) -> dict[str, StepState]:
        return job_progress(self._store.get_job(job_id))

    def next_available_slot(
        self, tradie_uid: str, now: Optional[datetime] = None,
    ) -> Optional[SlotRef]:
        if now is None:
            now = datetime.now(timezone.utc)
        return next_available_slot(
            self._store.work_calendar(tradie_uid), now, self._resolver.calendar_policy(),
        )

    def status(self) -> dict[str, Any]:
        """Summary counts for operators."""
        jobs = self._store.jobs()
        by_status: dict[str, int] = {}
        for job in jobs:
            by_status[job.status.value] = by_status.get(job.status.value, 0) + 1
        held = sum(
            (p.finances.on_hold_balance for p in self._store.profiles()), Decimal("0"),
        )
        return {
            "jobs": {
                "total": len(jobs),
                "by_status": by_status,
                "archived": sum(1 for j in jobs if j.archived),
            },
            "adverts": len(self._store.adverts()),
            "profiles": len(self._store.profiles()),
            "ledger": {
                "transactions": len(self._store.transactions()),
                "on_hold_total": str(held),
            },
            "audit_degraded": self._audit_degraded,
        }

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _transition(
        self,
        job_id: str,
        actor_uid: str,
        action: JobAction,
        payload: Optional[dict[str, Any]],
        now: Optional[datetime],
    ) -> TransitionResult:
        def _plan(job: Job) -> TransitionPlan:
            calendar = (
                self._store.work_calendar(job.tradie_uid)
                if action in _CALENDAR_ACTIONS else None
            )
            return self._machine.plan(
                job, actor_uid, action, payload, now=now, tradie_calendar=calendar,
            )

        plan = self._commit_with_retry(job_id, _plan, self._batch_for)
        logger.info(
            "Job %s: %s → %s by %s",
            job_id, plan.expected_status.value, plan.job.status.value, actor_uid,
        )
        events, warning = self._emit(self._transition_events(plan, actor_uid))
        return TransitionResult(self._store.get_job(job_id), events, warning)

    def _commit_with_retry(
        self,
        job_id: str,
        plan_fn: Callable[[Job], Any],
        batch_fn: Callable[[Any], WriteBatch],
    ) -> Any:
        """Plan against the current job and commit, replanning once on conflict.

        A conflict on the retry propagates as ConcurrencyConflictError.
        If fresh state makes the action illegal, planning raises
        InvalidTransitionError.
        """
        plan = plan_fn(self._store.get_job(job_id))
        try:
            self._store.commit(batch_fn(plan))
            return plan
        except ConcurrencyConflictError:
            logger.info("Job %s changed during commit; replanning", job_id)

        plan = plan_fn(self._store.get_job(job_id))
        self._store.commit(batch_fn(plan))
        return plan

    def _batch_for(self, plan: Union[TransitionPlan, ReportPlan]) -> WriteBatch:
        batch = self._store.batch()
        batch.update_job(plan.job, plan.expected_status, plan.expected_version)
        if isinstance(plan, ReportPlan):
            return batch
        for delta in plan.ledger_deltas:
            batch.apply_delta(delta)
        if plan.new_transaction is not None:
            batch.add_transaction(plan.new_transaction)
        if plan.settle_payment_for is not None:
            batch.settle_payment(plan.settle_payment_for)
        if plan.calendar_hold is not None:
            hold = plan.calendar_hold
            batch.hold_calendar_slot(hold.tradie_uid, hold.date_key, hold.time_slot, hold.job_id)
        return batch

    def _review_batch(self, plan: ReviewPlan) -> WriteBatch:
        batch = self._store.batch()
        batch.update_job(plan.job, plan.expected_status, plan.expected_version)
        batch.add_review(plan.review)
        if plan.recompute_rating_for is not None:
            batch.recompute_rating(plan.recompute_rating_for)
        return batch

    @staticmethod
    def _transition_events(plan: TransitionPlan, actor_uid: str) -> list[_PendingEvent]:
        job = plan.job
        kind = _ACTION_EVENT_KINDS.get(plan.action, EventKind.JOB_TRANSITION)
        payload: dict[str, Any] = {
            "job_id": job.job_id,
            "action": plan.action.value,
            "from": plan.expected_status.value,
            "to": job.status.value,
        }
        if job.cancel_reason and plan.action in _ACTION_EVENT_KINDS:
            payload["reason"] = job.cancel_reason
        pending = [_PendingEvent(kind, actor_uid, payload)]

        if plan.split is not None:
            pending.append(_PendingEvent(
                EventKind.PAYMENT_HELD, actor_uid,
                {
                    "job_id": job.job_id,
                    "tradie_uid": job.tradie_uid,
                    "payment_amount": str(plan.split.payment_amount),
                    "commission": str(plan.split.commission),
                    "tradie_amount": str(plan.split.tradie_amount),
                },
            ))
        if plan.settle_payment_for is not None:
            pending.append(_PendingEvent(
                EventKind.PAYMENT_RELEASED, actor_uid,
                {
                    "job_id": job.job_id,
                    "tradie_uid": job.tradie_uid,
                    "tradie_amount": str(job.tradie_amount),
                },
            ))
        return pending

    def _auto_advance(self, job_id: str) -> None:
        """Scheduled PaymentComplete → InProgress step."""
        try:
            self.start_work(job_id)
        except InvalidTransitionError as exc:
            # The job left PaymentComplete first (e.g. disputed); nothing to advance.
            logger.info("Auto-advance skipped for %s: %s", job_id, exc)

    def _next_event_id(self) -> str:
        """Generate a monotonically increasing unique event ID."""
        with self._event_lock:
            self._event_counter += 1
            return f"EVT-{self._event_counter:08d}"

    def _emit(
        self, pending: list[_PendingEvent],
    ) -> tuple[tuple[EventRecord, ...], Optional[str]]:
        """Record events after a durable commit and notify listeners.

        MUST NOT roll back: the commit has already happened. An append
        failure sets the degraded flag and comes back as a warning.
        """
        records: list[EventRecord] = []
        warning: Optional[str] = None
        for item in pending:
            record = EventRecord.create(
                event_id=self._next_event_id(),
                event_kind=item.kind,
                actor_id=item.actor_id,
                payload=item.payload,
            )
            if self._event_log is not None and warning is None:
                try:
                    self._event_log.append(record)
                except (ValueError, OSError) as e:
                    self._audit_degraded = True
                    warning = f"Audit log degraded: {e}; change committed but not logged"
                    logger.warning("Event log append failed for %s: %s", record.event_id, e)
            records.append(record)

        for record in records:
            for listener in self._listeners:
                try:
                    listener(record)
                except Exception:
                    logger.exception("Event listener failed for %s", record.event_id)
        return tuple(records), warning
