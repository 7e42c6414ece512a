"""Tests for the job state machine — proves transition rules are fail-closed."""

import pytest
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path

from jobledger.engine.state_machine import (
    SYSTEM_ACTOR,
    CalendarHold,
    JobStateMachine,
    _TRANSITIONS,
)
from jobledger.errors import InvalidTransitionError, ValidationError
from jobledger.models.job import (
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
from jobledger.models.ledger import FinanceField
from jobledger.policy.resolver import PolicyResolver


CONFIG_DIR = Path(__file__).resolve().parents[1] / "config"

CLIENT = Party("client_1", "Casey", "client")
TRADIE = Party("tradie_1", "Tam", "tradie")


def _now() -> datetime:
    return datetime(2026, 3, 2, 9, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def sm() -> JobStateMachine:
    return JobStateMachine(PolicyResolver.from_config_dir(CONFIG_DIR))


def _job(status: JobStatus, **kwargs) -> Job:
    defaults = dict(
        job_id="job_1",
        client_uid=CLIENT.uid,
        tradie_uid=TRADIE.uid,
        title="Fix leaky tap",
        status=status,
    )
    defaults.update(kwargs)
    return Job(**defaults)


def _booked(status: JobStatus = JobStatus.BOOKING_CONFIRMED, **kwargs) -> Job:
    return _job(
        status,
        quote=Quote(Decimal("50"), Decimal("3"), Decimal("150.00")),
        booking=Booking("2026-03-10", "morning"),
        service_location=ServiceLocation("1 High St", "0123 456"),
        info_photos=["photo_1"],
        info_description="Drips constantly",
        **kwargs,
    )


class TestJobCreation:
    def test_request_sets_budget(self, sm: JobStateMachine) -> None:
        job = sm.new_request(
            CLIENT, TRADIE, "Fix leaky tap", estimated_hours=2, hourly_rate="40",
            now=_now(),
        )
        assert job.status == JobStatus.PENDING
        assert job.budget == "£80.00"
        assert job.estimated_hours == Decimal("2")
        assert job.source == JobSource.DIRECT
        assert job.created_utc == _now()
        assert job.client_name == "Casey"
        assert job.tradie_name == "Tam"

    def test_request_from_self_rejected(self, sm: JobStateMachine) -> None:
        with pytest.raises(ValidationError):
            sm.new_request(CLIENT, CLIENT, "Fix tap", hourly_rate="40")

    def test_request_blank_title_rejected(self, sm: JobStateMachine) -> None:
        with pytest.raises(ValidationError, match="Title is required"):
            sm.new_request(CLIENT, TRADIE, "   ", hourly_rate="40")

    def test_request_under_one_hour_rejected(self, sm: JobStateMachine) -> None:
        with pytest.raises(ValidationError, match="at least 1 hour"):
            sm.new_request(CLIENT, TRADIE, "Fix tap", estimated_hours="0.5", hourly_rate="40")

    def test_request_bad_rate_rejected(self, sm: JobStateMachine) -> None:
        with pytest.raises(ValidationError):
            sm.new_request(CLIENT, TRADIE, "Fix tap", hourly_rate="lots")

    def test_request_budget_rounding_to_zero_rejected(self, sm: JobStateMachine) -> None:
        with pytest.raises(ValidationError, match="less than a penny"):
            sm.new_request(CLIENT, TRADIE, "Fix tap", estimated_hours=1, hourly_rate="0.004")

    def test_request_without_rate_has_zero_budget(self, sm: JobStateMachine) -> None:
        job = sm.new_request(CLIENT, TRADIE, "Fix tap")
        assert job.budget == "£0.00"

    def test_advert_acceptance(self, sm: JobStateMachine) -> None:
        advert = Advert("adv_1", CLIENT.uid, "Paint fence", budget="£200", client_name="Casey")
        job = sm.new_from_advert(advert, TRADIE, now=_now())
        assert job.status == JobStatus.TRADIE_ACCEPTED
        assert job.source == JobSource.JOB_BOARD
        assert job.accepted_utc == _now()
        assert job.budget == "£200"

    def test_own_advert_rejected(self, sm: JobStateMachine) -> None:
        advert = Advert("adv_1", TRADIE.uid, "Paint fence")
        with pytest.raises(ValidationError):
            sm.new_from_advert(advert, TRADIE)


class TestLegalTransitions:
    def test_approve(self, sm: JobStateMachine) -> None:
        plan = sm.plan(_job(JobStatus.TRADIE_ACCEPTED), CLIENT.uid, JobAction.APPROVE, now=_now())
        assert plan.job.status == JobStatus.PENDING
        assert plan.job.approved_utc == _now()

    def test_accept(self, sm: JobStateMachine) -> None:
        plan = sm.plan(_job(JobStatus.PENDING), TRADIE.uid, JobAction.ACCEPT, now=_now())
        assert plan.job.status == JobStatus.ACCEPTED
        assert plan.job.accepted_utc == _now()
        assert plan.expected_status == JobStatus.PENDING
        assert plan.expected_version == 0

    def test_decline_stores_reason(self, sm: JobStateMachine) -> None:
        plan = sm.plan(
            _job(JobStatus.PENDING), TRADIE.uid, JobAction.DECLINE, {"reason": "Too far"},
        )
        assert plan.job.status == JobStatus.DECLINED
        assert plan.job.decline_reason == "Too far"

    def test_submit_info_description_only(self, sm: JobStateMachine) -> None:
        plan = sm.plan(
            _job(JobStatus.INFO_REQUESTED), CLIENT.uid, JobAction.SUBMIT_INFO,
            {"description": "Under the sink"},
        )
        assert plan.job.status == JobStatus.INFO_PROVIDED
        assert plan.job.info_photos is None
        assert plan.job.info_description == "Under the sink"

    def test_submit_quote_computes_total(self, sm: JobStateMachine) -> None:
        plan = sm.plan(
            _job(JobStatus.ACCEPTED), TRADIE.uid, JobAction.SUBMIT_QUOTE,
            {"hourly_rate": "50", "estimated_hours": "3", "notes": "Parts included"},
        )
        assert plan.job.status == JobStatus.QUOTE_PROVIDED
        assert plan.job.quote.total == Decimal("150.00")
        assert plan.job.quote.notes == "Parts included"

    def test_quote_after_info(self, sm: JobStateMachine) -> None:
        plan = sm.plan(
            _job(JobStatus.INFO_PROVIDED), TRADIE.uid, JobAction.SUBMIT_QUOTE,
            {"hourly_rate": 45, "estimated_hours": 2},
        )
        assert plan.job.quote.total == Decimal("90.00")

    def test_submit_booking(self, sm: JobStateMachine) -> None:
        job = _job(JobStatus.QUOTE_ACCEPTED, quote=Quote(Decimal("50"), Decimal("3"), Decimal("150")))
        plan = sm.plan(
            job, CLIENT.uid, JobAction.SUBMIT_BOOKING,
            {"address": "1 High St", "phone": "0123", "date": "2026-03-10", "time_slot": "morning"},
            tradie_calendar={},
        )
        assert plan.job.status == JobStatus.BOOKING_REQUESTED
        assert plan.job.booking == Booking("2026-03-10", "morning")
        assert plan.job.service_location == ServiceLocation("1 High St", "0123", "")

    def test_confirm_booking_plans_calendar_hold(self, sm: JobStateMachine) -> None:
        plan = sm.plan(_booked(JobStatus.BOOKING_REQUESTED), TRADIE.uid, JobAction.CONFIRM_BOOKING)
        assert plan.job.status == JobStatus.BOOKING_CONFIRMED
        assert plan.calendar_hold == CalendarHold("tradie_1", "2026-03-10", "morning", "job_1")

    def test_pay_plans_escrow_hold(self, sm: JobStateMachine) -> None:
        plan = sm.plan(_booked(), CLIENT.uid, JobAction.PAY, now=_now())
        assert plan.job.status == JobStatus.PAYMENT_COMPLETE
        assert plan.job.payment_amount == Decimal("150.00")
        assert plan.job.commission == Decimal("22.50")
        assert plan.job.tradie_amount == Decimal("127.50")
        assert {d.field for d in plan.ledger_deltas} == {
            FinanceField.ON_HOLD, FinanceField.TOTAL_EARNINGS, FinanceField.TOTAL_COMMISSION_PAID,
        }
        assert plan.new_transaction is not None
        assert plan.new_transaction.amount == Decimal("127.50")

    def test_start_work_is_system_only(self, sm: JobStateMachine) -> None:
        job = _booked(JobStatus.PAYMENT_COMPLETE, tradie_amount=Decimal("127.50"))
        with pytest.raises(InvalidTransitionError):
            sm.plan(job, CLIENT.uid, JobAction.START_WORK)
        plan = sm.plan(job, SYSTEM_ACTOR, JobAction.START_WORK, now=_now())
        assert plan.job.status == JobStatus.IN_PROGRESS
        assert plan.job.started_utc == _now()

    def test_complete_releases_and_clears_private_data(self, sm: JobStateMachine) -> None:
        job = _booked(
            JobStatus.IN_PROGRESS,
            payment_amount=Decimal("150.00"),
            commission=Decimal("22.50"),
            tradie_amount=Decimal("127.50"),
        )
        plan = sm.plan(job, CLIENT.uid, JobAction.COMPLETE, now=_now())
        assert plan.job.status == JobStatus.COMPLETED
        assert plan.settle_payment_for == "job_1"
        assert [d.amount for d in plan.ledger_deltas] == [Decimal("-127.50"), Decimal("127.50")]
        assert plan.job.awaiting_review is True
        assert plan.job.client_reviewed is False
        assert plan.job.tradie_reviewed is False
        assert plan.job.service_location is None
        assert plan.job.info_photos is None
        assert plan.job.info_description is None
        assert plan.job.booking == Booking("2026-03-10", "morning")

    def test_input_job_untouched(self, sm: JobStateMachine) -> None:
        job = _job(JobStatus.PENDING)
        sm.plan(job, TRADIE.uid, JobAction.ACCEPT)
        assert job.status == JobStatus.PENDING
        assert job.accepted_utc is None


class TestIllegalTransitions:
    def test_every_unlisted_pair_rejected(self, sm: JobStateMachine) -> None:
        for action, rule in _TRANSITIONS.items():
            for status in JobStatus:
                if status in rule.sources:
                    continue
                job = _booked(status)
                for actor in (CLIENT.uid, TRADIE.uid, SYSTEM_ACTOR):
                    with pytest.raises(InvalidTransitionError):
                        sm.plan(job, actor, action, {"reason": "x"})

    def test_cannot_skip_to_payment(self, sm: JobStateMachine) -> None:
        with pytest.raises(InvalidTransitionError):
            sm.plan(_booked(JobStatus.PENDING), CLIENT.uid, JobAction.PAY)

    def test_wrong_party(self, sm: JobStateMachine) -> None:
        with pytest.raises(InvalidTransitionError):
            sm.plan(_job(JobStatus.PENDING), CLIENT.uid, JobAction.ACCEPT)

    def test_stranger_cannot_cancel(self, sm: JobStateMachine) -> None:
        with pytest.raises(InvalidTransitionError):
            sm.plan(_job(JobStatus.PENDING), "stranger", JobAction.CANCEL, {"reason": "x"})

    def test_archived_job_rejects_everything(self, sm: JobStateMachine) -> None:
        job = _job(JobStatus.COMPLETED, archived=True)
        with pytest.raises(InvalidTransitionError, match="archived"):
            sm.plan(job, CLIENT.uid, JobAction.DISPUTE, {"reason": "x"})

    def test_actor_checked_before_payload(self, sm: JobStateMachine) -> None:
        with pytest.raises(InvalidTransitionError):
            sm.plan(_job(JobStatus.PENDING), CLIENT.uid, JobAction.DECLINE, {})

    def test_valid_actions(self) -> None:
        assert JobStateMachine.valid_actions(JobStatus.PENDING) == {
            JobAction.ACCEPT, JobAction.DECLINE, JobAction.CANCEL,
        }
        assert JobStateMachine.valid_actions(JobStatus.CANCELLED) == set()


class TestPayloadValidation:
    def test_decline_needs_reason(self, sm: JobStateMachine) -> None:
        with pytest.raises(ValidationError, match="Decline reason is required"):
            sm.plan(_job(JobStatus.PENDING), TRADIE.uid, JobAction.DECLINE, {"reason": " "})

    def test_info_needs_photo_or_note(self, sm: JobStateMachine) -> None:
        with pytest.raises(ValidationError):
            sm.plan(_job(JobStatus.INFO_REQUESTED), CLIENT.uid, JobAction.SUBMIT_INFO, {})

    def test_info_photo_limit(self, sm: JobStateMachine) -> None:
        photos = [f"p{i}" for i in range(6)]
        with pytest.raises(ValidationError, match="Maximum 5 photos"):
            sm.plan(
                _job(JobStatus.INFO_REQUESTED), CLIENT.uid, JobAction.SUBMIT_INFO,
                {"photos": photos},
            )

    @pytest.mark.parametrize("rate,hours", [
        ("0", "3"), ("-5", "3"), ("abc", "3"), ("inf", "3"), ("50", "0.5"), ("50", ""),
    ])
    def test_quote_rejects_bad_numbers(self, sm: JobStateMachine, rate: str, hours: str) -> None:
        with pytest.raises(ValidationError):
            sm.plan(
                _job(JobStatus.ACCEPTED), TRADIE.uid, JobAction.SUBMIT_QUOTE,
                {"hourly_rate": rate, "estimated_hours": hours},
            )

    @pytest.mark.parametrize("rate,hours", [("0.004", "1"), ("0.001", "2")])
    def test_quote_rounding_to_zero_rejected(
        self, sm: JobStateMachine, rate: str, hours: str,
    ) -> None:
        with pytest.raises(ValidationError, match="less than a penny"):
            sm.plan(
                _job(JobStatus.ACCEPTED), TRADIE.uid, JobAction.SUBMIT_QUOTE,
                {"hourly_rate": rate, "estimated_hours": hours},
            )

    @pytest.mark.parametrize("rate,hours", [("1e30", "1"), ("50", "1e30")])
    def test_quote_rejects_huge_numbers(
        self, sm: JobStateMachine, rate: str, hours: str,
    ) -> None:
        with pytest.raises(ValidationError, match="must be at most"):
            sm.plan(
                _job(JobStatus.ACCEPTED), TRADIE.uid, JobAction.SUBMIT_QUOTE,
                {"hourly_rate": rate, "estimated_hours": hours},
            )

    @pytest.mark.parametrize("override", [
        {"address": ""},
        {"phone": None},
        {"date": "10/03/2026"},
        {"time_slot": "night"},
    ])
    def test_booking_field_checks(self, sm: JobStateMachine, override: dict) -> None:
        payload = {"address": "1 High St", "phone": "0123", "date": "2026-03-10", "time_slot": "morning"}
        payload.update(override)
        with pytest.raises(ValidationError):
            sm.plan(_job(JobStatus.QUOTE_ACCEPTED), CLIENT.uid, JobAction.SUBMIT_BOOKING, payload)

    def test_booking_unavailable_slot(self, sm: JobStateMachine) -> None:
        payload = {"address": "1 High St", "phone": "0123", "date": "2026-03-10", "time_slot": "morning"}
        calendar = {"2026-03-10": ["morning"]}
        with pytest.raises(ValidationError, match="unavailable"):
            sm.plan(
                _job(JobStatus.QUOTE_ACCEPTED), CLIENT.uid, JobAction.SUBMIT_BOOKING,
                payload, tradie_calendar=calendar,
            )

    def test_confirm_rejects_slot_held_by_other_job(self, sm: JobStateMachine) -> None:
        calendar = {"2026-03-10": {"morning": {"reason": "job", "jobId": "job_other"}}}
        with pytest.raises(ValidationError, match="another job"):
            sm.plan(
                _booked(JobStatus.BOOKING_REQUESTED), TRADIE.uid, JobAction.CONFIRM_BOOKING,
                tradie_calendar=calendar,
            )

    def test_confirm_allows_manual_mark(self, sm: JobStateMachine) -> None:
        calendar = {"2026-03-10": ["morning"]}
        plan = sm.plan(
            _booked(JobStatus.BOOKING_REQUESTED), TRADIE.uid, JobAction.CONFIRM_BOOKING,
            tradie_calendar=calendar,
        )
        assert plan.calendar_hold is not None


class TestCancelAndDispute:
    @pytest.mark.parametrize("status", [
        JobStatus.PENDING,
        JobStatus.TRADIE_ACCEPTED,
        JobStatus.ACCEPTED,
        JobStatus.INFO_REQUESTED,
        JobStatus.INFO_PROVIDED,
        JobStatus.QUOTE_PROVIDED,
        JobStatus.QUOTE_ACCEPTED,
        JobStatus.BOOKING_REQUESTED,
        JobStatus.BOOKING_CONFIRMED,
    ])
    def test_cancel_from_pre_payment_states(self, sm: JobStateMachine, status: JobStatus) -> None:
        plan = sm.plan(_booked(status), TRADIE.uid, JobAction.CANCEL, {"reason": "Sick"}, now=_now())
        assert plan.job.status == JobStatus.CANCELLED
        assert plan.job.cancel_reason == "Sick"
        assert plan.job.cancelled_by == TRADIE.uid
        assert plan.job.cancelled_utc == _now()
        assert plan.job.service_location is None
        assert plan.ledger_deltas == ()

    def test_cannot_cancel_after_payment(self, sm: JobStateMachine) -> None:
        with pytest.raises(InvalidTransitionError):
            sm.plan(_booked(JobStatus.IN_PROGRESS), CLIENT.uid, JobAction.CANCEL, {"reason": "x"})

    def test_dispute_keeps_payloads_and_ledger(self, sm: JobStateMachine) -> None:
        job = _booked(JobStatus.IN_PROGRESS, tradie_amount=Decimal("127.50"))
        plan = sm.plan(job, CLIENT.uid, JobAction.DISPUTE, {"reason": "No-show"})
        assert plan.job.status == JobStatus.DISPUTE
        assert plan.ledger_deltas == ()
        assert plan.settle_payment_for is None
        assert plan.job.service_location is not None
