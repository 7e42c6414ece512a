"""Tests for races between writers and for failures around the commit.

A racing store runs an interloper just before a commit, so the commit
sees state that changed after the service planned against it.
"""

import json
import time

import pytest
from decimal import Decimal
from pathlib import Path
from typing import Callable

from jobledger.errors import ConcurrencyConflictError, InvalidTransitionError, PersistenceError
from jobledger.models.job import JobStatus, Party
from jobledger.persistence.event_log import EventLog
from jobledger.persistence.store import DocumentStore, WriteBatch
from jobledger.policy.resolver import PARAMS_FILENAME, PolicyResolver
from jobledger.scheduling import ManualScheduler, TimerScheduler
from jobledger.service import JobService


CONFIG_DIR = Path(__file__).resolve().parents[1] / "config"


class _RacingStore(DocumentStore):
    """Runs queued interlopers, one per commit, before committing."""

    def __init__(self) -> None:
        super().__init__()
        self.interlopers: list[Callable[[], None]] = []

    def commit(self, batch: WriteBatch) -> None:
        if self.interlopers:
            self.interlopers.pop(0)()
        super().commit(batch)


def _touch(store: DocumentStore, job_id: str) -> None:
    """Bump a job's version without changing its status."""
    job = store.get_job(job_id)
    job.description = f"edited v{job.version}"
    DocumentStore.commit(store, store.batch().update_job(job, job.status, job.version))


@pytest.fixture
def store() -> _RacingStore:
    return _RacingStore()


@pytest.fixture
def scheduler() -> ManualScheduler:
    return ManualScheduler()


@pytest.fixture
def service(store: _RacingStore, scheduler: ManualScheduler) -> JobService:
    resolver = PolicyResolver.from_config_dir(CONFIG_DIR)
    service = JobService(resolver, store=store, scheduler=scheduler)
    service.register_profile("client_1", "Casey", "client")
    service.register_profile("tradie_1", "Tam", "tradie", hourly_rate="40")
    service.register_profile("tradie_2", "Sam", "tradie")
    return service


def _request(service: JobService) -> str:
    return service.request_job(
        service.party("client_1"), service.party("tradie_1"), "Fix leaky tap",
    ).job.job_id


def _booked(service: JobService) -> str:
    job_id = _request(service)
    service.accept(job_id, "tradie_1")
    service.submit_quote(job_id, "tradie_1", hourly_rate="50", estimated_hours="3")
    service.accept_quote(job_id, "client_1")
    service.submit_booking(job_id, "client_1", "1 High St", "0123", "2026-03-10", "morning")
    service.confirm_booking(job_id, "tradie_1")
    return job_id


class TestOptimisticConcurrency:
    def test_both_parties_cancel(self, service: JobService, store: _RacingStore) -> None:
        job_id = _request(service)
        store.interlopers.append(
            lambda: service.cancel_or_dispute(job_id, "tradie_1", "Tradie cancels")
        )
        with pytest.raises(InvalidTransitionError):
            service.cancel_or_dispute(job_id, "client_1", "Client cancels")
        job = service.get_job(job_id)
        assert job.status == JobStatus.CANCELLED
        assert job.cancelled_by == "tradie_1"

    def test_cancel_replans_after_accept(self, service: JobService, store: _RacingStore) -> None:
        job_id = _request(service)
        store.interlopers.append(lambda: service.accept(job_id, "tradie_1"))
        job = service.cancel_or_dispute(job_id, "client_1", "Changed my mind").job
        assert job.status == JobStatus.CANCELLED
        assert job.accepted_utc is not None
        assert job.version == 2

    def test_second_conflict_propagates(self, service: JobService, store: _RacingStore) -> None:
        job_id = _request(service)
        store.interlopers.extend([
            lambda: _touch(store, job_id),
            lambda: _touch(store, job_id),
        ])
        with pytest.raises(ConcurrencyConflictError):
            service.accept(job_id, "tradie_1")
        assert service.get_job(job_id).status == JobStatus.PENDING
        assert service.get_job(job_id).version == 2
        assert store.interlopers == []

    def test_racing_payments_hold_once(self, service: JobService, store: _RacingStore) -> None:
        job_id = _booked(service)
        store.interlopers.append(lambda: service.pay(job_id, "client_1"))
        with pytest.raises(InvalidTransitionError):
            service.pay(job_id, "client_1")
        assert service.finances("tradie_1").on_hold_balance == Decimal("127.50")
        assert len(service.store.transactions_for_job(job_id)) == 1

    def test_advert_goes_to_one_tradie(self, service: JobService, store: _RacingStore) -> None:
        advert = service.post_advert(service.party("client_1"), "Paint fence")
        store.interlopers.append(
            lambda: service.accept_advert(service.party("tradie_2"), advert.advert_id)
        )
        with pytest.raises(InvalidTransitionError):
            service.accept_advert(service.party("tradie_1"), advert.advert_id)
        [job] = service.store.jobs()
        assert job.tradie_uid == "tradie_2"


class TestAutoAdvance:
    def test_idempotent(self, service: JobService, scheduler: ManualScheduler) -> None:
        job_id = _booked(service)
        service.pay(job_id, "client_1")
        service.start_work(job_id)
        version = service.get_job(job_id).version
        scheduler.run_pending()
        job = service.get_job(job_id)
        assert job.status == JobStatus.IN_PROGRESS
        assert job.version == version

    def test_noop_after_dispute(self, service: JobService, scheduler: ManualScheduler) -> None:
        job_id = _booked(service)
        service.pay(job_id, "client_1")
        service.cancel_or_dispute(job_id, "client_1", "Wrong address")
        assert scheduler.run_pending() == 1
        assert service.get_job(job_id).status == JobStatus.DISPUTE

    def test_timer_scheduler(self) -> None:
        params = json.loads((CONFIG_DIR / PARAMS_FILENAME).read_text(encoding="utf-8"))
        params["lifecycle"]["auto_advance_delay_seconds"] = 0.01
        scheduler = TimerScheduler()
        service = JobService(PolicyResolver(params), scheduler=scheduler)
        service.register_profile("client_1", "Casey", "client")
        service.register_profile("tradie_1", "Tam", "tradie", hourly_rate="40")
        try:
            job_id = _booked(service)
            service.pay(job_id, "client_1")
            deadline = time.monotonic() + 5
            while time.monotonic() < deadline:
                if service.get_job(job_id).status == JobStatus.IN_PROGRESS:
                    break
                time.sleep(0.01)
            assert service.get_job(job_id).status == JobStatus.IN_PROGRESS
        finally:
            scheduler.cancel_all()


class TestFailures:
    def test_persistence_failure_applies_nothing(self, tmp_path: Path) -> None:
        store = DocumentStore(tmp_path / "missing" / "state.json")
        service = JobService(PolicyResolver.from_config_dir(CONFIG_DIR), store=store,
                             scheduler=ManualScheduler())
        client = Party("client_1", "Casey", "client")
        tradie = Party("tradie_1", "Tam", "tradie")
        with pytest.raises(PersistenceError):
            service.request_job(client, tradie, "Fix leaky tap", hourly_rate="40")
        assert service.store.jobs() == []

    def test_audit_failure_is_a_warning(self, tmp_path: Path) -> None:
        log = EventLog(tmp_path / "missing" / "events.jsonl")
        service = JobService(PolicyResolver.from_config_dir(CONFIG_DIR), event_log=log,
                             scheduler=ManualScheduler())
        client = Party("client_1", "Casey", "client")
        tradie = Party("tradie_1", "Tam", "tradie")
        result = service.request_job(client, tradie, "Fix leaky tap", hourly_rate="40")
        assert result.warning.startswith("Audit log degraded")
        assert service.get_job(result.job.job_id).status == JobStatus.PENDING
        assert service.status()["audit_degraded"] is True
        assert log.count == 0
