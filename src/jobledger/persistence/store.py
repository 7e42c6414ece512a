"""Document store — jobs, profiles, ledger, reviews and adverts.

A write batch collects every record change for one action. ``commit``
applies the whole batch or nothing:

1. Take the store lock (the single serialisation point for writes).
2. Replay the batch onto staged copies of the collections. Any failed
   precondition (job status/version mismatch, negative balance,
   duplicate review) raises and the staged copies are discarded.
3. If file-backed, write the staged state to a temp file and
   ``os.replace`` it over ``state.json``. A failed write raises
   PersistenceError and the in-memory state stays as it was.
4. Swap the staged collections in.

Readers always get copies. Records handed out can be mutated freely
without touching stored state.
"""

from __future__ import annotations

import copy
import json
import logging
import os
import threading
from dataclasses import replace
from pathlib import Path
from typing import Any, Optional

from jobledger.calendar import mark_booked
from jobledger.errors import (
    ConcurrencyConflictError,
    InvalidTransitionError,
    JobNotFoundError,
    PersistenceError,
    ValidationError,
)
from jobledger.models.job import Advert, Job, JobStatus
from jobledger.models.ledger import (
    BalanceDelta,
    FinanceField,
    Finances,
    Transaction,
    TransactionStatus,
    TransactionType,
)
from jobledger.models.profile import Profile
from jobledger.models.review import Review, ReviewerRole
from jobledger.persistence import serializers

logger = logging.getLogger(__name__)

STATE_FILENAME = "state.json"


class WriteBatch:
    """An ordered list of record changes committed as one unit.

    Usage:
        batch = store.batch()
        batch.update_job(job, expected_status, expected_version)
        batch.apply_delta(delta)
        store.commit(batch)
    """

    def __init__(self) -> None:
        self._ops: list[tuple[str, tuple[Any, ...]]] = []

    def __len__(self) -> int:
        return len(self._ops)

    @property
    def operations(self) -> list[str]:
        return [name for name, _ in self._ops]

    def create_job(self, job: Job) -> WriteBatch:
        self._ops.append(("create_job", (copy.deepcopy(job),)))
        return self

    def update_job(
        self, job: Job, expected_status: JobStatus, expected_version: int,
    ) -> WriteBatch:
        """Replace a job, provided it is still at the given status and version."""
        self._ops.append(
            ("update_job", (copy.deepcopy(job), expected_status, expected_version))
        )
        return self

    def apply_delta(self, delta: BalanceDelta) -> WriteBatch:
        self._ops.append(("apply_delta", (delta,)))
        return self

    def add_transaction(self, transaction: Transaction) -> WriteBatch:
        self._ops.append(("add_transaction", (transaction,)))
        return self

    def settle_payment(self, job_id: str) -> WriteBatch:
        """Move a job's payment transaction from onHold to completed."""
        self._ops.append(("settle_payment", (job_id,)))
        return self

    def hold_calendar_slot(
        self, tradie_uid: str, date_key: str, time_slot: str, job_id: str,
    ) -> WriteBatch:
        self._ops.append(("hold_calendar_slot", (tradie_uid, date_key, time_slot, job_id)))
        return self

    def add_review(self, review: Review) -> WriteBatch:
        self._ops.append(("add_review", (review,)))
        return self

    def recompute_rating(self, uid: str) -> WriteBatch:
        """Recompute a user's rating from every client review, this batch's included."""
        self._ops.append(("recompute_rating", (uid,)))
        return self

    def put_profile(self, profile: Profile) -> WriteBatch:
        self._ops.append(("put_profile", (copy.deepcopy(profile),)))
        return self

    def put_advert(self, advert: Advert) -> WriteBatch:
        self._ops.append(("put_advert", (copy.deepcopy(advert),)))
        return self

    def delete_advert(self, advert_id: str) -> WriteBatch:
        """Delete an advert. Fails the batch if it is already gone."""
        self._ops.append(("delete_advert", (advert_id,)))
        return self

    def hide_advert(self, tradie_uid: str, advert_id: str) -> WriteBatch:
        self._ops.append(("hide_advert", (tradie_uid, advert_id)))
        return self


class _Staging:
    """Copies of the store's collections that a batch is replayed onto."""

    def __init__(self, store: DocumentStore) -> None:
        self.jobs = dict(store._jobs)
        self.profiles = dict(store._profiles)
        self.transactions = dict(store._transactions)
        self.reviews = dict(store._reviews)
        self.adverts = dict(store._adverts)
        self.hidden = {uid: set(ids) for uid, ids in store._hidden.items()}

    def _profile(self, uid: str) -> Profile:
        profile = self.profiles.get(uid)
        if profile is None:
            profile = Profile(uid=uid, display_name="", role="")
        return profile

    def create_job(self, job: Job) -> None:
        if job.job_id in self.jobs:
            raise ConcurrencyConflictError(f"Job already exists: {job.job_id}")
        self.jobs[job.job_id] = job

    def update_job(self, job: Job, expected_status: JobStatus, expected_version: int) -> None:
        current = self.jobs.get(job.job_id)
        if current is None:
            raise JobNotFoundError(f"Job not found: {job.job_id}")
        if current.status != expected_status or current.version != expected_version:
            raise ConcurrencyConflictError(
                f"{job.job_id}: expected {expected_status.value} v{expected_version}, "
                f"found {current.status.value} v{current.version}"
            )
        if current.archived and (not job.archived or job.status != current.status):
            raise InvalidTransitionError(f"{job.job_id}: job is archived and read-only")
        job.version = expected_version + 1
        self.jobs[job.job_id] = job

    def apply_delta(self, delta: BalanceDelta) -> None:
        profile = self._profile(delta.uid)
        try:
            finances = profile.finances.apply(delta.field, delta.amount)
        except ValueError as exc:
            if delta.field == FinanceField.AVAILABLE:
                raise ValidationError("Insufficient available balance") from exc
            raise ValidationError(str(exc)) from exc
        self.profiles[delta.uid] = replace(profile, finances=finances)

    def add_transaction(self, transaction: Transaction) -> None:
        if transaction.transaction_id in self.transactions:
            raise ConcurrencyConflictError(
                f"Transaction already exists: {transaction.transaction_id}"
            )
        if transaction.type == TransactionType.PAYMENT:
            for existing in self.transactions.values():
                if existing.type == TransactionType.PAYMENT and existing.job_id == transaction.job_id:
                    raise ConcurrencyConflictError(
                        f"{transaction.job_id}: payment already recorded"
                    )
        self.transactions[transaction.transaction_id] = transaction

    def settle_payment(self, job_id: str) -> None:
        for tx_id, tx in self.transactions.items():
            if (tx.type == TransactionType.PAYMENT and tx.job_id == job_id
                    and tx.status == TransactionStatus.ON_HOLD):
                self.transactions[tx_id] = replace(tx, status=TransactionStatus.COMPLETED)
                return
        raise ValidationError(f"{job_id}: no held payment to settle")

    def hold_calendar_slot(
        self, tradie_uid: str, date_key: str, time_slot: str, job_id: str,
    ) -> None:
        profile = self._profile(tradie_uid)
        calendar = copy.deepcopy(profile.work_calendar)
        calendar[date_key] = mark_booked(calendar, date_key, time_slot, job_id)
        self.profiles[tradie_uid] = replace(profile, work_calendar=calendar)

    def add_review(self, review: Review) -> None:
        if review.key in self.reviews:
            raise InvalidTransitionError(
                f"{review.job_id}: {review.reviewer_uid} has already reviewed this job"
            )
        self.reviews[review.key] = review

    def recompute_rating(self, uid: str) -> None:
        ratings = [
            r.rating for r in self.reviews.values()
            if r.reviewed_uid == uid and r.reviewer_role == ReviewerRole.CLIENT
        ]
        profile = self._profile(uid)
        average = sum(ratings) / len(ratings) if ratings else 0.0
        self.profiles[uid] = replace(profile, rating=average, reviews=len(ratings))

    def put_profile(self, profile: Profile) -> None:
        self.profiles[profile.uid] = profile

    def put_advert(self, advert: Advert) -> None:
        self.adverts[advert.advert_id] = advert

    def delete_advert(self, advert_id: str) -> None:
        if self.adverts.pop(advert_id, None) is None:
            raise ConcurrencyConflictError(f"Advert no longer exists: {advert_id}")

    def hide_advert(self, tradie_uid: str, advert_id: str) -> None:
        self.hidden.setdefault(tradie_uid, set()).add(advert_id)


class DocumentStore:
    """In-memory record store with optional JSON file persistence.

    Usage:
        store = DocumentStore(Path("data/state.json"))
        job = store.get_job("job_abc")
    """

    def __init__(self, storage_path: Optional[Path] = None) -> None:
        self._storage_path = storage_path
        self._lock = threading.Lock()
        self._jobs: dict[str, Job] = {}
        self._profiles: dict[str, Profile] = {}
        self._transactions: dict[str, Transaction] = {}
        self._reviews: dict[tuple[str, str], Review] = {}
        self._adverts: dict[str, Advert] = {}
        self._hidden: dict[str, set[str]] = {}

        if storage_path and storage_path.exists():
            self._load_from_file(storage_path)

    @property
    def storage_path(self) -> Optional[Path]:
        return self._storage_path

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def batch(self) -> WriteBatch:
        return WriteBatch()

    def commit(self, batch: WriteBatch) -> None:
        """Apply every operation in ``batch`` atomically.

        Raises ConcurrencyConflictError, ValidationError or
        InvalidTransitionError on a failed precondition, and
        PersistenceError if the state file cannot be written. In every
        failure case nothing is applied.
        """
        with self._lock:
            staging = _Staging(self)
            for name, args in batch._ops:
                getattr(staging, name)(*args)

            if self._storage_path:
                self._write_file(staging)

            self._jobs = staging.jobs
            self._profiles = staging.profiles
            self._transactions = staging.transactions
            self._reviews = staging.reviews
            self._adverts = staging.adverts
            self._hidden = staging.hidden
        logger.debug("Committed batch: %s", ", ".join(batch.operations))

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def find_job(self, job_id: str) -> Optional[Job]:
        job = self._jobs.get(job_id)
        return copy.deepcopy(job) if job is not None else None

    def get_job(self, job_id: str) -> Job:
        """Return a copy of a job. Raises JobNotFoundError if absent."""
        job = self.find_job(job_id)
        if job is None:
            raise JobNotFoundError(f"Job not found: {job_id}")
        return job

    def jobs(self) -> list[Job]:
        return [copy.deepcopy(j) for j in self._jobs.values()]

    def jobs_for_party(self, uid: str) -> list[Job]:
        """Jobs where ``uid`` is the client or the tradie."""
        return [copy.deepcopy(j) for j in self._jobs.values() if j.is_party(uid)]

    def get_profile(self, uid: str) -> Optional[Profile]:
        profile = self._profiles.get(uid)
        return copy.deepcopy(profile) if profile is not None else None

    def profiles(self) -> list[Profile]:
        return [copy.deepcopy(p) for p in self._profiles.values()]

    def finances(self, uid: str) -> Finances:
        profile = self._profiles.get(uid)
        return profile.finances if profile is not None else Finances()

    def work_calendar(self, uid: str) -> dict[str, Any]:
        profile = self._profiles.get(uid)
        return copy.deepcopy(profile.work_calendar) if profile is not None else {}

    def transactions(self) -> list[Transaction]:
        return list(self._transactions.values())

    def transactions_for_job(self, job_id: str) -> list[Transaction]:
        return [t for t in self._transactions.values() if t.job_id == job_id]

    def transactions_for_user(self, uid: str) -> list[Transaction]:
        return [t for t in self._transactions.values() if t.tradie_uid == uid]

    def reviews(self) -> list[Review]:
        return list(self._reviews.values())

    def reviews_for(self, uid: str) -> list[Review]:
        """Reviews written about ``uid``."""
        return [r for r in self._reviews.values() if r.reviewed_uid == uid]

    def get_advert(self, advert_id: str) -> Optional[Advert]:
        advert = self._adverts.get(advert_id)
        return copy.deepcopy(advert) if advert is not None else None

    def adverts(self) -> list[Advert]:
        return [copy.deepcopy(a) for a in self._adverts.values()]

    def hidden_adverts(self, uid: str) -> set[str]:
        return set(self._hidden.get(uid, ()))

    # ------------------------------------------------------------------
    # File persistence
    # ------------------------------------------------------------------

    def _write_file(self, staging: _Staging) -> None:
        """Write staged state to a temp file, then swap it into place."""
        document = {
            "jobs": [serializers.job_to_dict(j) for j in staging.jobs.values()],
            "profiles": [serializers.profile_to_dict(p) for p in staging.profiles.values()],
            "transactions": [
                serializers.transaction_to_dict(t) for t in staging.transactions.values()
            ],
            "reviews": [serializers.review_to_dict(r) for r in staging.reviews.values()],
            "adverts": [serializers.advert_to_dict(a) for a in staging.adverts.values()],
            "hiddenAdverts": {uid: sorted(ids) for uid, ids in staging.hidden.items()},
        }
        tmp_path = self._storage_path.with_name(self._storage_path.name + ".tmp")
        try:
            with tmp_path.open("w", encoding="utf-8") as f:
                json.dump(document, f, sort_keys=True, ensure_ascii=False, indent=1)
            os.replace(tmp_path, self._storage_path)
        except OSError as exc:
            logger.error("State write failed for %s: %s", self._storage_path, exc)
            raise PersistenceError(f"Could not write state: {exc}") from exc

    def _load_from_file(self, path: Path) -> None:
        with path.open("r", encoding="utf-8") as f:
            document = json.load(f)
        for data in document.get("jobs", []):
            job = serializers.job_from_dict(data)
            self._jobs[job.job_id] = job
        for data in document.get("profiles", []):
            profile = serializers.profile_from_dict(data)
            self._profiles[profile.uid] = profile
        for data in document.get("transactions", []):
            tx = serializers.transaction_from_dict(data)
            self._transactions[tx.transaction_id] = tx
        for data in document.get("reviews", []):
            review = serializers.review_from_dict(data)
            self._reviews[review.key] = review
        for data in document.get("adverts", []):
            advert = serializers.advert_from_dict(data)
            self._adverts[advert.advert_id] = advert
        for uid, ids in document.get("hiddenAdverts", {}).items():
            self._hidden[uid] = set(ids)
        logger.debug("Loaded %d jobs from %s", len(self._jobs), path)
