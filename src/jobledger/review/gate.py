"""Review & archival gate — the one path by which a completed job archives.

Rules:
- Reviews are accepted only while the job is Completed and not archived.
- Each party reviews at most once per job.
- The second review (whichever party submits it) archives the job,
  clears awaitingReview and assigns the invoice ID.
- The invoice ID is assigned once. A job that already carries one keeps
  it, so replaying the archival step never reissues.
- A client review triggers a rating recompute for the tradie. The
  recompute itself reads the full review set inside the store commit.
"""

from __future__ import annotations

import copy
import secrets
import string
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional

from jobledger.engine import validation
from jobledger.errors import InvalidTransitionError
from jobledger.models.job import ActorRole, Job, JobStatus
from jobledger.models.review import Review, ReviewerRole
from jobledger.policy.resolver import PolicyResolver


_SUFFIX_ALPHABET = string.ascii_uppercase + string.digits


class InvoiceIssuer:
    """Issues invoice IDs of the form ``INV-<ms>-<SUFFIX>``.

    The millisecond component never repeats or goes backwards within one
    issuer, even if the wall clock does.
    """

    def __init__(self, prefix: str = "INV", suffix_length: int = 9) -> None:
        self._prefix = prefix
        self._suffix_length = suffix_length
        self._last_ms = 0
        self._lock = threading.Lock()

    def issue(self, now: Optional[datetime] = None) -> str:
        if now is None:
            now = datetime.now(timezone.utc)
        with self._lock:
            ms = max(self._last_ms + 1, int(now.timestamp() * 1000))
            self._last_ms = ms
        suffix = "".join(
            secrets.choice(_SUFFIX_ALPHABET) for _ in range(self._suffix_length)
        )
        return f"{self._prefix}-{ms}-{suffix}"


@dataclass(frozen=True)
class ReviewPlan:
    """The writes for one review submission, committed as a single batch."""
    job: Job
    expected_status: JobStatus
    expected_version: int
    review: Review
    recompute_rating_for: Optional[str] = None

    @property
    def archives(self) -> bool:
        return self.job.archived


class ReviewGate:
    """Plans review submissions and the archival they may trigger.

    Usage:
        gate = ReviewGate(resolver)
        plan = gate.plan_review(job, client.uid, rating=5, comment="Great")
    """

    def __init__(
        self,
        resolver: PolicyResolver,
        issuer: Optional[InvoiceIssuer] = None,
    ) -> None:
        self._resolver = resolver
        if issuer is None:
            prefix, suffix_length = resolver.invoice_format()
            issuer = InvoiceIssuer(prefix, suffix_length)
        self._issuer = issuer

    def plan_review(
        self,
        job: Job,
        reviewer_uid: str,
        rating: Any,
        comment: Any = "",
        reviewer_name: str = "",
        now: Optional[datetime] = None,
    ) -> ReviewPlan:
        """Validate a review and plan its writes.

        Raises InvalidTransitionError if the job is not reviewable by
        ``reviewer_uid`` and ValidationError for a bad rating.
        """
        if job.archived:
            raise InvalidTransitionError(f"{job.job_id}: job is archived")
        if job.status != JobStatus.COMPLETED:
            raise InvalidTransitionError(
                f"{job.job_id}: reviews open only once the job is Completed "
                f"(status {job.status.value})"
            )
        role = job.role_of(reviewer_uid)
        if role is None:
            raise InvalidTransitionError(
                f"{job.job_id}: {reviewer_uid} is not a party to this job"
            )
        already = job.client_reviewed if role == ActorRole.CLIENT else job.tradie_reviewed
        if already:
            raise InvalidTransitionError(
                f"{job.job_id}: {reviewer_uid} has already reviewed this job"
            )

        score = validation.validate_rating(rating, self._resolver.rating_bounds())
        text = validation.optional_text(comment)
        if now is None:
            now = datetime.now(timezone.utc)

        if role == ActorRole.CLIENT:
            reviewer_role = ReviewerRole.CLIENT
            reviewed_uid, reviewed_name = job.tradie_uid, job.tradie_name
        else:
            reviewer_role = ReviewerRole.TRADIE
            reviewed_uid, reviewed_name = job.client_uid, job.client_name

        review = Review(
            job_id=job.job_id,
            reviewed_uid=reviewed_uid,
            reviewer_uid=reviewer_uid,
            reviewer_role=reviewer_role,
            rating=score,
            comment=text,
            created_utc=now,
            reviewer_name=reviewer_name,
            reviewed_name=reviewed_name,
        )

        updated = copy.deepcopy(job)
        if role == ActorRole.CLIENT:
            updated.client_reviewed = True
            other_done = job.tradie_reviewed
        else:
            updated.tradie_reviewed = True
            other_done = job.client_reviewed

        if other_done:
            updated.archived = True
            updated.awaiting_review = False
            updated.archived_utc = now
            if updated.invoice_id is None:
                updated.invoice_id = self._issuer.issue(now)

        return ReviewPlan(
            job=updated,
            expected_status=job.status,
            expected_version=job.version,
            review=review,
            recompute_rating_for=(
                reviewed_uid if reviewer_role == ReviewerRole.CLIENT else None
            ),
        )
