"""Pending-action counter and job progress projection.

Both are pure functions of job records. Nothing here writes.
"""

from __future__ import annotations

import enum
from typing import Iterable

from jobledger.models.job import ActorRole, Job, JobStatus


_TRADIE_ACTION_STATES = frozenset({
    JobStatus.PENDING,
    JobStatus.INFO_PROVIDED,
    JobStatus.BOOKING_REQUESTED,
})

_CLIENT_ACTION_STATES = frozenset({
    JobStatus.TRADIE_ACCEPTED,
    JobStatus.INFO_REQUESTED,
    JobStatus.QUOTE_PROVIDED,
    JobStatus.BOOKING_CONFIRMED,
})


def _needs_action(job: Job, uid: str, role: ActorRole) -> bool:
    if job.archived:
        return False
    if role == ActorRole.TRADIE:
        if job.tradie_uid != uid:
            return False
        if job.status in _TRADIE_ACTION_STATES:
            return True
        reviewed = job.tradie_reviewed
    elif role == ActorRole.CLIENT:
        if job.client_uid != uid:
            return False
        if job.status in _CLIENT_ACTION_STATES:
            return True
        reviewed = job.client_reviewed
    else:
        return False
    return job.status == JobStatus.COMPLETED and job.awaiting_review and not reviewed


def pending_jobs(jobs: Iterable[Job], uid: str, role: ActorRole) -> list[Job]:
    """Jobs on which ``uid``, acting as ``role``, is expected to act next."""
    return [j for j in jobs if _needs_action(j, uid, role)]


def count_pending_actions(jobs: Iterable[Job], uid: str, role: ActorRole) -> int:
    return len(pending_jobs(jobs, uid, role))


class StepState(str, enum.Enum):
    COMPLETE = "complete"
    PENDING = "pending"
    SKIPPED = "skipped"


PROGRESS_STEPS: tuple[str, ...] = (
    "request",
    "accepted",
    "info",
    "quote",
    "quoteAccepted",
    "booking",
    "payment",
    "complete",
)

# Index of the last step a status has completed.
_REACHED: dict[JobStatus, int] = {
    JobStatus.TRADIE_ACCEPTED: 0,
    JobStatus.PENDING: 0,
    JobStatus.ACCEPTED: 1,
    JobStatus.INFO_REQUESTED: 1,
    JobStatus.INFO_PROVIDED: 2,
    JobStatus.QUOTE_PROVIDED: 3,
    JobStatus.QUOTE_ACCEPTED: 4,
    JobStatus.BOOKING_REQUESTED: 4,
    JobStatus.BOOKING_CONFIRMED: 5,
    JobStatus.PAYMENT_COMPLETE: 6,
    JobStatus.IN_PROGRESS: 6,
    JobStatus.COMPLETED: 7,
}


def _reached_from_stamps(job: Job) -> int:
    """Last completed step of a terminal job, read from its timestamps."""
    stamps = (
        (7, job.completed_utc),
        (6, job.payment_completed_utc),
        (5, job.booking_confirmed_utc),
        (4, job.quote_accepted_utc),
        (3, job.quoted_utc),
        (2, job.info_provided_utc),
        (1, job.accepted_utc if job.status != JobStatus.TRADIE_ACCEPTED else None),
    )
    for index, stamp in stamps:
        if stamp is not None:
            return index
    return 0


def job_progress(job: Job) -> dict[str, StepState]:
    """Project a job onto the eight-step progress display.

    A step is complete once the job has moved past it, skipped if the job
    went past it without it (the optional info step), and pending otherwise.
    """
    reached = _REACHED.get(job.status)
    if reached is None:
        reached = _reached_from_stamps(job)

    info_used = job.info_requested_utc is not None or job.status == JobStatus.INFO_REQUESTED
    progress: dict[str, StepState] = {}
    for index, step in enumerate(PROGRESS_STEPS):
        if step == "info" and not info_used and reached >= 3:
            progress[step] = StepState.SKIPPED
        elif index <= reached:
            progress[step] = StepState.COMPLETE
        else:
            progress[step] = StepState.PENDING
    return progress
