"""Dispute/cancellation handler — one entry point, three outcomes.

    archived job                       → append a report, nothing else
    PaymentComplete/InProgress/Completed → Dispute (funds frozen in place)
    any other non-terminal status      → Cancelled

Disputes have no resolution workflow here. Refunds, releases and partial
splits are admin actions taken directly on the store.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional, Union

from jobledger.engine import validation
from jobledger.engine.state_machine import DISPUTABLE, JobStateMachine, TransitionPlan
from jobledger.errors import InvalidTransitionError
from jobledger.models.job import Job, JobAction, JobReport, JobStatus


@dataclass(frozen=True)
class ReportPlan:
    """A post-hoc dispute flag on an archived job."""
    job: Job
    expected_status: JobStatus
    expected_version: int
    report: JobReport


class DisputeHandler:
    """Routes a cancel-or-dispute request to the right outcome.

    Usage:
        handler = DisputeHandler(machine)
        plan = handler.plan(job, actor_uid, "No-show")
    """

    def __init__(self, machine: JobStateMachine) -> None:
        self._machine = machine

    @staticmethod
    def classify(job: Job) -> Optional[JobAction]:
        """Return the transition a request would take, or None for a report."""
        if job.archived:
            return None
        if job.status in DISPUTABLE:
            return JobAction.DISPUTE
        return JobAction.CANCEL

    def plan(
        self,
        job: Job,
        actor_uid: str,
        reason: Any,
        now: Optional[datetime] = None,
    ) -> Union[TransitionPlan, ReportPlan]:
        """Plan a cancellation, dispute, or report.

        Raises ValidationError for a blank reason (checked first) and
        InvalidTransitionError for non-parties and terminal jobs.
        """
        text = validation.require_text(reason, "Reason")
        if now is None:
            now = datetime.now(timezone.utc)

        action = self.classify(job)
        if action is None:
            if not job.is_party(actor_uid):
                raise InvalidTransitionError(
                    f"{job.job_id}: {actor_uid} is not a party to this job"
                )
            updated = copy.deepcopy(job)
            report = JobReport(reason=text, reported_by=actor_uid, reported_utc=now)
            updated.reports.append(report)
            return ReportPlan(
                job=updated,
                expected_status=job.status,
                expected_version=job.version,
                report=report,
            )

        if job.is_terminal and job.status not in DISPUTABLE:
            raise InvalidTransitionError(
                f"{job.job_id}: job is already {job.status.value}"
            )
        return self._machine.plan(job, actor_uid, action, {"reason": text}, now=now)
