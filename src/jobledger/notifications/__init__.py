"""Read-only projections for badges and progress displays."""

from jobledger.notifications.pending import (
    StepState,
    count_pending_actions,
    job_progress,
    pending_jobs,
)

__all__ = [
    "StepState",
    "count_pending_actions",
    "job_progress",
    "pending_jobs",
]
