"""Error taxonomy for job lifecycle operations.

Every rejected action raises one of these synchronously. None of them
leave partial writes behind: rejection happens either before the write
batch is built or inside the store's atomic commit.
"""

from __future__ import annotations


class JobError(Exception):
    """Base class for all job lifecycle errors."""


class ValidationError(JobError):
    """A required field is missing or a value is invalid.

    Surfaced to the acting user. No state change.
    """


class InvalidTransitionError(JobError):
    """The action is not legal from the job's current status, or the
    acting user is not the party the transition requires.

    Callers should re-fetch the job before offering the action again.
    """


class JobNotFoundError(InvalidTransitionError):
    """No job exists with the given ID."""


class ConcurrencyConflictError(JobError):
    """Another writer changed the job between planning and commit."""


class PersistenceError(JobError):
    """Durable storage is unavailable. Nothing was applied."""
