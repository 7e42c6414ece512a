"""Review model — one party's rating of the other after completion."""

from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import datetime


class ReviewerRole(str, enum.Enum):
    CLIENT = "client"
    TRADIE = "tradie"


@dataclass(frozen=True)
class Review:
    """A single review of one party by the other. Immutable once written.

    At most one review exists per (job_id, reviewer_uid).
    """
    job_id: str
    reviewed_uid: str
    reviewer_uid: str
    reviewer_role: ReviewerRole
    rating: int
    comment: str
    created_utc: datetime
    reviewer_name: str = ""
    reviewed_name: str = ""

    @property
    def key(self) -> tuple[str, str]:
        return (self.job_id, self.reviewer_uid)
