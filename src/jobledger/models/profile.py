"""Profile model — the slice of a user profile the job core touches."""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Optional

from jobledger.models.ledger import Finances


@dataclass
class Profile:
    """A user's profile as seen by the job core.

    ``work_calendar`` maps date → time slot → {"reason": ..., "jobId": ...}.
    ``rating``/``reviews`` are derived from client reviews and are
    recomputed from the full review set, never incremented.
    """
    uid: str
    display_name: str
    role: str
    hourly_rate: Optional[Decimal] = None
    finances: Finances = field(default_factory=Finances)
    work_calendar: dict[str, Any] = field(default_factory=dict)
    rating: float = 0.0
    reviews: int = 0
