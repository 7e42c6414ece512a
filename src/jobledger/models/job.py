"""Job models — lifecycle status, negotiation payloads, and the job record.

All monetary values use Decimal. The job record is mutable only through
transition plans produced by the state machine; every committed change
bumps ``version`` so concurrent writers can be detected.

Job lifecycle:
    Pending → Accepted → [InfoRequested → InfoProvided] → QuoteProvided
      → QuoteAccepted → BookingRequested → BookingConfirmed
      → PaymentComplete → InProgress → Completed
    TradieAccepted → Pending            (job board acceptance, client approves)
    Pending…BookingConfirmed → Cancelled
    PaymentComplete/InProgress/Completed → Dispute
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Optional


class JobStatus(str, enum.Enum):
    """Lifecycle status of a job. Values match the stored strings."""
    PENDING = "Pending"
    TRADIE_ACCEPTED = "TradieAccepted"
    ACCEPTED = "Accepted"
    INFO_REQUESTED = "InfoRequested"
    INFO_PROVIDED = "InfoProvided"
    QUOTE_PROVIDED = "QuoteProvided"
    QUOTE_DECLINED = "QuoteDeclined"
    QUOTE_ACCEPTED = "QuoteAccepted"
    BOOKING_REQUESTED = "BookingRequested"
    BOOKING_CONFIRMED = "BookingConfirmed"
    PAYMENT_COMPLETE = "PaymentComplete"
    IN_PROGRESS = "InProgress"
    COMPLETED = "Completed"
    DECLINED = "Declined"
    CANCELLED = "Cancelled"
    DISPUTE = "Dispute"


TERMINAL_STATES: frozenset[JobStatus] = frozenset({
    JobStatus.QUOTE_DECLINED,
    JobStatus.COMPLETED,
    JobStatus.DECLINED,
    JobStatus.CANCELLED,
    JobStatus.DISPUTE,
})

# Funds have been escrowed once a job reaches any of these.
PAID_STATES: frozenset[JobStatus] = frozenset({
    JobStatus.PAYMENT_COMPLETE,
    JobStatus.IN_PROGRESS,
    JobStatus.COMPLETED,
})


class JobAction(str, enum.Enum):
    """Actions a party (or the system) can take on an existing job."""
    APPROVE = "approve"
    DECLINE = "decline"
    ACCEPT = "accept"
    REQUEST_INFO = "request_info"
    SUBMIT_INFO = "submit_info"
    SUBMIT_QUOTE = "submit_quote"
    ACCEPT_QUOTE = "accept_quote"
    DECLINE_QUOTE = "decline_quote"
    SUBMIT_BOOKING = "submit_booking"
    CONFIRM_BOOKING = "confirm_booking"
    PAY = "pay"
    START_WORK = "start_work"
    COMPLETE = "complete"
    CANCEL = "cancel"
    DISPUTE = "dispute"


class ActorRole(str, enum.Enum):
    """Which party a transition requires."""
    CLIENT = "client"
    TRADIE = "tradie"
    EITHER = "either"
    SYSTEM = "system"


class JobSource(str, enum.Enum):
    DIRECT = "direct"
    JOB_BOARD = "job_board"


@dataclass(frozen=True)
class Party:
    """Identity of an acting user, supplied by the identity collaborator."""
    uid: str
    display_name: str
    role: str  # "client" | "tradie"


@dataclass(frozen=True)
class Quote:
    hourly_rate: Decimal
    estimated_hours: Decimal
    total: Decimal
    notes: str = ""


@dataclass(frozen=True)
class Booking:
    date: str  # YYYY-MM-DD
    time_slot: str


@dataclass(frozen=True)
class ServiceLocation:
    address: str
    phone: str
    email: str = ""


@dataclass(frozen=True)
class JobReport:
    """Post-hoc dispute flag raised against an archived job."""
    reason: str
    reported_by: str
    reported_utc: datetime


@dataclass
class Job:
    """One hire engagement between a client and a tradie.

    Negotiation payloads are None until their step is reached. The
    financial snapshot is set once at payment and never changes after.
    """
    job_id: str
    client_uid: str
    tradie_uid: str
    title: str
    description: str = ""
    budget: str = ""
    hourly_rate: Optional[Decimal] = None
    estimated_hours: Optional[Decimal] = None
    urgency: str = "standard"
    client_name: str = ""
    tradie_name: str = ""
    source: JobSource = JobSource.DIRECT
    status: JobStatus = JobStatus.PENDING

    # Status-entry timestamps
    created_utc: Optional[datetime] = None
    approved_utc: Optional[datetime] = None
    accepted_utc: Optional[datetime] = None
    info_requested_utc: Optional[datetime] = None
    info_provided_utc: Optional[datetime] = None
    quoted_utc: Optional[datetime] = None
    quote_accepted_utc: Optional[datetime] = None
    quote_declined_utc: Optional[datetime] = None
    booking_requested_utc: Optional[datetime] = None
    booking_confirmed_utc: Optional[datetime] = None
    payment_completed_utc: Optional[datetime] = None
    started_utc: Optional[datetime] = None
    completed_utc: Optional[datetime] = None
    cancelled_utc: Optional[datetime] = None
    declined_utc: Optional[datetime] = None
    archived_utc: Optional[datetime] = None

    # Negotiation payloads
    info_photos: Optional[list[str]] = None
    info_description: Optional[str] = None
    quote: Optional[Quote] = None
    booking: Optional[Booking] = None
    service_location: Optional[ServiceLocation] = None

    # Financial snapshot
    payment_amount: Optional[Decimal] = None
    commission: Optional[Decimal] = None
    tradie_amount: Optional[Decimal] = None

    # Review flags
    awaiting_review: bool = False
    client_reviewed: bool = False
    tradie_reviewed: bool = False

    # Terminal markers
    archived: bool = False
    invoice_id: Optional[str] = None
    cancel_reason: Optional[str] = None
    decline_reason: Optional[str] = None
    cancelled_by: Optional[str] = None
    reports: list[JobReport] = field(default_factory=list)

    version: int = 0

    def is_party(self, uid: str) -> bool:
        return uid in (self.client_uid, self.tradie_uid)

    def role_of(self, uid: str) -> Optional[ActorRole]:
        """Return the role ``uid`` plays on this job, or None."""
        if uid == self.client_uid:
            return ActorRole.CLIENT
        if uid == self.tradie_uid:
            return ActorRole.TRADIE
        return None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATES


@dataclass
class Advert:
    """A client-posted job visible to tradies on the job board."""
    advert_id: str
    client_uid: str
    title: str
    description: str = ""
    budget: str = ""
    client_name: str = ""
    created_utc: Optional[datetime] = None
