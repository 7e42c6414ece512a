"""Core data models for the job lifecycle and escrow ledger."""

from jobledger.models.job import (
    ActorRole,
    Advert,
    Booking,
    Job,
    JobAction,
    JobReport,
    JobSource,
    JobStatus,
    Party,
    Quote,
    ServiceLocation,
)
from jobledger.models.ledger import (
    BalanceDelta,
    FinanceField,
    Finances,
    PaymentSplit,
    Transaction,
    TransactionStatus,
    TransactionType,
)
from jobledger.models.profile import Profile
from jobledger.models.review import Review, ReviewerRole

__all__ = [
    "ActorRole",
    "Advert",
    "Booking",
    "Job",
    "JobAction",
    "JobReport",
    "JobSource",
    "JobStatus",
    "Party",
    "Quote",
    "ServiceLocation",
    "BalanceDelta",
    "FinanceField",
    "Finances",
    "PaymentSplit",
    "Transaction",
    "TransactionStatus",
    "TransactionType",
    "Profile",
    "Review",
    "ReviewerRole",
]
