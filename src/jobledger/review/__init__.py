"""Post-completion reviews, archival and invoice assignment."""

from jobledger.review.gate import InvoiceIssuer, ReviewGate, ReviewPlan

__all__ = [
    "InvoiceIssuer",
    "ReviewGate",
    "ReviewPlan",
]
