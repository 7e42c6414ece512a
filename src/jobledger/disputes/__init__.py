"""Cancellation and dispute routing."""

from jobledger.disputes.handler import DisputeHandler, ReportPlan

__all__ = [
    "DisputeHandler",
    "ReportPlan",
]
