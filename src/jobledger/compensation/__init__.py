"""Compensation subsystem — commission split and escrow ledger planning."""

from jobledger.compensation.commission import CommissionCalculator
from jobledger.compensation.ledger import EscrowLedger

__all__ = [
    "CommissionCalculator",
    "EscrowLedger",
]
