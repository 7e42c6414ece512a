"""Job lifecycle and escrow ledger for a trades hiring marketplace."""

__version__ = "0.1.0"
