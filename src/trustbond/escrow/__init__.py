"""Escrow subpackage — bond custody with a non-negative balance."""

from trustbond.escrow.ledger import EscrowLedger, LedgerEntry, LedgerEntryType

__all__ = [
    "EscrowLedger",
    "LedgerEntry",
    "LedgerEntryType",
]
