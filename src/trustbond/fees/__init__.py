"""Fee routing subpackage."""

from trustbond.fees.router import FeeKind, FeeRouter, FeeRouting, SlashSplit

__all__ = [
    "FeeKind",
    "FeeRouter",
    "FeeRouting",
    "SlashSplit",
]
