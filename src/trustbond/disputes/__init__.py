"""Disputes subpackage — challenge and slashing flow."""

from trustbond.disputes.resolver import DisputeRecord, DisputeResolver, Resolution

__all__ = ["DisputeRecord", "DisputeResolver", "Resolution"]
