"""Validation subpackage — receipts, consensus aggregation, scoring."""

from trustbond.validation.receipt import AttestationSummary, ValidationReceipt
from trustbond.validation.scoring import (
    PassRateScorer,
    RecencyWeightedScorer,
    ScoringStrategy,
)
from trustbond.validation.aggregator import (
    GENESIS_ROOT,
    AttestationResult,
    ValidationAggregator,
)

__all__ = [
    "AttestationSummary",
    "ValidationReceipt",
    "PassRateScorer",
    "RecencyWeightedScorer",
    "ScoringStrategy",
    "GENESIS_ROOT",
    "AttestationResult",
    "ValidationAggregator",
]
