"""
Pluggable trust scoring strategies.

The aggregator guarantees input integrity; how committed attestations
turn into a number is delegated to a ``ScoringStrategy``. Any strategy
must return a value in [0, 100] for any receipt set.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Optional, Sequence
import math

from trustbond.validation.receipt import AttestationSummary

NEUTRAL_SCORE = 50.0


class ScoringStrategy(ABC):
    """Computes a normalized score from the committed receipt set."""

    name = "abstract"

    @abstractmethod
    def compute_score(self, receipt_set: Sequence[AttestationSummary]) -> float: ...


class PassRateScorer(ScoringStrategy):
    """Mean normalized outcome. An empty history scores neutral."""

    name = "pass_rate"

    def compute_score(self, receipt_set: Sequence[AttestationSummary]) -> float:
        if not receipt_set:
            return NEUTRAL_SCORE
        return round(sum(r.outcome for r in receipt_set) / len(receipt_set), 4)


class RecencyWeightedScorer(ScoringStrategy):
    """
    Exponentially decayed mean: an attestation loses half its weight every
    ``half_life_seconds``. Value-weighted when ``weight_by_value`` is set,
    so high-value tasks move the score more.
    """

    name = "recency_weighted"

    def __init__(
        self,
        half_life_seconds: float = 30 * 24 * 3600,
        weight_by_value: bool = False,
        now: Optional[datetime] = None,
    ) -> None:
        if half_life_seconds <= 0:
            raise ValueError("half_life_seconds must be > 0")
        self.half_life_seconds = half_life_seconds
        self.weight_by_value = weight_by_value
        self._now = now

    def compute_score(self, receipt_set: Sequence[AttestationSummary]) -> float:
        if not receipt_set:
            return NEUTRAL_SCORE
        now = self._now or datetime.now(timezone.utc)
        total_weight = 0.0
        weighted = 0.0
        for r in receipt_set:
            age = max(0.0, (now - r.committed_at).total_seconds())
            weight = math.pow(0.5, age / self.half_life_seconds)
            if self.weight_by_value:
                weight *= max(1, r.task_value)
            total_weight += weight
            weighted += weight * r.outcome
        if total_weight == 0:
            return NEUTRAL_SCORE
        return round(max(0.0, min(100.0, weighted / total_weight)), 4)
