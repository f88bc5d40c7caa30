"""
Validation Aggregator — attestation intake, M-of-N consensus, scoring.

Receipts are filtered for eligibility (whitelist, validator stake,
signature) before they count. A task's effect is committed once M
distinct qualifying validators agree on an equivalent payload within the
consensus window. Each committed batch advances the reputation root, a
hash chain over everything accepted so far.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Callable, Optional
import hashlib
import logging

from trustbond.errors import InvalidReceipt, ThresholdNotMet, ValidatorNotEligible
from trustbond.models import ConsensusConfig
from trustbond.validation.receipt import (
    AttestationSummary,
    ValidationReceipt,
    canonical_digest,
    outcome_value,
)
from trustbond.validation.scoring import NEUTRAL_SCORE, PassRateScorer, ScoringStrategy

if TYPE_CHECKING:
    from trustbond.collaborators import AttestationCollaborator

logger = logging.getLogger(__name__)

GENESIS_ROOT = "0" * 64


@dataclass
class ConsensusGroup:
    """Votes for one (task, payload) pair inside the consensus window."""

    task_id: str
    payload_digest: str
    opened_at: datetime
    expires_at: datetime
    outcome: float = 0.0
    votes: dict[str, ValidationReceipt] = field(default_factory=dict)

    def is_expired(self, now: datetime) -> bool:
        return now > self.expires_at


@dataclass
class AttestationResult:
    """Outcome of submitting one receipt."""

    task_id: str
    validator_id: str
    votes: int
    required: int
    committed: bool = False
    duplicate: bool = False
    already_committed: bool = False
    task_value: int = 0
    score: float = NEUTRAL_SCORE
    reputation_root: str = GENESIS_ROOT
    root_height: int = 0


@dataclass
class _AggregatorState:
    groups: dict[str, dict[str, ConsensusGroup]] = field(default_factory=dict)
    committed: dict[str, AttestationSummary] = field(default_factory=dict)
    accepted: list[AttestationSummary] = field(default_factory=list)
    reputation_root: str = GENESIS_ROOT
    root_height: int = 0
    score: float = NEUTRAL_SCORE


class ValidationAggregator:
    """
    Input-integrity gate and consensus tracker for one agent.

    Usage:
        agg = ValidationAggregator("asset-1", attestations)
        result = agg.submit(receipt, whitelist=None, consensus=ConsensusConfig(m=2))
        if result.committed:
            print(result.reputation_root)
    """

    def __init__(
        self,
        asset_id: str,
        attestations: AttestationCollaborator,
        strategy: Optional[ScoringStrategy] = None,
        min_validator_stake: int = 0,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.asset_id = asset_id
        self.attestations = attestations
        self.strategy = strategy or PassRateScorer()
        self.min_validator_stake = min_validator_stake
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self._state = _AggregatorState()

    # -- Eligibility --

    def check_receipt(
        self,
        receipt: ValidationReceipt,
        whitelist: Optional[frozenset[str]] = None,
    ) -> None:
        """
        Reject a receipt that must not count.

        Raises:
            InvalidReceipt: Wrong asset, missing fields, or bad signature
            ValidatorNotEligible: Not whitelisted or stake below minimum
        """
        if not receipt.validator_id or not receipt.task_id:
            raise InvalidReceipt("Receipt must name a validator and a task")
        if receipt.asset_id != self.asset_id:
            raise InvalidReceipt(
                f"Receipt addressed to {receipt.asset_id}, not {self.asset_id}"
            )
        if receipt.task_value < 0:
            raise InvalidReceipt("task_value must be >= 0")
        if whitelist is not None and receipt.validator_id not in whitelist:
            raise ValidatorNotEligible(
                f"Validator {receipt.validator_id} is not whitelisted for {self.asset_id}"
            )
        stake = self.attestations.validator_stake(receipt.validator_id)
        if stake < self.min_validator_stake:
            raise ValidatorNotEligible(
                f"Validator {receipt.validator_id} stake {stake} below "
                f"minimum {self.min_validator_stake}"
            )
        if not self.attestations.verify_receipt(receipt):
            raise InvalidReceipt(
                f"Signature verification failed for receipt from {receipt.validator_id}"
            )

    # -- Submission --

    def submit(
        self,
        receipt: ValidationReceipt,
        whitelist: Optional[frozenset[str]],
        consensus: ConsensusConfig,
        now: Optional[datetime] = None,
    ) -> AttestationResult:
        """
        Apply a receipt as an idempotent vote.

        Duplicate votes from the same validator for the same payload are
        counted once. Returns whether the task committed with this vote.
        """
        self.check_receipt(receipt, whitelist)
        now = now or self.clock()
        state = self._state
        self.prune_expired(now)

        if receipt.task_id in state.committed:
            return self._result(receipt, votes=consensus.m, required=consensus.m, already_committed=True)

        groups = state.groups.setdefault(receipt.task_id, {})

        digest = receipt.payload_digest
        group = groups.get(digest)
        if group is None:
            group = ConsensusGroup(
                task_id=receipt.task_id,
                payload_digest=digest,
                opened_at=now,
                expires_at=now + timedelta(seconds=consensus.window_seconds),
                outcome=outcome_value(receipt.payload),
            )
            groups[digest] = group

        if receipt.validator_id in group.votes:
            return self._result(receipt, votes=len(group.votes), required=consensus.m, duplicate=True)

        group.votes[receipt.validator_id] = receipt
        if len(group.votes) < consensus.m:
            return self._result(receipt, votes=len(group.votes), required=consensus.m)

        summary = self._commit(group, now)
        del state.groups[receipt.task_id]
        return self._result(
            receipt,
            votes=len(group.votes),
            required=consensus.m,
            committed=True,
            task_value=summary.task_value,
        )

    def _commit(self, group: ConsensusGroup, now: datetime) -> AttestationSummary:
        state = self._state
        validators = tuple(sorted(group.votes))
        summary = AttestationSummary(
            task_id=group.task_id,
            validator_ids=validators,
            payload_digest=group.payload_digest,
            outcome=group.outcome,
            committed_at=now,
            task_value=min(r.task_value for r in group.votes.values()),
        )
        batch_digest = canonical_digest({
            "task_id": group.task_id,
            "payload": group.payload_digest,
            "validators": list(validators),
            "receipts": sorted(r.signing_digest() for r in group.votes.values()),
        })
        state.reputation_root = hashlib.sha256(
            f"{state.reputation_root}:{batch_digest}".encode()
        ).hexdigest()
        state.root_height += 1
        state.committed[group.task_id] = summary
        state.accepted.append(summary)
        state.score = max(0.0, min(100.0, self.strategy.compute_score(list(state.accepted))))
        logger.info(
            "Committed task %s for %s with %d validators (height=%d, score=%.2f)",
            group.task_id, self.asset_id, len(validators), state.root_height, state.score,
        )
        return summary

    def _result(self, receipt: ValidationReceipt, **kwargs) -> AttestationResult:
        return AttestationResult(
            task_id=receipt.task_id,
            validator_id=receipt.validator_id,
            score=self._state.score,
            reputation_root=self._state.reputation_root,
            root_height=self._state.root_height,
            **kwargs,
        )

    # -- Queries --

    def prune_expired(self, now: Optional[datetime] = None) -> int:
        """Drop every consensus group whose window has closed, across all tasks."""
        now = now or self.clock()
        groups = self._state.groups
        dropped = 0
        for task_id in list(groups):
            task_groups = groups[task_id]
            for digest in [d for d, g in task_groups.items() if g.is_expired(now)]:
                dropped += len(task_groups.pop(digest).votes)
            if not task_groups:
                del groups[task_id]
        if dropped:
            logger.debug("Discarded %d expired votes for %s", dropped, self.asset_id)
        return dropped

    def require_consensus(self, task_id: str, consensus: ConsensusConfig) -> AttestationSummary:
        """
        Return the committed summary for a task.

        Raises:
            ThresholdNotMet: If the task has not reached M matching live votes
        """
        summary = self._state.committed.get(task_id)
        if summary is not None:
            return summary
        self.prune_expired()
        groups = self._state.groups.get(task_id, {})
        best = max((len(g.votes) for g in groups.values()), default=0)
        raise ThresholdNotMet(
            f"Task {task_id} has {best} of {consensus.m} matching qualifying votes"
        )

    def pending_votes(self, task_id: str) -> dict[str, int]:
        """Live vote counts per payload digest for an uncommitted task."""
        self.prune_expired()
        return {d: len(g.votes) for d, g in self._state.groups.get(task_id, {}).items()}

    @property
    def pending_task_count(self) -> int:
        return len(self._state.groups)

    @property
    def reputation_root(self) -> str:
        return self._state.reputation_root

    @property
    def root_height(self) -> int:
        return self._state.root_height

    @property
    def score(self) -> float:
        return self._state.score

    @property
    def accepted(self) -> list[AttestationSummary]:
        return list(self._state.accepted)

    # -- Migration and transactions --

    def seed(
        self,
        reputation_root: str,
        root_height: int,
        accepted: list[AttestationSummary],
    ) -> None:
        """Continue an existing commitment chain (used by migration)."""
        state = _AggregatorState(
            reputation_root=reputation_root,
            root_height=root_height,
            accepted=list(accepted),
            committed={s.task_id: s for s in accepted},
        )
        state.score = (
            self.strategy.compute_score(state.accepted) if accepted else NEUTRAL_SCORE
        )
        self._state = state

    def snapshot(self) -> _AggregatorState:
        return self._state

    def restore(self, snap: _AggregatorState) -> None:
        self._state = snap
