"""
Dispute Resolver — challenge, resolution and slashing severity.

A challenger opens a dispute with an evidence reference; governance later
resolves it. An upheld dispute seizes a deterministic share of the bond
(Minor 10%, Major 50%, Critical 100% plus an asset-burn signal). Each
dispute is slashed exactly once.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional
import copy
import logging
import uuid

from trustbond.errors import AlreadyChallenged, DisputeAlreadyResolved
from trustbond.escrow.ledger import EscrowLedger
from trustbond.fees.router import FeeRouter, SlashSplit
from trustbond.models import DisputeOutcome, FeeConfig, LifecycleState, SlashingSeverity

logger = logging.getLogger(__name__)


@dataclass
class DisputeRecord:
    """An open or resolved challenge against an agent."""

    dispute_id: str = field(default_factory=lambda: f"disp:{uuid.uuid4().hex[:8]}")
    asset_id: str = ""
    challenger: str = ""
    evidence: str = ""
    opened_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    prior_state: LifecycleState = LifecycleState.ACTIVE
    resolved_at: Optional[datetime] = None
    outcome: Optional[DisputeOutcome] = None
    severity: Optional[SlashingSeverity] = None
    seized_amount: int = 0

    @property
    def is_active(self) -> bool:
        return self.resolved_at is None


@dataclass
class Resolution:
    """Result of resolving a dispute."""

    dispute: DisputeRecord
    next_state: LifecycleState
    seized: int = 0
    split: Optional[SlashSplit] = None
    burn_asset: bool = False


class DisputeResolver:
    """
    Manages the challenge → resolution flow for one agent.

    At most one dispute is active at a time. Resolved disputes stay in the
    history so re-resolution can be detected and rejected.
    """

    def __init__(self, asset_id: str) -> None:
        self.asset_id = asset_id
        self._disputes: dict[str, DisputeRecord] = {}
        self._active_id: Optional[str] = None

    def open(
        self,
        challenger: str,
        evidence: str,
        prior_state: LifecycleState,
        opened_at: Optional[datetime] = None,
    ) -> DisputeRecord:
        """
        Open a dispute.

        Raises:
            AlreadyChallenged: If a dispute is already active
        """
        if self.active is not None:
            raise AlreadyChallenged(
                f"Asset {self.asset_id} already has open dispute {self._active_id}"
            )
        if not challenger:
            raise ValueError("challenger identity is required")
        record = DisputeRecord(
            asset_id=self.asset_id,
            challenger=challenger,
            evidence=evidence,
            prior_state=prior_state,
            opened_at=opened_at or datetime.now(timezone.utc),
        )
        self._disputes[record.dispute_id] = record
        self._active_id = record.dispute_id
        return record

    def resolve(
        self,
        dispute: DisputeRecord,
        outcome: DisputeOutcome,
        severity: Optional[SlashingSeverity],
        bond: EscrowLedger,
        fees: FeeRouter,
        fee_config: FeeConfig,
        resolved_at: Optional[datetime] = None,
    ) -> Resolution:
        """
        Resolve a dispute, seizing the bond when upheld.

        Raises:
            DisputeAlreadyResolved: If the dispute was resolved before
            ValueError: If an upheld outcome carries no severity
        """
        if not dispute.is_active:
            raise DisputeAlreadyResolved(
                f"Dispute {dispute.dispute_id} was resolved at "
                f"{dispute.resolved_at.isoformat()}"
            )
        if outcome == DisputeOutcome.UPHELD and severity is None:
            raise ValueError("An upheld dispute requires a slashing severity")

        if outcome == DisputeOutcome.DISMISSED:
            resolution = Resolution(dispute=dispute, next_state=dispute.prior_state)
        else:
            seized = bond.seize(
                severity.penalty_pct,
                details=f"{severity.value} slash for {dispute.dispute_id}",
            )
            split = fees.split_slash(seized, fee_config, reference=dispute.dispute_id)
            dispute.severity = severity
            dispute.seized_amount = seized
            resolution = Resolution(
                dispute=dispute,
                next_state=severity.resulting_state,
                seized=seized,
                split=split,
                burn_asset=severity.burns_asset,
            )
            logger.warning(
                "Slashed %s: severity=%s seized=%d vigorish=%d remaining=%d",
                self.asset_id, severity.value, seized, split.vigorish, bond.amount,
            )

        dispute.outcome = outcome
        dispute.resolved_at = resolved_at or datetime.now(timezone.utc)
        self._active_id = None
        return resolution

    def get(self, dispute_id: str) -> Optional[DisputeRecord]:
        return self._disputes.get(dispute_id)

    @property
    def active(self) -> Optional[DisputeRecord]:
        if self._active_id is None:
            return None
        return self._disputes[self._active_id]

    @property
    def latest(self) -> Optional[DisputeRecord]:
        if not self._disputes:
            return None
        return list(self._disputes.values())[-1]

    def get_history(self) -> list[DisputeRecord]:
        return list(self._disputes.values())

    def adopt(self, dispute: DisputeRecord) -> None:
        """Carry an open dispute over from a migrated record."""
        carried = copy.deepcopy(dispute)
        carried.asset_id = self.asset_id
        self._disputes[carried.dispute_id] = carried
        if carried.is_active:
            self._active_id = carried.dispute_id

    def snapshot(self) -> tuple[dict[str, DisputeRecord], Optional[str]]:
        return self._disputes, self._active_id

    def restore(self, snap: tuple[dict[str, DisputeRecord], Optional[str]]) -> None:
        self._disputes, self._active_id = snap
