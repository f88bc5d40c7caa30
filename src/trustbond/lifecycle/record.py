"""Agent Trust Record — the single authoritative state of one agent."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

from trustbond.disputes.resolver import DisputeRecord
from trustbond.escrow.ledger import EscrowLedger
from trustbond.models import (
    ConsensusConfig,
    FeeConfig,
    HistoryPointer,
    LifecycleState,
)
from trustbond.validation.aggregator import GENESIS_ROOT
from trustbond.validation.scoring import NEUTRAL_SCORE


@dataclass
class AgentTrustRecord:
    """
    One record per asset (per protocol version).

    ``authority`` administers trust parameters; ``owner`` holds the
    underlying asset. They are independent identities.
    """

    asset_id: str
    authority: str
    owner: str
    bond: EscrowLedger
    fee_config: FeeConfig = field(default_factory=FeeConfig)
    consensus: ConsensusConfig = field(default_factory=ConsensusConfig)
    required_bond: int = 1000
    protocol_version: int = 1
    state: LifecycleState = LifecycleState.UNINITIALIZED
    reputation_root: str = GENESIS_ROOT
    root_height: int = 0
    score: float = NEUTRAL_SCORE
    validator_whitelist: Optional[frozenset[str]] = None
    dispute: Optional[DisputeRecord] = None
    history_pointer: Optional[HistoryPointer] = None
    last_transfer_timestamp: Optional[datetime] = None
    tvm: int = 0
    unbond_deadline: Optional[datetime] = None
    registration_fee_paid: bool = False
    migrated_to_version: Optional[int] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def record_id(self) -> str:
        return f"{self.asset_id}@v{self.protocol_version}"

    @property
    def is_terminal(self) -> bool:
        return self.state.is_terminal

    def to_dict(self) -> dict[str, Any]:
        return {
            "record_id": self.record_id,
            "asset_id": self.asset_id,
            "authority": self.authority,
            "owner": self.owner,
            "state": self.state.value,
            "protocol_version": self.protocol_version,
            "bond": {
                "amount": self.bond.amount,
                "denomination": self.bond.denomination,
                "escrow_account": self.bond.escrow_account,
            },
            "required_bond": self.required_bond,
            "reputation_root": self.reputation_root,
            "root_height": self.root_height,
            "score": self.score,
            "validator_whitelist": (
                sorted(self.validator_whitelist)
                if self.validator_whitelist is not None
                else None
            ),
            "fee_config": {
                "registration_fee": self.fee_config.registration_fee,
                "validation_tax_bps": self.fee_config.validation_tax_bps,
                "vigorish_bps": self.fee_config.vigorish_bps,
            },
            "consensus": {
                "m": self.consensus.m,
                "window_seconds": self.consensus.window_seconds,
            },
            "dispute": (
                {
                    "dispute_id": self.dispute.dispute_id,
                    "challenger": self.dispute.challenger,
                    "evidence": self.dispute.evidence,
                    "opened_at": self.dispute.opened_at.isoformat(),
                }
                if self.dispute
                else None
            ),
            "history_pointer": (
                {
                    "epoch": self.history_pointer.epoch,
                    "reference": self.history_pointer.reference,
                }
                if self.history_pointer
                else None
            ),
            "last_transfer_timestamp": (
                self.last_transfer_timestamp.isoformat()
                if self.last_transfer_timestamp
                else None
            ),
            "tvm": self.tvm,
            "unbond_deadline": (
                self.unbond_deadline.isoformat() if self.unbond_deadline else None
            ),
            "registration_fee_paid": self.registration_fee_paid,
            "migrated_to_version": self.migrated_to_version,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }
