"""
Migration Manager — opt-in protocol upgrades and sovereign exit.

Migration copies bond, reputation commitment and lifecycle position into
a successor record one protocol version up; the old record becomes
Migrated. Sovereign exit burns the asset-bound record and hands back a
portable identity carrying the bond value and the reputation commitment.
Both are explicit authority actions and both are one-way.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Optional
import copy

from trustbond.escrow.ledger import EscrowLedger
from trustbond.lifecycle.record import AgentTrustRecord
from trustbond.validation.receipt import canonical_digest

if TYPE_CHECKING:
    from trustbond.lifecycle.state_machine import LifecycleStateMachine


@dataclass(frozen=True)
class PortableIdentity:
    """Self-contained representation of an exited agent."""

    asset_id: str
    protocol_version: int
    bond_value: int
    denomination: str
    reputation_root: str
    root_height: int
    score: float
    issued_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def digest(self) -> str:
        return canonical_digest(self._body())

    def _body(self) -> dict[str, Any]:
        return {
            "asset_id": self.asset_id,
            "protocol_version": self.protocol_version,
            "bond_value": self.bond_value,
            "denomination": self.denomination,
            "reputation_root": self.reputation_root,
            "root_height": self.root_height,
            "score": self.score,
            "issued_at": self.issued_at.isoformat(),
        }

    def to_dict(self) -> dict[str, Any]:
        return {**self._body(), "digest": self.digest}


@dataclass
class MigrationResult:
    """Outcome of migrating a record to the next protocol version."""

    asset_id: str
    from_version: int
    to_version: int
    bond_carried: int
    reputation_root: str
    successor: LifecycleStateMachine


class MigrationManager:
    """Builds successor records and portable identities."""

    def build_successor(
        self,
        machine: LifecycleStateMachine,
        now: datetime,
        new_authority: Optional[str] = None,
    ) -> LifecycleStateMachine:
        """
        Create the next-version machine for ``machine``.

        The successor starts in the same lifecycle state with the same
        parameters, an empty escrow (funded by the caller), the same
        reputation chain and any open dispute.
        """
        old = machine.record
        record = AgentTrustRecord(
            asset_id=old.asset_id,
            authority=new_authority or old.authority,
            owner=old.owner,
            bond=EscrowLedger(
                denomination=old.bond.denomination,
                escrow_account=f"escrow:{old.asset_id}:v{old.protocol_version + 1}",
            ),
            fee_config=copy.deepcopy(old.fee_config),
            consensus=copy.deepcopy(old.consensus),
            required_bond=old.required_bond,
            protocol_version=old.protocol_version + 1,
            state=old.state,
            reputation_root=old.reputation_root,
            root_height=old.root_height,
            score=old.score,
            validator_whitelist=old.validator_whitelist,
            history_pointer=copy.deepcopy(old.history_pointer),
            last_transfer_timestamp=old.last_transfer_timestamp,
            tvm=old.tvm,
            unbond_deadline=old.unbond_deadline,
            registration_fee_paid=old.registration_fee_paid,
            created_at=now,
            updated_at=now,
        )
        successor = type(machine)(
            record=record,
            config=machine.config,
            assets=machine.assets,
            attestations=machine.aggregator.attestations,
            archive=machine.archive,
            event_bus=machine.event_bus,
            strategy=machine.aggregator.strategy,
            clock=machine.clock,
        )
        successor.aggregator.seed(old.reputation_root, old.root_height, machine.aggregator.accepted)
        active = machine.disputes.active
        if active is not None:
            successor.disputes.adopt(active)
            record.dispute = successor.disputes.active
        return successor

    @staticmethod
    def portable_identity(record: AgentTrustRecord, bond_value: int, now: datetime) -> PortableIdentity:
        return PortableIdentity(
            asset_id=record.asset_id,
            protocol_version=record.protocol_version,
            bond_value=bond_value,
            denomination=record.bond.denomination,
            reputation_root=record.reputation_root,
            root_height=record.root_height,
            score=record.score,
            issued_at=now,
        )
