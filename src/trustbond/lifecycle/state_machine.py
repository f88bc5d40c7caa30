"""
Lifecycle State Machine — orchestrator for one agent trust record.

Every external action enters here. The machine checks that the record is
not terminal, that the caller holds the role the action needs, and that
the action is legal from the current state, then delegates to the escrow
ledger, validation aggregator, dispute resolver, fee router or migration
manager.

States:
    Uninitialized → PendingBond → Active ⇄ Challenged → {Active, Frozen, Dead}
    Active → Unbonding → {Active (cancelled), Thawed}
    Frozen → Active (top-up)
    any non-Dead → Migrated

Each action runs as a transaction under the record's lock: the full
component state is snapshotted first and restored if anything raises, so
a failed call has no effect. The collateral monitor runs after every
successful action and may override the resulting state with Frozen.
"""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Iterable, Iterator, Optional
import copy
import logging
import threading

from trustbond.collaborators import (
    ArchivalCollaborator,
    AssetCollaborator,
    AttestationCollaborator,
)
from trustbond.collateral.monitor import CollateralMonitor
from trustbond.config import ProtocolConfig
from trustbond.disputes.resolver import DisputeRecord, DisputeResolver
from trustbond.errors import (
    AlreadyChallenged,
    ArchiveEpochSealed,
    CollateralBelowMinimum,
    DisputeAlreadyResolved,
    GracePeriodNotElapsed,
    InsufficientFee,
    InvalidReceipt,
    InvalidStateTransition,
    RecordTerminal,
    Unauthorized,
    ValidatorNotEligible,
)
from trustbond.fees.router import FeeRouter
from trustbond.lifecycle.record import AgentTrustRecord
from trustbond.migration.manager import MigrationManager, MigrationResult, PortableIdentity
from trustbond.models import (
    Action,
    ConsensusConfig,
    DisputeOutcome,
    FeeConfig,
    HistoryPointer,
    LifecycleState,
    Role,
    SlashingSeverity,
)
from trustbond.observability.event_bus import EventType, TrustEvent, TrustEventBus
from trustbond.validation.aggregator import AttestationResult, ValidationAggregator
from trustbond.validation.receipt import AttestationSummary, ValidationReceipt
from trustbond.validation.scoring import ScoringStrategy

logger = logging.getLogger(__name__)

S = LifecycleState
_LIVE = frozenset(s for s in LifecycleState if not s.is_terminal)

# Which states each action is legal from. Terminal states are rejected
# before this table is consulted.
LEGAL_STATES: dict[Action, frozenset[LifecycleState]] = {
    Action.ACTIVATE: frozenset({S.UNINITIALIZED, S.PENDING_BOND, S.ACTIVE}),
    Action.SUBMIT_ATTESTATION: frozenset({S.ACTIVE, S.CHALLENGED, S.UNBONDING}),
    Action.OPEN_DISPUTE: frozenset({S.ACTIVE, S.UNBONDING}),
    Action.RESOLVE_DISPUTE: frozenset({S.CHALLENGED}),
    Action.REQUEST_UNBOND: frozenset({S.ACTIVE}),
    Action.CANCEL_UNBOND: frozenset({S.UNBONDING}),
    Action.FINALIZE_UNBOND: frozenset({S.UNBONDING}),
    Action.TOP_UP: frozenset({S.FROZEN}),
    Action.REACTIVATE: frozenset({S.FROZEN}),
    Action.WITHDRAW: frozenset({S.THAWED}),
    Action.BURN: frozenset({S.UNINITIALIZED, S.PENDING_BOND, S.THAWED}),
    Action.REPORT_TVM: _LIVE,
    Action.UPDATE_FEE_CONFIG: _LIVE,
    Action.SET_WHITELIST: _LIVE,
    Action.CONFIGURE_CONSENSUS: _LIVE,
    Action.TRANSFER_AUTHORITY: _LIVE,
    Action.ARCHIVE_HISTORY: _LIVE,
    Action.SYNC_TRANSFER: _LIVE,
    Action.MIGRATE: _LIVE,
    Action.SOVEREIGN_EXIT: _LIVE - {S.CHALLENGED},
}

REQUIRED_ROLE: dict[Action, Role] = {
    Action.ACTIVATE: Role.AUTHORITY,
    Action.SUBMIT_ATTESTATION: Role.ANY,
    Action.OPEN_DISPUTE: Role.ANY,
    Action.RESOLVE_DISPUTE: Role.GOVERNANCE,
    Action.REQUEST_UNBOND: Role.AUTHORITY,
    Action.CANCEL_UNBOND: Role.AUTHORITY,
    Action.FINALIZE_UNBOND: Role.OWNER,
    Action.TOP_UP: Role.AUTHORITY,
    Action.REACTIVATE: Role.AUTHORITY,
    Action.WITHDRAW: Role.OWNER,
    Action.BURN: Role.AUTHORITY,
    Action.REPORT_TVM: Role.GOVERNANCE,
    Action.UPDATE_FEE_CONFIG: Role.GOVERNANCE,
    Action.SET_WHITELIST: Role.AUTHORITY,
    Action.CONFIGURE_CONSENSUS: Role.AUTHORITY,
    Action.TRANSFER_AUTHORITY: Role.AUTHORITY,
    Action.ARCHIVE_HISTORY: Role.AUTHORITY,
    Action.SYNC_TRANSFER: Role.ANY,
    Action.MIGRATE: Role.AUTHORITY,
    Action.SOVEREIGN_EXIT: Role.AUTHORITY,
}

# The asset may only move freely once the bond has been released.
_ASSET_FROZEN_STATES = frozenset(
    {S.PENDING_BOND, S.ACTIVE, S.CHALLENGED, S.FROZEN, S.UNBONDING}
)


@dataclass
class TransitionResult:
    """Success payload of a lifecycle action."""

    asset_id: str
    action: Action
    previous_state: LifecycleState
    state: LifecycleState
    bond: int
    payout: int = 0
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "asset_id": self.asset_id,
            "action": self.action.value,
            "previous_state": self.previous_state.value,
            "state": self.state.value,
            "bond": self.bond,
            "payout": self.payout,
            "details": self.details,
        }


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class LifecycleStateMachine:
    """
    Composition root for one agent: owns the record and the components
    that act on it.

    Usage:
        machine = LifecycleStateMachine(record, config, assets, attestations)
        machine.activate("auth", bond_amount=1000, fee=50)
        machine.open_dispute("challenger", "ipfs://evidence")
        machine.resolve_dispute("governance", DisputeOutcome.UPHELD, SlashingSeverity.MINOR)
    """

    def __init__(
        self,
        record: AgentTrustRecord,
        config: ProtocolConfig,
        assets: AssetCollaborator,
        attestations: AttestationCollaborator,
        archive: Optional[ArchivalCollaborator] = None,
        event_bus: Optional[TrustEventBus] = None,
        strategy: Optional[ScoringStrategy] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.record = record
        self.config = config
        self.assets = assets
        self.archive = archive
        self.event_bus = event_bus
        self.clock = clock or _utcnow
        self.aggregator = ValidationAggregator(
            record.asset_id,
            attestations,
            strategy=strategy,
            min_validator_stake=config.min_validator_stake,
            clock=self.clock,
        )
        self.disputes = DisputeResolver(record.asset_id)
        self.fees = FeeRouter(
            treasury=config.treasury,
            insurance_pool=config.insurance_pool,
            remainder_policy=config.slash_remainder,
        )
        self.collateral = CollateralMonitor(config.minimum_collateral_ratio)
        self.migrations = MigrationManager()
        self._lock = threading.RLock()
        self._pending_events: list[TrustEvent] = []
        self._effects: list[tuple[Callable[[], None], Optional[Callable[[], None]]]] = []

    # -- Properties --

    @property
    def asset_id(self) -> str:
        return self.record.asset_id

    @property
    def state(self) -> LifecycleState:
        return self.record.state

    @property
    def bond(self) -> int:
        return self.record.bond.amount

    # -- Activation --

    def activate(self, caller: str, bond_amount: int, fee: int = 0) -> TransitionResult:
        """
        Fund the bond and collect the registration fee.

        Reaches Active only once the escrow holds ``required_bond``;
        partial funding leaves the record in PendingBond. The fee is
        charged once; calling again after activation is a no-op.
        """
        with self._transaction(Action.ACTIVATE, caller) as previous:
            record = self.record
            if record.state == S.ACTIVE:
                return self._result(Action.ACTIVATE, previous, noop=True)
            if bond_amount < 0 or fee < 0:
                raise ValueError("bond_amount and fee must be >= 0")

            fee_charged = 0
            if not record.registration_fee_paid:
                required_fee = record.fee_config.registration_fee
                if fee < required_fee:
                    raise InsufficientFee(
                        f"Registration fee is {required_fee}, {fee} supplied"
                    )
                fee_charged = self.fees.collect_registration(record.fee_config, reference=record.record_id)
                record.registration_fee_paid = True
                self._emit(EventType.FEE_COLLECTED, caller, kind="registration", amount=fee_charged)

            if bond_amount > 0:
                record.bond.fund(bond_amount, details="activation funding", counterparty=caller)
                self._emit(EventType.BOND_FUNDED, caller, amount=bond_amount, balance=record.bond.amount)

            if record.bond.amount >= record.required_bond:
                self._transition(S.ACTIVE, caller, reason="bond funded")
                self._emit(EventType.ACTIVATED, caller, bond=record.bond.amount)
            else:
                if record.state != S.PENDING_BOND:
                    self._transition(S.PENDING_BOND, caller, reason="partial funding")
                self._emit(
                    EventType.ACTIVATION_PENDING,
                    caller,
                    bond=record.bond.amount,
                    required=record.required_bond,
                )
            return self._result(
                Action.ACTIVATE,
                previous,
                fee_charged=fee_charged,
                required_bond=record.required_bond,
                shortfall=max(0, record.required_bond - record.bond.amount),
            )

    # -- Attestations --

    def submit_attestation(
        self, receipt: ValidationReceipt, caller: Optional[str] = None
    ) -> AttestationResult:
        """
        Hand a validation receipt to the aggregator.

        Never changes the lifecycle state, but a committed task advances
        the reputation root and routes the validation tax.
        """
        caller = caller or receipt.validator_id
        try:
            with self._transaction(Action.SUBMIT_ATTESTATION, caller):
                record = self.record
                result = self.aggregator.submit(
                    receipt,
                    whitelist=record.validator_whitelist,
                    consensus=record.consensus,
                    now=self.clock(),
                )
                self._emit(
                    EventType.ATTESTATION_ACCEPTED,
                    caller,
                    task_id=receipt.task_id,
                    validator_id=receipt.validator_id,
                    votes=result.votes,
                    required=result.required,
                    duplicate=result.duplicate,
                )
                if result.committed:
                    record.reputation_root = result.reputation_root
                    record.root_height = result.root_height
                    record.score = result.score
                    tax = self.fees.collect_validation_tax(
                        result.task_value, record.fee_config, reference=receipt.task_id
                    )
                    self._emit(
                        EventType.CONSENSUS_REACHED,
                        caller,
                        task_id=receipt.task_id,
                        reputation_root=result.reputation_root,
                        root_height=result.root_height,
                        score=result.score,
                        validation_tax=tax,
                    )
                return result
        except (InvalidReceipt, ValidatorNotEligible) as exc:
            logger.warning(
                "Rejected receipt from %s for %s: %s",
                receipt.validator_id, self.asset_id, exc.message,
            )
            self._publish([
                self._event(
                    EventType.ATTESTATION_REJECTED,
                    caller,
                    task_id=receipt.task_id,
                    validator_id=receipt.validator_id,
                    error=exc.code,
                )
            ])
            raise

    def require_consensus(self, task_id: str) -> AttestationSummary:
        """Committed summary for a task, or ThresholdNotMet."""
        with self._lock:
            return self.aggregator.require_consensus(task_id, self.record.consensus)

    # -- Disputes --

    def open_dispute(self, challenger: str, evidence: str) -> DisputeRecord:
        """Challenge the agent. Only one dispute may be open at a time."""
        with self._transaction(Action.OPEN_DISPUTE, challenger, check_state=False):
            active = self.disputes.active
            if active is not None:
                raise AlreadyChallenged(
                    f"Asset {self.asset_id} already has open dispute {active.dispute_id}"
                )
            self._require_state(Action.OPEN_DISPUTE)
            dispute = self.disputes.open(
                challenger, evidence, prior_state=self.record.state, opened_at=self.clock()
            )
            self.record.dispute = dispute
            self._transition(S.CHALLENGED, challenger, reason=f"dispute {dispute.dispute_id}")
            self._emit(
                EventType.DISPUTE_OPENED,
                challenger,
                dispute_id=dispute.dispute_id,
                evidence=evidence,
            )
            return dispute

    def resolve_dispute(
        self,
        caller: str,
        outcome: DisputeOutcome,
        severity: Optional[SlashingSeverity] = None,
        dispute_id: Optional[str] = None,
    ) -> TransitionResult:
        """
        Resolve the open dispute.

        Upheld: seize by severity (Minor → Active, Major → Frozen,
        Critical → Dead and asset burn). Dismissed: return to the state
        the agent was in when challenged, no penalty.
        """
        with self._transaction(Action.RESOLVE_DISPUTE, caller, check_state=False) as previous:
            dispute = self._dispute_to_resolve(dispute_id)
            self._require_state(Action.RESOLVE_DISPUTE)
            record = self.record
            resolution = self.disputes.resolve(
                dispute,
                outcome,
                severity,
                bond=record.bond,
                fees=self.fees,
                fee_config=record.fee_config,
                resolved_at=self.clock(),
            )
            record.dispute = None
            if resolution.next_state != S.UNBONDING:
                record.unbond_deadline = None

            if outcome == DisputeOutcome.DISMISSED:
                self._emit(EventType.DISPUTE_DISMISSED, caller, dispute_id=dispute.dispute_id)
            else:
                self._emit(
                    EventType.SLASH_EXECUTED,
                    caller,
                    dispute_id=dispute.dispute_id,
                    severity=severity.value,
                    seized=resolution.seized,
                    vigorish=resolution.split.vigorish,
                    remainder=resolution.split.remainder,
                    remainder_policy=resolution.split.remainder_policy.value,
                )

            if resolution.burn_asset:
                record.bond.close(details=f"critical slash {dispute.dispute_id}")
                self._transition(S.DEAD, caller, reason="critical slash")
                self._burn_asset(caller)
            else:
                self._transition(resolution.next_state, caller, reason=f"dispute {outcome.value}")

            return self._result(
                Action.RESOLVE_DISPUTE,
                previous,
                dispute_id=dispute.dispute_id,
                outcome=outcome.value,
                severity=severity.value if severity else None,
                seized=resolution.seized,
                burned=resolution.burn_asset,
            )

    def _dispute_to_resolve(self, dispute_id: Optional[str]) -> DisputeRecord:
        if dispute_id is not None:
            dispute = self.disputes.get(dispute_id)
            if dispute is None:
                raise InvalidStateTransition(
                    f"Dispute {dispute_id} does not exist for {self.asset_id}"
                )
        else:
            dispute = self.disputes.active or self.disputes.latest
            if dispute is None:
                raise InvalidStateTransition(f"No dispute has been opened for {self.asset_id}")
        if not dispute.is_active:
            raise DisputeAlreadyResolved(f"Dispute {dispute.dispute_id} is already resolved")
        return dispute

    # -- Unbonding --

    def request_unbond(self, caller: str) -> TransitionResult:
        """Start the grace period. Disputes remain possible until it ends."""
        with self._transaction(Action.REQUEST_UNBOND, caller) as previous:
            deadline = self.clock() + timedelta(seconds=self.config.grace_period_seconds)
            self.record.unbond_deadline = deadline
            self._transition(S.UNBONDING, caller, reason="unbond requested")
            self._emit(EventType.UNBOND_REQUESTED, caller, deadline=deadline.isoformat())
            return self._result(Action.REQUEST_UNBOND, previous, deadline=deadline.isoformat())

    def cancel_unbond(self, caller: str) -> TransitionResult:
        with self._transaction(Action.CANCEL_UNBOND, caller) as previous:
            self.record.unbond_deadline = None
            self._transition(S.ACTIVE, caller, reason="unbond cancelled")
            self._emit(EventType.UNBOND_CANCELLED, caller)
            return self._result(Action.CANCEL_UNBOND, previous)

    def finalize_unbond(self, caller: str) -> TransitionResult:
        """
        Release the full bond to the owner once the grace deadline passed.

        Pollable: before the deadline this fails with GracePeriodNotElapsed
        and changes nothing.
        """
        with self._transaction(Action.FINALIZE_UNBOND, caller) as previous:
            record = self.record
            if self.disputes.active is not None:
                raise InvalidStateTransition(f"Asset {self.asset_id} has an open dispute")
            now = self.clock()
            if record.unbond_deadline is None or now < record.unbond_deadline:
                remaining = (
                    (record.unbond_deadline - now).total_seconds()
                    if record.unbond_deadline
                    else float(self.config.grace_period_seconds)
                )
                raise GracePeriodNotElapsed(
                    f"Grace period ends in {remaining:.0f}s for {self.asset_id}"
                )
            self._transition(S.THAWED, caller, reason="grace period elapsed")
            payout = record.bond.withdraw_all(
                S.THAWED, approved=True, details="unbond finalized", counterparty=record.owner
            )
            record.unbond_deadline = None
            self._emit(EventType.UNBOND_FINALIZED, caller, payout=payout)
            return self._result(Action.FINALIZE_UNBOND, previous, payout=payout)

    def withdraw(self, caller: str, amount: int) -> TransitionResult:
        """Owner withdrawal of residual escrow from a Thawed record."""
        with self._transaction(Action.WITHDRAW, caller) as previous:
            record = self.record
            paid = record.bond.withdraw(amount, record.state, details="owner withdrawal", counterparty=caller)
            self._emit(EventType.BOND_WITHDRAWN, caller, amount=paid, balance=record.bond.amount)
            return self._result(Action.WITHDRAW, previous, payout=paid)

    # -- Collateral --

    def top_up(self, caller: str, amount: int) -> TransitionResult:
        """
        Add to a Frozen bond. Returns to Active iff the new bond clears
        the collateral threshold, otherwise stays Frozen.
        """
        with self._transaction(Action.TOP_UP, caller) as previous:
            record = self.record
            record.bond.fund(amount, details="top-up", counterparty=caller)
            self._emit(EventType.TOPPED_UP, caller, amount=amount, balance=record.bond.amount)
            check = self.collateral.check(record.bond.amount, record.tvm)
            if check.is_sufficient:
                self._transition(S.ACTIVE, caller, reason="collateral restored")
            return self._result(
                Action.TOP_UP,
                previous,
                threshold=str(check.threshold),
                shortfall=check.shortfall,
            )

    def reactivate(self, caller: str) -> TransitionResult:
        """Leave Frozen without a top-up when the threshold is already met."""
        with self._transaction(Action.REACTIVATE, caller) as previous:
            record = self.record
            check = self.collateral.check(record.bond.amount, record.tvm)
            if not check.is_sufficient:
                raise CollateralBelowMinimum(
                    f"Bond {record.bond.amount} below threshold {check.threshold} "
                    f"(shortfall {check.shortfall})"
                )
            self._transition(S.ACTIVE, caller, reason="collateral sufficient")
            return self._result(Action.REACTIVATE, previous)

    def report_tvm(self, caller: str, tvm: int) -> TransitionResult:
        """Record the externally reported total value managed."""
        with self._transaction(Action.REPORT_TVM, caller) as previous:
            if tvm < 0:
                raise ValueError("tvm must be >= 0")
            self.record.tvm = tvm
            self._emit(EventType.TVM_REPORTED, caller, tvm=tvm)
            return self._result(Action.REPORT_TVM, previous, tvm=tvm)

    # -- Administration --

    def update_fee_config(
        self,
        caller: str,
        registration_fee: Optional[int] = None,
        validation_tax_bps: Optional[int] = None,
        vigorish_bps: Optional[int] = None,
    ) -> TransitionResult:
        with self._transaction(Action.UPDATE_FEE_CONFIG, caller) as previous:
            current = self.record.fee_config
            updated = FeeConfig(
                registration_fee=current.registration_fee if registration_fee is None else registration_fee,
                validation_tax_bps=current.validation_tax_bps if validation_tax_bps is None else validation_tax_bps,
                vigorish_bps=current.vigorish_bps if vigorish_bps is None else vigorish_bps,
            )
            self.record.fee_config = updated
            self._emit(
                EventType.FEE_CONFIG_UPDATED,
                caller,
                registration_fee=updated.registration_fee,
                validation_tax_bps=updated.validation_tax_bps,
                vigorish_bps=updated.vigorish_bps,
            )
            return self._result(Action.UPDATE_FEE_CONFIG, previous)

    def set_validator_whitelist(
        self, caller: str, validators: Optional[Iterable[str]]
    ) -> TransitionResult:
        """Restrict attestations to ``validators``; ``None`` removes the restriction."""
        with self._transaction(Action.SET_WHITELIST, caller) as previous:
            whitelist = frozenset(validators) if validators is not None else None
            self.record.validator_whitelist = whitelist
            self._emit(
                EventType.WHITELIST_UPDATED,
                caller,
                validators=sorted(whitelist) if whitelist is not None else None,
            )
            return self._result(Action.SET_WHITELIST, previous)

    def configure_consensus(self, caller: str, m: int, window_seconds: Optional[int] = None) -> TransitionResult:
        with self._transaction(Action.CONFIGURE_CONSENSUS, caller) as previous:
            window = self.record.consensus.window_seconds if window_seconds is None else window_seconds
            self.record.consensus = ConsensusConfig(m=m, window_seconds=window)
            self._emit(EventType.CONSENSUS_CONFIGURED, caller, m=m, window_seconds=window)
            return self._result(Action.CONFIGURE_CONSENSUS, previous)

    def transfer_authority(self, caller: str, new_authority: str) -> TransitionResult:
        with self._transaction(Action.TRANSFER_AUTHORITY, caller) as previous:
            if not new_authority:
                raise ValueError("new_authority is required")
            self.record.authority = new_authority
            self._emit(EventType.AUTHORITY_TRANSFERRED, caller, new_authority=new_authority)
            return self._result(Action.TRANSFER_AUTHORITY, previous, authority=new_authority)

    def archive_history(self, caller: str, blob: bytes) -> HistoryPointer:
        """Persist a history blob; at most one pointer per epoch."""
        with self._transaction(Action.ARCHIVE_HISTORY, caller):
            if self.archive is None:
                raise ValueError("No archival collaborator configured")
            now = self.clock()
            epoch = int(now.timestamp()) // self.config.archive_epoch_seconds
            current = self.record.history_pointer
            if current is not None and current.epoch >= epoch:
                raise ArchiveEpochSealed(
                    f"History for epoch {epoch} already archived as {current.reference}"
                )
            reference = self.archive.store(blob)
            pointer = HistoryPointer(epoch=epoch, reference=reference, written_at=now, previous=current)
            self.record.history_pointer = pointer
            self._emit(EventType.HISTORY_ARCHIVED, caller, epoch=epoch, reference=reference)
            return pointer

    def sync_transfer(self, caller: Optional[str] = None) -> TransitionResult:
        """Pull ownership and last transfer time from the asset layer."""
        with self._transaction(Action.SYNC_TRANSFER, caller) as previous:
            record = self.record
            transferred_at = self.assets.on_transfer(record.asset_id)
            owner = self.assets.owner_of(record.asset_id)
            changed = False
            if transferred_at is not None and transferred_at != record.last_transfer_timestamp:
                record.last_transfer_timestamp = transferred_at
                changed = True
            if owner and owner != record.owner:
                record.owner = owner
                changed = True
            if changed:
                self._emit(
                    EventType.OWNER_SYNCED,
                    caller,
                    owner=record.owner,
                    last_transfer=transferred_at.isoformat() if transferred_at else None,
                )
            return self._result(Action.SYNC_TRANSFER, previous, owner=record.owner, changed=changed)

    # -- Terminal actions --

    def burn(self, caller: str) -> TransitionResult:
        """Explicitly destroy a record that holds no live bond obligations."""
        with self._transaction(Action.BURN, caller) as previous:
            record = self.record
            refund = record.bond.withdraw_all(
                record.state, approved=True, details="burn refund", counterparty=record.owner
            )
            record.bond.close(details="explicit burn")
            self._transition(S.DEAD, caller, reason="explicit burn")
            self._burn_asset(caller)
            return self._result(Action.BURN, previous, payout=refund)

    def migrate_to_v2(self, caller: str, new_authority: Optional[str] = None) -> MigrationResult:
        """
        Opt-in migration to the next protocol version.

        The bond and reputation chain move to the successor; this record
        becomes Migrated and rejects every further action.
        """
        with self._transaction(Action.MIGRATE, caller):
            record = self.record
            now = self.clock()
            successor = self.migrations.build_successor(self, now, new_authority=new_authority)
            carried = record.bond.withdraw_all(
                record.state,
                approved=True,
                details=f"migrated to v{successor.record.protocol_version}",
                counterparty=successor.record.bond.escrow_account,
            )
            if carried:
                successor.record.bond.fund(
                    carried,
                    details=f"migrated from v{record.protocol_version}",
                    counterparty=record.bond.escrow_account,
                )
            record.migrated_to_version = successor.record.protocol_version
            record.dispute = None
            self._transition(S.MIGRATED, caller, reason="protocol migration")
            self._emit(
                EventType.MIGRATED,
                caller,
                to_version=successor.record.protocol_version,
                bond_carried=carried,
                reputation_root=record.reputation_root,
            )
            return MigrationResult(
                asset_id=record.asset_id,
                from_version=record.protocol_version,
                to_version=successor.record.protocol_version,
                bond_carried=carried,
                reputation_root=record.reputation_root,
                successor=successor,
            )

    def sovereign_exit(self, caller: str) -> PortableIdentity:
        """
        Burn the asset-bound record and return a portable identity
        carrying the bond value and reputation commitment. Irreversible.
        """
        with self._transaction(Action.SOVEREIGN_EXIT, caller):
            record = self.record
            released = record.bond.withdraw_all(
                record.state, approved=True, details="sovereign exit", counterparty=record.owner
            )
            record.bond.close(details="sovereign exit")
            identity = self.migrations.portable_identity(record, released, self.clock())
            record.unbond_deadline = None
            self._transition(S.DEAD, caller, reason="sovereign exit")
            self._emit(EventType.SOVEREIGN_EXIT, caller, digest=identity.digest, bond_value=released)
            self._burn_asset(caller)
            return identity

    # -- Transaction machinery --

    @contextmanager
    def _transaction(
        self, action: Action, caller: Optional[str], check_state: bool = True
    ) -> Iterator[LifecycleState]:
        with self._lock:
            self._authorize(action, caller)
            if check_state:
                self._require_state(action)
            snapshot = copy.deepcopy((
                self.record,
                self.aggregator.snapshot(),
                self.disputes.snapshot(),
                self.fees.snapshot(),
            ))
            self._pending_events = []
            self._effects = []
            try:
                yield self.record.state
                self._enforce_collateral(caller)
                self._sync_asset_freeze()
                self._apply_effects()
            except BaseException:
                record, aggregator_state, dispute_state, fee_state = snapshot
                self.record = record
                self.aggregator.restore(aggregator_state)
                self.disputes.restore(dispute_state)
                self.fees.restore(fee_state)
                self._pending_events = []
                self._effects = []
                raise
            events, self._pending_events = self._pending_events, []
            self._effects = []
        self._publish(events)

    def _authorize(self, action: Action, caller: Optional[str]) -> None:
        record = self.record
        if record.state.is_terminal:
            raise RecordTerminal(
                f"Record {record.record_id} is {record.state.value}; {action.value} rejected"
            )
        role = REQUIRED_ROLE[action]
        if role == Role.ANY:
            return
        allowed = {
            Role.AUTHORITY: record.authority,
            Role.OWNER: record.owner,
            Role.GOVERNANCE: self.config.governance,
        }[role]
        if not caller or caller != allowed:
            raise Unauthorized(
                f"{action.value} on {record.record_id} requires the {role.value} role"
            )

    def _require_state(self, action: Action) -> None:
        if self.record.state not in LEGAL_STATES[action]:
            raise InvalidStateTransition(
                f"{action.value} is not legal from {self.record.state.value}"
            )

    def _transition(self, new_state: LifecycleState, caller: Optional[str], reason: str = "") -> None:
        record = self.record
        old_state = record.state
        if old_state == new_state:
            return
        record.state = new_state
        record.updated_at = self.clock()
        logger.info(
            "%s: %s -> %s (%s)", record.record_id, old_state.value, new_state.value, reason
        )
        self._emit(
            EventType.STATE_CHANGED,
            caller,
            from_state=old_state.value,
            to_state=new_state.value,
            reason=reason,
        )

    def _enforce_collateral(self, caller: Optional[str]) -> None:
        record = self.record
        if not self.collateral.should_freeze(record.state, record.bond.amount, record.tvm):
            return
        threshold = self.collateral.threshold(record.tvm)
        logger.warning(
            "%s under-collateralized: bond=%d threshold=%s, freezing",
            record.record_id, record.bond.amount, threshold,
        )
        record.unbond_deadline = None
        self._transition(S.FROZEN, caller, reason="collateral below minimum")
        self._emit(
            EventType.AUTO_FROZEN,
            caller,
            bond=record.bond.amount,
            tvm=record.tvm,
            threshold=str(threshold),
        )

    def _sync_asset_freeze(self) -> None:
        state = self.record.state
        if state in (S.UNINITIALIZED, S.MIGRATED, S.DEAD):
            return
        frozen = state in _ASSET_FROZEN_STATES
        asset_id = self.record.asset_id
        if self.assets.is_frozen(asset_id) != frozen:
            self._effects.insert(0, (
                lambda: self.assets.set_frozen(asset_id, frozen),
                lambda: self.assets.set_frozen(asset_id, not frozen),
            ))

    def _apply_effects(self) -> None:
        """
        Run queued asset-layer effects in order.

        Reversible effects are queued ahead of irreversible ones. If an
        effect fails, the ones already applied are undone in reverse order
        and the failure propagates so the local state rolls back too.
        """
        applied: list[Callable[[], None]] = []
        try:
            for effect, undo in self._effects:
                effect()
                if undo is not None:
                    applied.append(undo)
        except Exception:
            for undo in reversed(applied):
                try:
                    undo()
                except Exception:
                    logger.exception(
                        "Could not undo asset effect for %s", self.record.asset_id
                    )
            raise

    def _burn_asset(self, caller: Optional[str]) -> None:
        asset_id = self.record.asset_id

        def burn() -> None:
            self.assets.burn(asset_id)
            logger.warning("Burn signal sent for asset %s", asset_id)

        self._effects.append((burn, None))
        self._emit(EventType.ASSET_BURNED, caller)

    def _result(self, action: Action, previous: LifecycleState, payout: int = 0, **details: Any) -> TransitionResult:
        return TransitionResult(
            asset_id=self.record.asset_id,
            action=action,
            previous_state=previous,
            state=self.record.state,
            bond=self.record.bond.amount,
            payout=payout,
            details=details,
        )

    def _event(self, event_type: EventType, actor: Optional[str], **payload: Any) -> TrustEvent:
        return TrustEvent(
            event_type=event_type,
            timestamp=self.clock(),
            asset_id=self.record.asset_id,
            actor=actor,
            protocol_version=self.record.protocol_version,
            payload=payload,
        )

    def _emit(self, event_type: EventType, actor: Optional[str], **payload: Any) -> None:
        self._pending_events.append(self._event(event_type, actor, **payload))

    def _publish(self, events: list[TrustEvent]) -> None:
        if self.event_bus is None:
            return
        for event in events:
            self.event_bus.emit(event)
