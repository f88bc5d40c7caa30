"""Core enums and value types shared by all trust-bond components."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional


class LifecycleState(str, Enum):
    """Lifecycle states of an agent trust record."""

    UNINITIALIZED = "uninitialized"
    PENDING_BOND = "pending_bond"
    ACTIVE = "active"
    CHALLENGED = "challenged"
    FROZEN = "frozen"
    UNBONDING = "unbonding"
    THAWED = "thawed"
    MIGRATED = "migrated"
    DEAD = "dead"

    @property
    def is_terminal(self) -> bool:
        return self in (LifecycleState.DEAD, LifecycleState.MIGRATED)


class SlashingSeverity(str, Enum):
    """Graduated penalty applied when a dispute resolves against the agent."""

    MINOR = "minor"
    MAJOR = "major"
    CRITICAL = "critical"

    @property
    def penalty_pct(self) -> int:
        """Percentage of the current bond seized."""
        return _PENALTY_PCT[self]

    @property
    def burns_asset(self) -> bool:
        return self is SlashingSeverity.CRITICAL

    @property
    def resulting_state(self) -> LifecycleState:
        return _RESULTING_STATE[self]


_PENALTY_PCT = {
    SlashingSeverity.MINOR: 10,
    SlashingSeverity.MAJOR: 50,
    SlashingSeverity.CRITICAL: 100,
}

_RESULTING_STATE = {
    SlashingSeverity.MINOR: LifecycleState.ACTIVE,
    SlashingSeverity.MAJOR: LifecycleState.FROZEN,
    SlashingSeverity.CRITICAL: LifecycleState.DEAD,
}


class DisputeOutcome(str, Enum):
    """How a dispute was decided."""

    UPHELD = "upheld"  # agent at fault, slash by severity
    DISMISSED = "dismissed"  # resolved in the agent's favor


class Role(str, Enum):
    """Capabilities gating disjoint operation sets."""

    AUTHORITY = "authority"  # administers trust parameters
    OWNER = "owner"  # holds the underlying asset
    GOVERNANCE = "governance"  # arbitration, fees, TVM oracle
    ANY = "any"  # permissionless (challenges, attestations, sync)


class Action(str, Enum):
    """Every externally invocable action on a trust record."""

    ACTIVATE = "activate"
    SUBMIT_ATTESTATION = "submit_attestation"
    OPEN_DISPUTE = "open_dispute"
    RESOLVE_DISPUTE = "resolve_dispute"
    REQUEST_UNBOND = "request_unbond"
    CANCEL_UNBOND = "cancel_unbond"
    FINALIZE_UNBOND = "finalize_unbond"
    TOP_UP = "top_up"
    REACTIVATE = "reactivate"
    WITHDRAW = "withdraw"
    BURN = "burn"
    REPORT_TVM = "report_tvm"
    UPDATE_FEE_CONFIG = "update_fee_config"
    SET_WHITELIST = "set_validator_whitelist"
    CONFIGURE_CONSENSUS = "configure_consensus"
    TRANSFER_AUTHORITY = "transfer_authority"
    ARCHIVE_HISTORY = "archive_history"
    SYNC_TRANSFER = "sync_transfer"
    MIGRATE = "migrate_to_v2"
    SOVEREIGN_EXIT = "sovereign_exit"


@dataclass
class FeeConfig:
    """Per-record fee parameters, updatable by governance only."""

    registration_fee: int = 50
    validation_tax_bps: int = 100
    vigorish_bps: int = 1000

    def __post_init__(self) -> None:
        if self.registration_fee < 0:
            raise ValueError("registration_fee must be >= 0")
        for name in ("validation_tax_bps", "vigorish_bps"):
            value = getattr(self, name)
            if not 0 <= value <= 10000:
                raise ValueError(f"{name} must be within [0, 10000]")


@dataclass
class ConsensusConfig:
    """M-of-N consensus parameters. ``m == 1`` commits every valid receipt."""

    m: int = 1
    window_seconds: int = 3600

    def __post_init__(self) -> None:
        if self.m < 1:
            raise ValueError("m must be >= 1")
        if self.window_seconds <= 0:
            raise ValueError("window_seconds must be > 0")


@dataclass
class HistoryPointer:
    """Reference to archived history, written at most once per epoch."""

    epoch: int
    reference: str
    written_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    previous: Optional[HistoryPointer] = None
