"""
TrustBond v1.0

Bonded trust records for agent assets. Each record gates its asset on a
funded escrow bond, folds validator attestations into a hash-chained
reputation commitment, slashes the bond on upheld disputes, enforces an
unbonding grace period and routes protocol fees.

Core Components:
    - LifecycleStateMachine: per-agent orchestrator and transaction boundary
    - EscrowLedger: bond custody with a non-negative balance
    - ValidationAggregator: eligibility filter, M-of-N consensus, scoring
    - DisputeResolver: challenge, resolution and graduated slashing
    - CollateralMonitor: bond vs. total-value-managed auto-freeze
    - FeeRouter: registration fees, validation tax, vigorish
    - MigrationManager: protocol upgrades and sovereign exit
    - TrustRegistry: one record per asset, score lookups

Usage:
    >>> from trustbond import TrustRegistry, InMemoryAssetLedger, InMemoryAttestationService
    >>> assets = InMemoryAssetLedger()
    >>> assets.mint("asset-1", "alice")
    >>> registry = TrustRegistry(assets=assets, attestations=InMemoryAttestationService())
    >>> machine = registry.create_record("asset-1", authority="ops")
    >>> machine.activate("ops", bond_amount=1000, fee=50).state
    <LifecycleState.ACTIVE: 'active'>

Version: 1.0.0
"""

__version__ = "1.0.0"

# Core models
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
from trustbond.config import ProtocolConfig, SlashRemainderPolicy

# Errors
from trustbond.errors import (
    AlreadyChallenged,
    ArchiveEpochSealed,
    CollateralBelowMinimum,
    DisputeAlreadyResolved,
    GracePeriodNotElapsed,
    InsufficientBond,
    InsufficientFee,
    InvalidReceipt,
    InvalidStateTransition,
    RecordNotFound,
    RecordTerminal,
    ThresholdNotMet,
    TrustBondError,
    Unauthorized,
    ValidatorNotEligible,
)

# Components
from trustbond.escrow.ledger import EscrowLedger, LedgerEntryType
from trustbond.fees.router import FeeKind, FeeRouter
from trustbond.collateral.monitor import CollateralMonitor
from trustbond.disputes.resolver import DisputeRecord, DisputeResolver
from trustbond.validation.receipt import AttestationSummary, ValidationReceipt
from trustbond.validation.scoring import PassRateScorer, RecencyWeightedScorer, ScoringStrategy
from trustbond.validation.aggregator import AttestationResult, ValidationAggregator

# Collaborators
from trustbond.collaborators import (
    ArchivalCollaborator,
    AssetCollaborator,
    AttestationCollaborator,
    InMemoryArchive,
    InMemoryAssetLedger,
    InMemoryAttestationService,
    ReceiptSigner,
    generate_validator_key,
)

# Observability
from trustbond.observability.event_bus import EventType, TrustEvent, TrustEventBus

# Lifecycle
from trustbond.lifecycle.record import AgentTrustRecord
from trustbond.lifecycle.state_machine import LifecycleStateMachine, TransitionResult
from trustbond.migration.manager import MigrationManager, MigrationResult, PortableIdentity

# Top-level registry
from trustbond.registry import TrustRegistry

__all__ = [
    # Version
    "__version__",
    # Core
    "TrustRegistry",
    "LifecycleStateMachine",
    "TransitionResult",
    "AgentTrustRecord",
    # Models
    "Action",
    "ConsensusConfig",
    "DisputeOutcome",
    "FeeConfig",
    "HistoryPointer",
    "LifecycleState",
    "Role",
    "SlashingSeverity",
    "ProtocolConfig",
    "SlashRemainderPolicy",
    # Errors
    "TrustBondError",
    "AlreadyChallenged",
    "ArchiveEpochSealed",
    "CollateralBelowMinimum",
    "DisputeAlreadyResolved",
    "GracePeriodNotElapsed",
    "InsufficientBond",
    "InsufficientFee",
    "InvalidReceipt",
    "InvalidStateTransition",
    "RecordNotFound",
    "RecordTerminal",
    "ThresholdNotMet",
    "Unauthorized",
    "ValidatorNotEligible",
    # Components
    "EscrowLedger",
    "LedgerEntryType",
    "FeeKind",
    "FeeRouter",
    "CollateralMonitor",
    "DisputeRecord",
    "DisputeResolver",
    "AttestationSummary",
    "ValidationReceipt",
    "PassRateScorer",
    "RecencyWeightedScorer",
    "ScoringStrategy",
    "AttestationResult",
    "ValidationAggregator",
    "MigrationManager",
    "MigrationResult",
    "PortableIdentity",
    # Collaborators
    "ArchivalCollaborator",
    "AssetCollaborator",
    "AttestationCollaborator",
    "InMemoryArchive",
    "InMemoryAssetLedger",
    "InMemoryAttestationService",
    "ReceiptSigner",
    "generate_validator_key",
    # Observability
    "EventType",
    "TrustEvent",
    "TrustEventBus",
]
