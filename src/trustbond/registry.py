"""
Trust Registry — one trust record per asset, addressable by asset id.

The registry is the composition root for a deployment: it wires every new
record to the shared collaborators and event bus, keeps each migrated
version reachable, and answers score lookups for reputation consumers.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable, Optional
import logging
import threading

from trustbond.collaborators import (
    ArchivalCollaborator,
    AssetCollaborator,
    AttestationCollaborator,
)
from trustbond.config import ProtocolConfig
from trustbond.errors import RecordNotFound
from trustbond.escrow.ledger import EscrowLedger
from trustbond.lifecycle.record import AgentTrustRecord
from trustbond.lifecycle.state_machine import LifecycleStateMachine
from trustbond.migration.manager import MigrationResult
from trustbond.models import ConsensusConfig, FeeConfig, LifecycleState
from trustbond.observability.event_bus import EventType, TrustEvent, TrustEventBus
from trustbond.validation.scoring import ScoringStrategy

logger = logging.getLogger(__name__)


class TrustRegistry:
    """
    Holds the state machines of every registered asset.

    Usage:
        registry = TrustRegistry(config, assets, attestations)
        machine = registry.create_record("asset-1", authority="auth", owner="alice")
        machine.activate("auth", bond_amount=1000, fee=50)
        registry.get_normalized_score("asset-1")
    """

    def __init__(
        self,
        config: Optional[ProtocolConfig] = None,
        assets: Optional[AssetCollaborator] = None,
        attestations: Optional[AttestationCollaborator] = None,
        archive: Optional[ArchivalCollaborator] = None,
        event_bus: Optional[TrustEventBus] = None,
        strategy: Optional[ScoringStrategy] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        if assets is None or attestations is None:
            raise ValueError("assets and attestations collaborators are required")
        self.config = config or ProtocolConfig()
        self.assets = assets
        self.attestations = attestations
        self.archive = archive
        self.event_bus = event_bus or TrustEventBus()
        self.strategy = strategy
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        # asset_id -> protocol_version -> machine
        self._records: dict[str, dict[int, LifecycleStateMachine]] = {}
        self._lock = threading.Lock()

    def create_record(
        self,
        asset_id: str,
        authority: str,
        owner: Optional[str] = None,
        required_bond: Optional[int] = None,
        fee_config: Optional[FeeConfig] = None,
        consensus: Optional[ConsensusConfig] = None,
        validator_whitelist: Optional[frozenset[str]] = None,
    ) -> LifecycleStateMachine:
        """
        Register a new record in ``Uninitialized``.

        ``owner`` defaults to the asset layer's current owner. Raises
        ``ValueError`` if the asset already has a record.
        """
        if not asset_id or not authority:
            raise ValueError("asset_id and authority are required")
        owner = owner or self.assets.owner_of(asset_id)
        if not owner:
            raise ValueError(f"No owner known for asset {asset_id}")

        config = self.config
        now = self.clock()
        record = AgentTrustRecord(
            asset_id=asset_id,
            authority=authority,
            owner=owner,
            bond=EscrowLedger(
                denomination=config.denomination,
                escrow_account=f"escrow:{asset_id}:v1",
            ),
            fee_config=fee_config or FeeConfig(
                registration_fee=config.registration_fee,
                validation_tax_bps=config.validation_tax_bps,
                vigorish_bps=config.vigorish_bps,
            ),
            consensus=consensus or ConsensusConfig(
                m=config.consensus_m,
                window_seconds=config.consensus_window_seconds,
            ),
            required_bond=config.required_bond if required_bond is None else required_bond,
            validator_whitelist=(
                frozenset(validator_whitelist) if validator_whitelist is not None else None
            ),
            last_transfer_timestamp=self.assets.on_transfer(asset_id),
            created_at=now,
            updated_at=now,
        )
        machine = LifecycleStateMachine(
            record=record,
            config=config,
            assets=self.assets,
            attestations=self.attestations,
            archive=self.archive,
            event_bus=self.event_bus,
            strategy=self.strategy,
            clock=self.clock,
        )
        with self._lock:
            if asset_id in self._records:
                raise ValueError(f"Asset {asset_id} already has a trust record")
            self._records[asset_id] = {record.protocol_version: machine}

        logger.info("Registered trust record %s (authority=%s, owner=%s)", record.record_id, authority, owner)
        self.event_bus.emit(
            TrustEvent(
                event_type=EventType.RECORD_CREATED,
                timestamp=now,
                asset_id=asset_id,
                actor=authority,
                protocol_version=record.protocol_version,
                payload={"owner": owner, "required_bond": record.required_bond},
            )
        )
        return machine

    def get(self, asset_id: str, version: Optional[int] = None) -> LifecycleStateMachine:
        """Latest (or a specific) version of an asset's record."""
        with self._lock:
            versions = self._records.get(asset_id)
            if not versions:
                raise RecordNotFound(f"No trust record for asset {asset_id}")
            if version is None:
                return versions[max(versions)]
            machine = versions.get(version)
        if machine is None:
            raise RecordNotFound(f"No v{version} trust record for asset {asset_id}")
        return machine

    def versions(self, asset_id: str) -> list[int]:
        with self._lock:
            versions = self._records.get(asset_id)
            if not versions:
                raise RecordNotFound(f"No trust record for asset {asset_id}")
            return sorted(versions)

    def list_records(self, state: Optional[LifecycleState] = None) -> list[LifecycleStateMachine]:
        """Latest record of every asset, optionally filtered by state."""
        with self._lock:
            latest = [v[max(v)] for v in self._records.values()]
        if state is not None:
            latest = [m for m in latest if m.state == state]
        return latest

    def migrate_to_v2(
        self, asset_id: str, caller: str, new_authority: Optional[str] = None
    ) -> MigrationResult:
        """Migrate the latest version and register the successor."""
        result = self.get(asset_id).migrate_to_v2(caller, new_authority=new_authority)
        with self._lock:
            self._records[asset_id][result.to_version] = result.successor
        logger.info("Asset %s migrated v%d -> v%d", asset_id, result.from_version, result.to_version)
        return result

    def get_normalized_score(self, asset_id: str) -> float:
        """Current score in [0, 100] of the latest record."""
        return self.get(asset_id).record.score

    @property
    def record_count(self) -> int:
        with self._lock:
            return len(self._records)
