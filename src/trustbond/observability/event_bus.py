"""
Structured event bus for trust-bond records.

Every lifecycle transition, escrow movement, attestation, dispute,
collateral action, fee routing and migration emits a typed event to an
append-only store. Enables replay, post-mortem analysis and monitoring.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Optional
import threading
import uuid


class EventType(str, Enum):
    """Categorised trust-bond event types."""

    # Lifecycle
    RECORD_CREATED = "lifecycle.record_created"
    STATE_CHANGED = "lifecycle.state_changed"
    ACTIVATION_PENDING = "lifecycle.activation_pending"
    ACTIVATED = "lifecycle.activated"
    AUTHORITY_TRANSFERRED = "lifecycle.authority_transferred"
    OWNER_SYNCED = "lifecycle.owner_synced"
    HISTORY_ARCHIVED = "lifecycle.history_archived"
    ASSET_BURNED = "lifecycle.asset_burned"

    # Escrow
    BOND_FUNDED = "escrow.funded"
    BOND_WITHDRAWN = "escrow.withdrawn"
    UNBOND_REQUESTED = "escrow.unbond_requested"
    UNBOND_CANCELLED = "escrow.unbond_cancelled"
    UNBOND_FINALIZED = "escrow.unbond_finalized"

    # Attestation
    ATTESTATION_ACCEPTED = "attestation.accepted"
    ATTESTATION_REJECTED = "attestation.rejected"
    CONSENSUS_REACHED = "attestation.consensus_reached"
    WHITELIST_UPDATED = "attestation.whitelist_updated"
    CONSENSUS_CONFIGURED = "attestation.consensus_configured"

    # Disputes
    DISPUTE_OPENED = "dispute.opened"
    DISPUTE_DISMISSED = "dispute.dismissed"
    SLASH_EXECUTED = "dispute.slash_executed"

    # Collateral
    TVM_REPORTED = "collateral.tvm_reported"
    AUTO_FROZEN = "collateral.auto_frozen"
    TOPPED_UP = "collateral.topped_up"

    # Fees
    FEE_COLLECTED = "fees.collected"
    FEE_CONFIG_UPDATED = "fees.config_updated"

    # Migration
    MIGRATED = "migration.migrated"
    SOVEREIGN_EXIT = "migration.sovereign_exit"


@dataclass(frozen=True)
class TrustEvent:
    """An immutable, structured event emitted by a trust record."""

    event_id: str = field(default_factory=lambda: uuid.uuid4().hex[:16])
    event_type: EventType = EventType.RECORD_CREATED
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    asset_id: Optional[str] = None
    actor: Optional[str] = None
    protocol_version: Optional[int] = None
    payload: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "event_id": self.event_id,
            "event_type": self.event_type.value,
            "timestamp": self.timestamp.isoformat(),
            "asset_id": self.asset_id,
            "actor": self.actor,
            "protocol_version": self.protocol_version,
            "payload": self.payload,
        }


# Type alias for event subscribers
EventHandler = Callable[[TrustEvent], None]


class TrustEventBus:
    """
    Append-only structured event store with pub/sub.

    Supports:
    - Append-only storage (immutable event log)
    - Query by type, asset, actor, time range
    - Subscribe to specific event types
    - Event count and statistics

    Records on different assets emit concurrently, so appends are guarded
    by a lock.
    """

    def __init__(self) -> None:
        self._events: list[TrustEvent] = []
        self._subscribers: dict[Optional[EventType], list[EventHandler]] = {}
        self._by_type: dict[EventType, list[TrustEvent]] = {}
        self._by_asset: dict[str, list[TrustEvent]] = {}
        self._lock = threading.Lock()

    def emit(self, event: TrustEvent) -> None:
        """Append an event and notify subscribers."""
        with self._lock:
            self._events.append(event)
            self._by_type.setdefault(event.event_type, []).append(event)
            if event.asset_id:
                self._by_asset.setdefault(event.asset_id, []).append(event)
            handlers = list(self._subscribers.get(event.event_type, []))
            handlers += self._subscribers.get(None, [])

        for handler in handlers:
            handler(event)

    def subscribe(
        self,
        event_type: Optional[EventType] = None,
        handler: Optional[EventHandler] = None,
    ) -> None:
        """Subscribe to events. Use event_type=None for all events."""
        if handler:
            self._subscribers.setdefault(event_type, []).append(handler)

    def query_by_type(self, event_type: EventType) -> list[TrustEvent]:
        """Get all events of a specific type."""
        return list(self._by_type.get(event_type, []))

    def query_by_asset(self, asset_id: str) -> list[TrustEvent]:
        """Get all events for a specific asset."""
        return list(self._by_asset.get(asset_id, []))

    def query_by_time_range(
        self,
        start: datetime,
        end: Optional[datetime] = None,
    ) -> list[TrustEvent]:
        """Get events within a time range."""
        if end is None:
            end = datetime.now(timezone.utc)
        return [e for e in self._events if start <= e.timestamp <= end]

    def query(
        self,
        event_type: Optional[EventType] = None,
        asset_id: Optional[str] = None,
        actor: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> list[TrustEvent]:
        """Flexible query with multiple filters."""
        results = self._events

        if event_type is not None:
            results = [e for e in results if e.event_type == event_type]
        if asset_id is not None:
            results = [e for e in results if e.asset_id == asset_id]
        if actor is not None:
            results = [e for e in results if e.actor == actor]

        if limit is not None:
            results = results[-limit:]

        return list(results)

    @property
    def event_count(self) -> int:
        return len(self._events)

    @property
    def all_events(self) -> list[TrustEvent]:
        return list(self._events)

    def type_counts(self) -> dict[str, int]:
        """Return count of events per type."""
        return {t.value: len(evts) for t, evts in self._by_type.items()}

    def clear(self) -> None:
        """Clear all events (for testing)."""
        with self._lock:
            self._events.clear()
            self._by_type.clear()
            self._by_asset.clear()
