"""Shared pytest fixtures for trust-bond tests."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Callable

import pytest

from trustbond.collaborators import (
    InMemoryArchive,
    InMemoryAssetLedger,
    InMemoryAttestationService,
    ReceiptSigner,
)
from trustbond.config import ProtocolConfig
from trustbond.lifecycle.state_machine import LifecycleStateMachine
from trustbond.observability.event_bus import TrustEventBus
from trustbond.registry import TrustRegistry
from trustbond.validation.receipt import ValidationReceipt

ASSET = "asset-1"
AUTHORITY = "auth"
OWNER = "alice"
GOVERNANCE = "governance"


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, start: datetime = datetime(2026, 1, 1, tzinfo=timezone.utc)) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now = self.now + timedelta(seconds=seconds)
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def config() -> ProtocolConfig:
    return ProtocolConfig()


@pytest.fixture
def assets() -> InMemoryAssetLedger:
    ledger = InMemoryAssetLedger()
    ledger.mint(ASSET, OWNER)
    return ledger


@pytest.fixture
def attestations() -> InMemoryAttestationService:
    return InMemoryAttestationService()


@pytest.fixture
def signers(attestations) -> dict[str, ReceiptSigner]:
    """Enrolled validators v1-v3 at stake 100, keyed by id."""
    return {v: attestations.enroll(v, stake=100) for v in ("v1", "v2", "v3")}


@pytest.fixture
def bus() -> TrustEventBus:
    return TrustEventBus()


@pytest.fixture
def archive() -> InMemoryArchive:
    return InMemoryArchive()


@pytest.fixture
def registry(config, assets, attestations, archive, bus, clock) -> TrustRegistry:
    return TrustRegistry(
        config=config,
        assets=assets,
        attestations=attestations,
        archive=archive,
        event_bus=bus,
        clock=clock,
    )


@pytest.fixture
def machine(registry) -> LifecycleStateMachine:
    """A freshly registered record in Uninitialized."""
    return registry.create_record(ASSET, authority=AUTHORITY)


@pytest.fixture
def active_machine(machine) -> LifecycleStateMachine:
    """A record activated with the default 1000 bond and 50 fee."""
    machine.activate(AUTHORITY, bond_amount=1000, fee=50)
    return machine


@pytest.fixture
def make_receipt(signers, clock) -> Callable[..., ValidationReceipt]:
    """Factory for signed receipts."""

    def _make(
        validator_id: str = "v1",
        task_id: str = "task-1",
        payload: Any = None,
        task_value: int = 0,
        asset_id: str = ASSET,
    ) -> ValidationReceipt:
        receipt = ValidationReceipt(
            validator_id=validator_id,
            asset_id=asset_id,
            task_id=task_id,
            payload={"outcome": "pass"} if payload is None else payload,
            task_value=task_value,
            issued_at=clock(),
        )
        return signers[validator_id].sign(receipt)

    return _make
