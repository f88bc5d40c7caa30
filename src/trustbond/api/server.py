"""
FastAPI REST API server for TrustBond.

Exposes the administrative command surface of the trust registry: record
lifecycle, attestations, disputes, collateral, fees, migration, score
lookups and the event log, with OpenAPI docs.

The server wires in-memory collaborators; the sandbox routes let a client
mint assets and register validators against them.

Run with: uvicorn trustbond.api.server:app
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import datetime
from typing import Optional

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from trustbond import __version__
from trustbond.collaborators import (
    InMemoryArchive,
    InMemoryAssetLedger,
    InMemoryAttestationService,
)
from trustbond.config import ProtocolConfig
from trustbond.disputes.resolver import DisputeRecord
from trustbond.errors import TrustBondError
from trustbond.lifecycle.state_machine import LifecycleStateMachine, TransitionResult
from trustbond.models import ConsensusConfig, LifecycleState
from trustbond.observability.event_bus import EventType, TrustEventBus
from trustbond.registry import TrustRegistry
from trustbond.validation.receipt import ValidationReceipt

from trustbond.api.models import (
    ActivateRequest,
    AmountRequest,
    ArchiveRequest,
    ArchiveResponse,
    AttestationRequest,
    AttestationResponse,
    CallerRequest,
    ConsensusRequest,
    ConsensusResponse,
    CreateRecordRequest,
    DisputeResponse,
    EventResponse,
    EventStatsResponse,
    FeeConfigRequest,
    MintRequest,
    MigrateRequest,
    MigrateResponse,
    OpenDisputeRequest,
    PortableIdentityResponse,
    RecordListItem,
    RecordResponse,
    ResolveDisputeRequest,
    ScoreResponse,
    StatsResponse,
    TransferAuthorityRequest,
    TransitionResponse,
    TvmRequest,
    ValidatorRequest,
    ValidatorResponse,
    WhitelistRequest,
)

# ── Global state ────────────────────────────────────────────────────────────

_registry: Optional[TrustRegistry] = None
_event_bus: Optional[TrustEventBus] = None
_assets: Optional[InMemoryAssetLedger] = None
_attestations: Optional[InMemoryAttestationService] = None


def _reg() -> TrustRegistry:
    """Get the global registry."""
    if _registry is None:
        raise HTTPException(status_code=503, detail="Registry not initialized")
    return _registry


def _bus() -> TrustEventBus:
    """Get the global event bus."""
    if _event_bus is None:
        raise HTTPException(status_code=503, detail="Event bus not initialized")
    return _event_bus


def _machine(asset_id: str, version: Optional[int] = None) -> LifecycleStateMachine:
    return _reg().get(asset_id, version)


def _transition(result: TransitionResult) -> TransitionResponse:
    return TransitionResponse(**result.to_dict())


def _dispute_response(dispute: DisputeRecord) -> DisputeResponse:
    return DisputeResponse(
        dispute_id=dispute.dispute_id,
        asset_id=dispute.asset_id,
        challenger=dispute.challenger,
        evidence=dispute.evidence,
        opened_at=dispute.opened_at.isoformat(),
        prior_state=dispute.prior_state.value,
        outcome=dispute.outcome.value if dispute.outcome else None,
        severity=dispute.severity.value if dispute.severity else None,
        seized_amount=dispute.seized_amount,
        resolved_at=dispute.resolved_at.isoformat() if dispute.resolved_at else None,
    )


# ── Lifespan ────────────────────────────────────────────────────────────────

@asynccontextmanager
async def lifespan(app: FastAPI):  # type: ignore[no-untyped-def]
    """Initialize the registry on startup, clean up on shutdown."""
    global _registry, _event_bus, _assets, _attestations
    _event_bus = TrustEventBus()
    _assets = InMemoryAssetLedger()
    _attestations = InMemoryAttestationService()
    _registry = TrustRegistry(
        config=ProtocolConfig.from_env(),
        assets=_assets,
        attestations=_attestations,
        archive=InMemoryArchive(),
        event_bus=_event_bus,
    )
    yield
    _registry = None
    _event_bus = None
    _assets = None
    _attestations = None


# ── App factory ─────────────────────────────────────────────────────────────

async def trust_bond_error_handler(request: Request, exc: TrustBondError) -> JSONResponse:
    return JSONResponse(status_code=exc.http_status, content=exc.to_dict())


async def value_error_handler(request: Request, exc: ValueError) -> JSONResponse:
    return JSONResponse(status_code=400, content={"error": "invalid_request", "detail": str(exc)})


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    application = FastAPI(
        title="TrustBond API",
        description=(
            "REST API for TrustBond — bonded trust records for agent assets "
            "with attestation consensus, graduated slashing, unbonding grace "
            "periods and protocol fee routing."
        ),
        version=__version__,
        lifespan=lifespan,
    )

    application.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    application.add_exception_handler(TrustBondError, trust_bond_error_handler)
    application.add_exception_handler(ValueError, value_error_handler)

    return application


app = create_app()


# ── Health ──────────────────────────────────────────────────────────────────

@app.get("/health", tags=["Health"])
async def health_check() -> dict[str, str]:
    """Health check endpoint."""
    return {"status": "ok", "version": __version__}


@app.get("/api/v1/stats", response_model=StatsResponse, tags=["Health"])
async def get_stats() -> StatsResponse:
    """Registry-wide statistics."""
    records = _reg().list_records()
    by_state: dict[str, int] = {}
    for m in records:
        by_state[m.state.value] = by_state.get(m.state.value, 0) + 1
    return StatsResponse(
        version=__version__,
        total_records=len(records),
        by_state=by_state,
        total_bonded=sum(m.bond for m in records),
        event_count=_bus().event_count,
    )


# ── Sandbox ─────────────────────────────────────────────────────────────────

@app.post("/api/v1/sandbox/assets", status_code=201, tags=["Sandbox"])
async def mint_asset(req: MintRequest) -> dict[str, str]:
    """Mint an asset on the in-memory asset ledger."""
    if _assets is None:
        raise HTTPException(status_code=503, detail="Asset ledger not initialized")
    _assets.mint(req.asset_id, req.owner)
    return {"asset_id": req.asset_id, "owner": req.owner}


@app.post(
    "/api/v1/sandbox/validators",
    response_model=ValidatorResponse,
    status_code=201,
    tags=["Sandbox"],
)
async def register_validator(req: ValidatorRequest) -> ValidatorResponse:
    """
    Register a validator with the in-memory attestation service.

    Without a public key a fresh Ed25519 key pair is generated and its
    private half is returned in this response only.
    """
    if _attestations is None:
        raise HTTPException(status_code=503, detail="Attestation service not initialized")
    private_key = None
    if req.public_key is not None:
        _attestations.register_validator(req.validator_id, req.public_key, stake=req.stake)
    else:
        private_key = _attestations.enroll(req.validator_id, stake=req.stake).private_key()
    return ValidatorResponse(
        validator_id=req.validator_id,
        stake=req.stake,
        public_key=_attestations.public_key(req.validator_id),
        private_key=private_key,
    )


# ── Records ─────────────────────────────────────────────────────────────────

@app.post(
    "/api/v1/records",
    response_model=RecordResponse,
    status_code=201,
    tags=["Records"],
)
async def create_record(req: CreateRecordRequest) -> RecordResponse:
    """Register a trust record for an asset."""
    registry = _reg()
    consensus = None
    if req.consensus_m is not None:
        consensus = ConsensusConfig(
            m=req.consensus_m, window_seconds=registry.config.consensus_window_seconds
        )
    machine = registry.create_record(
        req.asset_id,
        authority=req.authority,
        owner=req.owner,
        required_bond=req.required_bond,
        consensus=consensus,
        validator_whitelist=(
            frozenset(req.validator_whitelist) if req.validator_whitelist is not None else None
        ),
    )
    return RecordResponse(**machine.record.to_dict())


@app.get("/api/v1/records", response_model=list[RecordListItem], tags=["Records"])
async def list_records(
    state: Optional[str] = Query(None, description="Filter by lifecycle state"),
) -> list[RecordListItem]:
    """List the latest record of every asset."""
    filter_state = None
    if state:
        try:
            filter_state = LifecycleState(state)
        except ValueError:
            raise HTTPException(status_code=400, detail=f"Unknown state: {state}")
    return [
        RecordListItem(
            record_id=m.record.record_id,
            asset_id=m.asset_id,
            state=m.state.value,
            bond=m.bond,
            score=m.record.score,
        )
        for m in _reg().list_records(filter_state)
    ]


@app.get("/api/v1/records/{asset_id}", response_model=RecordResponse, tags=["Records"])
async def get_record(
    asset_id: str,
    version: Optional[int] = Query(None, description="Protocol version"),
) -> RecordResponse:
    """Get a record (latest version unless one is given)."""
    return RecordResponse(**_machine(asset_id, version).record.to_dict())


@app.post(
    "/api/v1/records/{asset_id}/activate",
    response_model=TransitionResponse,
    tags=["Records"],
)
async def activate(asset_id: str, req: ActivateRequest) -> TransitionResponse:
    """Fund the bond and pay the registration fee."""
    return _transition(_machine(asset_id).activate(req.caller, req.bond_amount, fee=req.fee))


@app.post(
    "/api/v1/records/{asset_id}/burn",
    response_model=TransitionResponse,
    tags=["Records"],
)
async def burn(asset_id: str, req: CallerRequest) -> TransitionResponse:
    """Explicitly burn a record without live bond obligations."""
    return _transition(_machine(asset_id).burn(req.caller))


@app.post(
    "/api/v1/records/{asset_id}/authority",
    response_model=TransitionResponse,
    tags=["Records"],
)
async def transfer_authority(asset_id: str, req: TransferAuthorityRequest) -> TransitionResponse:
    return _transition(_machine(asset_id).transfer_authority(req.caller, req.new_authority))


@app.post(
    "/api/v1/records/{asset_id}/sync-transfer",
    response_model=TransitionResponse,
    tags=["Records"],
)
async def sync_transfer(asset_id: str) -> TransitionResponse:
    """Pull owner and last transfer time from the asset layer."""
    return _transition(_machine(asset_id).sync_transfer())


@app.post(
    "/api/v1/records/{asset_id}/history",
    response_model=ArchiveResponse,
    tags=["Records"],
)
async def archive_history(asset_id: str, req: ArchiveRequest) -> ArchiveResponse:
    """Archive a history blob for the current epoch."""
    pointer = _machine(asset_id).archive_history(req.caller, req.blob.encode())
    return ArchiveResponse(
        epoch=pointer.epoch,
        reference=pointer.reference,
        written_at=pointer.written_at.isoformat(),
    )


# ── Attestations ────────────────────────────────────────────────────────────

@app.post(
    "/api/v1/records/{asset_id}/attestations",
    response_model=AttestationResponse,
    tags=["Attestations"],
)
async def submit_attestation(asset_id: str, req: AttestationRequest) -> AttestationResponse:
    """Submit a signed validation receipt."""
    fields = dict(
        validator_id=req.validator_id,
        asset_id=asset_id,
        task_id=req.task_id,
        payload=req.payload,
        task_value=req.task_value,
        signature=req.signature,
    )
    if req.issued_at:
        fields["issued_at"] = datetime.fromisoformat(req.issued_at)
    result = _machine(asset_id).submit_attestation(ValidationReceipt(**fields))
    return AttestationResponse(
        task_id=result.task_id,
        validator_id=result.validator_id,
        votes=result.votes,
        required=result.required,
        committed=result.committed,
        duplicate=result.duplicate,
        already_committed=result.already_committed,
        score=result.score,
        reputation_root=result.reputation_root,
        root_height=result.root_height,
    )


@app.get(
    "/api/v1/records/{asset_id}/consensus/{task_id}",
    response_model=ConsensusResponse,
    tags=["Attestations"],
)
async def get_consensus(asset_id: str, task_id: str) -> ConsensusResponse:
    """Committed consensus for a task, or 409 while below threshold."""
    summary = _machine(asset_id).require_consensus(task_id)
    return ConsensusResponse(
        task_id=summary.task_id,
        validator_ids=list(summary.validator_ids),
        payload_digest=summary.payload_digest,
        outcome=summary.outcome,
        task_value=summary.task_value,
        committed_at=summary.committed_at.isoformat(),
    )


@app.post(
    "/api/v1/records/{asset_id}/whitelist",
    response_model=TransitionResponse,
    tags=["Attestations"],
)
async def set_whitelist(asset_id: str, req: WhitelistRequest) -> TransitionResponse:
    return _transition(_machine(asset_id).set_validator_whitelist(req.caller, req.validators))


@app.post(
    "/api/v1/records/{asset_id}/consensus",
    response_model=TransitionResponse,
    tags=["Attestations"],
)
async def configure_consensus(asset_id: str, req: ConsensusRequest) -> TransitionResponse:
    return _transition(
        _machine(asset_id).configure_consensus(req.caller, req.m, req.window_seconds)
    )


@app.get("/api/v1/records/{asset_id}/score", response_model=ScoreResponse, tags=["Attestations"])
async def get_score(asset_id: str) -> ScoreResponse:
    """Resolver lookup: normalized score of the latest record."""
    registry = _reg()
    record = registry.get(asset_id).record
    return ScoreResponse(
        asset_id=asset_id,
        score=registry.get_normalized_score(asset_id),
        reputation_root=record.reputation_root,
        root_height=record.root_height,
    )


# ── Disputes ────────────────────────────────────────────────────────────────

@app.post(
    "/api/v1/records/{asset_id}/disputes",
    response_model=DisputeResponse,
    status_code=201,
    tags=["Disputes"],
)
async def open_dispute(asset_id: str, req: OpenDisputeRequest) -> DisputeResponse:
    """Challenge an agent."""
    return _dispute_response(_machine(asset_id).open_dispute(req.challenger, req.evidence))


@app.get(
    "/api/v1/records/{asset_id}/disputes",
    response_model=list[DisputeResponse],
    tags=["Disputes"],
)
async def list_disputes(asset_id: str) -> list[DisputeResponse]:
    return [_dispute_response(d) for d in _machine(asset_id).disputes.get_history()]


@app.post(
    "/api/v1/records/{asset_id}/disputes/resolve",
    response_model=TransitionResponse,
    tags=["Disputes"],
)
async def resolve_dispute(asset_id: str, req: ResolveDisputeRequest) -> TransitionResponse:
    """Resolve the open dispute (governance only)."""
    return _transition(
        _machine(asset_id).resolve_dispute(
            req.caller, req.outcome, severity=req.severity, dispute_id=req.dispute_id
        )
    )


# ── Unbonding ───────────────────────────────────────────────────────────────

@app.post(
    "/api/v1/records/{asset_id}/unbond",
    response_model=TransitionResponse,
    tags=["Unbonding"],
)
async def request_unbond(asset_id: str, req: CallerRequest) -> TransitionResponse:
    return _transition(_machine(asset_id).request_unbond(req.caller))


@app.post(
    "/api/v1/records/{asset_id}/unbond/cancel",
    response_model=TransitionResponse,
    tags=["Unbonding"],
)
async def cancel_unbond(asset_id: str, req: CallerRequest) -> TransitionResponse:
    return _transition(_machine(asset_id).cancel_unbond(req.caller))


@app.post(
    "/api/v1/records/{asset_id}/unbond/finalize",
    response_model=TransitionResponse,
    tags=["Unbonding"],
)
async def finalize_unbond(asset_id: str, req: CallerRequest) -> TransitionResponse:
    """Release the bond to the owner once the grace period has elapsed."""
    return _transition(_machine(asset_id).finalize_unbond(req.caller))


@app.post(
    "/api/v1/records/{asset_id}/withdraw",
    response_model=TransitionResponse,
    tags=["Unbonding"],
)
async def withdraw(asset_id: str, req: AmountRequest) -> TransitionResponse:
    return _transition(_machine(asset_id).withdraw(req.caller, req.amount))


# ── Collateral & fees ───────────────────────────────────────────────────────

@app.post(
    "/api/v1/records/{asset_id}/top-up",
    response_model=TransitionResponse,
    tags=["Collateral"],
)
async def top_up(asset_id: str, req: AmountRequest) -> TransitionResponse:
    return _transition(_machine(asset_id).top_up(req.caller, req.amount))


@app.post(
    "/api/v1/records/{asset_id}/reactivate",
    response_model=TransitionResponse,
    tags=["Collateral"],
)
async def reactivate(asset_id: str, req: CallerRequest) -> TransitionResponse:
    return _transition(_machine(asset_id).reactivate(req.caller))


@app.post(
    "/api/v1/records/{asset_id}/tvm",
    response_model=TransitionResponse,
    tags=["Collateral"],
)
async def report_tvm(asset_id: str, req: TvmRequest) -> TransitionResponse:
    """Report total value managed (governance only)."""
    return _transition(_machine(asset_id).report_tvm(req.caller, req.tvm))


@app.post(
    "/api/v1/records/{asset_id}/fees",
    response_model=TransitionResponse,
    tags=["Collateral"],
)
async def update_fee_config(asset_id: str, req: FeeConfigRequest) -> TransitionResponse:
    return _transition(
        _machine(asset_id).update_fee_config(
            req.caller,
            registration_fee=req.registration_fee,
            validation_tax_bps=req.validation_tax_bps,
            vigorish_bps=req.vigorish_bps,
        )
    )


@app.get("/api/v1/records/{asset_id}/fees", tags=["Collateral"])
async def get_fee_totals(asset_id: str) -> dict[str, int]:
    """Per-kind fee counters for the record."""
    return _machine(asset_id).fees.totals()


# ── Migration ───────────────────────────────────────────────────────────────

@app.post(
    "/api/v1/records/{asset_id}/migrate",
    response_model=MigrateResponse,
    tags=["Migration"],
)
async def migrate(asset_id: str, req: MigrateRequest) -> MigrateResponse:
    """Migrate the record to the next protocol version."""
    result = _reg().migrate_to_v2(asset_id, req.caller, new_authority=req.new_authority)
    return MigrateResponse(
        asset_id=result.asset_id,
        from_version=result.from_version,
        to_version=result.to_version,
        bond_carried=result.bond_carried,
        reputation_root=result.reputation_root,
    )


@app.post(
    "/api/v1/records/{asset_id}/exit",
    response_model=PortableIdentityResponse,
    tags=["Migration"],
)
async def sovereign_exit(asset_id: str, req: CallerRequest) -> PortableIdentityResponse:
    """Burn the record and return a portable identity."""
    identity = _machine(asset_id).sovereign_exit(req.caller)
    return PortableIdentityResponse(**identity.to_dict())


# ── Events ──────────────────────────────────────────────────────────────────

@app.get("/api/v1/events", response_model=list[EventResponse], tags=["Events"])
async def query_events(
    event_type: Optional[str] = Query(None, description="Filter by event type"),
    asset_id: Optional[str] = Query(None, description="Filter by asset ID"),
    actor: Optional[str] = Query(None, description="Filter by actor"),
    limit: Optional[int] = Query(None, description="Max events to return"),
) -> list[EventResponse]:
    """Query events with optional filters."""
    bus = _bus()
    et = None
    if event_type:
        try:
            et = EventType(event_type)
        except ValueError:
            raise HTTPException(status_code=400, detail=f"Unknown event type: {event_type}")
    events = bus.query(event_type=et, asset_id=asset_id, actor=actor, limit=limit)
    return [EventResponse(**e.to_dict()) for e in events]


@app.get(
    "/api/v1/events/stats",
    response_model=EventStatsResponse,
    tags=["Events"],
)
async def get_event_stats() -> EventStatsResponse:
    """Get event type counts."""
    bus = _bus()
    return EventStatsResponse(
        total_events=bus.event_count,
        by_type=bus.type_counts(),
    )
