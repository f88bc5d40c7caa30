"""Pydantic request/response models for the TrustBond REST API."""

from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, Field

from trustbond.models import DisputeOutcome, SlashingSeverity


class CallerRequest(BaseModel):
    """Body of a command that needs nothing but the caller identity."""

    caller: str = Field(..., description="Identity issuing the command")


# ── Sandbox models ──────────────────────────────────────────────────────────

class MintRequest(BaseModel):
    asset_id: str
    owner: str


class ValidatorRequest(BaseModel):
    validator_id: str
    stake: int = Field(0, ge=0)
    public_key: Optional[str] = Field(
        None, description="Ed25519 public JWK (JSON); generated when omitted"
    )


class ValidatorResponse(BaseModel):
    validator_id: str
    stake: int
    public_key: str
    private_key: Optional[str] = Field(
        None, description="Generated private JWK, returned only at registration"
    )


# ── Record models ───────────────────────────────────────────────────────────

class CreateRecordRequest(BaseModel):
    """Request body for registering a trust record."""

    asset_id: str = Field(..., description="Identifier of the underlying asset")
    authority: str = Field(..., description="Admin identity of the record")
    owner: Optional[str] = Field(None, description="Defaults to the asset layer's owner")
    required_bond: Optional[int] = Field(None, ge=0)
    consensus_m: Optional[int] = Field(None, ge=1)
    validator_whitelist: Optional[list[str]] = None


class BondInfo(BaseModel):
    amount: int
    denomination: str
    escrow_account: str


class RecordResponse(BaseModel):
    """Serialized agent trust record."""

    record_id: str
    asset_id: str
    authority: str
    owner: str
    state: str
    protocol_version: int
    bond: BondInfo
    required_bond: int
    reputation_root: str
    root_height: int
    score: float
    validator_whitelist: Optional[list[str]] = None
    fee_config: dict[str, int]
    consensus: dict[str, int]
    dispute: Optional[dict[str, Any]] = None
    history_pointer: Optional[dict[str, Any]] = None
    last_transfer_timestamp: Optional[str] = None
    tvm: int
    unbond_deadline: Optional[str] = None
    registration_fee_paid: bool
    migrated_to_version: Optional[int] = None
    created_at: str
    updated_at: str


class RecordListItem(BaseModel):
    """Summary item for record listing."""

    record_id: str
    asset_id: str
    state: str
    bond: int
    score: float


class TransitionResponse(BaseModel):
    """Result of a lifecycle command."""

    asset_id: str
    action: str
    previous_state: str
    state: str
    bond: int
    payout: int = 0
    details: dict[str, Any] = {}


# ── Command models ──────────────────────────────────────────────────────────

class ActivateRequest(CallerRequest):
    bond_amount: int = Field(..., ge=0)
    fee: int = Field(0, ge=0)


class AmountRequest(CallerRequest):
    amount: int = Field(..., gt=0)


class TvmRequest(CallerRequest):
    tvm: int = Field(..., ge=0)


class FeeConfigRequest(CallerRequest):
    registration_fee: Optional[int] = Field(None, ge=0)
    validation_tax_bps: Optional[int] = Field(None, ge=0, le=10000)
    vigorish_bps: Optional[int] = Field(None, ge=0, le=10000)


class WhitelistRequest(CallerRequest):
    validators: Optional[list[str]] = Field(
        None, description="Allowed validators; null removes the restriction"
    )


class ConsensusRequest(CallerRequest):
    m: int = Field(..., ge=1)
    window_seconds: Optional[int] = Field(None, gt=0)


class TransferAuthorityRequest(CallerRequest):
    new_authority: str


class ArchiveRequest(CallerRequest):
    blob: str = Field(..., description="History blob (UTF-8) to archive")


class ArchiveResponse(BaseModel):
    epoch: int
    reference: str
    written_at: str


class MigrateRequest(CallerRequest):
    new_authority: Optional[str] = None


class MigrateResponse(BaseModel):
    asset_id: str
    from_version: int
    to_version: int
    bond_carried: int
    reputation_root: str


class PortableIdentityResponse(BaseModel):
    asset_id: str
    protocol_version: int
    bond_value: int
    denomination: str
    reputation_root: str
    root_height: int
    score: float
    issued_at: str
    digest: str


# ── Attestation models ──────────────────────────────────────────────────────

class AttestationRequest(BaseModel):
    """A signed validation receipt."""

    validator_id: str
    task_id: str
    payload: dict[str, Any] = {}
    task_value: int = Field(0, ge=0)
    signature: str
    issued_at: Optional[str] = None


class AttestationResponse(BaseModel):
    task_id: str
    validator_id: str
    votes: int
    required: int
    committed: bool
    duplicate: bool
    already_committed: bool
    score: float
    reputation_root: str
    root_height: int


class ConsensusResponse(BaseModel):
    task_id: str
    validator_ids: list[str]
    payload_digest: str
    outcome: float
    task_value: int
    committed_at: str


# ── Dispute models ──────────────────────────────────────────────────────────

class OpenDisputeRequest(BaseModel):
    challenger: str
    evidence: str


class DisputeResponse(BaseModel):
    dispute_id: str
    asset_id: str
    challenger: str
    evidence: str
    opened_at: str
    prior_state: str
    outcome: Optional[str] = None
    severity: Optional[str] = None
    seized_amount: int = 0
    resolved_at: Optional[str] = None


class ResolveDisputeRequest(CallerRequest):
    outcome: DisputeOutcome
    severity: Optional[SlashingSeverity] = None
    dispute_id: Optional[str] = None


# ── Score / events / stats ──────────────────────────────────────────────────

class ScoreResponse(BaseModel):
    asset_id: str
    score: float
    reputation_root: str
    root_height: int


class EventResponse(BaseModel):
    event_id: str
    event_type: str
    timestamp: str
    asset_id: Optional[str] = None
    actor: Optional[str] = None
    protocol_version: Optional[int] = None
    payload: dict[str, Any] = {}


class EventStatsResponse(BaseModel):
    total_events: int
    by_type: dict[str, int]


class StatsResponse(BaseModel):
    version: str
    total_records: int
    by_state: dict[str, int]
    total_bonded: int
    event_count: int
