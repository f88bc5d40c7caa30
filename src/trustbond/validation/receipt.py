"""Validation receipts and their compact retained summaries."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any
import hashlib
import json


def canonical_digest(data: Any) -> str:
    """SHA-256 over canonical JSON (sorted keys, no whitespace)."""
    encoded = json.dumps(data, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(encoded.encode()).hexdigest()


@dataclass(frozen=True)
class ValidationReceipt:
    """A validator-signed claim about an agent's behavior on one task."""

    validator_id: str
    asset_id: str
    task_id: str
    payload: dict[str, Any] = field(default_factory=dict)
    task_value: int = 0
    issued_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    signature: str = ""

    @property
    def payload_digest(self) -> str:
        """Equivalent payloads share a digest regardless of key order."""
        return canonical_digest(self.payload)

    def signing_digest(self) -> str:
        """Digest the validator signs (everything except the signature)."""
        return canonical_digest({
            "validator_id": self.validator_id,
            "asset_id": self.asset_id,
            "task_id": self.task_id,
            "payload": self.payload_digest,
            "task_value": self.task_value,
            "issued_at": self.issued_at.isoformat(),
        })

    def with_signature(self, signature: str) -> ValidationReceipt:
        return replace(self, signature=signature)


@dataclass(frozen=True)
class AttestationSummary:
    """
    What the aggregator keeps of a committed task.

    Raw payloads and signatures are not retained; only the digest and the
    normalized outcome needed for scoring.
    """

    task_id: str
    validator_ids: tuple[str, ...]
    payload_digest: str
    outcome: float  # 0.0–100.0
    committed_at: datetime
    task_value: int = 0


def outcome_value(payload: dict[str, Any]) -> float:
    """
    Normalize an outcome payload into [0, 100].

    Accepts ``{"score": <number>}`` (clamped), ``{"success": <bool>}``, or
    ``{"outcome": "pass"|"success"|"fail"|"failure"}``. Anything else is 0.
    """
    if "score" in payload:
        try:
            return max(0.0, min(100.0, float(payload["score"])))
        except (TypeError, ValueError):
            return 0.0
    if "success" in payload:
        return 100.0 if payload["success"] is True else 0.0
    outcome = str(payload.get("outcome", "")).lower()
    if outcome in ("pass", "passed", "success", "ok"):
        return 100.0
    return 0.0
