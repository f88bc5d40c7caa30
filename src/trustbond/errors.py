"""
Typed failures for every trust-bond operation.

Each error carries a stable ``code`` and the HTTP status the API layer
maps it to, so callers always know what remediation applies (fund more,
wait for the grace period, get whitelisted, ...).
"""

from __future__ import annotations


class TrustBondError(Exception):
    """Base class for all typed trust-bond failures."""

    code = "trust_bond_error"
    http_status = 400

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.code)
        self.message = message or self.code

    def to_dict(self) -> dict[str, str]:
        return {"error": self.code, "detail": self.message}


class InvalidStateTransition(TrustBondError):
    """The action is not legal from the record's current state."""

    code = "invalid_state_transition"
    http_status = 409


class InsufficientBond(TrustBondError):
    """The escrow balance cannot cover the requested amount."""

    code = "insufficient_bond"
    http_status = 402


class InsufficientFee(TrustBondError):
    """The supplied registration fee is below the configured fee."""

    code = "insufficient_fee"
    http_status = 402


class Unauthorized(TrustBondError):
    """The caller does not hold the role the action requires."""

    code = "unauthorized"
    http_status = 403


class AlreadyChallenged(TrustBondError):
    """A dispute is already open against this agent."""

    code = "already_challenged"
    http_status = 409


class DisputeAlreadyResolved(TrustBondError):
    """The dispute has already been resolved and slashed."""

    code = "dispute_already_resolved"
    http_status = 409


class GracePeriodNotElapsed(TrustBondError):
    """The unbonding grace deadline has not been reached."""

    code = "grace_period_not_elapsed"
    http_status = 409


class ThresholdNotMet(TrustBondError):
    """Fewer than M qualifying validators agree on the task outcome."""

    code = "threshold_not_met"
    http_status = 409


class ValidatorNotEligible(TrustBondError):
    """Validator is not whitelisted or its stake is below the minimum."""

    code = "validator_not_eligible"
    http_status = 403


class InvalidReceipt(TrustBondError):
    """Receipt is malformed, addressed elsewhere, or fails verification."""

    code = "invalid_receipt"
    http_status = 400


class CollateralBelowMinimum(TrustBondError):
    """Bond does not clear ``tvm * minimum_collateral_ratio``."""

    code = "collateral_below_minimum"
    http_status = 402


class RecordNotFound(TrustBondError):
    """No trust record exists for the asset id."""

    code = "record_not_found"
    http_status = 404


class RecordTerminal(TrustBondError):
    """The record is Dead or Migrated and accepts no further operations."""

    code = "record_terminal"
    http_status = 410


class ArchiveEpochSealed(TrustBondError):
    """A history pointer was already written for the current epoch."""

    code = "archive_epoch_sealed"
    http_status = 409
