"""
Protocol configuration for trust-bond records.

All values have defaults and can be overridden from ``TRUSTBOND_*``
environment variables, so deployments change parameters without code
changes.

Environment Variables:
    TRUSTBOND_REQUIRED_BOND: Bond needed to reach Active (default: 1000)
    TRUSTBOND_REGISTRATION_FEE: One-time activation fee (default: 50)
    TRUSTBOND_VALIDATION_TAX_BPS: Tax on committed task value (default: 100)
    TRUSTBOND_VIGORISH_BPS: Treasury share of slashed bonds (default: 1000)
    TRUSTBOND_GRACE_PERIOD_SECONDS: Unbonding grace period (default: 7 days)
    TRUSTBOND_MIN_COLLATERAL_RATIO: Bond / TVM floor (default: 0.1)
    TRUSTBOND_MIN_VALIDATOR_STAKE: Minimum validator stake (default: 0)
    TRUSTBOND_CONSENSUS_M: Matching validators per task (default: 1)
    TRUSTBOND_CONSENSUS_WINDOW_SECONDS: Vote window (default: 3600)
    TRUSTBOND_TREASURY: Treasury address (default: treasury)
    TRUSTBOND_INSURANCE_POOL: Insurance pool address (default: insurance)
    TRUSTBOND_GOVERNANCE: Governance identity (default: governance)
    TRUSTBOND_SLASH_REMAINDER: "burn" or "insurance" (default: burn)
    TRUSTBOND_DENOMINATION: Bond denomination (default: USDC)
    TRUSTBOND_ARCHIVE_EPOCH_SECONDS: History epoch length (default: 86400)
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
import os

SEVEN_DAYS = 7 * 24 * 3600


class SlashRemainderPolicy(str, Enum):
    """Where the non-vigorish part of a seized bond goes."""

    BURN = "burn"
    INSURANCE = "insurance"


@dataclass
class ProtocolConfig:
    """Protocol-wide parameters applied to newly created records."""

    required_bond: int = 1000
    registration_fee: int = 50
    validation_tax_bps: int = 100
    vigorish_bps: int = 1000
    grace_period_seconds: int = SEVEN_DAYS
    minimum_collateral_ratio: Decimal = Decimal("0.1")
    min_validator_stake: int = 0
    consensus_m: int = 1
    consensus_window_seconds: int = 3600
    treasury: str = "treasury"
    insurance_pool: str = "insurance"
    governance: str = "governance"
    slash_remainder: SlashRemainderPolicy = SlashRemainderPolicy.BURN
    denomination: str = "USDC"
    archive_epoch_seconds: int = 86400

    def __post_init__(self) -> None:
        if self.required_bond < 0 or self.registration_fee < 0:
            raise ValueError("required_bond and registration_fee must be >= 0")
        if not 0 <= self.validation_tax_bps <= 10000:
            raise ValueError("validation_tax_bps must be within [0, 10000]")
        if not 0 <= self.vigorish_bps <= 10000:
            raise ValueError("vigorish_bps must be within [0, 10000]")
        if self.consensus_m < 1:
            raise ValueError("consensus_m must be >= 1")
        if self.consensus_window_seconds <= 0:
            raise ValueError("consensus_window_seconds must be > 0")
        if self.archive_epoch_seconds <= 0:
            raise ValueError("archive_epoch_seconds must be > 0")
        if self.grace_period_seconds < 0 or self.min_validator_stake < 0:
            raise ValueError("grace_period_seconds and min_validator_stake must be >= 0")
        self.minimum_collateral_ratio = Decimal(str(self.minimum_collateral_ratio))
        if self.minimum_collateral_ratio < 0:
            raise ValueError("minimum_collateral_ratio must be >= 0")
        self.slash_remainder = SlashRemainderPolicy(self.slash_remainder)

    @classmethod
    def from_env(cls) -> ProtocolConfig:
        """Build a config from ``TRUSTBOND_*`` environment variables."""
        return cls(
            required_bond=int(os.getenv("TRUSTBOND_REQUIRED_BOND", "1000")),
            registration_fee=int(os.getenv("TRUSTBOND_REGISTRATION_FEE", "50")),
            validation_tax_bps=int(os.getenv("TRUSTBOND_VALIDATION_TAX_BPS", "100")),
            vigorish_bps=int(os.getenv("TRUSTBOND_VIGORISH_BPS", "1000")),
            grace_period_seconds=int(
                os.getenv("TRUSTBOND_GRACE_PERIOD_SECONDS", str(SEVEN_DAYS))
            ),
            minimum_collateral_ratio=Decimal(
                os.getenv("TRUSTBOND_MIN_COLLATERAL_RATIO", "0.1")
            ),
            min_validator_stake=int(os.getenv("TRUSTBOND_MIN_VALIDATOR_STAKE", "0")),
            consensus_m=int(os.getenv("TRUSTBOND_CONSENSUS_M", "1")),
            consensus_window_seconds=int(
                os.getenv("TRUSTBOND_CONSENSUS_WINDOW_SECONDS", "3600")
            ),
            treasury=os.getenv("TRUSTBOND_TREASURY", "treasury"),
            insurance_pool=os.getenv("TRUSTBOND_INSURANCE_POOL", "insurance"),
            governance=os.getenv("TRUSTBOND_GOVERNANCE", "governance"),
            slash_remainder=SlashRemainderPolicy(
                os.getenv("TRUSTBOND_SLASH_REMAINDER", "burn")
            ),
            denomination=os.getenv("TRUSTBOND_DENOMINATION", "USDC"),
            archive_epoch_seconds=int(
                os.getenv("TRUSTBOND_ARCHIVE_EPOCH_SECONDS", "86400")
            ),
        )
