"""
Fee Router — protocol fee accounting.

Computes registration fees, validation taxes and the vigorish share of
seized bonds, and accumulates them as additive counters against a single
treasury. Nothing is ever silently dropped: every unit of a seized bond
ends up in the treasury, the burn counter, or the insurance pool.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum

from trustbond.config import SlashRemainderPolicy
from trustbond.models import FeeConfig

BPS_DENOMINATOR = 10000


class FeeKind(str, Enum):
    """Categories of routed protocol value."""

    REGISTRATION = "registration"
    VALIDATION_TAX = "validation_tax"
    VIGORISH = "vigorish"
    BURNED = "burned"
    INSURANCE = "insurance"


@dataclass
class FeeRouting:
    """A single routed amount."""

    kind: FeeKind
    amount: int
    destination: str
    reference: str = ""
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class SlashSplit:
    """How a seized amount was divided."""

    seized: int
    vigorish: int
    remainder: int
    remainder_policy: SlashRemainderPolicy


class FeeRouter:
    """
    Pure accounting for protocol fees of one record.

    Counters only grow. ``totals()`` gives the audit view per fee kind.
    """

    def __init__(
        self,
        treasury: str = "treasury",
        insurance_pool: str = "insurance",
        remainder_policy: SlashRemainderPolicy = SlashRemainderPolicy.BURN,
    ) -> None:
        self.treasury = treasury
        self.insurance_pool = insurance_pool
        self.remainder_policy = remainder_policy
        self._routings: list[FeeRouting] = []
        self._totals: dict[FeeKind, int] = {kind: 0 for kind in FeeKind}

    @staticmethod
    def validation_tax(task_value: int, tax_bps: int) -> int:
        """``task_value * tax_bps / 10000``, rounded down."""
        if task_value <= 0 or tax_bps <= 0:
            return 0
        return task_value * tax_bps // BPS_DENOMINATOR

    @staticmethod
    def vigorish_share(seized: int, vigorish_bps: int) -> int:
        if seized <= 0 or vigorish_bps <= 0:
            return 0
        return seized * vigorish_bps // BPS_DENOMINATOR

    def collect_registration(self, fee_config: FeeConfig, reference: str = "") -> int:
        """Route the fixed registration fee to the treasury."""
        return self._route(FeeKind.REGISTRATION, fee_config.registration_fee, self.treasury, reference)

    def collect_validation_tax(
        self, task_value: int, fee_config: FeeConfig, reference: str = ""
    ) -> int:
        """Route the validation tax for one committed task."""
        tax = self.validation_tax(task_value, fee_config.validation_tax_bps)
        return self._route(FeeKind.VALIDATION_TAX, tax, self.treasury, reference)

    def split_slash(self, seized: int, fee_config: FeeConfig, reference: str = "") -> SlashSplit:
        """
        Split a seized bond: vigorish to the treasury, remainder burned or
        sent to the insurance pool. Nothing flows back to the agent.
        """
        vigorish = self.vigorish_share(seized, fee_config.vigorish_bps)
        remainder = seized - vigorish
        self._route(FeeKind.VIGORISH, vigorish, self.treasury, reference)
        if self.remainder_policy == SlashRemainderPolicy.INSURANCE:
            self._route(FeeKind.INSURANCE, remainder, self.insurance_pool, reference)
        else:
            self._route(FeeKind.BURNED, remainder, "burn", reference)
        return SlashSplit(
            seized=seized,
            vigorish=vigorish,
            remainder=remainder,
            remainder_policy=self.remainder_policy,
        )

    def _route(self, kind: FeeKind, amount: int, destination: str, reference: str) -> int:
        if amount <= 0:
            return 0
        self._routings.append(FeeRouting(kind=kind, amount=amount, destination=destination, reference=reference))
        self._totals[kind] += amount
        return amount

    def totals(self) -> dict[str, int]:
        return {kind.value: total for kind, total in self._totals.items()}

    @property
    def treasury_balance(self) -> int:
        return sum(
            self._totals[k]
            for k in (FeeKind.REGISTRATION, FeeKind.VALIDATION_TAX, FeeKind.VIGORISH)
        )

    @property
    def routings(self) -> list[FeeRouting]:
        return list(self._routings)

    def snapshot(self) -> tuple[list[FeeRouting], dict[FeeKind, int]]:
        return self._routings, self._totals

    def restore(self, snap: tuple[list[FeeRouting], dict[FeeKind, int]]) -> None:
        self._routings, self._totals = snap
