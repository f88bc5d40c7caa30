"""
Collateral Monitor — auto-freeze on under-collateralization.

Evaluated after every committed state-changing call. If the bond falls
below ``tvm * minimum_collateral_ratio`` while the agent is live, the
record is forced into Frozen, overriding whatever transition the caller
requested.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from trustbond.models import LifecycleState


@dataclass
class CollateralCheck:
    """Outcome of a single collateral evaluation."""

    bond: int
    tvm: int
    threshold: Decimal
    is_sufficient: bool

    @property
    def shortfall(self) -> int:
        """Smallest top-up that clears the threshold (0 if sufficient)."""
        if self.is_sufficient:
            return 0
        missing = self.threshold - self.bond
        whole = int(missing)
        return whole if whole == missing else whole + 1


class CollateralMonitor:
    """Compares bond against the tracked total value managed."""

    # States in which under-collateralization forces a freeze
    MONITORED_STATES = frozenset({LifecycleState.ACTIVE, LifecycleState.UNBONDING})

    def __init__(self, minimum_collateral_ratio: Decimal = Decimal("0.1")) -> None:
        self.minimum_collateral_ratio = Decimal(str(minimum_collateral_ratio))

    def threshold(self, tvm: int) -> Decimal:
        return Decimal(tvm) * self.minimum_collateral_ratio

    def check(self, bond: int, tvm: int) -> CollateralCheck:
        threshold = self.threshold(tvm)
        return CollateralCheck(
            bond=bond,
            tvm=tvm,
            threshold=threshold,
            is_sufficient=Decimal(bond) >= threshold,
        )

    def should_freeze(self, state: LifecycleState, bond: int, tvm: int) -> bool:
        """True when the record is live and under-collateralized."""
        if state not in self.MONITORED_STATES:
            return False
        return not self.check(bond, tvm).is_sufficient
