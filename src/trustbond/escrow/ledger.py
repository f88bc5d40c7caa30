"""
Escrow Ledger — the bond held against one agent's future misbehavior.

Every balance change goes through ``fund``/``withdraw``/``seize`` and is
recorded as a ledger entry. Each operation validates fully before it
writes, so a failed call leaves balance and history untouched.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional
import uuid

from trustbond.errors import InsufficientBond, InvalidStateTransition, RecordTerminal
from trustbond.models import LifecycleState


class LedgerEntryType(str, Enum):
    """Types of escrow ledger entries."""

    FUNDED = "funded"
    WITHDRAWN = "withdrawn"
    SEIZED = "seized"
    CLOSED = "closed"


@dataclass
class LedgerEntry:
    """A single balance movement in the escrow ledger."""

    entry_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    entry_type: LedgerEntryType = LedgerEntryType.FUNDED
    amount: int = 0
    balance_after: int = 0
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    details: str = ""
    counterparty: Optional[str] = None


class EscrowLedger:
    """
    Holds the bond of a single agent.

    Invariants:
    - ``amount`` never goes negative (seizure floors at zero)
    - withdrawals only from Thawed, or through an approved path
      (finalize-unbond, migration, sovereign exit, burn refund)
    - once closed, no further funding is accepted
    """

    WITHDRAWABLE_STATES = frozenset({LifecycleState.THAWED})

    def __init__(self, denomination: str = "USDC", escrow_account: str = "") -> None:
        self.denomination = denomination
        self.escrow_account = escrow_account or f"escrow:{uuid.uuid4().hex[:12]}"
        self._amount = 0
        self._entries: list[LedgerEntry] = []
        self._closed = False

    @property
    def amount(self) -> int:
        return self._amount

    @property
    def is_closed(self) -> bool:
        return self._closed

    @property
    def entries(self) -> list[LedgerEntry]:
        return list(self._entries)

    def fund(self, amount: int, details: str = "", counterparty: Optional[str] = None) -> int:
        """Add funds to escrow. Returns the new balance."""
        _require_positive(amount)
        if self._closed:
            raise RecordTerminal(f"Escrow {self.escrow_account} is closed")
        self._amount += amount
        self._record(LedgerEntryType.FUNDED, amount, details, counterparty)
        return self._amount

    def withdraw(
        self,
        amount: int,
        state: LifecycleState,
        approved: bool = False,
        details: str = "",
        counterparty: Optional[str] = None,
    ) -> int:
        """
        Release funds from escrow.

        Args:
            amount: Amount to release
            state: Current lifecycle state of the owning record
            approved: True when called from an authority-approved path
            details: Audit note
            counterparty: Recipient of the released funds

        Returns:
            The amount withdrawn

        Raises:
            InvalidStateTransition: If the state does not permit withdrawal
            InsufficientBond: If the balance cannot cover the amount
        """
        _require_positive(amount)
        if not approved and state not in self.WITHDRAWABLE_STATES:
            raise InvalidStateTransition(
                f"Withdrawal not permitted while {state.value}"
            )
        if amount > self._amount:
            raise InsufficientBond(
                f"Requested {amount} {self.denomination}, escrow holds {self._amount}"
            )
        self._amount -= amount
        self._record(LedgerEntryType.WITHDRAWN, amount, details, counterparty)
        return amount

    def withdraw_all(
        self,
        state: LifecycleState,
        approved: bool = False,
        details: str = "",
        counterparty: Optional[str] = None,
    ) -> int:
        """Release the whole balance. A zero balance returns 0 without an entry."""
        if self._amount == 0:
            return 0
        return self.withdraw(self._amount, state, approved, details, counterparty)

    def seize(self, pct: int, details: str = "") -> int:
        """
        Seize ``pct`` percent of the current balance.

        Floors at zero and returns the seized amount for fee routing.
        100 percent always seizes the full balance.
        """
        if not 0 <= pct <= 100:
            raise ValueError(f"Seizure percentage must be within [0, 100], got {pct}")
        seized = self._amount if pct == 100 else self._amount * pct // 100
        seized = min(seized, self._amount)
        self._amount = max(0, self._amount - seized)
        self._record(LedgerEntryType.SEIZED, seized, details)
        return seized

    def close(self, details: str = "") -> None:
        """Close the escrow permanently (record burned)."""
        if self._closed:
            return
        self._closed = True
        self._record(LedgerEntryType.CLOSED, 0, details)

    def total(self, entry_type: LedgerEntryType) -> int:
        """Sum of all amounts recorded under one entry type."""
        return sum(e.amount for e in self._entries if e.entry_type == entry_type)

    def _record(
        self,
        entry_type: LedgerEntryType,
        amount: int,
        details: str,
        counterparty: Optional[str] = None,
    ) -> LedgerEntry:
        entry = LedgerEntry(
            entry_type=entry_type,
            amount=amount,
            balance_after=self._amount,
            details=details,
            counterparty=counterparty,
        )
        self._entries.append(entry)
        return entry


def _require_positive(amount: int) -> None:
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise ValueError(f"Amount must be an integer, got {amount!r}")
    if amount <= 0:
        raise ValueError(f"Amount must be positive, got {amount}")
