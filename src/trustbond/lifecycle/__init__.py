"""Lifecycle subpackage — the trust record and its state machine."""

from trustbond.lifecycle.record import AgentTrustRecord
from trustbond.lifecycle.state_machine import (
    LEGAL_STATES,
    REQUIRED_ROLE,
    LifecycleStateMachine,
    TransitionResult,
)

__all__ = [
    "AgentTrustRecord",
    "LifecycleStateMachine",
    "TransitionResult",
    "LEGAL_STATES",
    "REQUIRED_ROLE",
]
