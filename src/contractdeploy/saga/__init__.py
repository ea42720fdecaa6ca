"""Deployment saga: transition table and orchestrator."""

from contractdeploy.saga.transitions import (
    CANCELLABLE_STATES,
    TERMINAL_STATES,
    TRANSITIONS,
    apply,
    can_fire,
    next_state,
)
from contractdeploy.saga.orchestrator import SagaOrchestrator, create_orchestrator

__all__ = [
    "SagaOrchestrator",
    "create_orchestrator",
    "TRANSITIONS",
    "TERMINAL_STATES",
    "CANCELLABLE_STATES",
    "apply",
    "can_fire",
    "next_state",
]
