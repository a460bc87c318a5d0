"""Session resolution and polling.

This module manages a Jules session from creation to its terminal phase:
- created → polling → completed | timed_out

The orchestrator that ties it to the store, the Jules client and the
notification sinks lives in src/relay/session/orchestrator.py.
"""

from src.relay.session.machine import (
    InvalidTransitionError,
    SessionPoller,
    SessionStateMachine,
)
from src.relay.session.models import (
    VALID_TRANSITIONS,
    PhaseTransition,
    SessionOutcome,
    SessionPhase,
    is_terminal_phase,
    is_valid_transition,
)
from src.relay.session.resolver import matches_preference, select_source

__all__ = [
    "InvalidTransitionError",
    "PhaseTransition",
    "SessionOutcome",
    "SessionPhase",
    "SessionPoller",
    "SessionStateMachine",
    "VALID_TRANSITIONS",
    "is_terminal_phase",
    "is_valid_transition",
    "matches_preference",
    "select_source",
]
