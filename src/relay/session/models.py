"""Session orchestration models.

This module defines the data models for the session state machine:
- SessionPhase: Enum of the orchestration phases
- PhaseTransition: Record of a phase change with timestamp
- SessionOutcome: Terminal payload handed to the notification sink
- VALID_TRANSITIONS: Map defining allowed phase transitions

The models use Pydantic for validation, consistent with the rest of the
relay (jules/models.py, config.py).
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class SessionPhase(str, Enum):
    """Phases a Jules session goes through while the relay watches it.

    Phase Flow:
        created → polling → completed
                          → timed_out

    COMPLETED and TIMED_OUT are terminal. Exactly one notification is
    emitted on entering either of them.

    Attributes:
        CREATED: Session created remotely, no poll tick run yet.
        POLLING: Snapshots are being fetched until a terminal signal.
        COMPLETED: The first output carries a pull request.
        TIMED_OUT: The attempt limit was reached without a pull request.
    """

    CREATED = "created"
    POLLING = "polling"
    COMPLETED = "completed"
    TIMED_OUT = "timed_out"


VALID_TRANSITIONS: Dict[SessionPhase, List[SessionPhase]] = {
    SessionPhase.CREATED: [SessionPhase.POLLING],
    SessionPhase.POLLING: [SessionPhase.COMPLETED, SessionPhase.TIMED_OUT],
    SessionPhase.COMPLETED: [],
    SessionPhase.TIMED_OUT: [],
}


def is_valid_transition(from_phase: SessionPhase, to_phase: SessionPhase) -> bool:
    """Check if a phase transition is allowed by VALID_TRANSITIONS.

    Example:
        >>> is_valid_transition(SessionPhase.CREATED, SessionPhase.POLLING)
        True
        >>> is_valid_transition(SessionPhase.COMPLETED, SessionPhase.POLLING)
        False
    """
    return to_phase in VALID_TRANSITIONS.get(from_phase, [])


def is_terminal_phase(phase: SessionPhase) -> bool:
    """Check if a phase has no outgoing transitions."""
    return len(VALID_TRANSITIONS.get(phase, [])) == 0


class PhaseTransition(BaseModel):
    """Record of a phase transition.

    Attributes:
        from_phase: The phase before the transition.
        to_phase: The phase after the transition.
        timestamp: When the transition occurred (UTC).
        details: Optional metadata (attempt count, PR URL, ...).
    """

    from_phase: SessionPhase
    to_phase: SessionPhase
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
    )
    details: Dict[str, Any] = Field(default_factory=dict)


class SessionOutcome(BaseModel):
    """Terminal payload delivered to a notification sink.

    Serializes with camelCase aliases (sessionId, prUrl, prTitle,
    timedOut) for structured log records.

    Attributes:
        session_id: The Jules session that was watched.
        pr_url: URL of the pull request when completed.
        pr_title: Title of the pull request when completed.
        timed_out: True when the attempt limit was reached.
        attempts: Number of poll ticks that ran.
    """

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    session_id: str = Field(..., min_length=1, alias="sessionId")
    pr_url: Optional[str] = Field(default=None, alias="prUrl")
    pr_title: Optional[str] = Field(default=None, alias="prTitle")
    timed_out: bool = Field(default=False, alias="timedOut")
    attempts: int = Field(default=0, ge=0)

    @property
    def phase(self) -> SessionPhase:
        return SessionPhase.TIMED_OUT if self.timed_out else SessionPhase.COMPLETED

    def to_log_dict(self) -> Dict[str, Any]:
        """Return the payload as a flat camelCase dictionary."""
        return self.model_dump(by_alias=True)
