"""Session event models for observability.

This module defines the data models for relay events:
- EventType: Enum of all event types emitted by the orchestrator
- SessionEvent: Structured event with user, session and details

Events feed logs and Prometheus metrics. They are separate from user
notifications, which go through src/relay/notify.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class EventType(str, Enum):
    """Types of events emitted while orchestrating a session.

    Attributes:
        SESSION_CREATED: A Jules session was created for a user.
        POLL_ERROR: One poll tick failed to fetch the session.
        COMPLETION: The session produced a pull request.
        TIMEOUT: The poll attempt limit was reached without a pull request.
        ERROR: Starting a session failed (auth, sources or create).
    """

    SESSION_CREATED = "session_created"
    POLL_ERROR = "poll_error"
    COMPLETION = "completion"
    TIMEOUT = "timeout"
    ERROR = "error"


class SessionEvent(BaseModel):
    """Structured event emitted by the session orchestrator.

    Attributes:
        event_type: The category of event.
        user_id: The user who started the session.
        session_id: The Jules session, once created.
        source: Resource name of the selected source, once resolved.
        timestamp: When the event occurred (UTC).
        details: Additional context specific to the event type.

    Details Field Conventions:
        SESSION_CREATED: title
        POLL_ERROR: attempt, error_message, status_code
        COMPLETION: pr_url, attempts
        TIMEOUT: attempts
        ERROR: stage (auth, sources, create), error_message
    """

    event_type: EventType
    user_id: str = Field(..., min_length=1)
    session_id: Optional[str] = None
    source: Optional[str] = None
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
    )
    details: Dict[str, Any] = Field(default_factory=dict)

    def to_log_dict(self) -> Dict[str, Any]:
        """Convert event to a flat dictionary for structured logging.

        Example:
            >>> event = SessionEvent(
            ...     event_type=EventType.TIMEOUT,
            ...     user_id="U123",
            ...     session_id="abc",
            ...     details={"attempts": 60},
            ... )
            >>> event.to_log_dict()["event_type"]
            'timeout'
        """
        return {
            "event_type": self.event_type.value,
            "user_id": self.user_id,
            "session_id": self.session_id,
            "source": self.source,
            "timestamp": self.timestamp.isoformat(),
            **self.details,
        }
