"""Error taxonomy for session orchestration.

Errors raised by the orchestrator before a session exists. Remote API
failures are reported as UpstreamError, defined next to the client in
src/relay/jules/client.py and re-exported here.

Source:
- src/relay/jules/client.py (UpstreamError)
"""

from typing import Optional

from src.relay.jules.client import UpstreamError


class RelayError(Exception):
    """Base class for errors surfaced to the end user.

    Attributes:
        message: Human-readable error description.
        user_id: The user the failing invocation belongs to, if known.
    """

    def __init__(self, message: str, user_id: Optional[str] = None):
        self.message = message
        self.user_id = user_id
        super().__init__(message)


class UnauthenticatedError(RelayError):
    """Raised when no API credential is registered for the user."""

    def __init__(self, user_id: str):
        super().__init__(
            f"No Jules API token registered for user {user_id}",
            user_id=user_id,
        )


class NoSourcesAvailableError(RelayError):
    """Raised when the credential grants access to zero repositories."""

    def __init__(self, user_id: str):
        super().__init__(
            f"No GitHub repositories available for user {user_id}",
            user_id=user_id,
        )


__all__ = [
    "NoSourcesAvailableError",
    "RelayError",
    "UnauthenticatedError",
    "UpstreamError",
]
