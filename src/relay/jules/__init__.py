"""Jules task API client.

This module wraps the three Jules REST calls the relay needs:
- GET /sources - repositories the API key can access
- POST /sessions - start a session that auto-creates a pull request
- GET /sessions/{id} - latest session snapshot
"""

from src.relay.jules.client import JulesClient, UpstreamError
from src.relay.jules.models import (
    CreateSessionRequest,
    PullRequest,
    Session,
    SessionOutput,
    Source,
)

__all__ = [
    "CreateSessionRequest",
    "JulesClient",
    "PullRequest",
    "Session",
    "SessionOutput",
    "Source",
    "UpstreamError",
]
