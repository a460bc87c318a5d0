"""JSON webhook trigger surface."""

from src.relay.webhook.models import (
    RepoRegistration,
    TaskRequest,
    TokenRegistration,
    WebhookPayload,
    WebhookResponse,
)

__all__ = [
    "RepoRegistration",
    "TaskRequest",
    "TokenRegistration",
    "WebhookPayload",
    "WebhookResponse",
]
