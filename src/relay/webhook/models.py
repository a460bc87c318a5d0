"""Webhook payload models.

Task payload (JSON):
{
  "triggeredByUserId": "8d2f...",
  "text": "Add retries to the upload job"
}

The legacy field name triggeredByNotionUserId is accepted in place of
triggeredByUserId. Required fields are validated by the handler so each
missing field maps to its own 400 response.
"""

from typing import Any, Dict, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


USER_ID_ALIASES = AliasChoices("triggeredByUserId", "triggeredByNotionUserId")


class WebhookPayload(BaseModel):
    """Fields shared by every webhook endpoint."""

    model_config = ConfigDict(extra="ignore")

    triggered_by_user_id: Optional[str] = Field(
        None,
        validation_alias=USER_ID_ALIASES,
        description="Caller's user identity in the triggering system",
    )


class TokenRegistration(WebhookPayload):
    token: Optional[str] = Field(None, description="Jules API key to store")


class RepoRegistration(WebhookPayload):
    repo: Optional[str] = Field(None, description="Preferred org/repo")


class TaskRequest(WebhookPayload):
    text: Optional[str] = Field(None, description="Task description")


class WebhookResponse(BaseModel):
    """Status code and JSON body returned to the webhook caller."""

    status_code: int
    body: Dict[str, Any]
