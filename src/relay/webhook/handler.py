"""Task webhook surface.

Lets an external automation (a database button, a CI job) register a
token, set a preferred repository and start sessions over plain JSON.
The caller gets an immediate response with the session id; the poll
loop runs in the background and its outcome is only logged.

Status codes:
- 200: registered, or session started
- 400: missing field or malformed body
- 401: no token registered for the caller
- 404: the token sees no repositories
- 500: anything else, including a failed create call

Source:
- src/relay/session/orchestrator.py (SessionOrchestrator)
- src/relay/notify/sink.py (LogNotificationSink)
- src/relay/store/models.py (webhook_user_id)
"""

import logging
from typing import Any, Callable, Coroutine, Optional, Tuple, Type, TypeVar

from pydantic import ValidationError

from src.relay.errors import NoSourcesAvailableError, UnauthenticatedError
from src.relay.notify.sink import LogNotificationSink
from src.relay.session.orchestrator import SessionOrchestrator
from src.relay.store.models import CredentialScope, CredentialStore, webhook_user_id
from src.relay.webhook.models import (
    RepoRegistration,
    TaskRequest,
    TokenRegistration,
    WebhookPayload,
    WebhookResponse,
)


logger = logging.getLogger(__name__)


Spawner = Callable[[Coroutine[Any, Any, Any]], Any]

P = TypeVar("P", bound=WebhookPayload)

NO_TOKEN_MESSAGE = "No Jules token found. Register with /webhooks/tasks/token first."
NO_SOURCES_MESSAGE = "No GitHub repositories found."
START_FAILED_MESSAGE = "Failed to start Jules session"


def _error(status_code: int, message: str) -> WebhookResponse:
    return WebhookResponse(status_code=status_code, body={"error": message})


class TaskWebhookHandler:
    """Maps webhook payloads to store writes and orchestrator runs.

    Attributes:
        orchestrator: Starts and polls Jules sessions.
        store: Credential and preference store.
        spawn: Schedules the background poll coroutine.
    """

    def __init__(
        self,
        orchestrator: SessionOrchestrator,
        store: CredentialStore,
        spawn: Spawner,
    ):
        self.orchestrator = orchestrator
        self.store = store
        self.spawn = spawn

    def _parse(
        self, model: Type[P], payload: Any
    ) -> Tuple[Optional[P], Optional[WebhookResponse]]:
        """Validate a payload and check the caller identity is present."""
        if not isinstance(payload, dict):
            return None, _error(400, "Invalid JSON body")

        try:
            parsed = model.model_validate(payload)
        except ValidationError as e:
            logger.warning("Malformed webhook payload: %s", e)
            return None, _error(400, "Invalid JSON body")

        if not parsed.triggered_by_user_id:
            return None, _error(400, "Missing triggeredByUserId")

        return parsed, None

    async def register_token(self, payload: Any) -> WebhookResponse:
        parsed, error = self._parse(TokenRegistration, payload)
        if error:
            return error
        if not parsed.token:
            return _error(400, "Missing token")

        user_id = webhook_user_id(parsed.triggered_by_user_id)
        await self.store.put(CredentialScope.CREDENTIAL, user_id, parsed.token)
        logger.info("Webhook token registered", extra={"user_id": user_id})
        return WebhookResponse(status_code=200, body={"message": "Token registered"})

    async def register_repo(self, payload: Any) -> WebhookResponse:
        parsed, error = self._parse(RepoRegistration, payload)
        if error:
            return error
        if not parsed.repo:
            return _error(400, "Missing repo")

        user_id = webhook_user_id(parsed.triggered_by_user_id)
        await self.store.put(CredentialScope.PREFERRED_REPO, user_id, parsed.repo)
        logger.info(
            "Webhook repository registered",
            extra={"user_id": user_id, "preferred_repo": parsed.repo},
        )
        return WebhookResponse(
            status_code=200, body={"message": "Repository registered"}
        )

    async def start_task(self, payload: Any) -> WebhookResponse:
        """Start a session and schedule its poll loop.

        Returns:
            200 with message, sessionId and title once the session exists.
        """
        parsed, error = self._parse(TaskRequest, payload)
        if error:
            return error
        prompt = (parsed.text or "").strip()
        if not prompt:
            return _error(400, "Missing text")

        user_id = webhook_user_id(parsed.triggered_by_user_id)

        try:
            started = await self.orchestrator.start_session(user_id, prompt)
        except UnauthenticatedError:
            return _error(401, NO_TOKEN_MESSAGE)
        except NoSourcesAvailableError:
            return _error(404, NO_SOURCES_MESSAGE)
        except Exception as e:
            logger.error(
                "Failed to create webhook Jules session for user %s: %s",
                user_id,
                e,
                extra={"user_id": user_id, "error": str(e)},
            )
            return _error(500, START_FAILED_MESSAGE)

        self.spawn(
            self.orchestrator.run_to_completion(
                started, LogNotificationSink(user_id=user_id)
            )
        )

        return WebhookResponse(
            status_code=200,
            body={
                "message": "Jules session started",
                "sessionId": started.session_id,
                "title": started.session.title,
            },
        )
