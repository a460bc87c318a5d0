"""Session orchestrator shared by every trigger surface.

Drives one request through the full lifecycle:
credential lookup → list sources → resolve source → create session →
poll to a terminal phase → notify exactly once.

Starting and running are separate steps so a surface can report the
created session (Slack acknowledgement, webhook response) before the poll
loop runs in the background. The orchestrator delegates all I/O to
injected dependencies and emits events for observability.

Source:
- src/relay/store/models.py (CredentialStore, CredentialScope)
- src/relay/jules/client.py (JulesClient, UpstreamError)
- src/relay/session/resolver.py (select_source)
- src/relay/session/machine.py (SessionPoller, SessionStateMachine)
- src/relay/notify/sink.py (NotificationSink)
- src/relay/events/emitter.py (EventEmitter)
"""

import asyncio
import logging
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, SecretStr

from src.relay.errors import NoSourcesAvailableError, UnauthenticatedError
from src.relay.events.emitter import EventEmitter, NullEventEmitter
from src.relay.events.models import EventType, SessionEvent
from src.relay.jules.client import JulesClient, UpstreamError
from src.relay.jules.models import Session, Source
from src.relay.notify.sink import NotificationSink
from src.relay.session.machine import (
    DEFAULT_MAX_POLL_ATTEMPTS,
    DEFAULT_POLL_INTERVAL_SECONDS,
    SessionPoller,
    SessionStateMachine,
    Sleeper,
)
from src.relay.session.models import SessionOutcome
from src.relay.session.resolver import select_source
from src.relay.store.models import CredentialScope, CredentialStore


logger = logging.getLogger(__name__)


class StartedSession(BaseModel):
    """A created session, ready to be polled.

    The credential is kept as a SecretStr so it never shows up in reprs
    or logs.
    """

    model_config = ConfigDict(frozen=True)

    user_id: str
    session: Session
    source: Source
    credential: SecretStr = Field(repr=False)

    @property
    def session_id(self) -> str:
        return self.session.id


class SessionOrchestrator:
    """Orchestrates session creation and polling for one user request.

    Holds no per-request state, so one instance serves every concurrent
    invocation. Each run creates its own state machine.

    Attributes:
        store: Credential and preference store.
        jules_client: Jules API client.
        event_emitter: Emits session events for observability.
        poll_interval: Seconds between poll ticks.
        max_attempts: Maximum poll ticks per session.
    """

    def __init__(
        self,
        store: CredentialStore,
        jules_client: JulesClient,
        event_emitter: Optional[EventEmitter] = None,
        poll_interval: float = DEFAULT_POLL_INTERVAL_SECONDS,
        max_attempts: int = DEFAULT_MAX_POLL_ATTEMPTS,
        sleep: Sleeper = asyncio.sleep,
    ):
        self.store = store
        self.jules_client = jules_client
        self.event_emitter = event_emitter or NullEventEmitter()
        self.poll_interval = poll_interval
        self.max_attempts = max_attempts
        self._sleep = sleep

    async def start_session(self, user_id: str, prompt: str) -> StartedSession:
        """Resolve a source and create a Jules session for the user.

        Args:
            user_id: Store key of the requesting user.
            prompt: Task description (non-empty).

        Returns:
            The created session with its source and credential.

        Raises:
            UnauthenticatedError: If no credential is registered. No
                                  remote call is made.
            NoSourcesAvailableError: If the credential sees no repositories.
            UpstreamError: If listing sources or creating the session
                           fails. The poll loop is never entered.
        """
        token = await self.store.get(CredentialScope.CREDENTIAL, user_id)
        if not token:
            error = UnauthenticatedError(user_id)
            await self._fail(user_id, "auth", error)
            raise error
        credential = SecretStr(token)

        try:
            sources = await self.jules_client.list_sources(credential)
        except UpstreamError as e:
            await self._fail(user_id, "sources", e)
            raise

        if not sources:
            error = NoSourcesAvailableError(user_id)
            await self._fail(user_id, "sources", error)
            raise error

        preferred = await self.store.get(CredentialScope.PREFERRED_REPO, user_id)
        source = select_source(sources, preferred)

        logger.info(
            "Resolved source for session",
            extra={
                "user_id": user_id,
                "source": source.name,
                "preferred_repo": preferred,
                "source_count": len(sources),
            },
        )

        try:
            session = await self.jules_client.create_session(
                credential, prompt, source.name
            )
        except UpstreamError as e:
            await self._fail(user_id, "create", e, source=source.name)
            raise

        await self._safe_emit(
            SessionEvent(
                event_type=EventType.SESSION_CREATED,
                user_id=user_id,
                session_id=session.id,
                source=source.name,
                details={"title": session.title},
            )
        )

        return StartedSession(
            user_id=user_id,
            session=session,
            source=source,
            credential=credential,
        )

    async def run_to_completion(
        self,
        started: StartedSession,
        sink: NotificationSink,
    ) -> SessionOutcome:
        """Poll a created session to a terminal phase and notify once.

        Args:
            started: Result of start_session().
            sink: Destination of the completion notification.

        Returns:
            The terminal outcome.
        """
        user_id = started.user_id

        async def fetch(session_id: str) -> Session:
            return await self.jules_client.get_session(started.credential, session_id)

        async def on_poll_error(session_id: str, attempt: int, error: Exception) -> None:
            await self._safe_emit(
                SessionEvent(
                    event_type=EventType.POLL_ERROR,
                    user_id=user_id,
                    session_id=session_id,
                    source=started.source.name,
                    details={
                        "attempt": attempt,
                        "error_message": str(error),
                        "status_code": getattr(error, "status_code", None),
                    },
                )
            )

        poller = SessionPoller(
            fetch_session=fetch,
            poll_interval=self.poll_interval,
            max_attempts=self.max_attempts,
            sleep=self._sleep,
            on_poll_error=on_poll_error,
        )
        machine = SessionStateMachine(started.session_id)
        outcome = await poller.run(machine)

        await self._safe_emit(
            SessionEvent(
                event_type=(
                    EventType.TIMEOUT if outcome.timed_out else EventType.COMPLETION
                ),
                user_id=user_id,
                session_id=outcome.session_id,
                source=started.source.name,
                details=self._outcome_details(outcome, machine),
            )
        )

        await self._safe_notify(sink, outcome, user_id)
        return outcome

    async def dispatch(
        self,
        user_id: str,
        prompt: str,
        sink: NotificationSink,
    ) -> SessionOutcome:
        """Start a session and poll it to completion in one call.

        Raises:
            UnauthenticatedError, NoSourcesAvailableError, UpstreamError:
                As for start_session(). Nothing is polled or notified.
        """
        started = await self.start_session(user_id, prompt)
        return await self.run_to_completion(started, sink)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _outcome_details(
        outcome: SessionOutcome, machine: SessionStateMachine
    ) -> Dict[str, Any]:
        details: Dict[str, Any] = {
            "attempts": outcome.attempts,
            "poll_errors": machine.poll_errors,
        }
        if outcome.pr_url:
            details["pr_url"] = outcome.pr_url
        return details

    async def _safe_notify(
        self,
        sink: NotificationSink,
        outcome: SessionOutcome,
        user_id: str,
    ) -> None:
        """Deliver the outcome, logging instead of raising on failure."""
        try:
            await sink.notify(outcome)
        except Exception:
            logger.exception(
                "Failed to deliver session notification",
                extra={
                    "user_id": user_id,
                    "session_id": outcome.session_id,
                    "sink": type(sink).__name__,
                },
            )

    async def _fail(
        self,
        user_id: str,
        stage: str,
        error: Exception,
        source: Optional[str] = None,
    ) -> None:
        """Log a failed start and emit an error event."""
        logger.error(
            "Failed to start Jules session for user %s at %s: %s",
            user_id,
            stage,
            error,
            extra={"user_id": user_id, "stage": stage, "error": str(error)},
        )
        await self._safe_emit(
            SessionEvent(
                event_type=EventType.ERROR,
                user_id=user_id,
                source=source,
                details={"stage": stage, "error_message": str(error)},
            )
        )

    async def _safe_emit(self, event: SessionEvent) -> None:
        """Emit an event, swallowing exceptions so a sink cannot break a run."""
        try:
            await self.event_emitter.emit(event)
        except Exception:
            logger.exception(
                "Failed to emit session event",
                extra={
                    "event_type": event.event_type.value,
                    "session_id": event.session_id,
                },
            )
