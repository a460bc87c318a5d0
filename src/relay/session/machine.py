"""Session polling state machine.

This module implements the bounded poll loop that watches a Jules session
until it produces a pull request or the attempt limit is reached:
- SessionStateMachine: enforces valid phase transitions and records them
- SessionPoller: drives one session from CREATED to a terminal phase

The Jules API has no push callback, so completion is detected by polling.
The poll interval and the attempt cap bound the total wait (10 seconds x
60 attempts by default). The wait between ticks goes through an injected
sleep coroutine, so tests run without real time passing.

Source:
- src/relay/session/models.py (SessionPhase, PhaseTransition, SessionOutcome)
- src/relay/jules/client.py (UpstreamError)
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

from src.relay.jules.client import UpstreamError
from src.relay.jules.models import Session
from src.relay.session.models import (
    PhaseTransition,
    SessionOutcome,
    SessionPhase,
    is_terminal_phase,
    is_valid_transition,
)


logger = logging.getLogger(__name__)


DEFAULT_POLL_INTERVAL_SECONDS = 10.0
DEFAULT_MAX_POLL_ATTEMPTS = 60


SessionFetcher = Callable[[str], Awaitable[Session]]
Sleeper = Callable[[float], Awaitable[Any]]
PollErrorCallback = Callable[[str, int, Exception], Awaitable[None]]


class InvalidTransitionError(Exception):
    """Raised when an invalid phase transition is attempted.

    Attributes:
        from_phase: The current phase.
        to_phase: The attempted target phase.
    """

    def __init__(self, from_phase: SessionPhase, to_phase: SessionPhase):
        self.from_phase = from_phase
        self.to_phase = to_phase
        super().__init__(
            f"Invalid transition from {from_phase.value} to {to_phase.value}"
        )


class SessionStateMachine:
    """Phase tracking for one watched session.

    Lives only for one orchestrator run; nothing is persisted.

    Attributes:
        session_id: The Jules session being watched.
        phase: The current phase.
        history: Ordered list of all transitions.
        attempts: Number of poll ticks started.
        poll_errors: Number of ticks whose fetch failed.
        last_error: Message of the most recent failed fetch.
    """

    def __init__(self, session_id: str):
        if not session_id:
            raise ValueError("session_id cannot be empty")
        self.session_id = session_id
        self.phase = SessionPhase.CREATED
        self.history: List[PhaseTransition] = []
        self.attempts = 0
        self.poll_errors = 0
        self.last_error: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return is_terminal_phase(self.phase)

    def transition(
        self,
        to_phase: SessionPhase,
        details: Optional[Dict[str, Any]] = None,
    ) -> PhaseTransition:
        """Move to a new phase and record the transition.

        Raises:
            InvalidTransitionError: If the transition is not allowed.
        """
        if not is_valid_transition(self.phase, to_phase):
            logger.warning(
                "Invalid session phase transition attempted",
                extra={
                    "session_id": self.session_id,
                    "from_phase": self.phase.value,
                    "to_phase": to_phase.value,
                },
            )
            raise InvalidTransitionError(self.phase, to_phase)

        record = PhaseTransition(
            from_phase=self.phase,
            to_phase=to_phase,
            details=details or {},
        )
        self.history.append(record)
        self.phase = to_phase

        logger.info(
            "Session phase changed",
            extra={
                "session_id": self.session_id,
                "from_phase": record.from_phase.value,
                "to_phase": to_phase.value,
                "attempts": self.attempts,
            },
        )
        return record

    def record_error(self, error: Exception) -> None:
        self.poll_errors += 1
        self.last_error = str(error)


class SessionPoller:
    """Bounded poll loop for a Jules session.

    Each tick fetches a fresh snapshot. A failed fetch is recorded and the
    loop moves on to the next tick. The first output carrying a pull
    request completes the session; later outputs are ignored. After
    max_attempts ticks without one, the session times out. Ticks run
    strictly one after another.

    Attributes:
        poll_interval: Seconds to wait between ticks.
        max_attempts: Maximum number of ticks.

    Example:
        >>> poller = SessionPoller(
        ...     fetch_session=lambda sid: client.get_session(key, sid),
        ... )
        >>> outcome = await poller.run(SessionStateMachine("abc123"))
    """

    def __init__(
        self,
        fetch_session: SessionFetcher,
        poll_interval: float = DEFAULT_POLL_INTERVAL_SECONDS,
        max_attempts: int = DEFAULT_MAX_POLL_ATTEMPTS,
        sleep: Sleeper = asyncio.sleep,
        on_poll_error: Optional[PollErrorCallback] = None,
    ):
        """Initialize the poller.

        Args:
            fetch_session: Coroutine function returning the latest
                           snapshot for a session id.
            poll_interval: Seconds to wait between ticks.
            max_attempts: Maximum number of ticks (at least 1).
            sleep: Coroutine function used to wait between ticks.
            on_poll_error: Optional callback awaited after a failed fetch.
        """
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if poll_interval < 0:
            raise ValueError("poll_interval cannot be negative")
        self.fetch_session = fetch_session
        self.poll_interval = poll_interval
        self.max_attempts = max_attempts
        self._sleep = sleep
        self._on_poll_error = on_poll_error

    async def run(self, machine: SessionStateMachine) -> SessionOutcome:
        """Poll until the session reaches a terminal phase.

        Args:
            machine: State machine in the CREATED phase.

        Returns:
            The terminal outcome (completed or timed out).

        Raises:
            InvalidTransitionError: If the machine is not in CREATED.
        """
        session_id = machine.session_id
        machine.transition(SessionPhase.POLLING)

        while True:
            machine.attempts += 1
            session = await self._tick(machine)

            pull_request = session.first_pull_request if session else None
            if pull_request is not None:
                machine.transition(
                    SessionPhase.COMPLETED,
                    details={"pr_url": pull_request.url},
                )
                return SessionOutcome(
                    session_id=session_id,
                    pr_url=pull_request.url,
                    pr_title=pull_request.title,
                    timed_out=False,
                    attempts=machine.attempts,
                )

            if machine.attempts >= self.max_attempts:
                machine.transition(
                    SessionPhase.TIMED_OUT,
                    details={"poll_errors": machine.poll_errors},
                )
                return SessionOutcome(
                    session_id=session_id,
                    timed_out=True,
                    attempts=machine.attempts,
                )

            await self._sleep(self.poll_interval)

    async def _tick(self, machine: SessionStateMachine) -> Optional[Session]:
        """Fetch one snapshot, returning None if the fetch failed."""
        try:
            return await self.fetch_session(machine.session_id)
        except UpstreamError as e:
            machine.record_error(e)
            logger.warning(
                "Polling error for session %s on attempt %d: %s",
                machine.session_id,
                machine.attempts,
                e,
                extra={
                    "session_id": machine.session_id,
                    "attempt": machine.attempts,
                    "status_code": e.status_code,
                    "error": str(e),
                },
            )
            await self._report_error(machine, e)
        except Exception as e:
            machine.record_error(e)
            logger.exception(
                "Unexpected polling error for session %s on attempt %d: %s",
                machine.session_id,
                machine.attempts,
                e,
                extra={"session_id": machine.session_id, "attempt": machine.attempts},
            )
            await self._report_error(machine, e)
        return None

    async def _report_error(
        self, machine: SessionStateMachine, error: Exception
    ) -> None:
        if self._on_poll_error is None:
            return
        try:
            await self._on_poll_error(machine.session_id, machine.attempts, error)
        except Exception:
            logger.exception(
                "Poll error callback failed",
                extra={"session_id": machine.session_id},
            )
