"""Unit and property tests for the session state machine and poller.

The poller takes an injected sleep, so every test runs without real
time passing and can count exactly how many waits happened.
"""

import asyncio
import logging
from typing import List
from unittest.mock import AsyncMock

import pytest
from hypothesis import given, settings, strategies as st

from conftest import make_session
from src.relay.jules.client import UpstreamError
from src.relay.jules.models import PullRequest, Session, SessionOutput
from src.relay.session.machine import (
    InvalidTransitionError,
    SessionPoller,
    SessionStateMachine,
)
from src.relay.session.models import (
    VALID_TRANSITIONS,
    SessionOutcome,
    SessionPhase,
    is_terminal_phase,
    is_valid_transition,
)


def run_async(coro):
    return asyncio.run(coro)


class FakeSleep:
    """Records requested sleep durations without waiting."""

    def __init__(self) -> None:
        self.calls: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


def _poller(fetch, sleep, max_attempts=60, interval=10.0, on_poll_error=None):
    return SessionPoller(
        fetch_session=fetch,
        poll_interval=interval,
        max_attempts=max_attempts,
        sleep=sleep,
        on_poll_error=on_poll_error,
    )


# ---------------------------------------------------------------------------
# State machine
# ---------------------------------------------------------------------------


class TestSessionStateMachine:
    def test_starts_in_created(self):
        machine = SessionStateMachine("s1")

        assert machine.phase == SessionPhase.CREATED
        assert machine.history == []
        assert not machine.is_terminal

    def test_records_transitions_in_order(self):
        machine = SessionStateMachine("s1")

        machine.transition(SessionPhase.POLLING)
        machine.transition(SessionPhase.COMPLETED, details={"pr_url": "u"})

        assert [t.to_phase for t in machine.history] == [
            SessionPhase.POLLING,
            SessionPhase.COMPLETED,
        ]
        assert machine.history[1].from_phase == SessionPhase.POLLING
        assert machine.history[1].details == {"pr_url": "u"}
        assert machine.is_terminal

    def test_rejects_skipping_polling(self):
        machine = SessionStateMachine("s1")

        with pytest.raises(InvalidTransitionError) as exc_info:
            machine.transition(SessionPhase.COMPLETED)

        assert exc_info.value.from_phase == SessionPhase.CREATED
        assert machine.phase == SessionPhase.CREATED

    def test_terminal_phase_is_final(self):
        machine = SessionStateMachine("s1")
        machine.transition(SessionPhase.POLLING)
        machine.transition(SessionPhase.TIMED_OUT)

        with pytest.raises(InvalidTransitionError):
            machine.transition(SessionPhase.POLLING)

    def test_empty_session_id_rejected(self):
        with pytest.raises(ValueError):
            SessionStateMachine("")

    @given(
        from_phase=st.sampled_from(list(SessionPhase)),
        to_phase=st.sampled_from(list(SessionPhase)),
    )
    @settings(max_examples=100)
    def test_transition_table_matches_validity(self, from_phase, to_phase):
        assert is_valid_transition(from_phase, to_phase) == (
            to_phase in VALID_TRANSITIONS[from_phase]
        )
        if is_terminal_phase(from_phase):
            assert not is_valid_transition(from_phase, to_phase)


# ---------------------------------------------------------------------------
# Poller
# ---------------------------------------------------------------------------


class TestSessionPoller:
    def test_pull_request_on_first_snapshot_completes_without_sleep(self):
        fetch = AsyncMock(
            return_value=make_session("s1", pr_url="https://gh/pr/1", pr_title="Fix")
        )
        sleep = FakeSleep()
        machine = SessionStateMachine("s1")

        outcome = run_async(_poller(fetch, sleep).run(machine))

        assert outcome == SessionOutcome(
            session_id="s1",
            pr_url="https://gh/pr/1",
            pr_title="Fix",
            timed_out=False,
            attempts=1,
        )
        assert fetch.await_count == 1
        assert sleep.calls == []
        assert machine.phase == SessionPhase.COMPLETED

    def test_times_out_after_max_attempts(self):
        fetch = AsyncMock(return_value=make_session("s1"))
        sleep = FakeSleep()
        machine = SessionStateMachine("s1")

        outcome = run_async(_poller(fetch, sleep).run(machine))

        assert outcome.timed_out is True
        assert outcome.pr_url is None
        assert outcome.attempts == 60
        assert fetch.await_count == 60
        assert sleep.calls == [10.0] * 59
        assert machine.phase == SessionPhase.TIMED_OUT

    def test_completes_on_later_tick(self):
        fetch = AsyncMock(
            side_effect=[
                make_session("s1"),
                make_session("s1"),
                make_session("s1", pr_url="https://gh/pr/3"),
            ]
        )
        sleep = FakeSleep()

        outcome = run_async(_poller(fetch, sleep).run(SessionStateMachine("s1")))

        assert outcome.pr_url == "https://gh/pr/3"
        assert outcome.attempts == 3
        assert len(sleep.calls) == 2

    def test_failing_tick_does_not_abort_loop(self):
        fetch = AsyncMock(
            side_effect=[
                UpstreamError("Failed to get session: 503", status_code=503),
                RuntimeError("connection reset"),
                make_session("s1", pr_url="https://gh/pr/9"),
            ]
        )
        on_error = AsyncMock()
        sleep = FakeSleep()
        machine = SessionStateMachine("s1")

        outcome = run_async(
            _poller(fetch, sleep, on_poll_error=on_error).run(machine)
        )

        assert outcome.pr_url == "https://gh/pr/9"
        assert machine.poll_errors == 2
        assert machine.last_error == "connection reset"
        assert on_error.await_count == 2
        first_call = on_error.await_args_list[0].args
        assert first_call[0] == "s1"
        assert first_call[1] == 1

    def test_polling_error_log_line_names_session_and_error(self, caplog):
        fetch = AsyncMock(
            side_effect=[
                UpstreamError("Failed to get session: 503", status_code=503),
                make_session("s1", pr_url="https://gh/pr/9"),
            ]
        )

        with caplog.at_level(logging.WARNING, logger="src.relay.session.machine"):
            run_async(_poller(fetch, FakeSleep()).run(SessionStateMachine("s1")))

        messages = [r.getMessage() for r in caplog.records]
        assert (
            "Polling error for session s1 on attempt 1: Failed to get session: 503"
            in messages
        )

    def test_all_ticks_failing_times_out(self):
        fetch = AsyncMock(side_effect=UpstreamError("boom", status_code=500))
        sleep = FakeSleep()

        outcome = run_async(
            _poller(fetch, sleep, max_attempts=5).run(SessionStateMachine("s1"))
        )

        assert outcome.timed_out is True
        assert outcome.attempts == 5
        assert len(sleep.calls) == 4

    def test_error_callback_failure_is_contained(self):
        fetch = AsyncMock(
            side_effect=[
                UpstreamError("boom", status_code=500),
                make_session("s1", pr_url="https://gh/pr/2"),
            ]
        )
        on_error = AsyncMock(side_effect=RuntimeError("emitter down"))

        outcome = run_async(
            _poller(fetch, FakeSleep(), on_poll_error=on_error).run(
                SessionStateMachine("s1")
            )
        )

        assert outcome.pr_url == "https://gh/pr/2"

    def test_only_first_output_is_inspected(self):
        session = Session(
            id="s1",
            outputs=[
                SessionOutput(pull_request=None),
                SessionOutput(pull_request=PullRequest(url="https://gh/pr/late")),
            ],
        )
        fetch = AsyncMock(return_value=session)

        outcome = run_async(
            _poller(fetch, FakeSleep(), max_attempts=3).run(SessionStateMachine("s1"))
        )

        assert outcome.timed_out is True

    def test_first_pull_request_output_wins(self):
        session = Session(
            id="s1",
            outputs=[
                SessionOutput(pull_request=PullRequest(url="https://gh/pr/1")),
                SessionOutput(pull_request=PullRequest(url="https://gh/pr/2")),
            ],
        )

        outcome = run_async(
            _poller(AsyncMock(return_value=session), FakeSleep()).run(
                SessionStateMachine("s1")
            )
        )

        assert outcome.pr_url == "https://gh/pr/1"

    def test_run_requires_created_machine(self):
        machine = SessionStateMachine("s1")
        machine.transition(SessionPhase.POLLING)

        with pytest.raises(InvalidTransitionError):
            run_async(_poller(AsyncMock(), FakeSleep()).run(machine))

    def test_invalid_attempt_limit_rejected(self):
        with pytest.raises(ValueError):
            SessionPoller(fetch_session=AsyncMock(), max_attempts=0)

    @given(
        max_attempts=st.integers(min_value=1, max_value=20),
        pr_tick=st.integers(min_value=1, max_value=25),
    )
    @settings(max_examples=100)
    def test_fetches_and_sleeps_are_bounded(self, max_attempts, pr_tick):
        snapshots = [
            make_session("s1", pr_url="https://gh/pr/x") if i + 1 == pr_tick
            else make_session("s1")
            for i in range(max_attempts)
        ]
        fetch = AsyncMock(side_effect=snapshots)
        sleep = FakeSleep()

        outcome = run_async(
            _poller(fetch, sleep, max_attempts=max_attempts, interval=0.5).run(
                SessionStateMachine("s1")
            )
        )

        expected_ticks = min(pr_tick, max_attempts)
        assert fetch.await_count == expected_ticks
        assert len(sleep.calls) == expected_ticks - 1
        assert outcome.attempts == expected_ticks
        assert outcome.timed_out is (pr_tick > max_attempts)
