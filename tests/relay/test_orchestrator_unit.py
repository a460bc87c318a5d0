"""Unit tests for the SessionOrchestrator.

Verifies the orchestration flow with a mocked Jules client and an
in-memory store, asserting which remote calls happen for each path
(happy path, missing credential, no sources, failed create) and that
the sink hears about every run exactly once.
"""

import asyncio
import logging
from typing import List
from unittest.mock import AsyncMock, MagicMock

import pytest

from conftest import make_session, make_source
from src.relay.errors import NoSourcesAvailableError, UnauthenticatedError
from src.relay.events.models import EventType
from src.relay.jules.client import JulesClient, UpstreamError
from src.relay.session.orchestrator import SessionOrchestrator
from src.relay.store.memory import InMemoryCredentialStore
from src.relay.store.models import CredentialScope


def run_async(coro):
    return asyncio.run(coro)


# ---------------------------------------------------------------------------
# Factories
# ---------------------------------------------------------------------------


def _make_client(
    sources=None,
    created=None,
    snapshots=None,
) -> MagicMock:
    client = MagicMock(spec=JulesClient)
    client.list_sources = AsyncMock(
        return_value=sources if sources is not None else [make_source("acme/widgets")]
    )
    client.create_session = AsyncMock(return_value=created or make_session("s1"))
    client.get_session = AsyncMock(
        side_effect=snapshots
        or [make_session("s1", pr_url="https://github.com/acme/widgets/pull/7")]
    )
    return client


def _make_orchestrator(store, client, emitter=None, max_attempts=60):
    sleep = AsyncMock()
    orchestrator = SessionOrchestrator(
        store=store,
        jules_client=client,
        event_emitter=emitter,
        poll_interval=10.0,
        max_attempts=max_attempts,
        sleep=sleep,
    )
    return orchestrator, sleep


def _emitted_types(emitter: MagicMock) -> List[EventType]:
    return [c.args[0].event_type for c in emitter.emit.await_args_list]


def _with_token(store: InMemoryCredentialStore, user_id: str = "U1") -> None:
    run_async(store.put(CredentialScope.CREDENTIAL, user_id, "jules-key"))


# ---------------------------------------------------------------------------
# start_session
# ---------------------------------------------------------------------------


class TestStartSession:
    def test_missing_credential_makes_no_remote_call(self, store):
        client = _make_client()
        emitter = MagicMock()
        emitter.emit = AsyncMock()
        orchestrator, _ = _make_orchestrator(store, client, emitter)

        with pytest.raises(UnauthenticatedError) as exc_info:
            run_async(orchestrator.start_session("U1", "do it"))

        assert exc_info.value.user_id == "U1"
        client.list_sources.assert_not_awaited()
        client.create_session.assert_not_awaited()
        assert _emitted_types(emitter) == [EventType.ERROR]

    def test_start_failure_log_line_names_user_and_error(self, store, caplog):
        client = _make_client()
        orchestrator, _ = _make_orchestrator(store, client)

        with caplog.at_level(logging.ERROR, logger="src.relay.session.orchestrator"):
            with pytest.raises(UnauthenticatedError):
                run_async(orchestrator.start_session("U1", "do it"))

        assert caplog.records[-1].getMessage() == (
            "Failed to start Jules session for user U1 at auth: "
            "No Jules API token registered for user U1"
        )

    def test_no_sources_raises(self, store):
        _with_token(store)
        client = _make_client(sources=[])
        orchestrator, _ = _make_orchestrator(store, client)

        with pytest.raises(NoSourcesAvailableError):
            run_async(orchestrator.start_session("U1", "do it"))

        client.create_session.assert_not_awaited()

    def test_list_sources_failure_propagates(self, store):
        _with_token(store)
        client = _make_client()
        client.list_sources.side_effect = UpstreamError(
            "Failed to list sources: 401", status_code=401
        )
        orchestrator, _ = _make_orchestrator(store, client)

        with pytest.raises(UpstreamError) as exc_info:
            run_async(orchestrator.start_session("U1", "do it"))

        assert exc_info.value.status_code == 401
        client.create_session.assert_not_awaited()

    def test_creates_session_on_first_source_without_preference(self, store):
        _with_token(store)
        sources = [make_source("acme/widgets"), make_source("acme/gadgets")]
        client = _make_client(sources=sources)
        orchestrator, _ = _make_orchestrator(store, client)

        started = run_async(orchestrator.start_session("U1", "fix the build"))

        assert started.session_id == "s1"
        assert started.source == sources[0]
        args = client.create_session.await_args.args
        assert args[0].get_secret_value() == "jules-key"
        assert args[1:] == ("fix the build", "sources/github/acme/widgets")

    def test_uses_preferred_repository(self, store):
        _with_token(store)
        run_async(store.put(CredentialScope.PREFERRED_REPO, "U1", "acme/gadgets"))
        sources = [make_source("acme/widgets"), make_source("acme/gadgets")]
        client = _make_client(sources=sources)
        orchestrator, _ = _make_orchestrator(store, client)

        started = run_async(orchestrator.start_session("U1", "fix the build"))

        assert started.source == sources[1]
        assert client.create_session.await_args.args[2] == (
            "sources/github/acme/gadgets"
        )

    def test_credential_is_hidden_from_repr(self, store):
        _with_token(store)
        orchestrator, _ = _make_orchestrator(store, _make_client())

        started = run_async(orchestrator.start_session("U1", "fix the build"))

        assert "jules-key" not in repr(started)
        assert "jules-key" not in str(started)


# ---------------------------------------------------------------------------
# dispatch / run_to_completion
# ---------------------------------------------------------------------------


class TestDispatch:
    def test_happy_path_notifies_once_with_pull_request(self, store, sink):
        _with_token(store)
        client = _make_client(
            snapshots=[
                make_session("s1"),
                make_session(
                    "s1",
                    pr_url="https://github.com/acme/widgets/pull/7",
                    pr_title="Fix build",
                ),
            ]
        )
        emitter = MagicMock()
        emitter.emit = AsyncMock()
        orchestrator, sleep = _make_orchestrator(store, client, emitter)

        outcome = run_async(orchestrator.dispatch("U1", "fix the build", sink))

        assert sink.outcomes == [outcome]
        assert outcome.pr_url == "https://github.com/acme/widgets/pull/7"
        assert outcome.pr_title == "Fix build"
        assert outcome.attempts == 2
        assert sleep.await_count == 1
        assert _emitted_types(emitter) == [
            EventType.SESSION_CREATED,
            EventType.COMPLETION,
        ]

    def test_timeout_notifies_once(self, store, sink):
        _with_token(store)
        client = _make_client(snapshots=[make_session("s1")] * 3)
        orchestrator, sleep = _make_orchestrator(store, client, max_attempts=3)

        outcome = run_async(orchestrator.dispatch("U1", "fix the build", sink))

        assert outcome.timed_out is True
        assert len(sink.outcomes) == 1
        assert client.get_session.await_count == 3
        assert sleep.await_count == 2

    def test_create_failure_never_polls(self, store, sink):
        _with_token(store)
        client = _make_client()
        client.create_session.side_effect = UpstreamError(
            "Failed to create session: 500 - internal",
            status_code=500,
            response_body="internal",
        )
        orchestrator, sleep = _make_orchestrator(store, client)

        with pytest.raises(UpstreamError) as exc_info:
            run_async(orchestrator.dispatch("U1", "fix the build", sink))

        assert exc_info.value.status_code == 500
        client.get_session.assert_not_awaited()
        sleep.assert_not_awaited()
        assert sink.outcomes == []

    def test_poll_errors_are_emitted_and_loop_continues(self, store, sink):
        _with_token(store)
        client = _make_client(
            snapshots=[
                UpstreamError("Failed to get session: 502", status_code=502),
                make_session("s1", pr_url="https://gh/pr/1"),
            ]
        )
        emitter = MagicMock()
        emitter.emit = AsyncMock()
        orchestrator, _ = _make_orchestrator(store, client, emitter)

        outcome = run_async(orchestrator.dispatch("U1", "fix the build", sink))

        assert outcome.pr_url == "https://gh/pr/1"
        assert EventType.POLL_ERROR in _emitted_types(emitter)
        poll_event = next(
            c.args[0]
            for c in emitter.emit.await_args_list
            if c.args[0].event_type == EventType.POLL_ERROR
        )
        assert poll_event.details["status_code"] == 502
        assert poll_event.details["attempt"] == 1

    def test_sink_failure_is_not_propagated(self, store):
        _with_token(store)
        orchestrator, _ = _make_orchestrator(store, _make_client())
        failing_sink = MagicMock()
        failing_sink.notify = AsyncMock(side_effect=RuntimeError("slack down"))

        outcome = run_async(orchestrator.dispatch("U1", "fix the build", failing_sink))

        assert outcome.pr_url is not None
        failing_sink.notify.assert_awaited_once()

    def test_emitter_failure_does_not_break_run(self, store, sink):
        _with_token(store)
        emitter = MagicMock()
        emitter.emit = AsyncMock(side_effect=RuntimeError("metrics down"))
        orchestrator, _ = _make_orchestrator(store, _make_client(), emitter)

        outcome = run_async(orchestrator.dispatch("U1", "fix the build", sink))

        assert sink.outcomes == [outcome]

    def test_polls_with_the_requesting_users_credential(self, store, sink):
        _with_token(store, "U1")
        run_async(store.put(CredentialScope.CREDENTIAL, "U2", "other-key"))
        client = _make_client()
        orchestrator, _ = _make_orchestrator(store, client)

        run_async(orchestrator.dispatch("U2", "fix the build", sink))

        api_key, session_id = client.get_session.await_args.args
        assert api_key.get_secret_value() == "other-key"
        assert session_id == "s1"
