"""Unit tests for the Slack event and slash command handler.

The orchestrator and Slack client are mocked; the store is in-memory.
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from conftest import make_session, make_source
from src.relay.errors import NoSourcesAvailableError, UnauthenticatedError
from src.relay.jules.client import UpstreamError
from src.relay.notify import formatting
from src.relay.notify.sink import SlackThreadSink
from src.relay.session.orchestrator import SessionOrchestrator, StartedSession
from src.relay.slack.client import SlackClient
from src.relay.slack.handler import SlackEventHandler
from src.relay.slack.models import SlackEventType, SlackMessageEvent, SlashCommand
from src.relay.store.models import CredentialScope


def run_async(coro):
    return asyncio.run(coro)


def _started(user_id: str = "U1", title: str = "Fix the flaky test") -> StartedSession:
    return StartedSession(
        user_id=user_id,
        session=make_session("s1", title=title),
        source=make_source("acme/widgets"),
        credential="jules-key",
    )


@pytest.fixture
def slack_client():
    client = MagicMock(spec=SlackClient)
    client.post_message = AsyncMock(return_value={"ok": True})
    client.post_ephemeral = AsyncMock(return_value={"ok": True})
    client.add_reaction = AsyncMock()
    return client


@pytest.fixture
def orchestrator():
    orch = MagicMock(spec=SessionOrchestrator)
    orch.start_session = AsyncMock(return_value=_started())
    orch.run_to_completion = AsyncMock()
    return orch


@pytest.fixture
def handler(orchestrator, store, slack_client):
    return SlackEventHandler(
        orchestrator=orchestrator,
        store=store,
        slack_client=slack_client,
        bot_user_id="UBOT",
    )


def _mention(text: str = "<@UBOT> fix the flaky test", user: str = "U1"):
    return SlackMessageEvent(
        type=SlackEventType.APP_MENTION,
        channel="C1",
        ts="1700.1",
        user=user,
        text=text,
    )


def _dm(text: str = "fix the flaky test"):
    return SlackMessageEvent(
        type=SlackEventType.MESSAGE,
        channel="D1",
        ts="1700.2",
        user="U1",
        text=text,
        channel_type="im",
    )


def _register(store, user_id: str = "U1") -> None:
    run_async(store.put(CredentialScope.CREDENTIAL, user_id, "jules-key"))


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


class TestParseEvent:
    def test_app_mention(self, handler):
        event = handler.parse_event(
            {"type": "app_mention", "channel": "C1", "ts": "1.1", "user": "U1",
             "text": "<@UBOT> hi"}
        )

        assert event is not None
        assert event.type == SlackEventType.APP_MENTION

    def test_direct_message(self, handler):
        event = handler.parse_event(
            {"type": "message", "channel": "D1", "ts": "1.1", "user": "U1",
             "text": "hi", "channel_type": "im"}
        )

        assert event is not None
        assert event.is_direct_message

    @pytest.mark.parametrize(
        "payload",
        [
            None,
            "not-a-dict",
            {"type": "reaction_added", "channel": "C1", "ts": "1.1"},
            {"type": "message", "channel": "C1", "ts": "1.1", "text": "hi",
             "channel_type": "channel"},
            {"type": "message", "channel": "D1", "ts": "1.1", "text": "hi",
             "channel_type": "im", "bot_id": "B1"},
            {"type": "message", "channel": "D1", "ts": "1.1", "text": "hi",
             "channel_type": "im", "subtype": "message_changed"},
            {"type": "app_mention", "text": "missing channel"},
        ],
    )
    def test_ignored_payloads(self, handler, payload):
        assert handler.parse_event(payload) is None

    def test_strip_mention(self, handler):
        assert handler.strip_mention("<@UBOT>   do the thing ") == "do the thing"

    def test_strip_leading_mention_without_bot_id(self, orchestrator, store, slack_client):
        handler = SlackEventHandler(orchestrator, store, slack_client)

        assert handler.strip_mention("<@U0ABC> do the thing") == "do the thing"


# ---------------------------------------------------------------------------
# App mentions
# ---------------------------------------------------------------------------


class TestAppMention:
    def test_unregistered_user_gets_ephemeral_hint(
        self, handler, orchestrator, slack_client
    ):
        run_async(handler.handle_app_mention(_mention()))

        slack_client.post_ephemeral.assert_awaited_once_with(
            channel="C1", user="U1", text=formatting.REGISTER_TOKEN_MESSAGE
        )
        orchestrator.start_session.assert_not_awaited()

    def test_empty_prompt_asks_for_task(
        self, handler, store, orchestrator, slack_client
    ):
        _register(store)

        run_async(handler.handle_app_mention(_mention("<@UBOT>   ")))

        slack_client.post_message.assert_awaited_once_with(
            channel="C1", text=formatting.EMPTY_PROMPT_MESSAGE, thread_ts="1700.1"
        )
        orchestrator.start_session.assert_not_awaited()

    def test_event_without_user_is_ignored(self, handler, orchestrator, slack_client):
        run_async(handler.handle_app_mention(_mention(user=None)))

        slack_client.post_ephemeral.assert_not_awaited()
        orchestrator.start_session.assert_not_awaited()

    def test_starts_session_and_polls_in_thread(
        self, handler, store, orchestrator, slack_client
    ):
        _register(store)

        run_async(handler.handle_app_mention(_mention()))

        slack_client.add_reaction.assert_awaited_once_with("C1", "1700.1", "rocket")
        orchestrator.start_session.assert_awaited_once_with("U1", "fix the flaky test")
        slack_client.post_message.assert_awaited_once_with(
            channel="C1",
            text=(
                "Starting Jules session: Fix the flaky test\nSession ID: s1"
                "\n\nI'll update you when the task completes!"
            ),
            thread_ts="1700.1",
        )
        started, sink = orchestrator.run_to_completion.await_args.args
        assert started.session_id == "s1"
        assert isinstance(sink, SlackThreadSink)
        assert (sink.channel, sink.thread_ts) == ("C1", "1700.1")

    def test_reaction_failure_does_not_block_session(
        self, handler, store, orchestrator, slack_client
    ):
        _register(store)
        slack_client.add_reaction.side_effect = RuntimeError("no scope")

        run_async(handler.handle_app_mention(_mention()))

        orchestrator.run_to_completion.assert_awaited_once()

    def test_announce_failure_still_polls(
        self, handler, store, orchestrator, slack_client
    ):
        _register(store)
        slack_client.post_message.side_effect = RuntimeError("slack down")

        run_async(handler.handle_app_mention(_mention()))

        orchestrator.run_to_completion.assert_awaited_once()

    def test_no_sources_reply(self, handler, store, orchestrator, slack_client):
        _register(store)
        orchestrator.start_session.side_effect = NoSourcesAvailableError("U1")

        run_async(handler.handle_app_mention(_mention()))

        slack_client.post_message.assert_awaited_once_with(
            channel="C1", text=formatting.NO_SOURCES_MESSAGE, thread_ts="1700.1"
        )
        orchestrator.run_to_completion.assert_not_awaited()

    def test_credential_removed_mid_flight(
        self, handler, store, orchestrator, slack_client
    ):
        _register(store)
        orchestrator.start_session.side_effect = UnauthenticatedError("U1")

        run_async(handler.handle_app_mention(_mention()))

        slack_client.post_ephemeral.assert_awaited_once()

    def test_create_failure_reported_in_thread(
        self, handler, store, orchestrator, slack_client
    ):
        _register(store)
        orchestrator.start_session.side_effect = UpstreamError(
            "Failed to create session: 500 - boom", status_code=500
        )

        run_async(handler.handle_app_mention(_mention()))

        slack_client.post_message.assert_awaited_once_with(
            channel="C1",
            text="Failed to start Jules session: Failed to create session: 500 - boom",
            thread_ts="1700.1",
        )
        orchestrator.run_to_completion.assert_not_awaited()


# ---------------------------------------------------------------------------
# Direct messages
# ---------------------------------------------------------------------------


class TestDirectMessage:
    def test_unregistered_user_gets_hint_in_channel(
        self, handler, orchestrator, slack_client
    ):
        run_async(handler.handle_direct_message(_dm()))

        slack_client.post_message.assert_awaited_once_with(
            channel="D1", text=formatting.REGISTER_TOKEN_MESSAGE
        )
        orchestrator.start_session.assert_not_awaited()

    def test_starts_session_and_notifies_in_message_thread(
        self, handler, store, orchestrator, slack_client
    ):
        _register(store)

        run_async(handler.handle_direct_message(_dm()))

        slack_client.add_reaction.assert_not_awaited()
        slack_client.post_message.assert_awaited_once_with(
            channel="D1",
            text="Starting Jules session: Fix the flaky test\nSession ID: s1",
            thread_ts=None,
        )
        _, sink = orchestrator.run_to_completion.await_args.args
        assert (sink.channel, sink.thread_ts) == ("D1", "1700.2")

    def test_failure_reply(self, handler, store, orchestrator, slack_client):
        _register(store)
        orchestrator.start_session.side_effect = UpstreamError(
            "Failed to list sources: 401", status_code=401
        )

        run_async(handler.handle_direct_message(_dm()))

        slack_client.post_message.assert_awaited_once_with(
            channel="D1", text="Error: Failed to list sources: 401"
        )

    def test_blank_text_is_ignored(self, handler, store, orchestrator, slack_client):
        _register(store)

        run_async(handler.handle_direct_message(_dm("   ")))

        slack_client.post_message.assert_not_awaited()
        orchestrator.start_session.assert_not_awaited()


class TestHandleEvent:
    def test_dispatches_and_contains_errors(self, handler, store, slack_client):
        _register(store)
        slack_client.post_message.side_effect = RuntimeError("slack down")
        handler.orchestrator.start_session.side_effect = UpstreamError("boom")

        # The failure reply itself fails; handle_event must not raise
        run_async(handler.handle_event(_mention()))

        slack_client.post_message.assert_awaited_once()

    def test_routes_direct_messages(self, handler, store, orchestrator):
        _register(store)

        run_async(handler.handle_event(_dm()))

        orchestrator.start_session.assert_awaited_once_with("U1", "fix the flaky test")


# ---------------------------------------------------------------------------
# Slash commands
# ---------------------------------------------------------------------------


def _command(command: str, text: str = "", user_id: str = "U1") -> SlashCommand:
    return SlashCommand(command=command, text=text, user_id=user_id)


class TestSlashCommands:
    def test_token_usage_when_unregistered(self, handler):
        response = run_async(handler.handle_command(_command("/jules-token")))

        assert response.response_type == "ephemeral"
        assert response.text == formatting.format_token_status(False)

    def test_token_status_when_registered(self, handler, store):
        _register(store)

        response = run_async(handler.handle_command(_command("/jules-token")))

        assert response.text == formatting.format_token_status(True)
        assert "jules-key" not in response.text

    def test_token_is_stored_trimmed(self, handler, store):
        response = run_async(
            handler.handle_command(_command("/jules-token", "  new-key  "))
        )

        assert response.text == formatting.TOKEN_SAVED_MESSAGE
        assert run_async(store.get(CredentialScope.CREDENTIAL, "U1")) == "new-key"

    def test_repo_set_show_and_clear(self, handler, store):
        set_response = run_async(
            handler.handle_command(_command("/jules-repo", "acme/widgets"))
        )
        show_response = run_async(handler.handle_command(_command("/jules-repo")))
        clear_response = run_async(
            handler.handle_command(_command("/jules-repo", "CLEAR"))
        )

        assert set_response.text == formatting.format_repo_saved("acme/widgets")
        assert show_response.text == formatting.format_repo_status("acme/widgets")
        assert clear_response.text == formatting.REPO_CLEARED_MESSAGE
        assert run_async(store.get(CredentialScope.PREFERRED_REPO, "U1")) is None

    def test_repo_usage_when_unset(self, handler):
        response = run_async(handler.handle_command(_command("/jules-repo")))

        assert response.text == formatting.format_repo_status(None)

    def test_unknown_command(self, handler):
        response = run_async(handler.handle_command(_command("/jules-nope")))

        assert "Unknown command" in response.text

    def test_parse_command_requires_user(self, handler):
        assert handler.parse_command({"command": "/jules-token", "text": "x"}) is None
        parsed = handler.parse_command(
            {"command": "/jules-token", "text": "x", "user_id": "U1"}
        )
        assert parsed.user_id == "U1"
