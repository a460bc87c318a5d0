"""Slack trigger surface.

This module turns Slack traffic into orchestrator calls:
- /jules-token and /jules-repo slash commands manage the user's settings
- app_mention events start a session and report back in the thread
- direct messages start a session and report back in the DM

Event handling runs after Slack has been acknowledged, so every failure
is reported to the user or logged here and never raised.

Slack Payload Parsing:
parse_event() accepts the inner "event" object of an event_callback and
returns None for anything the relay does not act on.

Source:
- src/relay/session/orchestrator.py (SessionOrchestrator)
- src/relay/notify/sink.py (SlackThreadSink)
- src/relay/notify/formatting.py (message texts)
- src/relay/slack/client.py (SlackClient)
"""

import logging
import re
from typing import Any, Dict, Optional

from pydantic import ValidationError

from src.relay.errors import NoSourcesAvailableError, UnauthenticatedError
from src.relay.notify import formatting
from src.relay.notify.sink import SlackThreadSink
from src.relay.session.orchestrator import SessionOrchestrator, StartedSession
from src.relay.slack.client import SlackClient
from src.relay.slack.models import (
    CommandResponse,
    SlackEventType,
    SlackMessageEvent,
    SlashCommand,
)
from src.relay.store.models import CredentialScope, CredentialStore


logger = logging.getLogger(__name__)


TOKEN_COMMAND = "/jules-token"
REPO_COMMAND = "/jules-repo"
CLEAR_KEYWORD = "clear"
ACK_REACTION = "rocket"

LEADING_MENTION = re.compile(r"^\s*<@[A-Z0-9]+(\|[^>]*)?>")


class SlackEventHandler:
    """Handles Slack slash commands and message events.

    Attributes:
        orchestrator: Starts and polls Jules sessions.
        store: Credential and preference store.
        slack_client: Client used for every reply.
        bot_user_id: The bot's own user id, stripped from mentions.
    """

    def __init__(
        self,
        orchestrator: SessionOrchestrator,
        store: CredentialStore,
        slack_client: SlackClient,
        bot_user_id: Optional[str] = None,
    ):
        self.orchestrator = orchestrator
        self.store = store
        self.slack_client = slack_client
        self.bot_user_id = bot_user_id

    # ------------------------------------------------------------------
    # Parsing
    # ------------------------------------------------------------------

    def parse_event(self, event: Any) -> Optional[SlackMessageEvent]:
        """Parse an inner Events API object into a SlackMessageEvent.

        Returns None for unsupported event types, malformed payloads,
        messages outside DMs and messages with a subtype or from bots.
        """
        if not isinstance(event, dict):
            logger.warning("Invalid Slack event: expected dict, got %s", type(event))
            return None

        event_type = event.get("type")
        if event_type not in {t.value for t in SlackEventType}:
            logger.debug("Ignoring unsupported Slack event type: %s", event_type)
            return None

        try:
            parsed = SlackMessageEvent.model_validate(event)
        except ValidationError as e:
            logger.warning("Malformed Slack event: %s", e)
            return None

        if parsed.type == SlackEventType.MESSAGE and not parsed.is_direct_message:
            return None

        return parsed

    def strip_mention(self, text: str) -> str:
        """Remove the bot mention from a message and trim it."""
        if self.bot_user_id:
            text = text.replace(f"<@{self.bot_user_id}>", "")
        else:
            text = LEADING_MENTION.sub("", text)
        return text.strip()

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    async def handle_event(self, event: SlackMessageEvent) -> None:
        """Dispatch a parsed event, logging anything that escapes."""
        try:
            if event.type == SlackEventType.APP_MENTION:
                await self.handle_app_mention(event)
            elif event.is_direct_message:
                await self.handle_direct_message(event)
        except Exception:
            logger.exception(
                "Unhandled error while processing Slack event",
                extra={"channel": event.channel, "slack_user": event.user},
            )

    async def handle_app_mention(self, event: SlackMessageEvent) -> None:
        """Start a session from an @mention and report in its thread."""
        user_id = event.user
        if not user_id:
            return

        channel, ts = event.channel, event.ts

        if not await self._has_credential(user_id):
            await self.slack_client.post_ephemeral(
                channel=channel,
                user=user_id,
                text=formatting.REGISTER_TOKEN_MESSAGE,
            )
            return

        prompt = self.strip_mention(event.text)
        if not prompt:
            await self.slack_client.post_message(
                channel=channel,
                text=formatting.EMPTY_PROMPT_MESSAGE,
                thread_ts=ts,
            )
            return

        try:
            await self.slack_client.add_reaction(channel, ts, ACK_REACTION)
        except Exception as e:
            logger.warning(
                "Failed to add acknowledgement reaction",
                extra={"channel": channel, "error": str(e)},
            )

        try:
            started = await self.orchestrator.start_session(user_id, prompt)
        except UnauthenticatedError:
            await self.slack_client.post_ephemeral(
                channel=channel,
                user=user_id,
                text=formatting.REGISTER_TOKEN_MESSAGE,
            )
            return
        except NoSourcesAvailableError:
            await self.slack_client.post_message(
                channel=channel,
                text=formatting.NO_SOURCES_MESSAGE,
                thread_ts=ts,
            )
            return
        except Exception as e:
            logger.error(
                "Failed to create Jules session",
                extra={"user_id": user_id, "error": str(e)},
            )
            await self.slack_client.post_message(
                channel=channel,
                text=formatting.format_start_failure(e),
                thread_ts=ts,
            )
            return

        await self._announce(
            started,
            prompt,
            channel=channel,
            thread_ts=ts,
            announce_update=True,
        )
        await self.orchestrator.run_to_completion(
            started,
            SlackThreadSink(self.slack_client, channel=channel, thread_ts=ts),
        )

    async def handle_direct_message(self, event: SlackMessageEvent) -> None:
        """Start a session from a DM and report back in the DM."""
        user_id = event.user
        prompt = event.text.strip()
        if not user_id or not prompt:
            return

        channel = event.channel

        if not await self._has_credential(user_id):
            await self.slack_client.post_message(
                channel=channel,
                text=formatting.REGISTER_TOKEN_MESSAGE,
            )
            return

        try:
            started = await self.orchestrator.start_session(user_id, prompt)
        except UnauthenticatedError:
            await self.slack_client.post_message(
                channel=channel,
                text=formatting.REGISTER_TOKEN_MESSAGE,
            )
            return
        except NoSourcesAvailableError:
            await self.slack_client.post_message(
                channel=channel,
                text=formatting.NO_SOURCES_MESSAGE,
            )
            return
        except Exception as e:
            logger.error(
                "Failed in direct message handler",
                extra={"user_id": user_id, "error": str(e)},
            )
            await self.slack_client.post_message(
                channel=channel,
                text=formatting.format_dm_failure(e),
            )
            return

        await self._announce(
            started,
            prompt,
            channel=channel,
            thread_ts=None,
            announce_update=False,
        )
        await self.orchestrator.run_to_completion(
            started,
            SlackThreadSink(self.slack_client, channel=channel, thread_ts=event.ts),
        )

    async def _has_credential(self, user_id: str) -> bool:
        return bool(await self.store.get(CredentialScope.CREDENTIAL, user_id))

    async def _announce(
        self,
        started: StartedSession,
        prompt: str,
        channel: str,
        thread_ts: Optional[str],
        announce_update: bool,
    ) -> None:
        """Post the session-started message. Polling goes ahead regardless."""
        text = formatting.format_session_started(
            started.session_id,
            started.session.title,
            prompt,
            announce_update=announce_update,
        )
        try:
            await self.slack_client.post_message(
                channel=channel, text=text, thread_ts=thread_ts
            )
        except Exception as e:
            logger.warning(
                "Failed to announce Jules session",
                extra={"session_id": started.session_id, "error": str(e)},
            )

    # ------------------------------------------------------------------
    # Slash commands
    # ------------------------------------------------------------------

    def parse_command(self, form: Dict[str, str]) -> Optional[SlashCommand]:
        """Build a SlashCommand from decoded form fields."""
        try:
            return SlashCommand.model_validate(form)
        except ValidationError as e:
            logger.warning("Malformed slash command: %s", e)
            return None

    async def handle_command(self, command: SlashCommand) -> CommandResponse:
        """Answer a slash command synchronously."""
        if command.command == TOKEN_COMMAND:
            return await self._handle_token_command(command)
        if command.command == REPO_COMMAND:
            return await self._handle_repo_command(command)

        logger.debug("Ignoring unknown slash command: %s", command.command)
        return CommandResponse(text=f"Unknown command: `{command.command}`")

    async def _handle_token_command(self, command: SlashCommand) -> CommandResponse:
        token = command.text.strip()
        user_id = command.user_id

        if not token:
            stored = await self.store.get(CredentialScope.CREDENTIAL, user_id)
            return CommandResponse(text=formatting.format_token_status(bool(stored)))

        await self.store.put(CredentialScope.CREDENTIAL, user_id, token)
        logger.info("Token registered", extra={"user_id": user_id})
        return CommandResponse(text=formatting.TOKEN_SAVED_MESSAGE)

    async def _handle_repo_command(self, command: SlashCommand) -> CommandResponse:
        repo = command.text.strip()
        user_id = command.user_id

        if not repo:
            stored = await self.store.get(CredentialScope.PREFERRED_REPO, user_id)
            return CommandResponse(text=formatting.format_repo_status(stored))

        if repo.lower() == CLEAR_KEYWORD:
            await self.store.delete(CredentialScope.PREFERRED_REPO, user_id)
            logger.info("Preferred repository cleared", extra={"user_id": user_id})
            return CommandResponse(text=formatting.REPO_CLEARED_MESSAGE)

        await self.store.put(CredentialScope.PREFERRED_REPO, user_id, repo)
        logger.info(
            "Preferred repository set",
            extra={"user_id": user_id, "preferred_repo": repo},
        )
        return CommandResponse(text=formatting.format_repo_saved(repo))
