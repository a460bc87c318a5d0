"""Notification sinks for terminal session outcomes.

The orchestrator hands every terminal outcome to exactly one sink:
- SlackThreadSink: posts into the Slack thread or channel the request
  came from (app mentions and direct messages)
- LogNotificationSink: writes one structured log record (webhook
  requests, which have no channel to reply into)

Both receive the same SessionOutcome, so the poll loop stays free of
transport concerns.

Source:
- src/relay/session/models.py (SessionOutcome)
- src/relay/notify/formatting.py (format_outcome)
- src/relay/slack/client.py (SlackClient)
"""

import logging
from abc import ABC, abstractmethod
from typing import Optional

from src.relay.notify.formatting import format_outcome
from src.relay.session.models import SessionOutcome
from src.relay.slack.client import SlackClient


logger = logging.getLogger(__name__)


class NotificationSink(ABC):
    """Destination for the single completion notification of a session."""

    @abstractmethod
    async def notify(self, outcome: SessionOutcome) -> None:
        """Deliver the terminal outcome."""
        pass


class SlackThreadSink(NotificationSink):
    """Posts the outcome into a Slack channel, optionally in a thread.

    Attributes:
        client: Slack client used for posting.
        channel: Channel id to post into.
        thread_ts: Timestamp of the parent message, if replying in a thread.
    """

    def __init__(
        self,
        client: SlackClient,
        channel: str,
        thread_ts: Optional[str] = None,
    ):
        self.client = client
        self.channel = channel
        self.thread_ts = thread_ts

    async def notify(self, outcome: SessionOutcome) -> None:
        await self.client.post_message(
            channel=self.channel,
            text=format_outcome(outcome),
            thread_ts=self.thread_ts,
        )


class LogNotificationSink(NotificationSink):
    """Writes the outcome as a structured log record.

    Completed sessions log at INFO, timed-out sessions at WARNING. The
    record's extra fields are the camelCase outcome payload plus the
    originating user.

    Example:
        >>> sink = LogNotificationSink(user_id="webhook:abc")
        >>> await sink.notify(outcome)
        # Logs: INFO - Webhook task completed: session s1, pull request ...
    """

    def __init__(
        self,
        user_id: Optional[str] = None,
        logger_name: Optional[str] = None,
    ):
        self.user_id = user_id
        self._logger = logging.getLogger(logger_name) if logger_name else logger

    async def notify(self, outcome: SessionOutcome) -> None:
        record = outcome.to_log_dict()
        record["userId"] = self.user_id

        if outcome.timed_out:
            self._logger.warning(
                "Webhook task timed out: session %s, user %s",
                outcome.session_id,
                self.user_id,
                extra=record,
            )
        else:
            self._logger.info(
                "Webhook task completed: session %s, pull request %s (%s), user %s",
                outcome.session_id,
                outcome.pr_url,
                outcome.pr_title or "untitled",
                self.user_id,
                extra=record,
            )
