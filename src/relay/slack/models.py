"""Slack payload models.

Only the fields the relay reads are modelled; everything else Slack sends
is ignored.

Events API envelope (JSON):
{
  "type": "event_callback",
  "event_id": "Ev123",
  "event": {
    "type": "app_mention",
    "user": "U123",
    "channel": "C123",
    "ts": "1700000000.000100",
    "text": "<@UBOT> fix the flaky test"
  }
}

Slash commands arrive form-encoded with command, text, user_id and
channel_id fields.
"""

from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class SlackEventType(str, Enum):
    """Inner event types the relay handles."""

    APP_MENTION = "app_mention"
    MESSAGE = "message"


DIRECT_MESSAGE_CHANNEL_TYPE = "im"


class SlackEnvelope(BaseModel):
    """Outer Events API payload."""

    type: str
    challenge: Optional[str] = None
    event_id: Optional[str] = None
    event: Optional[Dict[str, Any]] = None


class SlackMessageEvent(BaseModel):
    """An app mention or message event.

    Attributes:
        type: Inner event type.
        user: Slack user id of the author, if any.
        channel: Channel the message was posted in.
        ts: Timestamp of the message, used as a thread parent.
        text: Message text, including any mention markup.
        channel_type: "im" for direct messages.
        subtype: Set for edits, joins, bot messages and so on.
        bot_id: Set when a bot authored the message.
    """

    type: SlackEventType
    channel: str = Field(..., min_length=1)
    ts: str = Field(..., min_length=1)
    user: Optional[str] = None
    text: str = ""
    channel_type: Optional[str] = None
    subtype: Optional[str] = None
    bot_id: Optional[str] = None

    @property
    def is_direct_message(self) -> bool:
        """True for a plain user message in a DM channel."""
        return (
            self.type == SlackEventType.MESSAGE
            and self.channel_type == DIRECT_MESSAGE_CHANNEL_TYPE
            and self.subtype is None
            and self.bot_id is None
        )


class SlashCommand(BaseModel):
    """A slash command invocation."""

    command: str
    user_id: str = Field(..., min_length=1)
    text: str = ""
    channel_id: Optional[str] = None


class CommandResponse(BaseModel):
    """Synchronous reply to a slash command."""

    response_type: str = "ephemeral"
    text: str
