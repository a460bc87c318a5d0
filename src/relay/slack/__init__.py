"""Slack integration for the relay.

- SlackClient: posts replies, ephemeral messages and reactions
- verify_slack_signature: checks the v0 request signature

The event and command handler lives in src/relay/slack/handler.py.
"""

from src.relay.slack.client import SlackAPIError, SlackClient
from src.relay.slack.verification import (
    InvalidSignatureError,
    compute_signature,
    verify_slack_signature,
)

__all__ = [
    "InvalidSignatureError",
    "SlackAPIError",
    "SlackClient",
    "compute_signature",
    "verify_slack_signature",
]
