"""Completion notifications and user-facing message formatting."""

from src.relay.notify.formatting import format_outcome
from src.relay.notify.sink import (
    LogNotificationSink,
    NotificationSink,
    SlackThreadSink,
)

__all__ = [
    "LogNotificationSink",
    "NotificationSink",
    "SlackThreadSink",
    "format_outcome",
]
