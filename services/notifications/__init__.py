"""Operator notifications for processed signals."""

from .sink import NotificationOutcome, NotificationSink, build_summary
from .telegram import TelegramClient, TelegramNotificationSink, escape_markdown_v2

__all__ = [
    "NotificationOutcome",
    "NotificationSink",
    "build_summary",
    "TelegramClient",
    "TelegramNotificationSink",
    "escape_markdown_v2",
]
