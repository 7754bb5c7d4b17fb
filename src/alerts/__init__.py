"""
WasteWatch - Notifications
Delivers user notifications via the log, memory and email.
"""

from src.alerts.notifier import (
    Notification,
    NotificationDispatcher,
    LogChannel,
    InMemoryChannel,
    EmailChannel,
)
from src.alerts.email_sender import (
    EmailConfig,
    EmailSender,
)

__all__ = [
    # Dispatcher
    "Notification",
    "NotificationDispatcher",
    "LogChannel",
    "InMemoryChannel",
    "EmailChannel",
    # Email
    "EmailConfig",
    "EmailSender",
]
