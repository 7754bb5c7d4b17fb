"""
WasteWatch - Notifications
Fans user notifications out to delivery channels.

Delivery is fire-and-forget: a failing channel is logged and never
propagates into the operation that triggered the notification.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Protocol

from src.alerts.email_sender import EmailSender, generate_notification_email_html
from src.database.models import utcnow

logger = logging.getLogger(__name__)


@dataclass
class Notification:
    """Message addressed to one user."""
    user_id: int
    title: str
    message: str
    kind: str = "report_status"
    created_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "kind": self.kind,
            "title": self.title,
            "message": self.message,
            "created_at": self.created_at.isoformat(),
        }


class NotificationChannel(Protocol):
    name: str

    def send(self, notification: Notification) -> None:
        ...


class LogChannel:
    """Writes notifications to the application log."""

    name = "log"

    def send(self, notification: Notification) -> None:
        logger.info(
            f"Notify user {notification.user_id} [{notification.kind}]: "
            f"{notification.title} - {notification.message}"
        )


class InMemoryChannel:
    """Keeps every notification; the per-user inbox of local runs and tests."""

    name = "memory"

    def __init__(self):
        self.sent: List[Notification] = []

    def send(self, notification: Notification) -> None:
        self.sent.append(notification)

    def for_user(self, user_id: int) -> List[Notification]:
        return [n for n in self.sent if n.user_id == user_id]


class EmailChannel:
    """
    Emails notifications over SMTP.

    Args:
        resolve_email: Maps a user id to an address (None skips the user)
        sender: SMTP sender, built from settings by default
    """

    name = "email"

    def __init__(
        self,
        resolve_email: Callable[[int], Optional[str]],
        sender: Optional[EmailSender] = None
    ):
        self.resolve_email = resolve_email
        self.sender = sender or EmailSender()

    def send(self, notification: Notification) -> None:
        address = self.resolve_email(notification.user_id)
        if not address:
            logger.debug(f"No email address for user {notification.user_id}")
            return

        result = self.sender.send_email(
            to_addresses=[address],
            subject=f"WasteWatch: {notification.title}",
            body_text=notification.message,
            body_html=generate_notification_email_html(notification.title, notification.message),
        )
        if not result["success"]:
            raise RuntimeError(result["error"])


class NotificationDispatcher:
    """Delivers each notification to every registered channel."""

    def __init__(self, channels: Optional[List[NotificationChannel]] = None):
        self.channels: List[NotificationChannel] = list(channels) if channels else [LogChannel()]

    def add_channel(self, channel: NotificationChannel) -> None:
        self.channels.append(channel)

    def notify(
        self,
        user_id: int,
        title: str,
        message: str,
        kind: str = "report_status"
    ) -> Dict[str, Any]:
        """
        Send a notification through all channels.

        Returns:
            Dictionary with per-channel delivery results
        """
        notification = Notification(user_id=user_id, title=title, message=message, kind=kind)
        results = {"channels": {}, "total_sent": 0, "total_failed": 0}

        for channel in self.channels:
            try:
                channel.send(notification)
            except Exception as e:
                logger.warning(f"Notification channel {channel.name} failed for user {user_id}: {e}")
                results["channels"][channel.name] = "failed"
                results["total_failed"] += 1
            else:
                results["channels"][channel.name] = "sent"
                results["total_sent"] += 1

        return results
