"""Notification senders."""

from cashvault.services.notifications.sender import (
    NotificationError,
    NotificationSenderInterface,
    OutboxNotificationSender,
)

__all__ = [
    "NotificationError",
    "NotificationSenderInterface",
    "OutboxNotificationSender",
]
