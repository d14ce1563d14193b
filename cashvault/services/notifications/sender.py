"""
Notification Sending

The jobs build notifications; getting them to an inbox is somebody
else's job. A delivery integration (an email API, a queue consumer)
implements NotificationSenderInterface and is handed to the flows.
"""

from abc import ABC, abstractmethod

import structlog

from cashvault.models.ledger import Notification


class NotificationError(Exception):
    """The notification could not be handed off for delivery."""
    pass


class NotificationSenderInterface(ABC):

    @abstractmethod
    async def send(self, notification: Notification) -> None:
        """
        Hand a notification off for delivery.

        Raises:
            NotificationError: If the hand-off failed
        """
        pass


class OutboxNotificationSender(NotificationSenderInterface):
    """
    Keeps notifications in memory and logs them.

    Used when no delivery integration is configured, and in tests.
    """

    def __init__(self):
        self.outbox: list[Notification] = []
        self._logger = structlog.get_logger(__name__)

    async def send(self, notification: Notification) -> None:
        self.outbox.append(notification)
        self._logger.info(
            "notification_queued",
            recipient=notification.recipient,
            subject=notification.subject,
            template=notification.template.value,
        )
