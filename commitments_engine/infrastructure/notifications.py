"""Notification sender boundary used by the reminder dispatcher"""

import logging
import uuid
from dataclasses import dataclass
from typing import List, Protocol

logger = logging.getLogger(__name__)


class NotificationSender(Protocol):
    def send(self, user_id: uuid.UUID, channel: str, subject: str, body: str) -> None:
        """Deliver a notification; raise on failure"""
        ...


class LoggingNotificationSender:
    """Writes notifications to the structured log instead of a real channel"""

    def send(self, user_id: uuid.UUID, channel: str, subject: str, body: str) -> None:
        logger.info(
            "Notification sent",
            extra={
                "user_id": str(user_id),
                "channel": channel,
                "subject": subject,
                "body": body,
            },
        )


@dataclass
class SentNotification:
    user_id: uuid.UUID
    channel: str
    subject: str
    body: str


class InMemoryNotificationSender:
    """Collects notifications in a list"""

    def __init__(self) -> None:
        self.sent: List[SentNotification] = []

    def send(self, user_id: uuid.UUID, channel: str, subject: str, body: str) -> None:
        self.sent.append(SentNotification(user_id=user_id, channel=channel, subject=subject, body=body))
